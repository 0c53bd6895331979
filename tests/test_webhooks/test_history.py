"""Tests for delivery history."""

from datetime import UTC, datetime, timedelta

import pytest

from hookrelay.errors import ValidationError
from hookrelay.storage.memory import InMemoryDeliveryStore
from hookrelay.webhooks.history import DeliveryHistory
from hookrelay.webhooks.models import DeliveryJob, DeliveryState, RetryPolicy
from hookrelay.webhooks.queue import DeliveryQueue

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store():
    """Create an in-memory store."""
    return InMemoryDeliveryStore()


@pytest.fixture
def queue(store):
    """Create a queue with a fixed clock."""
    return DeliveryQueue(store, clock=lambda: NOW)


@pytest.fixture
def history(store, queue):
    """Create delivery history."""
    return DeliveryHistory(store, queue, clock=lambda: NOW)


def make_job(endpoint_id="wh_1", tenant_id="t1", minutes_ago=0, **overrides):
    return DeliveryJob(
        endpoint_id=endpoint_id,
        event_id="evt_1",
        tenant_id=tenant_id,
        event_type="order.created",
        url="https://example.com/hook",
        created_at=NOW - timedelta(minutes=minutes_ago),
        **overrides,
    )


async def dead_lettered(queue) -> DeliveryJob:
    await queue.enqueue(make_job(retry_policy=RetryPolicy(max_retries=1)))
    job = await queue.pick_ready(NOW)
    await queue.fail(job, "HTTP 500", status_code=500)
    return job


# ============================================================================
# Query Tests
# ============================================================================


class TestQueries:
    """Tests for status and listing."""

    @pytest.mark.asyncio
    async def test_get_delivery_status(self, history, queue):
        """Test lookup by id."""
        job = make_job()
        await queue.enqueue(job)

        found = await history.get_delivery_status(job.id)

        assert found.id == job.id
        assert found.state == DeliveryState.PENDING
        assert await history.get_delivery_status("dlv_missing") is None

    @pytest.mark.asyncio
    async def test_list_newest_first_with_paging(self, history, queue):
        """Test ordering, limit and offset."""
        jobs = [make_job(minutes_ago=m) for m in (3, 2, 1)]
        for job in jobs:
            await queue.enqueue(job)

        page = await history.list_deliveries("wh_1", limit=2)
        rest = await history.list_deliveries("wh_1", limit=2, offset=2)

        assert [j.id for j in page] == [jobs[2].id, jobs[1].id]
        assert [j.id for j in rest] == [jobs[0].id]

    @pytest.mark.asyncio
    async def test_list_filters_endpoint_and_state(self, history, queue):
        """Test endpoint and state filters."""
        await queue.enqueue(make_job(endpoint_id="wh_other"))
        dead = await dead_lettered(queue)

        assert [j.id for j in await history.list_deliveries("wh_1")] == [dead.id]
        assert (
            await history.list_deliveries("wh_1", state=DeliveryState.PENDING)
        ) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("limit", "offset"), [(0, 0), (501, 0), (10, -1)])
    async def test_invalid_paging(self, history, limit, offset):
        """Test paging bounds."""
        with pytest.raises(ValidationError):
            await history.list_deliveries("wh_1", limit=limit, offset=offset)

    @pytest.mark.asyncio
    async def test_stats(self, history, queue):
        """Test per-tenant counts."""
        await queue.enqueue(make_job())
        await queue.enqueue(make_job(tenant_id="t2"))
        await dead_lettered(queue)

        stats = await history.get_delivery_stats("t1")

        assert stats.total == 2
        assert stats.pending == 1
        assert stats.dead_letter == 1

    @pytest.mark.asyncio
    async def test_list_dead_letters(self, history, queue):
        """Test dead-letter listing per tenant."""
        await queue.enqueue(make_job())
        dead = await dead_lettered(queue)

        assert [j.id for j in await history.list_dead_letters("t1")] == [dead.id]
        assert await history.list_dead_letters("t2") == []


# ============================================================================
# Retry Tests
# ============================================================================


class TestRetryDelivery:
    """Tests for manual retry."""

    @pytest.mark.asyncio
    async def test_retry_dead_letter(self, history, store, queue):
        """Test dead-lettered job is re-armed for now."""
        dead = await dead_lettered(queue)

        assert await history.retry_delivery(dead.id) is True

        job = await store.get_job(dead.id)
        assert job.state == DeliveryState.RETRY_SCHEDULED
        assert job.next_retry_at == NOW
        assert job.attempt == 1

    @pytest.mark.asyncio
    async def test_retry_delivered_rejected(self, history, queue):
        """Test delivered jobs cannot be retried."""
        await queue.enqueue(make_job())
        job = await queue.pick_ready(NOW)
        await queue.complete(job, 200)

        assert await history.retry_delivery(job.id) is False

    @pytest.mark.asyncio
    async def test_retry_unknown(self, history):
        """Test unknown id returns False."""
        assert await history.retry_delivery("dlv_missing") is False
