"""End-to-end tests for the webhook service facade."""

import asyncio

import httpx
import pytest

from hookrelay.config import Settings
from hookrelay.errors import ValidationError
from hookrelay.storage.memory import InMemoryDeliveryStore
from hookrelay.storage.sqlite import SQLiteDeliveryStore
from hookrelay.webhooks.models import DeliveryState
from hookrelay.webhooks.security import sign_payload
from hookrelay.webhooks.service import WebhookService


class Receiver:
    """Mock HTTP receiver returning a fixed status."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status)


def make_service(receiver: Receiver, **settings) -> WebhookService:
    return WebhookService(
        InMemoryDeliveryStore(),
        settings=Settings(POLL_INTERVAL_SECONDS=0.01, WORKER_COUNT=2, **settings),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(receiver)),
    )


async def wait_for_state(service, delivery_id, state, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        job = await service.get_delivery_status(delivery_id)
        if job and job.state == state:
            return job
        await asyncio.sleep(0.01)
    raise AssertionError(f"delivery {delivery_id} never reached {state}")


# ============================================================================
# Endpoint API Tests
# ============================================================================


class TestEndpointApi:
    """Tests for endpoint management through the service."""

    @pytest.mark.asyncio
    async def test_register_and_get(self):
        """Test register, get and list."""
        service = make_service(Receiver())

        reg = await service.register_endpoint(
            "t1", "https://example.com/hook", ["order.created"], description="orders"
        )

        assert (await service.get_endpoint(reg.endpoint.id)).description == "orders"
        assert [e.id for e in await service.get_endpoints_by_tenant("t1")] == [
            reg.endpoint.id
        ]

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self):
        """Test update of an unknown endpoint."""
        service = make_service(Receiver())

        assert await service.update_endpoint("wh_missing", {"active": False}) is None

    @pytest.mark.asyncio
    async def test_update_invalid_raises(self):
        """Test validation errors still propagate."""
        service = make_service(Receiver())
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])

        with pytest.raises(ValidationError):
            await service.update_endpoint(reg.endpoint.id, {"tenant_id": "t2"})

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test deletion."""
        service = make_service(Receiver())
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])

        assert await service.delete_endpoint(reg.endpoint.id) is True
        assert await service.get_endpoint(reg.endpoint.id) is None


# ============================================================================
# Delivery Flow Tests
# ============================================================================


class TestDeliveryFlow:
    """Tests for emit through worker delivery."""

    @pytest.mark.asyncio
    async def test_emit_is_delivered(self):
        """Test the running service delivers emitted events."""
        receiver = Receiver(200)
        service = make_service(receiver)
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])

        async with service:
            await service.emit("a.b", {"n": 1}, "t1")
            [job] = await service.list_deliveries(reg.endpoint.id)
            delivered = await wait_for_state(service, job.id, DeliveryState.DELIVERED)

        assert delivered.last_http_status == 200
        assert len(receiver.requests) == 1
        stats = await service.get_delivery_stats("t1")
        assert stats.delivered == 1

    @pytest.mark.asyncio
    async def test_dead_letter_and_manual_retry(self):
        """Test exhausted deliveries land in dead letter and can be re-armed."""
        receiver = Receiver(500)
        service = make_service(receiver)
        reg = await service.register_endpoint(
            "t1",
            "https://example.com/hook",
            ["a.b"],
            retry_policy={"max_retries": 0},
        )

        async with service:
            await service.emit("a.b", {}, "t1")
            [job] = await service.list_deliveries(reg.endpoint.id)
            await wait_for_state(service, job.id, DeliveryState.DEAD_LETTER)

            assert [j.id for j in await service.list_dead_letters("t1")] == [job.id]

            receiver.status = 200
            assert await service.retry_delivery(job.id) is True
            await wait_for_state(service, job.id, DeliveryState.DELIVERED)

    @pytest.mark.asyncio
    async def test_emit_without_workers_keeps_jobs_pending(self):
        """Test jobs wait in the durable queue until workers start."""
        service = make_service(Receiver())
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])

        await service.emit("a.b", {}, "t1")

        [job] = await service.list_deliveries(reg.endpoint.id)
        assert job.state == DeliveryState.PENDING


# ============================================================================
# Diagnostics Tests
# ============================================================================


class TestEndpointTest:
    """Tests for test_endpoint."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test a successful one-shot test delivery."""
        receiver = Receiver(200)
        service = make_service(receiver)
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])

        result = await service.test_endpoint(reg.endpoint.id)

        assert result.success is True
        assert result.status == 200
        assert result.response_time_ms >= 0
        assert receiver.requests[0].headers["X-Webhook-Event"] == "webhook.test"

    @pytest.mark.asyncio
    async def test_failure_not_retried_or_persisted(self):
        """Test failures are reported once with no job or event stored."""
        receiver = Receiver(503)
        service = make_service(receiver)
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])

        result = await service.test_endpoint(reg.endpoint.id)

        assert result.success is False
        assert result.status == 503
        assert result.error == "HTTP 503"
        assert len(receiver.requests) == 1
        assert await service.list_deliveries(reg.endpoint.id) == []
        stats = await service.get_delivery_stats("t1")
        assert stats.total == 0

    @pytest.mark.asyncio
    async def test_unbuildable_request_returns_result(self):
        """Test a request that cannot be built is reported, not raised."""
        receiver = Receiver(200)
        service = make_service(receiver)
        reg = await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])
        endpoint = await service.store.get_endpoint(reg.endpoint.id)
        endpoint.headers = {"X-Shop": "café"}
        await service.store.save_endpoint(endpoint)

        result = await service.test_endpoint(reg.endpoint.id)

        assert result.success is False
        assert result.status is None
        assert result.error
        assert receiver.requests == []

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self):
        """Test unknown endpoint returns None."""
        service = make_service(Receiver())

        assert await service.test_endpoint("wh_missing") is None


class TestVerifyInboundSignature:
    """Tests for verify_inbound_signature."""

    def test_round_trip(self):
        """Test verifying what the engine signs."""
        signature = sign_payload('{"a":1}', "s3cr3t", 1700000000)

        assert WebhookService.verify_inbound_signature(
            '{"a":1}', signature, "s3cr3t", 1700000000
        )
        assert not WebhookService.verify_inbound_signature(
            '{"a":2}', signature, "s3cr3t", 1700000000
        )

    def test_invalid_utf8_body_is_rejected(self):
        """Test a non-UTF-8 body yields False instead of raising."""
        signature = sign_payload(b'{"a":1}', "s3cr3t", 1700000000)

        assert (
            WebhookService.verify_inbound_signature(
                b'{"a":\xff}', signature, "s3cr3t", 1700000000
            )
            is False
        )


class TestFromSettings:
    """Tests for WebhookService.from_settings."""

    @pytest.mark.asyncio
    async def test_uses_db_path_and_log_settings(self, tmp_path, monkeypatch):
        """Test storage and logging follow the settings."""
        calls = []
        monkeypatch.setattr(
            "hookrelay.webhooks.service.configure_logging",
            lambda **kwargs: calls.append(kwargs),
        )
        settings = Settings(
            DB_PATH=str(tmp_path / "hooks.db"),
            LOG_LEVEL="WARNING",
            LOG_FORMAT="text",
        )

        service = WebhookService.from_settings(settings)
        try:
            assert isinstance(service.store, SQLiteDeliveryStore)
            assert service.store.db_path == tmp_path / "hooks.db"
            assert calls == [{"level": "WARNING", "format": "text"}]

            await service.register_endpoint("t1", "https://example.com/hook", ["a.b"])
            assert (tmp_path / "hooks.db").exists()
        finally:
            await service.aclose()
