"""Tests for endpoint and delivery job models."""

from datetime import UTC, datetime, timedelta

import pydantic
import pytest

from hookrelay.webhooks.models import (
    DeliveryJob,
    DeliveryState,
    DeliveryStats,
    EndpointPatch,
    RetryPolicy,
    WebhookEndpoint,
    generate_secret,
)

NOW = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def job():
    """Create a pending job."""
    return DeliveryJob(
        endpoint_id="wh_1",
        event_id="evt_1",
        tenant_id="t1",
        event_type="order.created",
        url="https://example.com/hook",
    )


# ============================================================================
# RetryPolicy Tests
# ============================================================================


class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    def test_defaults(self):
        """Test default policy values."""
        policy = RetryPolicy()

        assert policy.max_retries == 3
        assert policy.backoff_multiplier == 2.0
        assert policy.initial_backoff_ms == 1000
        assert policy.max_backoff_ms == 300_000

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_retries": -1},
            {"max_retries": 11},
            {"backoff_multiplier": 0.5},
            {"backoff_multiplier": 11},
            {"max_backoff_ms": 999},
            {"max_backoff_ms": 3_600_001},
        ],
    )
    def test_out_of_range(self, overrides):
        """Test range validation."""
        with pytest.raises(pydantic.ValidationError):
            RetryPolicy(**overrides)


# ============================================================================
# WebhookEndpoint Tests
# ============================================================================


class TestWebhookEndpoint:
    """Tests for WebhookEndpoint model."""

    def test_generated_fields(self):
        """Test id and secret are generated."""
        endpoint = WebhookEndpoint(
            tenant_id="t1", url="https://example.com/hook", events=["order.created"]
        )

        assert endpoint.id.startswith("wh_")
        assert len(endpoint.secret.get_secret_value()) == 64
        assert endpoint.active is True

    def test_secret_masked_in_dumps(self):
        """Test the secret never appears in repr or JSON dumps."""
        endpoint = WebhookEndpoint(
            tenant_id="t1",
            url="https://example.com/hook",
            events=["order.created"],
            secret="super-secret-value",
        )

        assert "super-secret-value" not in repr(endpoint)
        assert "super-secret-value" not in endpoint.model_dump_json()
        assert endpoint.to_storage_dict()["secret"] == "super-secret-value"

    def test_storage_round_trip_keeps_secret(self):
        """Test to_storage_dict can rebuild the endpoint."""
        endpoint = WebhookEndpoint(
            tenant_id="t1",
            url="https://example.com/hook",
            events=["a.b", "c.d"],
            secret="super-secret-value",
        )

        restored = WebhookEndpoint.model_validate(endpoint.to_storage_dict())

        assert restored.secret.get_secret_value() == "super-secret-value"
        assert restored.events == {"a.b", "c.d"}

    def test_short_secret_rejected(self):
        """Test minimum secret length."""
        with pytest.raises(pydantic.ValidationError):
            WebhookEndpoint(
                tenant_id="t1",
                url="https://example.com/hook",
                events=["a.b"],
                secret="short",
            )

    @pytest.mark.parametrize("url", ["not a url", "ftp://example.com/hook", "/relative"])
    def test_invalid_url(self, url):
        """Test non-http(s) URLs are rejected."""
        with pytest.raises(pydantic.ValidationError):
            WebhookEndpoint(tenant_id="t1", url=url, events=["a.b"])

    def test_empty_events_rejected(self):
        """Test at least one event is required."""
        with pytest.raises(pydantic.ValidationError):
            WebhookEndpoint(tenant_id="t1", url="https://example.com", events=[])

    def test_blank_event_rejected(self):
        """Test blank event names are rejected."""
        with pytest.raises(pydantic.ValidationError):
            WebhookEndpoint(tenant_id="t1", url="https://example.com", events=["  "])

    @pytest.mark.parametrize(
        "headers",
        [{"X-Shop": "caf\u00e9"}, {"X-A": "one\r\ntwo"}, {"X-\u00c9": "plain"}],
    )
    def test_unsendable_headers_rejected(self, headers):
        """Test header names and values must be ASCII without line breaks."""
        with pytest.raises(pydantic.ValidationError):
            WebhookEndpoint(
                tenant_id="t1", url="https://example.com", events=["a.b"], headers=headers
            )

    def test_subscribes_to(self):
        """Test subscription matching is exact."""
        endpoint = WebhookEndpoint(
            tenant_id="t1", url="https://example.com", events=["order.created"]
        )

        assert endpoint.subscribes_to("order.created") is True
        assert endpoint.subscribes_to("order.updated") is False
        assert endpoint.subscribes_to("order") is False

    def test_generate_secret_unique(self):
        """Test generated secrets differ."""
        assert generate_secret() != generate_secret()


class TestEndpointPatch:
    """Tests for EndpointPatch."""

    def test_rejects_unknown_fields(self):
        """Test extra fields are forbidden."""
        with pytest.raises(pydantic.ValidationError):
            EndpointPatch.model_validate({"tenant_id": "other"})

    def test_rejects_unsendable_headers(self):
        """Test patched headers follow the endpoint header rules."""
        with pytest.raises(pydantic.ValidationError):
            EndpointPatch(headers={"X-Shop": "caf\u00e9"})

        assert EndpointPatch(headers={"X-Shop": "cafe"}).headers == {"X-Shop": "cafe"}

    def test_tracks_set_fields(self):
        """Test only provided fields are marked as set."""
        patch = EndpointPatch(active=False)

        assert patch.model_fields_set == {"active"}


# ============================================================================
# DeliveryJob Tests
# ============================================================================


class TestDeliveryJob:
    """Tests for DeliveryJob state helpers."""

    def test_new_job_is_pending(self, job):
        """Test initial state."""
        assert job.id.startswith("dlv_")
        assert job.state == DeliveryState.PENDING
        assert job.attempt == 0
        assert job.next_retry_at is None

    def test_is_ready(self, job):
        """Test readiness for pending and due retries."""
        assert job.is_ready(NOW) is True

        job.mark_retry_scheduled(NOW + timedelta(seconds=5), NOW)
        assert job.is_ready(NOW) is False
        assert job.is_ready(NOW + timedelta(seconds=5)) is True

    def test_in_flight_not_ready(self, job):
        """Test claimed jobs are not ready."""
        job.mark_in_flight(NOW)

        assert job.is_ready(NOW) is False
        assert job.claimed_at == NOW

    def test_each_claim_gets_a_new_token(self, job):
        """Test claim tokens identify individual claims."""
        job.mark_in_flight(NOW)
        first = job.claim_id
        job.mark_retry_scheduled(NOW, NOW)
        job.mark_in_flight(NOW)

        assert first is not None
        assert job.claim_id != first

    def test_mark_delivered(self, job):
        """Test successful completion."""
        job.mark_in_flight(NOW)
        job.mark_delivered(204, NOW)

        assert job.state == DeliveryState.DELIVERED
        assert job.last_http_status == 204
        assert job.completed_at == NOW
        assert job.claimed_at is None

    def test_mark_dead_letter_clears_schedule(self, job):
        """Test dead letter has no next_retry_at."""
        job.mark_retry_scheduled(NOW, NOW)
        job.mark_dead_letter(NOW)

        assert job.state == DeliveryState.DEAD_LETTER
        assert job.next_retry_at is None
        assert job.state.is_terminal is True

    def test_json_round_trip(self, job):
        """Test jobs survive serialization used by the SQLite store."""
        job.mark_retry_scheduled(NOW, NOW)

        restored = DeliveryJob.model_validate_json(job.model_dump_json())

        assert restored == job


class TestDeliveryStats:
    """Tests for DeliveryStats."""

    def test_from_counts(self):
        """Test totals and per-state counts."""
        stats = DeliveryStats.from_counts(
            "t1", {DeliveryState.DELIVERED: 3, DeliveryState.DEAD_LETTER: 1}
        )

        assert stats.total == 4
        assert stats.delivered == 3
        assert stats.dead_letter == 1
        assert stats.pending == 0
