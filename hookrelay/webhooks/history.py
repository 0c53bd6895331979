"""Delivery history queries and operator actions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from hookrelay.errors import NotFoundError, ValidationError
from hookrelay.webhooks.models import (
    Clock,
    DeliveryJob,
    DeliveryState,
    DeliveryStats,
    utc_now,
)

if TYPE_CHECKING:
    from hookrelay.storage.base import DeliveryStore
    from hookrelay.webhooks.queue import DeliveryQueue

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 500


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset", "must be >= 0")


class DeliveryHistory:
    """Read access to delivery jobs plus the manual retry action."""

    def __init__(
        self,
        store: DeliveryStore,
        queue: DeliveryQueue,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._clock = clock or utc_now
        self._logger = logger.bind(component="delivery_history")

    async def get_delivery_status(self, delivery_id: str) -> DeliveryJob | None:
        """Get a delivery job by ID.

        Args:
            delivery_id: Delivery identifier.

        Returns:
            The job if found, None otherwise.
        """
        return await self._store.get_job(delivery_id)

    async def list_deliveries(
        self,
        endpoint_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        state: DeliveryState | None = None,
    ) -> list[DeliveryJob]:
        """List an endpoint's deliveries, newest first.

        Args:
            endpoint_id: Endpoint identifier.
            limit: Page size.
            offset: Number of jobs to skip.
            state: Optional state filter.

        Returns:
            Page of delivery jobs.
        """
        _check_page(limit, offset)
        return await self._store.list_jobs(
            endpoint_id=endpoint_id,
            state=state,
            limit=limit,
            offset=offset,
        )

    async def retry_delivery(self, delivery_id: str) -> bool:
        """Re-arm a dead-lettered or scheduled delivery for immediate pickup.

        Args:
            delivery_id: Delivery identifier.

        Returns:
            True if re-armed, False if unknown or in any other state.
        """
        try:
            rearmed = await self._queue.rearm(delivery_id, self._clock())
        except NotFoundError:
            self._logger.info("delivery_retry_unknown", delivery_id=delivery_id)
            return False

        if rearmed:
            self._logger.info("delivery_retry_requested", delivery_id=delivery_id)
        return rearmed

    async def get_delivery_stats(self, tenant_id: str) -> DeliveryStats:
        """Count a tenant's deliveries per state."""
        counts = await self._store.count_jobs_by_state(tenant_id)
        return DeliveryStats.from_counts(tenant_id, counts)

    async def list_dead_letters(
        self,
        tenant_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryJob]:
        """List a tenant's dead-lettered deliveries, newest first."""
        _check_page(limit, offset)
        return await self._store.list_jobs(
            tenant_id=tenant_id,
            state=DeliveryState.DEAD_LETTER,
            limit=limit,
            offset=offset,
        )
