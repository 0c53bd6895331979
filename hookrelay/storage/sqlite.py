"""SQLite storage backend.

Persists endpoints, events and delivery jobs so queued work survives a
restart. Each record is stored as a JSON document next to the columns
needed for filtering. Job state changes are conditional ``UPDATE``
statements whose ``rowcount`` tells whether the compare-and-swap won, so
several worker processes may share one database file.
"""

from __future__ import annotations

import json
from collections.abc import Collection
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from hookrelay.config import Settings
from hookrelay.storage.base import DeliveryStore
from hookrelay.storage.retry import sqlite_retry
from hookrelay.webhooks.events import WebhookEvent
from hookrelay.webhooks.models import DeliveryJob, DeliveryState, WebhookEndpoint

logger = structlog.get_logger(__name__)

DEFAULT_DB_PATH = Path(Settings.DB_PATH)

# Candidates fetched per claim round; losers of a CAS race move on to the next.
CLAIM_BATCH_SIZE = 10


def _ts(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


class SQLiteDeliveryStore(DeliveryStore):
    """SQLite-based storage for webhook data."""

    def __init__(self, db_path: Path | str | None = None, *, timeout: float = 5.0) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database. Uses default if not provided.
            timeout: Seconds a connection waits on a locked database.
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._timeout = timeout
        self._logger = logger.bind(component="sqlite_store")
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Settings) -> SQLiteDeliveryStore:
        """Create a store at ``settings.DB_PATH``."""
        return cls(settings.DB_PATH)

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=self._timeout)

    async def _ensure_initialized(self) -> None:
        """Ensure database tables exist."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS endpoints (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    created_ts REAL NOT NULL,
                    data TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    created_ts REAL NOT NULL,
                    data TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    endpoint_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    state TEXT NOT NULL,
                    next_retry_ts REAL,
                    claim_id TEXT,
                    created_ts REAL NOT NULL,
                    data TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_endpoints_tenant
                ON endpoints(tenant_id)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_ready
                ON jobs(state, next_retry_ts)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_endpoint
                ON jobs(endpoint_id, created_ts)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_tenant_state
                ON jobs(tenant_id, state)
            """)

            await db.commit()

        self._initialized = True
        self._logger.info("storage_initialized", db_path=str(self.db_path))

    # Endpoints

    @sqlite_retry
    async def save_endpoint(self, endpoint: WebhookEndpoint) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO endpoints (id, tenant_id, created_ts, data)
                VALUES (?, ?, ?, ?)
                """,
                (
                    endpoint.id,
                    endpoint.tenant_id,
                    _ts(endpoint.created_at),
                    json.dumps(endpoint.to_storage_dict()),
                ),
            )
            await db.commit()

    @sqlite_retry
    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        await self._ensure_initialized()

        async with self._connect() as db:
            async with db.execute(
                "SELECT data FROM endpoints WHERE id = ?",
                (endpoint_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if not row:
            return None
        return WebhookEndpoint.model_validate_json(row[0])

    @sqlite_retry
    async def delete_endpoint(self, endpoint_id: str) -> bool:
        await self._ensure_initialized()

        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM endpoints WHERE id = ?", (endpoint_id,))
            await db.commit()
            return cursor.rowcount > 0

    @sqlite_retry
    async def list_endpoints(self, tenant_id: str) -> list[WebhookEndpoint]:
        await self._ensure_initialized()

        async with self._connect() as db:
            async with db.execute(
                "SELECT data FROM endpoints WHERE tenant_id = ? ORDER BY created_ts",
                (tenant_id,),
            ) as cursor:
                rows = await cursor.fetchall()

        return [WebhookEndpoint.model_validate_json(row[0]) for row in rows]

    # Events

    @sqlite_retry
    async def save_event(self, event: WebhookEvent) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO events (id, tenant_id, type, created_ts, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.tenant_id,
                    event.type,
                    _ts(event.timestamp),
                    event.model_dump_json(),
                ),
            )
            await db.commit()

    @sqlite_retry
    async def get_event(self, event_id: str) -> WebhookEvent | None:
        await self._ensure_initialized()

        async with self._connect() as db:
            async with db.execute(
                "SELECT data FROM events WHERE id = ?",
                (event_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if not row:
            return None
        return WebhookEvent.model_validate_json(row[0])

    # Jobs

    @sqlite_retry
    async def insert_job(self, job: DeliveryJob) -> None:
        await self._ensure_initialized()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO jobs (
                    id, endpoint_id, tenant_id, state, next_retry_ts, claim_id,
                    created_ts, data
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.endpoint_id,
                    job.tenant_id,
                    job.state.value,
                    _ts(job.next_retry_at),
                    job.claim_id,
                    _ts(job.created_at),
                    job.model_dump_json(),
                ),
            )
            await db.commit()

    @sqlite_retry
    async def get_job(self, job_id: str) -> DeliveryJob | None:
        await self._ensure_initialized()

        async with self._connect() as db:
            async with db.execute(
                "SELECT data FROM jobs WHERE id = ?",
                (job_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if not row:
            return None
        return DeliveryJob.model_validate_json(row[0])

    @sqlite_retry
    async def list_jobs(
        self,
        *,
        endpoint_id: str | None = None,
        tenant_id: str | None = None,
        state: DeliveryState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryJob]:
        await self._ensure_initialized()

        conditions = []
        params: list[Any] = []

        if endpoint_id is not None:
            conditions.append("endpoint_id = ?")
            params.append(endpoint_id)
        if tenant_id is not None:
            conditions.append("tenant_id = ?")
            params.append(tenant_id)
        if state is not None:
            conditions.append("state = ?")
            params.append(state.value)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([limit, offset])

        async with self._connect() as db:
            async with db.execute(
                f"""
                SELECT data FROM jobs
                {where_clause}
                ORDER BY created_ts DESC
                LIMIT ? OFFSET ?
                """,
                params,
            ) as cursor:
                rows = await cursor.fetchall()

        return [DeliveryJob.model_validate_json(row[0]) for row in rows]

    @sqlite_retry
    async def claim_ready_job(self, now: datetime) -> DeliveryJob | None:
        await self._ensure_initialized()
        now_ts = now.timestamp()

        async with self._connect() as db:
            async with db.execute(
                """
                SELECT data FROM jobs
                WHERE state = ? OR (state = ? AND next_retry_ts <= ?)
                ORDER BY created_ts
                LIMIT ?
                """,
                (
                    DeliveryState.PENDING.value,
                    DeliveryState.RETRY_SCHEDULED.value,
                    now_ts,
                    CLAIM_BATCH_SIZE,
                ),
            ) as cursor:
                rows = await cursor.fetchall()

            for row in rows:
                job = DeliveryJob.model_validate_json(row[0])
                job.mark_in_flight(now)

                # The eligibility test is repeated in the UPDATE so only one
                # connection can win the row.
                cursor = await db.execute(
                    """
                    UPDATE jobs SET state = ?, next_retry_ts = NULL, claim_id = ?, data = ?
                    WHERE id = ?
                      AND (state = ? OR (state = ? AND next_retry_ts <= ?))
                    """,
                    (
                        DeliveryState.IN_FLIGHT.value,
                        job.claim_id,
                        job.model_dump_json(),
                        job.id,
                        DeliveryState.PENDING.value,
                        DeliveryState.RETRY_SCHEDULED.value,
                        now_ts,
                    ),
                )
                await db.commit()

                if cursor.rowcount == 1:
                    return job

        return None

    @sqlite_retry
    async def compare_and_set_job(
        self,
        job: DeliveryJob,
        expected_states: Collection[DeliveryState],
        *,
        claim_id: str | None = None,
    ) -> bool:
        await self._ensure_initialized()

        expected = [state.value for state in expected_states]
        if not expected:
            return False
        placeholders = ", ".join("?" for _ in expected)

        conditions = f"id = ? AND state IN ({placeholders})"
        params: list[Any] = [job.id, *expected]
        if claim_id is not None:
            conditions += " AND claim_id = ?"
            params.append(claim_id)

        async with self._connect() as db:
            cursor = await db.execute(
                f"""
                UPDATE jobs SET state = ?, next_retry_ts = ?, claim_id = ?, data = ?
                WHERE {conditions}
                """,
                (
                    job.state.value,
                    _ts(job.next_retry_at),
                    job.claim_id,
                    job.model_dump_json(),
                    *params,
                ),
            )
            await db.commit()
            return cursor.rowcount == 1

    @sqlite_retry
    async def count_jobs_by_state(self, tenant_id: str) -> dict[DeliveryState, int]:
        await self._ensure_initialized()

        async with self._connect() as db:
            async with db.execute(
                "SELECT state, COUNT(*) FROM jobs WHERE tenant_id = ? GROUP BY state",
                (tenant_id,),
            ) as cursor:
                rows = await cursor.fetchall()

        return {DeliveryState(state): count for state, count in rows}
