"""
Decision Audit Log: append-only record of every engine decision.

Two write paths:
  - append(record): awaited, errors propagate to the caller
  - submit(...): fire-and-forget; the record goes onto a bounded queue and a
    background writer task drains it into the store. A full queue drops the
    record with a warning. Store failures are logged, never raised.

Reads (query, stats) and retention (prune_older_than, delete_tenant) go
straight to the store.
"""

import asyncio
import contextlib
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

import structlog

from core.config import get_settings
from logistics.models import AiDecisionLog, DecisionType, new_id, to_snapshot, utcnow
from logistics.stores import DecisionLogFilters, DecisionLogStore

logger = structlog.get_logger()

DEFAULT_STATS_WINDOW_DAYS = 30


class DecisionAuditLog:
    """Audit log facade over a DecisionLogStore with a background writer."""

    def __init__(self, store: DecisionLogStore, max_queue_size: int | None = None):
        self.store = store
        self._max_queue_size = max_queue_size or get_settings().audit_queue_max_size
        self._queue: asyncio.Queue[AiDecisionLog] = asyncio.Queue(maxsize=self._max_queue_size)
        self._writer: asyncio.Task | None = None
        self.dropped = 0

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background writer if it is not already running."""
        if self._writer is None or self._writer.done():
            self._writer = asyncio.get_running_loop().create_task(self._drain_forever())

    async def flush(self) -> None:
        """Wait until every queued record has been handed to the store."""
        if not self._queue.empty():
            self.start()
        await self._queue.join()

    async def close(self) -> None:
        await self.flush()
        if self._writer is not None:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
            self._writer = None

    async def _drain_forever(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.store.append(record)
            except Exception:
                logger.error(
                    "audit.append_failed",
                    tenant_id=record.tenant_id,
                    decision_type=record.type.value,
                    record_id=record.id,
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    # ── Writes ─────────────────────────────────────────────────────────

    async def append(self, record: AiDecisionLog) -> AiDecisionLog:
        await self.store.append(record)
        return record

    def submit(
        self,
        tenant_id: str,
        decision_type: DecisionType,
        input: dict[str, Any],
        output: Any,
        confidence_score: float,
        fallback_used: bool,
        order_id: str | None = None,
    ) -> bool:
        """
        Queue a decision for background persistence.

        Returns False when the queue is full and the record was dropped.
        Must be called from a running event loop.
        """
        record = AiDecisionLog(
            id=new_id("log"),
            tenant_id=tenant_id,
            type=decision_type,
            input=to_snapshot(input),
            output=to_snapshot(output),
            confidence_score=confidence_score,
            fallback_used=fallback_used,
            order_id=order_id,
            created_at=utcnow(),
        )
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "audit.dropped",
                tenant_id=tenant_id,
                decision_type=decision_type.value,
                queue_size=self._max_queue_size,
            )
            return False

        self.start()
        return True

    # ── Reads ──────────────────────────────────────────────────────────

    async def query(self, tenant_id: str, filters: DecisionLogFilters | None = None) -> list[AiDecisionLog]:
        return await self.store.query(tenant_id, filters or DecisionLogFilters())

    async def stats(
        self,
        tenant_id: str,
        window_days: int = DEFAULT_STATS_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Aggregate decisions from the trailing ``window_days``."""
        since = (now or utcnow()) - timedelta(days=window_days)
        records = await self.store.query(tenant_id, DecisionLogFilters(start=since))

        total = len(records)
        counts = Counter(r.type.value for r in records)
        return {
            "total_decisions": total,
            "counts_by_type": {t.value: counts.get(t.value, 0) for t in DecisionType},
            "average_confidence": (sum(r.confidence_score for r in records) / total) if total else 0.0,
            "fallback_rate": (sum(1 for r in records if r.fallback_used) / total) if total else 0.0,
        }

    # ── Retention ──────────────────────────────────────────────────────

    async def prune_older_than(
        self,
        tenant_id: str,
        retention_days: int | None = None,
        now: datetime | None = None,
    ) -> int:
        days = retention_days if retention_days is not None else get_settings().audit_retention_days
        cutoff = (now or utcnow()) - timedelta(days=days)
        removed = await self.store.delete_older_than(tenant_id, cutoff)
        logger.info("audit.pruned", tenant_id=tenant_id, retention_days=days, removed=removed)
        return removed

    async def delete_tenant(self, tenant_id: str) -> int:
        removed = await self.store.delete_tenant(tenant_id)
        logger.info("audit.tenant_deleted", tenant_id=tenant_id, removed=removed)
        return removed
