"""
Deadline executor: bound scorer/optimizer calls and supply degraded results.

run_with_deadline races the work against a timer. When the timer wins, the
work is abandoned rather than cancelled: it keeps running, and its eventual
result or exception is collected and dropped by a done-callback.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

import structlog

from core.errors import DeadlineExceeded
from logistics.models import DelayPrediction, OptimizedRoute, RiskTier, new_id, utcnow

logger = structlog.get_logger()

T = TypeVar("T")

FALLBACK_CONFIDENCE = 0.1

# Abandoned tasks, held until they settle
_abandoned: set[asyncio.Task] = set()


def _discard_outcome(task: asyncio.Task) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("deadline.abandoned_failed", error=str(exc))


async def run_with_deadline(
    operation: Awaitable[T] | Callable[[], T],
    deadline_ms: int,
    tenant_id: str,
    operation_name: str,
) -> T:
    """
    Await ``operation`` for at most ``deadline_ms`` milliseconds.

    ``operation`` is either an awaitable or a zero-argument callable. Plain
    callables run in a worker thread so CPU-bound work cannot block the
    event loop past the deadline.

    Raises:
        DeadlineExceeded: the deadline passed before the operation finished.
    """
    if inspect.isawaitable(operation):
        task = asyncio.ensure_future(operation)
    elif callable(operation):
        task = asyncio.ensure_future(asyncio.to_thread(operation))
    else:
        raise TypeError(f"Expected an awaitable or callable, got {type(operation).__name__}")

    done, _ = await asyncio.wait({task}, timeout=deadline_ms / 1000)
    if task in done:
        return task.result()

    _abandoned.add(task)
    task.add_done_callback(_discard_outcome)
    logger.warning(
        "deadline.exceeded",
        tenant_id=tenant_id,
        operation=operation_name,
        deadline_ms=deadline_ms,
    )
    raise DeadlineExceeded(operation_name, deadline_ms)


def fallback_prediction(
    tenant_id: str,
    order_id: str,
    driver_id: str,
    eta_original: datetime,
    now: datetime | None = None,
) -> DelayPrediction:
    """Deterministic degraded prediction: no delay, minimal confidence."""
    now = now or utcnow()
    return DelayPrediction(
        id=new_id("pred_fallback"),
        tenant_id=tenant_id,
        order_id=order_id,
        driver_id=driver_id,
        predicted_delay=RiskTier.NONE,
        delay_minutes_estimate=0,
        confidence_score=FALLBACK_CONFIDENCE,
        eta_original=eta_original,
        eta_predicted=eta_original,
        factors=(),
        fallback_used=True,
        created_at=now,
        updated_at=now,
    )


def fallback_route(tenant_id: str, driver_id: str | None, now: datetime | None = None) -> OptimizedRoute:
    """Deterministic degraded route: no stops, zero distance and duration."""
    return OptimizedRoute(
        id=new_id("route_fallback"),
        tenant_id=tenant_id,
        driver_id=driver_id or "unassigned",
        points=(),
        total_distance_km=0.0,
        estimated_duration_minutes=0,
        estimated_delay_risk=RiskTier.NONE,
        fallback_used=True,
        created_at=now or utcnow(),
    )
