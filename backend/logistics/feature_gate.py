"""
Feature Gate: per-tenant eligibility backed by a short-lived plan cache.

Rules:
  - no plan, or the plan lookup fails → ineligible for everything
  - free plan, or a plan with both delay prediction and route optimization
    off → ineligible for everything
  - otherwise each feature follows its own plan flag

Plan lookups are cached per tenant for plan_cache_ttl_seconds, then evicted
on the next read. Staleness within the TTL is accepted.
"""

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable

import structlog

from core.config import get_settings
from logistics.models import PlanTier, TenantPlanInfo
from logistics.providers import PlanProvider

logger = structlog.get_logger()


class PlanCache:
    """TTL cache of tenant plans. Entries expire on read, not by timer."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[TenantPlanInfo, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str) -> TenantPlanInfo | None:
        async with self._lock:
            entry = self._entries.get(tenant_id)
            if entry is None:
                return None
            plan, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[tenant_id]
                return None
            return plan

    async def set(self, tenant_id: str, plan: TenantPlanInfo) -> None:
        async with self._lock:
            self._entries[tenant_id] = (plan, self._clock())

    async def clear(self, tenant_id: str | None = None) -> None:
        async with self._lock:
            if tenant_id is None:
                self._entries.clear()
            else:
                self._entries.pop(tenant_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class FeatureGate:
    def __init__(self, plans: PlanProvider, cache: PlanCache | None = None):
        self.plans = plans
        self.cache = cache if cache is not None else PlanCache(get_settings().plan_cache_ttl_seconds)
        self._fill_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _plan(self, tenant_id: str) -> TenantPlanInfo | None:
        cached = await self.cache.get(tenant_id)
        if cached is not None:
            return cached

        # Concurrent misses for one tenant share a single lookup
        async with self._fill_locks[tenant_id]:
            cached = await self.cache.get(tenant_id)
            if cached is not None:
                return cached
            plan = await self.plans.get_plan(tenant_id)
            if plan is not None:
                await self.cache.set(tenant_id, plan)
            return plan

    async def _eligible_plan(self, tenant_id: str) -> TenantPlanInfo | None:
        """The tenant's plan when it grants any logistics AI access, else None."""
        try:
            plan = await self._plan(tenant_id)
        except Exception:
            logger.error("feature_gate.lookup_failed", tenant_id=tenant_id, exc_info=True)
            return None

        if plan is None:
            logger.warning("feature_gate.plan_missing", tenant_id=tenant_id)
            return None

        allowed = plan.plan != PlanTier.FREE and (plan.delay_prediction or plan.route_optimization)
        if not allowed:
            logger.info(
                "feature_gate.denied",
                tenant_id=tenant_id,
                plan=plan.plan.value,
                delay_prediction=plan.delay_prediction,
                route_optimization=plan.route_optimization,
                auto_alerts=plan.auto_alerts,
            )
            return None
        return plan

    async def can_use_logistics_ai(self, tenant_id: str) -> bool:
        return await self._eligible_plan(tenant_id) is not None

    async def can_use_delay_prediction(self, tenant_id: str) -> bool:
        plan = await self._eligible_plan(tenant_id)
        return plan is not None and plan.delay_prediction

    async def can_use_route_optimization(self, tenant_id: str) -> bool:
        plan = await self._eligible_plan(tenant_id)
        return plan is not None and plan.route_optimization

    async def can_use_auto_alerts(self, tenant_id: str) -> bool:
        plan = await self._eligible_plan(tenant_id)
        return plan is not None and plan.auto_alerts

    async def clear(self, tenant_id: str | None = None) -> None:
        await self.cache.clear(tenant_id)

    async def prime(self, tenant_id: str, plan: TenantPlanInfo) -> None:
        """Seed the cache, e.g. right after a plan change."""
        await self.cache.set(tenant_id, plan)
