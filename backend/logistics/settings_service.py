"""Per-tenant logistics AI settings: lazy defaults, partial updates, reset and export."""

import asyncio
from collections import defaultdict
from dataclasses import replace
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from core.errors import SettingsValidationError
from logistics.audit_log import DecisionAuditLog
from logistics.models import LogisticsAiSettings, to_snapshot, utcnow
from logistics.stores import SettingsStore

logger = structlog.get_logger()


class SettingsUpdate(BaseModel):
    delay_prediction_enabled: bool | None = None
    route_optimization_enabled: bool | None = None
    auto_alerts_enabled: bool | None = None
    confidence_threshold: float | None = Field(None, ge=0, le=1)
    prediction_horizon_minutes: int | None = Field(None, gt=0)
    max_suggestions_per_driver: int | None = Field(None, ge=0)
    working_hours_enabled: bool | None = None

    model_config = {"extra": "forbid"}


class SettingsService:
    def __init__(self, store: SettingsStore, audit_log: DecisionAuditLog | None = None):
        self.store = store
        self.audit_log = audit_log
        # Read-modify-write cycles for one tenant run one at a time
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _get_or_create(self, tenant_id: str) -> LogisticsAiSettings:
        settings = await self.store.get(tenant_id)
        if settings is None:
            settings = LogisticsAiSettings(tenant_id=tenant_id)
            await self.store.put(settings)
            logger.info("settings.created", tenant_id=tenant_id)
        return settings

    async def get(self, tenant_id: str) -> LogisticsAiSettings:
        """Current settings, created with defaults on first access."""
        async with self._locks[tenant_id]:
            return await self._get_or_create(tenant_id)

    async def update(self, tenant_id: str, update: SettingsUpdate | dict[str, Any]) -> LogisticsAiSettings:
        """
        Apply a partial update. Fields left out (or None) keep their value.

        Raises:
            SettingsValidationError: unknown field or out-of-range value.
        """
        if not isinstance(update, SettingsUpdate):
            try:
                update = SettingsUpdate.model_validate(update)
            except ValidationError as exc:
                raise SettingsValidationError(str(exc)) from exc

        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        async with self._locks[tenant_id]:
            current = await self._get_or_create(tenant_id)
            updated = replace(current, **changes, updated_at=utcnow())
            await self.store.put(updated)

        logger.info("settings.updated", tenant_id=tenant_id, fields=sorted(changes))
        return updated

    async def reset_to_defaults(self, tenant_id: str) -> LogisticsAiSettings:
        async with self._locks[tenant_id]:
            current = await self.store.get(tenant_id)
            now = utcnow()
            settings = LogisticsAiSettings(
                tenant_id=tenant_id,
                created_at=current.created_at if current is not None else now,
                updated_at=now,
            )
            await self.store.put(settings)
        logger.info("settings.reset", tenant_id=tenant_id)
        return settings

    async def export(self, tenant_id: str) -> dict[str, Any]:
        """Settings plus the tenant's decision history as a JSON-friendly dict."""
        settings = await self.get(tenant_id)
        payload = to_snapshot(settings)
        logs = await self.audit_log.query(tenant_id) if self.audit_log is not None else []
        payload["decision_logs"] = to_snapshot(logs)
        return payload
