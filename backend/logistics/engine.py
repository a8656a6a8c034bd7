"""
Logistics Decision Engine: per-tenant orchestration of delay and route decisions.

Flow for every decision:
  1. Tenant settings toggle + plan feature gate
  2. Dataset sufficiency (external validator)
  3. Provider fetches (history, conditions, current route)
  4. Scorer / optimizer under the decision deadline
  5. Audit record submitted to the background writer
  6. Optional alert (auto alerts on in settings AND plan)

Degradation rules:
  - predict_delay: ineligible → None; deadline or provider failure → fallback
  - optimize_route: ineligible → raises; deadline → fallback route;
    unexpected failure → re-raised
  - generate_route_suggestions: ineligible or any failure → []
Audit and alert failures never change the returned result.
"""

import functools
import inspect
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import Any

import structlog

from core.config import get_settings
from core.errors import (
    DeadlineExceeded,
    FeatureDisabledError,
    InsufficientDatasetError,
    LogisticsAiError,
)
from logistics import delay_scorer, route_optimizer
from logistics.alerts import AlertService
from logistics.audit_log import DecisionAuditLog
from logistics.deadline import FALLBACK_CONFIDENCE, fallback_prediction, fallback_route, run_with_deadline
from logistics.feature_gate import FeatureGate
from logistics.models import (
    AiAlert,
    AiDecisionLog,
    AlertSeverity,
    AlertType,
    DecisionType,
    DelayPrediction,
    LogisticsAiSettings,
    OptimizedRoute,
    RiskTier,
    RouteOptimizationRequest,
    RouteSuggestion,
    new_id,
    to_snapshot,
    utcnow,
)
from logistics.providers import (
    ConditionsProvider,
    CurrentRouteProvider,
    DatasetValidator,
    DriverPerformanceProvider,
    HistoryFilters,
    HistoryProvider,
    OrderContext,
    RouteTrafficProvider,
)
from logistics.settings_service import SettingsService, SettingsUpdate
from logistics.suggestions import generate_suggestions
from logistics.traffic import HeuristicTrafficProvider

logger = structlog.get_logger()

ROUTE_CONFIDENCE = 0.8


class LogisticsDecisionEngine:
    """Composes gate, validator, scorer, optimizer, audit log and alerts."""

    def __init__(
        self,
        *,
        history: HistoryProvider,
        conditions: ConditionsProvider,
        dataset_validator: DatasetValidator,
        gate: FeatureGate,
        settings_service: SettingsService,
        audit_log: DecisionAuditLog,
        alert_service: AlertService,
        route_provider: CurrentRouteProvider | None = None,
        traffic_provider: RouteTrafficProvider | None = None,
        driver_performance: DriverPerformanceProvider | None = None,
        deadline_ms: int | None = None,
        scorer: Callable[..., Any] = delay_scorer.score,
        optimizer: Callable[..., Any] = route_optimizer.build_optimized_route,
    ):
        self.history = history
        self.conditions = conditions
        self.dataset_validator = dataset_validator
        self.gate = gate
        self.settings_service = settings_service
        self.audit_log = audit_log
        self.alert_service = alert_service
        self.route_provider = route_provider
        self.traffic_provider = traffic_provider if traffic_provider is not None else HeuristicTrafficProvider()
        self.driver_performance = driver_performance
        self.deadline_ms = deadline_ms or get_settings().decision_deadline_ms
        self.scorer = scorer
        self.optimizer = optimizer

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        self.audit_log.start()

    async def close(self) -> None:
        await self.audit_log.close()

    # ── Helpers ────────────────────────────────────────────────────────

    def _bounded(self, fn: Callable[..., Any], *args: Any):
        """Wrap a scorer/optimizer call so run_with_deadline can race it."""
        if inspect.iscoroutinefunction(fn):
            return fn(*args)
        return functools.partial(fn, *args)

    async def _auto_alerts_allowed(self, tenant_id: str, settings: LogisticsAiSettings) -> bool:
        return settings.auto_alerts_enabled and await self.gate.can_use_auto_alerts(tenant_id)

    def _record_alert(self, alert: AiAlert, confidence_score: float, order_id: str | None = None) -> None:
        self.audit_log.submit(
            alert.tenant_id,
            DecisionType.ALERT,
            input={"alert_type": alert.type, "entity_id": alert.entity_id},
            output=alert,
            confidence_score=confidence_score,
            fallback_used=False,
            order_id=order_id,
        )

    # ── Delay prediction ───────────────────────────────────────────────

    async def predict_delay(self, tenant_id: str, order_id: str) -> DelayPrediction | None:
        """
        Predict delivery delay for an order.

        Returns None when the feature is off for the tenant or the tenant's
        dataset is too small. Never raises for provider or scorer failures;
        those produce a fallback prediction instead.
        """
        context = OrderContext()
        try:
            settings = await self.settings_service.get(tenant_id)
            if not settings.delay_prediction_enabled or not await self.gate.can_use_delay_prediction(tenant_id):
                logger.info("engine.predict_skipped", tenant_id=tenant_id, order_id=order_id, reason="disabled")
                return None

            if not await self.dataset_validator.is_dataset_sufficient(tenant_id):
                logger.info(
                    "engine.predict_skipped", tenant_id=tenant_id, order_id=order_id, reason="insufficient_data"
                )
                return None

            context = await self.conditions.get_order_context(tenant_id, order_id) or OrderContext()
            history = await self.history.get_delivery_history(
                tenant_id, HistoryFilters(driver_id=context.driver_id or None)
            )
            conditions = await self.conditions.get_current_conditions(tenant_id, order_id)

            result = await run_with_deadline(
                self._bounded(self.scorer, history, conditions),
                self.deadline_ms,
                tenant_id,
                "delay_prediction",
            )
        except DeadlineExceeded:
            return self._fallback_prediction(tenant_id, order_id, context, reason="timeout")
        except Exception:
            logger.error("engine.predict_failed", tenant_id=tenant_id, order_id=order_id, exc_info=True)
            return self._fallback_prediction(tenant_id, order_id, context, reason="error")

        now = utcnow()
        eta_original = context.eta_original or now
        prediction = DelayPrediction(
            id=new_id("pred"),
            tenant_id=tenant_id,
            order_id=order_id,
            driver_id=context.driver_id,
            predicted_delay=result.predicted_delay,
            delay_minutes_estimate=result.delay_minutes_estimate,
            confidence_score=result.confidence_score,
            eta_original=eta_original,
            eta_predicted=eta_original + timedelta(minutes=result.delay_minutes_estimate),
            factors=tuple(result.factors),
            fallback_used=False,
            created_at=now,
            updated_at=now,
        )

        self.audit_log.submit(
            tenant_id,
            DecisionType.DELAY,
            input={"order_id": order_id, "history_records": len(history), "conditions": conditions},
            output=prediction,
            confidence_score=prediction.confidence_score,
            fallback_used=False,
            order_id=order_id,
        )
        logger.info(
            "engine.delay_predicted",
            tenant_id=tenant_id,
            order_id=order_id,
            tier=prediction.predicted_delay.value,
            minutes=prediction.delay_minutes_estimate,
            confidence=prediction.confidence_score,
        )

        if prediction.predicted_delay != RiskTier.NONE:
            await self._alert_on_prediction(settings, prediction)
        return prediction

    def _fallback_prediction(
        self,
        tenant_id: str,
        order_id: str,
        context: OrderContext,
        reason: str,
    ) -> DelayPrediction:
        now = utcnow()
        prediction = fallback_prediction(tenant_id, order_id, context.driver_id, context.eta_original or now, now)
        self.audit_log.submit(
            tenant_id,
            DecisionType.DELAY,
            input={"order_id": order_id, "reason": reason},
            output=prediction,
            confidence_score=prediction.confidence_score,
            fallback_used=True,
            order_id=order_id,
        )
        logger.warning("engine.predict_fallback", tenant_id=tenant_id, order_id=order_id, reason=reason)
        return prediction

    async def _alert_on_prediction(self, settings: LogisticsAiSettings, prediction: DelayPrediction) -> None:
        tenant_id = prediction.tenant_id
        try:
            if not await self._auto_alerts_allowed(tenant_id, settings):
                return
            alert = await self.alert_service.delay_prediction_alert(prediction)
        except Exception:
            logger.error("engine.alert_failed", tenant_id=tenant_id, order_id=prediction.order_id, exc_info=True)
            return
        self._record_alert(alert, prediction.confidence_score, prediction.order_id)

    # ── Route optimization ─────────────────────────────────────────────

    async def optimize_route(self, tenant_id: str, request: RouteOptimizationRequest) -> OptimizedRoute:
        """
        Sequence the requested stops into an optimized route.

        Raises:
            FeatureDisabledError: route optimization is off for the tenant.
            InsufficientDatasetError: not enough delivery data yet.
        """
        try:
            settings = await self.settings_service.get(tenant_id)
            if not settings.route_optimization_enabled or not await self.gate.can_use_route_optimization(tenant_id):
                raise FeatureDisabledError(tenant_id, "route_optimization")

            if not await self.dataset_validator.is_dataset_sufficient(tenant_id):
                raise InsufficientDatasetError(tenant_id)

            route = await run_with_deadline(
                self._bounded(
                    self.optimizer,
                    tenant_id,
                    request.driver_id,
                    request.points,
                    request.constraints,
                ),
                self.deadline_ms,
                tenant_id,
                "route_optimization",
            )
        except DeadlineExceeded:
            route = fallback_route(tenant_id, request.driver_id)
            self.audit_log.submit(
                tenant_id,
                DecisionType.ROUTE,
                input={"request": request, "timeout": True},
                output=route,
                confidence_score=FALLBACK_CONFIDENCE,
                fallback_used=True,
            )
            logger.warning("engine.optimize_fallback", tenant_id=tenant_id, driver_id=request.driver_id)
            return route
        except LogisticsAiError:
            raise
        except Exception:
            logger.error("engine.optimize_failed", tenant_id=tenant_id, driver_id=request.driver_id, exc_info=True)
            raise

        self.audit_log.submit(
            tenant_id,
            DecisionType.ROUTE,
            input={"request": request},
            output=route,
            confidence_score=ROUTE_CONFIDENCE,
            fallback_used=False,
        )
        logger.info(
            "engine.route_optimized",
            tenant_id=tenant_id,
            driver_id=route.driver_id,
            stops=len(route.points),
            distance_km=round(route.total_distance_km, 2),
            risk=route.estimated_delay_risk.value,
        )
        return route

    # ── Route suggestions ──────────────────────────────────────────────

    async def generate_route_suggestions(self, tenant_id: str, driver_id: str) -> list[RouteSuggestion]:
        """Suggestions for a driver's current route; [] whenever they cannot be produced."""
        try:
            settings = await self.settings_service.get(tenant_id)
            if not settings.route_optimization_enabled or not await self.gate.can_use_route_optimization(tenant_id):
                return []

            if not await self.dataset_validator.is_dataset_sufficient(tenant_id):
                return []
            if self.route_provider is None:
                return []

            route = await self.route_provider.get_current_route(tenant_id, driver_id)
            if route is None or len(route.points) < 2:
                return []

            leg_traffic = await self.traffic_provider.get_leg_traffic(route.points)
            average_delay = (
                await self.driver_performance.get_average_delay(tenant_id, driver_id)
                if self.driver_performance
                else None
            )
            suggestions = generate_suggestions(tenant_id, driver_id, route.points, leg_traffic, average_delay)
        except Exception:
            logger.error("engine.suggestions_failed", tenant_id=tenant_id, driver_id=driver_id, exc_info=True)
            return []

        suggestions = suggestions[: settings.max_suggestions_per_driver]
        self.audit_log.submit(
            tenant_id,
            DecisionType.ROUTE,
            input={"driver_id": driver_id, "stops": len(route.points)},
            output={"suggestions": suggestions},
            confidence_score=_mean_confidence(suggestions),
            fallback_used=False,
        )

        if suggestions:
            await self._alert_on_suggestions(settings, tenant_id, driver_id, suggestions)
        return suggestions

    async def _alert_on_suggestions(
        self,
        settings: LogisticsAiSettings,
        tenant_id: str,
        driver_id: str,
        suggestions: Sequence[RouteSuggestion],
    ) -> None:
        try:
            if not await self._auto_alerts_allowed(tenant_id, settings):
                return
            alert = await self.alert_service.route_suggestions_alert(tenant_id, driver_id, suggestions)
        except Exception:
            logger.error("engine.alert_failed", tenant_id=tenant_id, driver_id=driver_id, exc_info=True)
            return
        if alert is not None:
            self._record_alert(alert, _mean_confidence(suggestions))

    # ── Administrative pass-throughs ───────────────────────────────────

    async def create_alert(
        self,
        tenant_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        **kwargs: Any,
    ) -> AiAlert:
        return await self.alert_service.create(tenant_id, alert_type, severity, title, message, **kwargs)

    async def get_settings(self, tenant_id: str) -> LogisticsAiSettings:
        return await self.settings_service.get(tenant_id)

    async def update_settings(self, tenant_id: str, update: SettingsUpdate | dict[str, Any]) -> LogisticsAiSettings:
        return await self.settings_service.update(tenant_id, update)

    async def log_decision(
        self,
        tenant_id: str,
        decision_type: DecisionType,
        input: dict[str, Any],
        output: Any,
        confidence_score: float,
        fallback_used: bool = False,
        order_id: str | None = None,
    ) -> AiDecisionLog:
        """Write a decision record immediately (awaited, errors propagate)."""
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
        return await self.audit_log.append(record)


def _mean_confidence(suggestions: Sequence[RouteSuggestion]) -> float:
    if not suggestions:
        return 0.0
    return round(sum(s.confidence for s in suggestions) / len(suggestions), 4)
