"""
Delay Risk Scorer: Explainable, rule-weighted delivery delay risk.

Algorithm:
1. Run six independent detectors (traffic, weather, time of day, historical
   delay rate, region average delay, driver performance). Each yields at
   most one weighted factor.
2. Sort factors by weight, descending (stable).
3. Sum the weights and map to a tier with hard thresholds:
     total ≥ 0.8 → high, ≥ 0.5 → medium, ≥ 0.2 → low, else none
4. Confidence grows with history volume, factor count and the number of
   heavy (≥ 0.3) factors; capped at 0.95.
5. Delay minutes = tier base × multiplier, where heavy traffic adds 0.5
   and severe weather adds 0.3 to a 1.0 multiplier.

Pure functions only: no I/O, no clock reads, no logging.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass

from logistics.geo import round_half_up
from logistics.models import (
    CurrentConditions,
    DelayFactor,
    DelayPrediction,
    DeliveryHistoryRecord,
    FactorType,
    RiskTier,
    TrafficLevel,
)

TIER_THRESHOLDS = (
    (0.8, RiskTier.HIGH),
    (0.5, RiskTier.MEDIUM),
    (0.2, RiskTier.LOW),
)

BASE_DELAY_MINUTES = {
    RiskTier.NONE: 0,
    RiskTier.LOW: 8,
    RiskTier.MEDIUM: 20,
    RiskTier.HIGH: 40,
}

TRAFFIC_WEIGHTS = {TrafficLevel.HIGH: 0.4, TrafficLevel.MEDIUM: 0.2}

WEATHER_WEIGHTS = {
    "storm": (0.5, "Severe storm"),
    "rain": (0.3, "Heavy rain"),
    "fog": (0.25, "Dense fog"),
}

RUSH_HOURS = ((7, 9), (17, 19))
LUNCH_HOURS = (11, 13)

HIGH_WEIGHT = 0.3
MAX_CONFIDENCE = 0.95
BASE_CONFIDENCE = 0.3

# Delays above this count as "delayed" for the historical rate
LATE_THRESHOLD_MINUTES = 15
ON_TIME_THRESHOLD_MINUTES = 5
RECENT_WINDOW = 30
MIN_HISTORY_FOR_RATE = 10
MIN_REGION_SAMPLES = 5
MIN_DRIVER_SAMPLES = 5


@dataclass(frozen=True)
class ScoreResult:
    predicted_delay: RiskTier
    delay_minutes_estimate: int
    confidence_score: float
    factors: tuple[DelayFactor, ...]
    total_weight: float


@dataclass(frozen=True)
class PredictionCheck:
    accuracy: float
    error: float
    was_correct: bool


def _as_number(value) -> float | None:
    """Numeric value or None for missing, NaN, boolean or non-numeric input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _valid_delays(records: Sequence[DeliveryHistoryRecord]) -> list[float]:
    delays = []
    for record in records:
        delay = _as_number(getattr(record, "delay_minutes", None))
        if delay is not None and delay >= 0:
            delays.append(delay)
    return delays


# ──────────────────────────────────────────────────────────────────────────
# Detectors
# ──────────────────────────────────────────────────────────────────────────


def detect_traffic(conditions: CurrentConditions) -> DelayFactor | None:
    try:
        level = TrafficLevel(conditions.traffic_level) if conditions.traffic_level is not None else None
    except ValueError:
        return None
    if level == TrafficLevel.HIGH:
        return DelayFactor(FactorType.TRAFFIC, TRAFFIC_WEIGHTS[level], "Heavy traffic in the area")
    if level == TrafficLevel.MEDIUM:
        return DelayFactor(FactorType.TRAFFIC, TRAFFIC_WEIGHTS[level], "Moderate traffic")
    return None


def detect_weather(conditions: CurrentConditions) -> DelayFactor | None:
    condition = conditions.weather_condition
    if not isinstance(condition, str):
        return None
    match = WEATHER_WEIGHTS.get(condition.strip().lower())
    if match is None:
        return None
    weight, description = match
    return DelayFactor(FactorType.WEATHER, weight, description)


def detect_time_of_day(conditions: CurrentConditions) -> DelayFactor | None:
    hour = _as_number(conditions.hour_of_day)
    if hour is None or not 0 <= hour <= 23:
        return None
    if any(start <= hour <= end for start, end in RUSH_HOURS):
        return DelayFactor(FactorType.TIME_OF_DAY, 0.3, "Rush hour")
    if LUNCH_HOURS[0] <= hour <= LUNCH_HOURS[1]:
        return DelayFactor(FactorType.TIME_OF_DAY, 0.15, "Lunch time, elevated traffic")
    return None


def detect_historical(history: Sequence[DeliveryHistoryRecord]) -> DelayFactor | None:
    if len(history) < MIN_HISTORY_FOR_RATE:
        return None
    recent = _valid_delays(history[-RECENT_WINDOW:])
    if not recent:
        return None

    delay_rate = sum(1 for d in recent if d > LATE_THRESHOLD_MINUTES) / len(recent)
    if delay_rate > 0.4:
        return DelayFactor(FactorType.HISTORICAL, 0.35, "High incidence of past delays on this route")
    if delay_rate > 0.25:
        return DelayFactor(FactorType.HISTORICAL, 0.2, "Moderate rate of past delays")
    return None


def detect_region(history: Sequence[DeliveryHistoryRecord], conditions: CurrentConditions) -> DelayFactor | None:
    region = conditions.region
    if not region:
        return None
    delays = _valid_delays([r for r in history if getattr(r, "region", None) == region])
    if len(delays) < MIN_REGION_SAMPLES:
        return None

    average = sum(delays) / len(delays)
    if average > 20:
        return DelayFactor(FactorType.REGION, 0.25, f"Region {region} has a history of long delays")
    if average > 10:
        return DelayFactor(FactorType.REGION, 0.15, f"Region {region} has moderate delays")
    return None


def detect_driver_performance(history: Sequence[DeliveryHistoryRecord]) -> DelayFactor | None:
    delays = _valid_delays(history)
    if len(delays) < MIN_DRIVER_SAMPLES:
        return None

    average = sum(delays) / len(delays)
    on_time_rate = sum(1 for d in delays if d <= ON_TIME_THRESHOLD_MINUTES) / len(delays)
    if average > 15 and on_time_rate < 0.8:
        return DelayFactor(FactorType.DRIVER_PERFORMANCE, 0.3, "Driver performance below average")
    if average > 10:
        return DelayFactor(FactorType.DRIVER_PERFORMANCE, 0.15, "Driver performance is moderate")
    return None


def analyze_factors(
    history: Sequence[DeliveryHistoryRecord],
    conditions: CurrentConditions,
) -> list[DelayFactor]:
    """Run every detector and return the factors heaviest first."""
    candidates = [
        detect_traffic(conditions),
        detect_weather(conditions),
        detect_time_of_day(conditions),
        detect_historical(history),
        detect_region(history, conditions),
        detect_driver_performance(history),
    ]
    factors = [f for f in candidates if f is not None]
    # sorted() is stable, so equal weights keep detector order
    return sorted(factors, key=lambda f: f.weight, reverse=True)


# ──────────────────────────────────────────────────────────────────────────
# Aggregation
# ──────────────────────────────────────────────────────────────────────────


def total_weight(factors: Sequence[DelayFactor]) -> float:
    # Rounded so boundary sums such as 0.35 + 0.15 land exactly on 0.5
    return round(sum(f.weight for f in factors), 6)


def classify_risk(weight: float) -> RiskTier:
    """Map a summed factor weight onto a risk tier."""
    for threshold, tier in TIER_THRESHOLDS:
        if weight >= threshold:
            return tier
    return RiskTier.NONE


def calculate_confidence(history_size: int, factors: Sequence[DelayFactor]) -> float:
    confidence = BASE_CONFIDENCE

    if history_size > 100:
        confidence += 0.3
    elif history_size > 50:
        confidence += 0.2
    elif history_size > 20:
        confidence += 0.1
    elif history_size > 10:
        confidence += 0.05

    if len(factors) >= 3:
        confidence += 0.2
    elif len(factors) >= 2:
        confidence += 0.1
    elif len(factors) >= 1:
        confidence += 0.05

    heavy = sum(1 for f in factors if f.weight >= HIGH_WEIGHT)
    if heavy >= 2:
        confidence += 0.2
    elif heavy >= 1:
        confidence += 0.1

    return round(min(confidence, MAX_CONFIDENCE), 4)


def estimate_delay_minutes(tier: RiskTier, factors: Sequence[DelayFactor]) -> int:
    multiplier = 1.0
    traffic = next((f for f in factors if f.type == FactorType.TRAFFIC), None)
    weather = next((f for f in factors if f.type == FactorType.WEATHER), None)

    if traffic is not None and traffic.weight >= 0.4:
        multiplier += 0.5
    if weather is not None and weather.weight >= 0.4:
        multiplier += 0.3

    return round_half_up(BASE_DELAY_MINUTES[tier] * multiplier)


def score(
    history: Sequence[DeliveryHistoryRecord],
    conditions: CurrentConditions,
) -> ScoreResult:
    """Score delay risk for an order from its history and current conditions."""
    history = list(history)
    factors = analyze_factors(history, conditions)
    weight = total_weight(factors)
    tier = classify_risk(weight)

    return ScoreResult(
        predicted_delay=tier,
        delay_minutes_estimate=estimate_delay_minutes(tier, factors),
        confidence_score=calculate_confidence(len(history), factors),
        factors=tuple(factors),
        total_weight=weight,
    )


# ──────────────────────────────────────────────────────────────────────────
# Post-hoc checking
# ──────────────────────────────────────────────────────────────────────────

MAX_EXPECTED_ERROR_MINUTES = 60


def tier_for_actual_delay(actual_delay_minutes: float) -> RiskTier:
    if actual_delay_minutes <= 5:
        return RiskTier.NONE
    if actual_delay_minutes <= 15:
        return RiskTier.LOW
    if actual_delay_minutes <= 30:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


def check_prediction(prediction: DelayPrediction, actual_delay_minutes: float) -> PredictionCheck:
    """Compare a prediction with the delay that actually happened."""
    error = abs(prediction.delay_minutes_estimate - actual_delay_minutes)
    accuracy = max(0.0, 1 - error / MAX_EXPECTED_ERROR_MINUTES)
    return PredictionCheck(
        accuracy=round(accuracy, 2),
        error=error,
        was_correct=prediction.predicted_delay == tier_for_actual_delay(actual_delay_minutes),
    )
