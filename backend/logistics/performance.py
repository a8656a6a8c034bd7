"""
Driver Performance Analysis: score, trend and coaching hints from daily rows.

Inputs are daily performance rows for one driver, oldest first. The last 30
rows are the "recent" window and the 30 before them the "older" window.

Overall score (0-100, from the latest row plus recent-window spread):
  0.4 × on-time score      = min(100, on_time_rate × 100)
  0.3 × delay score        = max(0, 100 − 5 × average_delay)
  0.2 × volume score       = min(100, deliveries / 20 × 100)
  0.1 × consistency score  = max(0, 100 − 10 × variance(average_delay))

Trend compares mean on-time rate between windows (±0.05 band = stable).
Peer comparison uses an injected RankingSource so results are deterministic.

Usage:
    from logistics.performance import PerformanceAnalyzer, StaticRankingSource

    analyzer = PerformanceAnalyzer(StaticRankingSource({"t1": [72, 85, 91]}))
    report = await analyzer.analyze("t1", "driver_7", daily_rows)
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import date

import pandas as pd
import structlog

from logistics.geo import round_half_up

logger = structlog.get_logger()

WINDOW_DAYS = 30
TREND_BAND = 0.05

WEIGHTS = {
    "on_time": 0.4,
    "delay": 0.3,
    "volume": 0.2,
    "consistency": 0.1,
}

# Coaching hints keyed by weakness / strength / trend code
RECOMMENDATIONS = {
    "punctuality_below_target": ["enable_time_alerts", "time_management_training"],
    "high_average_delay": ["optimize_route_planning", "analyze_traffic_patterns"],
    "low_productivity": ["review_delivery_organization", "adopt_optimization_tools"],
    "declining": ["urgent_performance_review", "investigate_performance_decline"],
    "excellent_punctuality": ["share_best_practices", "mentorship_program"],
}


@dataclass(frozen=True)
class DailyPerformance:
    date: date
    deliveries: int
    average_delay: float
    on_time_rate: float  # 0-1
    total_distance_km: float
    region: str


@dataclass(frozen=True)
class RegionPerformance:
    score: int
    deliveries: int
    average_delay: float


@dataclass(frozen=True)
class PeerComparison:
    percentile: int
    rank: int
    total_drivers: int


@dataclass(frozen=True)
class DriverPerformanceReport:
    driver_id: str
    overall_score: int
    trend: str  # improving, stable, declining
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    regional_performance: dict[str, RegionPerformance] = field(default_factory=dict)
    comparison: PeerComparison | None = None


class RankingSource(ABC):
    """Performance scores of a tenant's driver pool."""

    @abstractmethod
    async def scores(self, tenant_id: str) -> list[float]: ...


class StaticRankingSource(RankingSource):
    def __init__(self, scores_by_tenant: dict[str, Sequence[float]] | None = None):
        self._scores = {tenant: list(s) for tenant, s in (scores_by_tenant or {}).items()}

    async def scores(self, tenant_id: str) -> list[float]:
        return list(self._scores.get(tenant_id, []))


# ──────────────────────────────────────────────────────────────────────────
# Pure analysis
# ──────────────────────────────────────────────────────────────────────────


def to_frame(records: Sequence[DailyPerformance]) -> pd.DataFrame:
    columns = ["date", "deliveries", "average_delay", "on_time_rate", "total_distance_km", "region"]
    if not records:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([asdict(r) for r in records], columns=columns)


def overall_score(recent: pd.DataFrame) -> int:
    if recent.empty:
        return 0

    latest = recent.iloc[-1]
    on_time_score = min(100.0, latest["on_time_rate"] * 100)
    delay_score = max(0.0, 100 - latest["average_delay"] * 5)
    volume_score = min(100.0, latest["deliveries"] / 20 * 100)
    variance = float(recent["average_delay"].var(ddof=0))
    consistency_score = max(0.0, 100 - variance * 10)

    return round_half_up(
        on_time_score * WEIGHTS["on_time"]
        + delay_score * WEIGHTS["delay"]
        + volume_score * WEIGHTS["volume"]
        + consistency_score * WEIGHTS["consistency"]
    )


def performance_trend(recent: pd.DataFrame, older: pd.DataFrame) -> str:
    if recent.empty or older.empty:
        return "stable"
    difference = recent["on_time_rate"].mean() - older["on_time_rate"].mean()
    if difference > TREND_BAND:
        return "improving"
    if difference < -TREND_BAND:
        return "declining"
    return "stable"


def consistency(recent: pd.DataFrame) -> float:
    """1 minus the variance of on-time rate; 1.0 with fewer than two rows."""
    if len(recent) < 2:
        return 1.0
    return max(0.0, 1 - float(recent["on_time_rate"].var(ddof=0)))


def strengths_and_weaknesses(recent: pd.DataFrame) -> tuple[list[str], list[str]]:
    if recent.empty:
        return [], []

    latest = recent.iloc[-1]
    steadiness = consistency(recent)
    strengths, weaknesses = [], []

    if latest["on_time_rate"] >= 0.9:
        strengths.append("excellent_punctuality")
    if latest["average_delay"] <= 5:
        strengths.append("low_average_delay")
    if latest["deliveries"] >= 15:
        strengths.append("high_productivity")
    if steadiness >= 0.8:
        strengths.append("consistent_performance")

    if latest["on_time_rate"] < 0.8:
        weaknesses.append("punctuality_below_target")
    if latest["average_delay"] > 15:
        weaknesses.append("high_average_delay")
    if latest["deliveries"] < 10:
        weaknesses.append("low_productivity")
    if steadiness < 0.6:
        weaknesses.append("inconsistent_performance")

    return strengths, weaknesses


def recommendations_for(strengths: list[str], weaknesses: list[str], trend: str) -> list[str]:
    codes = [w for w in weaknesses if w in RECOMMENDATIONS]
    if trend == "declining":
        codes.append("declining")
    if "excellent_punctuality" in strengths:
        codes.append("excellent_punctuality")
    return [hint for code in codes for hint in RECOMMENDATIONS[code]]


def regional_performance(recent: pd.DataFrame) -> dict[str, RegionPerformance]:
    if recent.empty:
        return {}

    grouped = recent.groupby("region", sort=True).agg(
        average_delay=("average_delay", "mean"),
        on_time_rate=("on_time_rate", "mean"),
        deliveries=("deliveries", "sum"),
    )
    return {
        str(region): RegionPerformance(
            score=round_half_up(row["on_time_rate"] * 100 - row["average_delay"] * 5),
            deliveries=int(row["deliveries"]),
            average_delay=float(row["average_delay"]),
        )
        for region, row in grouped.iterrows()
    }


def compare_with_peers(score: float, peer_scores: Sequence[float]) -> PeerComparison:
    """Rank 1 is the best; percentile is the share of peers not scoring higher."""
    total = len(peer_scores)
    better = sum(1 for s in peer_scores if s > score)
    percentile = round_half_up((total - better) / total * 100) if total else 100
    return PeerComparison(percentile=percentile, rank=better + 1, total_drivers=total)


def analyze_driver_performance(
    driver_id: str,
    daily_records: Sequence[DailyPerformance],
    peer_scores: Sequence[float] | None = None,
) -> DriverPerformanceReport:
    df = to_frame(daily_records)
    recent = df.tail(WINDOW_DAYS)
    older = df.iloc[max(0, len(df) - 2 * WINDOW_DAYS) : max(0, len(df) - WINDOW_DAYS)]

    score = overall_score(recent)
    trend = performance_trend(recent, older)
    strengths, weaknesses = strengths_and_weaknesses(recent)

    return DriverPerformanceReport(
        driver_id=driver_id,
        overall_score=score,
        trend=trend,
        strengths=strengths,
        weaknesses=weaknesses,
        recommendations=recommendations_for(strengths, weaknesses, trend),
        regional_performance=regional_performance(recent),
        comparison=compare_with_peers(score, peer_scores) if peer_scores is not None else None,
    )


class PerformanceAnalyzer:
    def __init__(self, ranking: RankingSource):
        self.ranking = ranking

    async def analyze(
        self,
        tenant_id: str,
        driver_id: str,
        daily_records: Sequence[DailyPerformance],
    ) -> DriverPerformanceReport:
        peers = await self.ranking.scores(tenant_id)
        report = analyze_driver_performance(driver_id, daily_records, peers)
        logger.info(
            "performance.analyzed",
            tenant_id=tenant_id,
            driver_id=driver_id,
            score=report.overall_score,
            trend=report.trend,
            rows=len(daily_records),
        )
        return report
