"""
Logistics Decision Engine Database Models

Tables:
  1. ai_decision_logs - Append-only audit trail of delay / route / alert decisions

Multi-tenant via tenant_id. Timestamps are stored as naive UTC.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Float, Index, Integer, String

from db.session import Base


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ─── 1. Decision Logs ──────────────────────────────────────────────────────


class DecisionLogRecord(Base):
    """One engine decision: input snapshot, output snapshot and confidence.

    Rows are never updated. Retention removes them by age.
    """

    __tablename__ = "ai_decision_logs"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    tenant_id = Column(String(64), nullable=False)
    order_id = Column(String(64))
    type = Column(String(10), nullable=False)
    input = Column(JSON, nullable=False)
    output = Column(JSON, nullable=False)
    confidence_score = Column(Float, nullable=False)
    fallback_used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow_naive)

    __table_args__ = (
        CheckConstraint("type IN ('delay', 'route', 'alert')", name="ck_decision_log_type"),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="ck_decision_log_confidence"),
        Index("ix_decision_logs_tenant_time", "tenant_id", "created_at"),
        Index("ix_decision_logs_tenant_order", "tenant_id", "order_id"),
    )
