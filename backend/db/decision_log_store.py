"""SQLAlchemy-backed DecisionLogStore for durable decision audit trails."""

from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import DecisionLogRecord
from logistics.models import AiDecisionLog, DecisionType
from logistics.stores import DecisionLogFilters, DecisionLogStore


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(row: DecisionLogRecord) -> AiDecisionLog:
    return AiDecisionLog(
        id=row.id,
        tenant_id=row.tenant_id,
        type=DecisionType(row.type),
        input=row.input,
        output=row.output,
        confidence_score=row.confidence_score,
        fallback_used=row.fallback_used,
        order_id=row.order_id,
        created_at=_to_aware_utc(row.created_at),
    )


class SqlDecisionLogStore(DecisionLogStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, record: AiDecisionLog) -> None:
        async with self.session_factory() as session:
            session.add(
                DecisionLogRecord(
                    id=record.id,
                    tenant_id=record.tenant_id,
                    order_id=record.order_id,
                    type=record.type.value,
                    input=record.input,
                    output=record.output,
                    confidence_score=record.confidence_score,
                    fallback_used=record.fallback_used,
                    created_at=_to_naive_utc(record.created_at),
                )
            )
            await session.commit()

    async def query(self, tenant_id: str, filters: DecisionLogFilters) -> list[AiDecisionLog]:
        stmt = select(DecisionLogRecord).where(DecisionLogRecord.tenant_id == tenant_id)
        if filters.type is not None:
            stmt = stmt.where(DecisionLogRecord.type == DecisionType(filters.type).value)
        if filters.order_id is not None:
            stmt = stmt.where(DecisionLogRecord.order_id == filters.order_id)
        if filters.start is not None:
            stmt = stmt.where(DecisionLogRecord.created_at >= _to_naive_utc(filters.start))
        if filters.end is not None:
            stmt = stmt.where(DecisionLogRecord.created_at <= _to_naive_utc(filters.end))
        stmt = stmt.order_by(DecisionLogRecord.created_at.desc(), DecisionLogRecord.seq.desc())
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_to_domain(row) for row in result.scalars().all()]

    async def delete_older_than(self, tenant_id: str, cutoff: datetime) -> int:
        stmt = delete(DecisionLogRecord).where(
            DecisionLogRecord.tenant_id == tenant_id,
            DecisionLogRecord.created_at < _to_naive_utc(cutoff),
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def delete_tenant(self, tenant_id: str) -> int:
        stmt = delete(DecisionLogRecord).where(DecisionLogRecord.tenant_id == tenant_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0
