from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storybook_agents.storage.batches.base import BatchRequest
from storybook_agents.storage.types import BatchRequestRow

ACTIVE_STATUSES = ("pending", "processing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_row(batch: BatchRequest) -> BatchRequestRow:
    return BatchRequestRow(
        id=int(batch.id),
        run_id=str(batch.run_id),
        owner_id=batch.owner_id,
        story_title=batch.story_title,
        total_units=int(batch.total_units),
        completed_units=int(batch.completed_units),
        status=str(batch.status),
        error_message=batch.error_message,
        started_at=batch.started_at,
        completed_at=batch.completed_at,
        created_at=batch.created_at,
        updated_at=batch.updated_at,
    )


async def create_batch_request(
    session: AsyncSession,
    *,
    run_id: str,
    owner_id: str | None,
    story_title: str | None,
    total_units: int,
) -> int:
    batch = BatchRequest(
        run_id=run_id,
        owner_id=owner_id,
        story_title=story_title,
        total_units=total_units,
        completed_units=0,
        status="pending",
    )
    session.add(batch)
    await session.flush()
    return int(batch.id)


async def get_batch_request(session: AsyncSession, batch_id: int) -> BatchRequestRow | None:
    result = await session.execute(
        select(BatchRequest).where(BatchRequest.id == batch_id).execution_options(populate_existing=True)
    )
    batch = result.scalar_one_or_none()
    return _to_row(batch) if batch else None


async def get_active_batch_for_run(session: AsyncSession, run_id: str) -> BatchRequestRow | None:
    result = await session.execute(
        select(BatchRequest)
        .where(BatchRequest.run_id == run_id, BatchRequest.status.in_(ACTIVE_STATUSES))
        .order_by(BatchRequest.id.desc())
        .limit(1)
    )
    batch = result.scalar_one_or_none()
    return _to_row(batch) if batch else None


async def list_batch_requests(
    session: AsyncSession,
    *,
    owner_id: str | None = None,
    run_id: str | None = None,
    limit: int = 50,
) -> list[BatchRequestRow]:
    stmt = select(BatchRequest)
    if owner_id is not None:
        stmt = stmt.where(BatchRequest.owner_id == owner_id)
    if run_id is not None:
        stmt = stmt.where(BatchRequest.run_id == run_id)
    result = await session.execute(stmt.order_by(BatchRequest.id.desc()).limit(limit))
    return [_to_row(batch) for batch in result.scalars().all()]


async def mark_processing(session: AsyncSession, batch_id: int) -> None:
    await session.execute(
        update(BatchRequest)
        .where(BatchRequest.id == batch_id)
        .values(status="processing", started_at=_utcnow(), updated_at=_utcnow())
    )


async def update_progress(session: AsyncSession, batch_id: int, *, completed_units: int) -> None:
    await session.execute(
        update(BatchRequest)
        .where(BatchRequest.id == batch_id)
        .values(completed_units=completed_units, updated_at=_utcnow())
    )


async def mark_finished(
    session: AsyncSession,
    batch_id: int,
    *,
    status: str,
    completed_units: int | None = None,
    error_message: str | None = None,
) -> None:
    values: dict[str, object] = {
        "status": status,
        "completed_at": _utcnow(),
        "updated_at": _utcnow(),
        "error_message": error_message,
    }
    if completed_units is not None:
        values["completed_units"] = completed_units
    await session.execute(update(BatchRequest).where(BatchRequest.id == batch_id).values(**values))
