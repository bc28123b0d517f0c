from __future__ import annotations

from sqlalchemy import delete, select, text as sa_text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from storybook_agents.storage.drafts.base import Draft
from storybook_agents.storage.types import DraftRow, InsertResult


def _to_row(draft: Draft) -> DraftRow:
    return DraftRow(
        id=int(draft.id),
        run_id=str(draft.run_id),
        owner_id=draft.owner_id,
        phase=str(draft.phase),
        status=str(draft.status),
        current_step=int(draft.current_step),
        progress=int(draft.progress),
        title=draft.title,
        snapshot_json=str(draft.snapshot_json),
        snapshot_hash=str(draft.snapshot_hash),
        created_at=draft.created_at,
        updated_at=draft.updated_at,
    )


async def upsert_draft(
    session: AsyncSession,
    *,
    run_id: str,
    owner_id: str | None,
    phase: str,
    status: str,
    current_step: int,
    progress: int,
    title: str | None,
    snapshot_json: str,
    snapshot_hash: str,
) -> InsertResult:
    existing = await session.execute(select(Draft.id).where(Draft.run_id == run_id))
    existing_id = existing.scalar_one_or_none()

    values = {
        "phase": phase,
        "status": status,
        "current_step": current_step,
        "progress": progress,
        "title": title,
        "snapshot_json": snapshot_json,
        "snapshot_hash": snapshot_hash,
    }
    update_values = {**values, "updated_at": sa_text("CURRENT_TIMESTAMP")}
    if owner_id is not None:
        update_values["owner_id"] = owner_id

    stmt = (
        sqlite_insert(Draft)
        .values(run_id=run_id, owner_id=owner_id, **values)
        .on_conflict_do_update(index_elements=[Draft.run_id], set_=update_values)
    )
    await session.execute(stmt)

    lookup = await session.execute(select(Draft.id).where(Draft.run_id == run_id))
    return InsertResult(id=int(lookup.scalar_one()), inserted=existing_id is None)


async def get_draft(session: AsyncSession, run_id: str) -> DraftRow | None:
    result = await session.execute(select(Draft).where(Draft.run_id == run_id))
    draft = result.scalar_one_or_none()
    return _to_row(draft) if draft else None


async def list_drafts(session: AsyncSession, *, owner_id: str | None = None, limit: int = 50) -> list[DraftRow]:
    stmt = select(Draft)
    if owner_id is not None:
        stmt = stmt.where(Draft.owner_id == owner_id)
    stmt = stmt.order_by(Draft.updated_at.desc(), Draft.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return [_to_row(draft) for draft in result.scalars().all()]


async def delete_draft(session: AsyncSession, run_id: str) -> bool:
    result = await session.execute(delete(Draft).where(Draft.run_id == run_id))
    return bool(result.rowcount)
