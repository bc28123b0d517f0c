"""Background illustration of every page of a run, then its cover.

A batch request moves ``pending -> processing -> completed | failed | cancelled``.
Units run in ascending page order under the run's lock. Cancellation is polled
between units only; a unit already calling the image service is allowed to finish.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storybook_agents.domain.errors import Cancelled, NotFoundError, StorybookError, ValidationError
from storybook_agents.domain.models import Run, replace_page
from storybook_agents.domain.phases import BatchStatus, Phase, RunStatus
from storybook_agents.pipeline.context import PipelineContext
from storybook_agents.pipeline.drafts import DraftStore
from storybook_agents.pipeline.nodes.illustrate import ensure_cover, ensure_illustrated
from storybook_agents.pipeline.registry import RunRegistry
from storybook_agents.pipeline.run import PhaseResult, advance
from storybook_agents.pipeline.tasks import TaskHandle
from storybook_agents.storage.db import session_scope
from storybook_agents.storage.repo import SQLAlchemyRepo
from storybook_agents.storage.types import BatchRequestRow

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

ILLUSTRATION_PROGRESS_START = 70
ILLUSTRATION_PROGRESS_SPAN = 20
COVER_PROGRESS = 92
REVIEW_PROGRESS = 95


def resume_for_batch(run_state: Run) -> Run:
    """Move a run into the illustration stage, clearing a previous phase error."""
    if run_state.phase == Phase.AWAITING_PROMPT_REVIEW or (
        run_state.status == RunStatus.ERROR and run_state.phase == Phase.ILLUSTRATION_GENERATION
    ):
        return advance(
            run_state,
            PhaseResult.started(
                Phase.ILLUSTRATION_GENERATION,
                progress=ILLUSTRATION_PROGRESS_START,
                message="Generating illustrations",
            ),
        )
    if run_state.status != RunStatus.ERROR:
        return run_state
    if run_state.phase == Phase.COVER_GENERATION:
        return advance(run_state, PhaseResult.started(Phase.COVER_GENERATION, progress=COVER_PROGRESS))
    # A failed finalize leaves the run in page review.
    return advance(run_state, PhaseResult.waiting(run_state.phase, message="Illustrating remaining pages"))


@dataclass
class BatchOutcome:
    batch_id: int
    run_id: str
    status: BatchStatus
    total_units: int
    completed_units: int = 0
    failed_units: list[str] = field(default_factory=list)
    error: str | None = None


class BatchHandle:
    """Task handle for one running batch request."""

    def __init__(self, batch_id: int, run_id: str, task: TaskHandle[BatchOutcome]):
        self.batch_id = batch_id
        self.run_id = run_id
        self._task = task

    def status(self) -> str:
        return self._task.status()

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancel_requested(self) -> bool:
        return self._task.cancel_requested

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> BatchOutcome:
        return await self._task.wait()


class BatchExecutor:
    def __init__(
        self,
        *,
        registry: RunRegistry,
        ctx: PipelineContext,
        drafts: DraftStore,
        session_factory: SessionFactory = session_scope,
    ):
        self.registry = registry
        self.ctx = ctx
        self.drafts = drafts
        self._session_factory = session_factory
        self._handles: dict[int, BatchHandle] = {}
        self._slots = asyncio.Semaphore(ctx.config.batch.max_concurrent_batches)

    # persistence helpers

    async def _get_row(self, batch_id: int) -> BatchRequestRow:
        async with self._session_factory() as session:
            row = await SQLAlchemyRepo(session).get_batch_request(batch_id)
        if row is None:
            raise NotFoundError("BatchRequest", batch_id)
        return row

    async def _persist_unit(self, batch_id: int, completed_units: int, run_state: Run) -> None:
        try:
            async with self._session_factory() as session:
                await SQLAlchemyRepo(session).update_batch_progress(batch_id, completed_units)
        except Exception as exc:  # noqa: BLE001
            logger.bind(batch_id=batch_id).warning("Batch progress save failed: {}", exc)
        await self.drafts.save(run_state)

    async def _finish(self, outcome: BatchOutcome) -> None:
        try:
            async with self._session_factory() as session:
                await SQLAlchemyRepo(session).mark_batch_finished(
                    outcome.batch_id,
                    status=outcome.status.value,
                    completed_units=outcome.completed_units,
                    error_message=outcome.error,
                )
        except Exception as exc:  # noqa: BLE001
            logger.bind(batch_id=outcome.batch_id).error("Could not record batch result: {}", exc)

    # lifecycle

    async def create(self, run_id: str) -> BatchRequestRow:
        """Persist a pending request; at most one active request per run."""
        run_state = self.registry.get(run_id)
        if not run_state.pages:
            raise ValidationError("No pages to illustrate. Generate pages first.")

        total_units = len(run_state.pages) + (1 if run_state.cover_needed else 0)
        async with self._session_factory() as session:
            repo = SQLAlchemyRepo(session)
            active = await repo.get_active_batch_for_run(run_id)
            if active is not None:
                raise ValidationError(f"Run {run_id} already has an active batch request #{active.id}")
            batch_id = await repo.create_batch_request(
                run_id=run_id,
                owner_id=run_state.owner_id,
                story_title=run_state.title,
                total_units=total_units,
            )
        logger.bind(run_id=run_id, batch_id=batch_id).info("Batch request created total_units={}", total_units)
        return await self._get_row(batch_id)

    def start(self, row: BatchRequestRow) -> BatchHandle:
        async def _work(task: TaskHandle[BatchOutcome]) -> BatchOutcome:
            async with self._slots:
                return await self.execute(row.id, row.run_id, cancel_requested=lambda: task.cancel_requested)

        handle = BatchHandle(row.id, row.run_id, TaskHandle(f"batch-{row.id}", _work))
        self._handles[row.id] = handle
        return handle

    def handle(self, batch_id: int) -> BatchHandle | None:
        return self._handles.get(batch_id)

    async def cancel(self, batch_id: int) -> BatchRequestRow:
        row = await self._get_row(batch_id)
        if BatchStatus(row.status).is_terminal:
            raise ValidationError(f"Batch request #{batch_id} already {row.status}")

        handle = self._handles.get(batch_id)
        if handle is not None and not handle.done():
            handle.cancel()
            logger.bind(batch_id=batch_id).info("Cancellation requested")
            return row

        # Nothing is executing it in this process.
        async with self._session_factory() as session:
            await SQLAlchemyRepo(session).mark_batch_finished(
                batch_id, status=BatchStatus.CANCELLED.value, completed_units=row.completed_units
            )
        logger.bind(batch_id=batch_id).info("Cancelled batch with no live executor")
        return await self._get_row(batch_id)

    async def get(self, batch_id: int) -> BatchRequestRow:
        return await self._get_row(batch_id)

    async def list(self, *, owner_id: str | None = None, run_id: str | None = None) -> list[BatchRequestRow]:
        async with self._session_factory() as session:
            return await SQLAlchemyRepo(session).list_batch_requests(owner_id=owner_id, run_id=run_id)

    # execution

    async def execute(
        self,
        batch_id: int,
        run_id: str,
        *,
        cancel_requested: Callable[[], bool] = lambda: False,
    ) -> BatchOutcome:
        row = await self._get_row(batch_id)
        outcome = BatchOutcome(
            batch_id=batch_id,
            run_id=run_id,
            status=BatchStatus.PROCESSING,
            total_units=row.total_units,
        )
        log = logger.bind(run_id=run_id, batch_id=batch_id)

        try:
            async with self._session_factory() as session:
                await SQLAlchemyRepo(session).mark_batch_processing(batch_id)

            async with self.registry.lock(run_id):
                try:
                    await self._run_units(batch_id, run_id, outcome, cancel_requested)
                    outcome.status = BatchStatus.COMPLETED
                except Cancelled as exc:
                    log.info("{}", exc)
                    outcome.status = BatchStatus.CANCELLED
                finally:
                    self._to_review(run_id)
        except Exception as exc:  # noqa: BLE001
            log.exception("Batch failed with {} units complete", outcome.completed_units)
            outcome.status = BatchStatus.FAILED
            outcome.error = str(exc)

        if outcome.failed_units and outcome.error is None:
            outcome.error = f"Units failed: {', '.join(outcome.failed_units)}"
        await self._finish(outcome)
        run_state = self.registry.find(run_id)
        if run_state is not None:
            await self.drafts.save(run_state)
        log.info(
            "Batch finished status={} completed={}/{}",
            outcome.status.value,
            outcome.completed_units,
            outcome.total_units,
        )
        return outcome

    async def _run_units(
        self,
        batch_id: int,
        run_id: str,
        outcome: BatchOutcome,
        cancel_requested: Callable[[], bool],
    ) -> None:
        run_state = self.registry.put(resume_for_batch(self.registry.get(run_id)))

        for page_number in sorted(page.page_number for page in run_state.pages):
            if cancel_requested():
                raise Cancelled(f"Batch {batch_id} cancelled before page {page_number}")
            run_state = await self._page_unit(run_state, page_number, outcome)
            await self._persist_unit(batch_id, outcome.completed_units, run_state)

        if run_state.cover_needed:
            if cancel_requested():
                raise Cancelled(f"Batch {batch_id} cancelled before cover")
            run_state = await self._cover_unit(run_state, outcome)
            await self._persist_unit(batch_id, outcome.completed_units, run_state)

    async def _page_unit(self, run_state: Run, page_number: int, outcome: BatchOutcome) -> Run:
        page = run_state.find_page(page_number)
        if page is None:
            outcome.failed_units.append(f"page {page_number}")
            return run_state
        try:
            updated, generated = await ensure_illustrated(run_state, page, self.ctx)
        except StorybookError as exc:
            logger.bind(run_id=run_state.id, batch_id=outcome.batch_id, page=page_number).warning(
                "Page unit failed, continuing: {}", exc
            )
            outcome.failed_units.append(f"page {page_number}")
            return run_state

        outcome.completed_units += 1
        if not generated:
            return run_state
        progress = ILLUSTRATION_PROGRESS_START + ILLUSTRATION_PROGRESS_SPAN * outcome.completed_units // max(
            1, outcome.total_units
        )
        return self.registry.put(
            advance(
                run_state.model_copy(update={"pages": replace_page(run_state.pages, updated)}),
                PhaseResult(
                    phase=run_state.phase,
                    status=RunStatus.RUNNING if run_state.status == RunStatus.ERROR else run_state.status,
                    progress=progress,
                    message=f"Illustrated page {page_number}",
                ),
            )
        )

    async def _cover_unit(self, run_state: Run, outcome: BatchOutcome) -> Run:
        if run_state.phase == Phase.ILLUSTRATION_GENERATION:
            run_state = self.registry.put(
                advance(run_state, PhaseResult.started(Phase.COVER_GENERATION, progress=COVER_PROGRESS))
            )
        try:
            cover, _ = await ensure_cover(run_state, self.ctx)
        except StorybookError as exc:
            logger.bind(run_id=run_state.id, batch_id=outcome.batch_id).warning(
                "Cover unit failed, continuing: {}", exc
            )
            outcome.failed_units.append("cover")
            return run_state
        outcome.completed_units += 1
        return self.registry.put(run_state.model_copy(update={"cover": cover}))

    def _to_review(self, run_id: str) -> None:
        run_state = self.registry.find(run_id)
        if run_state is None:
            return
        if run_state.phase in (Phase.ILLUSTRATION_GENERATION, Phase.COVER_GENERATION):
            self.registry.put(
                advance(
                    run_state,
                    PhaseResult.waiting(
                        Phase.AWAITING_PAGE_REVIEW,
                        progress=REVIEW_PROGRESS,
                        message="Illustrations ready for review",
                    ),
                )
            )
