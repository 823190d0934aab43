"""BatchOrchestrator — drives a whole outline through the workflow backend.

Units run in strict serial order. Progress is persisted after every unit so
a reload or network failure resumes right after the last unit that
succeeded; a failed unit is never recorded and is re-run in full next time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from tenderflow.config import get_settings
from tenderflow.exceptions import BatchRunError, OutlineError
from tenderflow.schemas.batch import BatchContext, MergedArtifact, UnitResult
from tenderflow.services.outline_segmenter import require_units
from tenderflow.services.progress_store import ProgressStore
from tenderflow.services.result_merger import merge_results
from tenderflow.services.unit_executor import (
    ChunkCallback,
    StreamingUnitExecutor,
    notify_observer,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchCallbacks:
    """Optional observers, invoked inline on the orchestrator's task.

    on_progress(current, total, label)  current is 1-based; 0 before the first unit
    on_stream_chunk(index, title, chunk, all_units_so_far)
    on_error(error)

    Sync observers run inline and unbounded; async ones are abandoned after
    CALLBACK_TIMEOUT seconds.
    """
    on_progress: Callable[[int, int, str], Any] | None = None
    on_stream_chunk: ChunkCallback | None = None
    on_error: Callable[[Exception], Any] | None = None


class BatchOrchestrator:
    """Segments, resumes, executes and merges one batch run.

    Usage:
        orchestrator = BatchOrchestrator(executor, progress_store)
        artifact = await orchestrator.run(outline, context, callbacks)
    """

    def __init__(self, executor: StreamingUnitExecutor, progress: ProgressStore):
        self.executor = executor
        self.progress = progress
        self.callback_timeout = get_settings().CALLBACK_TIMEOUT

    async def run(
        self,
        outline: str,
        context: BatchContext,
        callbacks: BatchCallbacks | None = None,
        resume: bool = True,
    ) -> MergedArtifact:
        """Run (or resume) the batch for *outline*.

        Raises:
            OutlineError: The outline has no top-level heading; nothing persisted.
            BatchRunError: A unit failed; progress up to it has been saved.
        """
        callbacks = callbacks or BatchCallbacks()
        started_at = time.time()

        try:
            units = require_units(outline)
        except OutlineError as e:
            logger.warning("Rejected outline: %s", e)
            await self._emit(callbacks.on_error, e)
            raise

        total = len(units)
        key = self.progress.compute_key(
            outline, context.prior_result, context.company_profile, context.user_requirement,
        )
        results, start = await self._resume_point(key, total, resume)

        if start > 0:
            await self._emit(callbacks.on_progress, start, total, f"Resuming from unit {start + 1}...")
        else:
            await self._emit(callbacks.on_progress, 0, total, "Starting batch submission...")

        run_tokens = 0

        for i in range(start, total):
            unit = units[i]
            await self._emit(callbacks.on_progress, i + 1, total, f"Submitting: {unit.title}")
            try:
                outcome = await self.executor.run_unit(
                    unit, context, callbacks.on_stream_chunk, index=i, completed=list(results),
                )
            except Exception as e:
                await self.progress.save_async(key, results, total)
                logger.exception("Batch %s halted at unit %d/%d (%s)", key, i + 1, total, unit.title)
                error = BatchRunError(
                    f"Unit {i + 1} ({unit.title}) failed: {e}", unit_index=i, unit_title=unit.title,
                )
                await self._emit(callbacks.on_error, error)
                raise error from e

            results.append(outcome.result)
            run_tokens += outcome.total_tokens
            await self.progress.save_async(key, results, total)

        artifact = merge_results(
            results, total,
            started_at=started_at,
            total_tokens=run_tokens,
        )
        await self.progress.clear_async(key)
        await self._emit(callbacks.on_progress, total, total, "All units submitted, merging results...")
        logger.info("Batch %s complete: %d units", key, total)
        return artifact

    async def _resume_point(self, key: str, total: int, resume: bool) -> tuple[list[UnitResult], int]:
        """Decide which completed results to adopt and where to start."""
        if not resume:
            await self.progress.clear_async(key)
            logger.info("Batch %s: resume disabled, starting fresh", key)
            return [], 0

        record = await self.progress.load_async(key)
        if record is None:
            return [], 0
        if record.total_units != total:
            logger.info(
                "Batch %s: stale progress (%d units recorded, %d now), discarding",
                key, record.total_units, total,
            )
            await self.progress.clear_async(key)
            return [], 0

        completed = list(record.completed_units)
        logger.info("Batch %s: resuming with %d/%d units done", key, len(completed), total)
        return completed, len(completed)

    async def _emit(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        await notify_observer(callback, *args, timeout=self.callback_timeout)
