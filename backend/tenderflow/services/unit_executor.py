"""Streaming execution of a single work unit.

Submits one unit to the workflow backend in streaming mode, decodes the
``data: {...}`` event frames as they arrive, forwards text chunks to an
observer, and reduces the stream to one ``UnitResult``.

Recognized events:
    workflow_started   run/task ids (informational)
    text_chunk         incremental text; observer fires before the next read
    workflow_finished  final outputs; an ``error`` field fails the unit
    node_finished      ``status == "failed"`` fails the unit, stream keeps draining
Everything else is ignored, and a frame that fails to decode is skipped.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from tenderflow.config import get_settings
from tenderflow.exceptions import UnitExecutionError, WorkflowError
from tenderflow.schemas.batch import BatchContext, UnitResult, WorkUnit
from tenderflow.services.result_merger import default_unit_id, normalize_outputs
from tenderflow.services.workflow_client import WorkflowClient

logger = logging.getLogger(__name__)

EVENT_PREFIX = "data:"

# on_chunk(unit_index, unit_title, chunk_text, all_units_so_far)
ChunkCallback = Callable[[int, str, str, list[UnitResult]], Any]


def decode_event_line(line: str) -> dict[str, Any] | None:
    """Decode one stream line.

    Returns ``None`` for lines that are not event frames (blank separators,
    comments, other SSE fields). Raises ``ValueError`` when a frame carries a
    payload that is not a JSON object.
    """
    text = line.strip()
    if not text.startswith(EVENT_PREFIX):
        return None
    raw = text[len(EVENT_PREFIX):].strip()
    if not raw:
        return None
    payload = json.loads(raw)  # JSONDecodeError is a ValueError
    if not isinstance(payload, dict):
        raise ValueError(f"event payload is not an object: {raw[:200]}")
    return payload


async def notify_observer(callback: Callable[..., Any] | None, *args: Any, timeout: float) -> None:
    """Invoke a caller-supplied observer without letting it break or stall the run.

    Exceptions are logged and dropped. An awaitable return value is awaited
    for at most *timeout* seconds. A plain function runs inline on the event
    loop and is not bounded: it must return promptly, and anything slow
    belongs in an ``async def`` observer.
    """
    if callback is None:
        return
    try:
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await asyncio.wait_for(outcome, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Observer %s exceeded %.1fs, abandoned", getattr(callback, "__name__", callback), timeout)
    except Exception:
        logger.warning("Observer %s raised", getattr(callback, "__name__", callback), exc_info=True)


@dataclass
class _StreamState:
    parts: list[str] = field(default_factory=list)
    outputs: Any = None
    error: str | None = None
    workflow_run_id: str | None = None
    task_id: str | None = None
    total_tokens: int = 0

    @property
    def text(self) -> str:
        return "".join(self.parts)


@dataclass
class UnitOutcome:
    """One successful unit run. Token counts are per call, not cumulative."""
    result: UnitResult
    total_tokens: int = 0
    workflow_run_id: str | None = None


class StreamingUnitExecutor:
    """Runs one unit at a time against the workflow backend."""

    service_name: str = "unit_executor"

    def __init__(
        self,
        client: WorkflowClient,
        *,
        user_requirements_key: str | None = None,
        callback_timeout: float | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.user_requirements_key = user_requirements_key or settings.USER_REQUIREMENTS_KEY
        self.callback_timeout = callback_timeout if callback_timeout is not None else settings.CALLBACK_TIMEOUT
        self._total_calls = 0
        self._total_errors = 0
        self._total_latency_ms = 0
        self._total_tokens = 0
        self._skipped_events = 0

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    def build_inputs(self, unit: WorkUnit, context: BatchContext) -> dict[str, Any]:
        """Workflow inputs for one unit: only this unit's outline slice plus shared context."""
        inputs: dict[str, Any] = {
            "outline_content": unit.content,
            "company_data": context.company_profile or "",
        }
        if context.prior_result and context.prior_result.strip():
            inputs["previous_result"] = context.prior_result.strip()
        if context.user_requirement and context.user_requirement.strip():
            inputs[self.user_requirements_key] = context.user_requirement.strip()
        return inputs

    async def execute(
        self,
        unit: WorkUnit,
        context: BatchContext,
        on_chunk: ChunkCallback | None = None,
        *,
        index: int = 0,
        completed: Sequence[UnitResult] = (),
    ) -> UnitResult:
        """Stream one unit to completion and return its normalized result."""
        outcome = await self.run_unit(unit, context, on_chunk, index=index, completed=completed)
        return outcome.result

    async def run_unit(
        self,
        unit: WorkUnit,
        context: BatchContext,
        on_chunk: ChunkCallback | None = None,
        *,
        index: int = 0,
        completed: Sequence[UnitResult] = (),
    ) -> UnitOutcome:
        """Stream one unit to completion; return its result and its own token usage.

        Args:
            unit: The work unit to submit.
            context: Shared run inputs and the API key.
            on_chunk: Optional observer for incremental text.
            index: 0-based position of the unit in the outline.
            completed: Results of the units before this one, used to build the
                aggregate passed to ``on_chunk``.

        Raises:
            WorkflowError: Transport failure or non-2xx response.
            UnitExecutionError: The backend reported a failed run or node.
        """
        self._total_calls += 1
        start = time.monotonic()
        state = _StreamState()
        inputs = self.build_inputs(unit, context)

        logger.info("[unit %d] Executing '%s' (%d chars)", index + 1, unit.title, len(unit.content))

        try:
            async with self.client.stream_workflow(context.api_key, inputs) as lines:
                async for line in lines:
                    try:
                        event = decode_event_line(line)
                    except ValueError as e:
                        self._skipped_events += 1
                        logger.debug("[unit %d] Skipping malformed event frame: %s", index + 1, e)
                        continue
                    if event is None:
                        continue
                    await self._dispatch(event, state, unit, index, completed, on_chunk)
        except WorkflowError:
            self._total_errors += 1
            raise

        if state.error is not None:
            self._total_errors += 1
            logger.warning("[unit %d] '%s' failed: %s", index + 1, unit.title, state.error)
            raise UnitExecutionError(
                f"unit execution failed: {unit.title}: {state.error}", unit_title=unit.title,
            )

        self._total_latency_ms += int((time.monotonic() - start) * 1000)
        self._total_tokens += state.total_tokens
        result = normalize_outputs(state.outputs, state.text, unit, index)
        logger.info(
            "[unit %d] '%s' done, run=%s content=%d chars",
            index + 1, unit.title, state.workflow_run_id, len(result.content),
        )
        return UnitOutcome(
            result=result, total_tokens=state.total_tokens, workflow_run_id=state.workflow_run_id,
        )

    async def _dispatch(
        self,
        event: dict[str, Any],
        state: _StreamState,
        unit: WorkUnit,
        index: int,
        completed: Sequence[UnitResult],
        on_chunk: ChunkCallback | None,
    ) -> None:
        kind = event.get("event")
        data = event.get("data") if isinstance(event.get("data"), dict) else {}

        if kind == "workflow_started":
            state.workflow_run_id = event.get("workflow_run_id") or data.get("id")
            state.task_id = event.get("task_id")

        elif kind == "text_chunk":
            chunk = data.get("text")
            if not isinstance(chunk, str) or not chunk:
                return
            state.parts.append(chunk)
            if on_chunk is not None:
                partial = UnitResult(id=default_unit_id(index), title=unit.title, content=state.text)
                await notify_observer(
                    on_chunk, index, unit.title, chunk, [*completed, partial],
                    timeout=self.callback_timeout,
                )

        elif kind == "workflow_finished":
            if data.get("outputs") is not None:
                state.outputs = data["outputs"]
            tokens = data.get("total_tokens")
            if isinstance(tokens, int):
                state.total_tokens = tokens
            if data.get("error"):
                state.error = str(data["error"])

        elif kind == "node_finished" and data.get("status") == "failed":
            state.error = str(data.get("error") or f"node '{data.get('title', '?')}' failed")
            logger.warning("[unit %d] Node failed: %s", index + 1, state.error)

    def get_metrics(self) -> dict[str, Any]:
        """Return usage statistics for this executor."""
        succeeded = self._total_calls - self._total_errors
        return {
            "service": self.service_name,
            "total_calls": self._total_calls,
            "total_errors": self._total_errors,
            "error_rate": round(self._total_errors / max(self._total_calls, 1), 3),
            "avg_latency_ms": round(self._total_latency_ms / max(succeeded, 1)) if succeeded > 0 else 0,
            "total_tokens": self._total_tokens,
            "skipped_events": self._skipped_events,
        }
