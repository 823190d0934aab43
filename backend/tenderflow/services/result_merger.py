"""Normalizes backend outputs into ``UnitResult`` and assembles the final artifact."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Sequence

from tenderflow.exceptions import MergeError
from tenderflow.schemas.batch import (
    MergedArtifact,
    MergedOutputs,
    MergedRunData,
    UnitResult,
    WorkUnit,
)

logger = logging.getLogger(__name__)


def default_unit_id(index: int) -> str:
    """Fallback id for the unit at 0-based *index*."""
    return f"batch-{index + 1}"


def extract_result_content(payload: Any) -> str:
    """Best-effort text from an arbitrary response payload."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        if payload.get("text"):
            return str(payload["text"])
        if payload.get("content"):
            return str(payload["content"])
    try:
        return json.dumps(payload, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return str(payload or "")


def ensure_unit_result(value: Any, unit: WorkUnit, index: int) -> UnitResult:
    """Coerce *value* into a fully populated ``UnitResult``."""
    if isinstance(value, UnitResult):
        value = value.model_dump()
    if isinstance(value, str):
        value = {"content": value}
    if not isinstance(value, dict):
        value = {}
    content = value.get("content")
    if not isinstance(content, str):
        content = extract_result_content(content) if content else ""
    return UnitResult(
        id=str(value.get("id") or default_unit_id(index)),
        title=str(value.get("title") or unit.title or default_unit_id(index)),
        content=content,
    )


def normalize_outputs(
    outputs: Any,
    streamed_text: str,
    unit: WorkUnit,
    index: int,
) -> UnitResult:
    """Derive one unit's result from the final outputs and the streamed text.

    Precedence: ``outputs.content`` item list, then ``outputs.text``, then the
    streamed text, then an empty string.
    """
    if isinstance(outputs, dict):
        items = outputs.get("content")
        if isinstance(items, list) and items:
            if len(items) == 1:
                return ensure_unit_result(items[0] if isinstance(items[0], dict) else str(items[0]), unit, index)
            return ensure_unit_result(
                {"content": "\n\n".join(_render_item(item) for item in items)}, unit, index,
            )
        text = outputs.get("text")
        if isinstance(text, str) and text:
            return ensure_unit_result(text, unit, index)
    if streamed_text:
        return ensure_unit_result(streamed_text, unit, index)
    return ensure_unit_result("", unit, index)


def _render_item(item: Any) -> str:
    if not isinstance(item, dict):
        return str(item)
    title = item.get("title") or ""
    body = item.get("content") or ""
    return f"## {title}\n\n{body}" if title else str(body)


def merge_results(
    results: Sequence[UnitResult],
    total_units: int,
    *,
    started_at: float | None = None,
    total_tokens: int = 0,
) -> MergedArtifact:
    """Wrap unit results, in outline order, into the merged envelope.

    Raises ``MergeError`` if the result count differs from *total_units* or
    a result is missing its id or title.
    """
    if len(results) != total_units:
        raise MergeError(f"expected {total_units} unit results, got {len(results)}")
    for i, result in enumerate(results):
        if not result.id or not result.title:
            raise MergeError(f"unit result {i + 1} is missing its id or title")

    now = time.time()
    stamp = f"merged-{int(now * 1000)}"
    elapsed = round(now - started_at, 3) if started_at is not None else 0.0
    logger.info("Merged %d unit results (%d tokens, %.1fs)", total_units, total_tokens, elapsed)
    return MergedArtifact(
        workflow_run_id=stamp,
        task_id=stamp,
        data=MergedRunData(
            id=stamp,
            outputs=MergedOutputs(content=list(results)),
            elapsed_time=elapsed,
            total_tokens=total_tokens,
            total_steps=total_units,
            created_at=int(started_at if started_at is not None else now),
            finished_at=int(now),
        ),
    )
