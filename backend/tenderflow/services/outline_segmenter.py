"""Outline segmentation — splits a Markdown outline into units of work.

A unit starts at a top-level heading (``# Title``) and runs until the next
top-level heading. Second-level and deeper headings stay inside their unit.
"""

from __future__ import annotations

import logging
import re

from tenderflow.exceptions import OutlineError
from tenderflow.schemas.batch import WorkUnit

logger = logging.getLogger(__name__)

# Exactly one '#', whitespace, then real text ('## x' and '#   ' do not match)
_TOP_LEVEL_HEADING = re.compile(r"^#\s+[^#\s]")
_HEADING_MARKER = re.compile(r"^#\s+")


def is_top_level_heading(line: str) -> bool:
    return bool(_TOP_LEVEL_HEADING.match(line))


def segment_outline(outline: str) -> list[WorkUnit]:
    """Split *outline* into ordered work units by top-level heading.

    Text before the first top-level heading is dropped. Returns an empty list
    when the outline has no top-level heading at all; use ``require_units``
    where that must be an error.
    """
    units: list[WorkUnit] = []
    current_title: str | None = None
    current_lines: list[str] = []

    for line in (outline or "").split("\n"):
        if is_top_level_heading(line):
            if current_title is not None:
                units.append(_close_unit(current_title, current_lines))
            current_title = _HEADING_MARKER.sub("", line).strip()
            current_lines = [line]
        elif current_title is not None:
            current_lines.append(line)

    if current_title is not None:
        units.append(_close_unit(current_title, current_lines))

    logger.debug("Segmented outline (%d chars) into %d units", len(outline or ""), len(units))
    return units


def require_units(outline: str) -> list[WorkUnit]:
    """Like ``segment_outline`` but raises ``OutlineError`` on an unstructured outline."""
    units = segment_outline(outline)
    if not units:
        raise OutlineError(
            "outline has no top-level structure: expected at least one '# ' heading"
        )
    return units


def _close_unit(title: str, lines: list[str]) -> WorkUnit:
    return WorkUnit(title=title, content="\n".join(lines).strip())
