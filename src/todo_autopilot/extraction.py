"""Task extraction from free-text TODO lists.

Recognized notations, one task per matched line:

- explicit markers: ``TODO: ...``, ``FIXME: ...``, ``TASK: ...``
- checkboxes: ``[ ] ...`` / ``- [x] ...``
- numbered lines: ``1. ...``, ``2) ...``, ``(3) ...``
- bullets: ``- ...``, ``* ...``, ``+ ...``, ``• ...``

A marker line with no text opens a block in which plain lines are items until
the next blank line. Items chained with sequencing connectors (", then",
" and then ", "->") become separate tasks, each recording the task it follows.
"""

from __future__ import annotations

import re
from typing import Optional

from loguru import logger

from .context import FrameworkRules
from .models import Task

_MARKER_RE = re.compile(r"^(?:TODO|FIXME|TASK)\s*[:\-]\s*(.*)$", re.IGNORECASE)
_CHECKBOX_RE = re.compile(r"^(?:[-*+•]\s*)?\[[ xX]\]\s+(.+)$")
_NUMBERED_RE = re.compile(r"^\(?\d+[.)]\s+(.+)$")
_BULLET_RE = re.compile(r"^[-*+•]\s+(.+)$")
_CONTINUATION_RE = re.compile(r"^then\s+(.+)$", re.IGNORECASE)
_SEQUENCE_SPLIT_RE = re.compile(
    r"\s*(?:,\s*and\s+then\s+|[,;]\s*then\s+|\s+and\s+then\s+|\s*->\s*|\s*→\s*)",
    re.IGNORECASE,
)
_TRAILING_PUNCT = " \t.,;:"


def _match_item(line: str) -> Optional[str]:
    for regex in (_CHECKBOX_RE, _NUMBERED_RE, _BULLET_RE):
        m = regex.match(line)
        if m:
            body = m.group(1).strip()
            inner = _MARKER_RE.match(body)
            return inner.group(1).strip() if inner else body
    m = _MARKER_RE.match(line)
    if m:
        return m.group(1).strip()
    return None


def _split_sequence(item: str) -> list[str]:
    pieces = [p.strip(_TRAILING_PUNCT) for p in _SEQUENCE_SPLIT_RE.split(item)]
    return [p for p in pieces if p]


class TaskExtractor:
    """Parse raw text into atomic tasks. Never raises on malformed input."""

    def __init__(self, id_prefix: str = "task") -> None:
        self.id_prefix = id_prefix

    def extract(self, text: Optional[str], hints: Optional[FrameworkRules] = None) -> list[Task]:
        """Return zero or more tasks with non-empty ``raw_text``, in input order."""
        if not text:
            return []
        tasks: list[Task] = []
        in_block = False
        previous_matched = False

        for line_no, raw_line in enumerate(text.splitlines(), 1):
            line = raw_line.strip()
            if not line:
                in_block = False
                previous_matched = False
                continue

            item: Optional[str] = None
            follows_previous = False
            marker = _MARKER_RE.match(line)
            if marker and not marker.group(1).strip():
                in_block = True
                previous_matched = False
                continue

            cont = _CONTINUATION_RE.match(line)
            if cont and previous_matched and tasks:
                item = cont.group(1).strip()
                follows_previous = True
            else:
                item = _match_item(line)
                if item is None and in_block:
                    item = line

            if not item:
                previous_matched = False
                continue

            for idx, piece in enumerate(_split_sequence(item)):
                task = Task(id=f"{self.id_prefix}-{len(tasks) + 1}", raw_text=piece, line_number=line_no)
                if (idx > 0 or follows_previous) and tasks:
                    task.hints["follows"] = tasks[-1].id
                if hints is not None and hints.name:
                    task.hints["framework"] = hints.name
                tasks.append(task)
            previous_matched = True

        if not tasks:
            logger.info("No tasks recognized in {} characters of input", len(text))
        else:
            logger.debug("Extracted {} task(s)", len(tasks))
        return tasks


def render_tasks(tasks: list[Task]) -> str:
    """Render tasks back to a bulleted list that extracts to the same task count."""
    return "\n".join(f"- {task.raw_text}" for task in tasks)
