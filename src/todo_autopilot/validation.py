"""Framework refinement and feasibility validation of extracted tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from .config import RuleSet
from .context import FrameworkRules, ProjectContext
from .models import Task, TaskState
from .utils import keyword_pattern

_BACKTICK_RE = re.compile(r"`([^`]+)`")
_PATH_RE = re.compile(r"(?<![\w/])((?:[\w.-]+/)+[\w-]+\.[A-Za-z]{1,5})\b")
_ALPHA_RE = re.compile(r"[A-Za-z]")

Transition = Callable[[str, TaskState, Optional[str]], bool]


@dataclass
class ValidationResult:
    task_id: str
    accepted: bool
    reason: Optional[str] = None


class TaskRefiner:
    """Apply framework substitutions to produce ``refined_text``."""

    def refine(self, task: Task, rules: FrameworkRules) -> Task:
        text = task.raw_text
        for source, target in rules.substitutions.items():
            text = keyword_pattern(source).sub(lambda _m, repl=target: repl, text)
        task.refined_text = " ".join(text.split())
        return task


class TaskValidator:
    """Feasibility checks that move a refining task to validated or rejected."""

    def __init__(self, rules: Optional[RuleSet] = None) -> None:
        self.rules = rules or RuleSet()

    def check(self, task: Task, context: ProjectContext) -> ValidationResult:
        text = task.text
        if not _ALPHA_RE.search(text):
            return ValidationResult(task.id, False, "task text has no words")

        if context.elements:
            missing = [ref for ref in self._references(text) if not context.has_element(ref)]
            if missing:
                return ValidationResult(task.id, False, f"references unknown project element(s): {', '.join(missing)}")

        if context.surfaces:
            surface = self.rules.category_surfaces.get(task.category.value)
            if surface and surface not in context.surfaces:
                return ValidationResult(
                    task.id,
                    False,
                    f"{task.category.value} task but project declares no {surface} surface",
                )
        return ValidationResult(task.id, True)

    def validate(self, task: Task, context: ProjectContext, transition: Transition) -> ValidationResult:
        """Run the checks and record the outcome through ``transition``."""
        result = self.check(task, context)
        if result.accepted:
            transition(task.id, TaskState.VALIDATED, None)
        else:
            logger.warning("Rejected {}: {}", task.id, result.reason)
            transition(task.id, TaskState.REJECTED, result.reason)
        return result

    @staticmethod
    def _references(text: str) -> list[str]:
        refs: list[str] = []
        for m in _BACKTICK_RE.finditer(text):
            refs.append(m.group(1).strip())
        for m in _PATH_RE.finditer(_BACKTICK_RE.sub(" ", text)):
            refs.append(m.group(1))
        seen: set[str] = set()
        ordered: list[str] = []
        for ref in refs:
            if ref and ref not in seen:
                seen.add(ref)
                ordered.append(ref)
        return ordered

