"""Composite priority scoring.

``score = w_dep * dependency + w_value * value + w_cx * complexity + w_risk * risk``
with every factor normalized to ``[0, 1]``. Results are sorted by descending
score with ties kept in insertion order.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .config import RuleSet
from .constants import (
    BASE_TASK_MINUTES,
    DEPENDENCY_IN_SHARE,
    DEPENDENCY_OUT_SHARE,
    KEYWORD_STEP,
    NEUTRAL_FACTOR,
)
from .graph import TaskGraph
from .models import Task
from .utils import clamp, count_keywords


class Prioritizer:
    def __init__(self, rules: Optional[RuleSet] = None) -> None:
        self.rules = rules or RuleSet()

    def dependency_factor(self, graph: TaskGraph, task_id: str) -> float:
        max_out = max((graph.out_degree(n) for n in graph.nodes), default=0)
        max_in = max((graph.in_degree(n) for n in graph.nodes), default=0)
        out_term = graph.out_degree(task_id) / max_out if max_out else 0.0
        in_term = (max_in - graph.in_degree(task_id)) / max_in if max_in else 1.0
        return clamp(DEPENDENCY_OUT_SHARE * out_term + DEPENDENCY_IN_SHARE * in_term)

    def value_factor(self, text: str) -> float:
        keywords = self.rules.high_value_keywords
        if not keywords:
            return 0.0
        return clamp(count_keywords(text, keywords) / len(keywords))

    @staticmethod
    def _adjusted(text: str, favourable: list[str], unfavourable: list[str]) -> float:
        score = NEUTRAL_FACTOR
        score += KEYWORD_STEP * count_keywords(text, favourable)
        score -= KEYWORD_STEP * count_keywords(text, unfavourable)
        return clamp(round(score, 6))

    def complexity_factor(self, text: str) -> float:
        return self._adjusted(text, self.rules.simple_keywords, self.rules.complex_keywords)

    def risk_factor(self, text: str) -> float:
        return self._adjusted(text, self.rules.low_risk_keywords, self.rules.high_risk_keywords)

    def score(self, graph: TaskGraph, task: Task) -> float:
        weights = self.rules.weights
        factors = {
            "dependency": self.dependency_factor(graph, task.id),
            "value": self.value_factor(task.text),
            "complexity": self.complexity_factor(task.text),
            "risk": self.risk_factor(task.text),
        }
        task.score_factors = {k: round(v, 4) for k, v in factors.items()}
        # Simpler tasks score higher, so duration grows as the factor drops.
        task.estimated_duration = round(BASE_TASK_MINUTES * (1.5 - factors["complexity"]) * 2, 1)
        return sum(weights[name] * value for name, value in factors.items())

    def prioritize(self, graph: TaskGraph, tasks: list[Task]) -> list[Task]:
        """Annotate ``priority_score`` on every task in ``graph`` and return them sorted descending."""
        scored = [task for task in tasks if task.id in graph]
        for task in scored:
            task.priority_score = round(self.score(graph, task), 6)
        ordered = sorted(scored, key=lambda t: -t.priority_score)
        logger.debug("Priority order: {}", ", ".join(f"{t.id}={t.priority_score:.3f}" for t in ordered))
        return ordered
