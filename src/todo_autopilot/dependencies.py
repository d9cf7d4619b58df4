"""Infer ordering edges between tasks and break any cycles deterministically.

Passes run in a fixed order:

1. explicit cues ("after X", "requires X", "depends on X", "before X") and
   sequencing hints recorded by the extractor;
2. category-order rules from the rule table (database before backend, tests
   after the work they reference, deployment last, ...);
3. shared-entity overlap, ordered by category rank.

Heuristic passes never add an edge that would close a cycle with edges that
already exist, so cycles can only come from explicit cues. Each remaining
cycle is broken by dropping the edge from its largest id to its smallest id
(or, when that edge is absent, the cycle edge leaving the largest id) and is
reported as a ``cycle_broken`` warning.
"""

from __future__ import annotations

import difflib
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from .config import RuleSet
from .constants import CATEGORY_EDGE_WEIGHT, ENTITY_EDGE_WEIGHT
from .context import ProjectContext
from .graph import Edge, TaskGraph
from .models import Category, PlanWarning, Task, WarningKind
from .utils import natural_key, normalize_text, significant_words

_TASK_ID_RE = re.compile(r"\btask-\d+\b", re.IGNORECASE)
_LEADING_FILLER_RE = re.compile(r"^(?:the|a|an|we|task|step|to)\s+", re.IGNORECASE)
_REFERENCE_FILLER = {
    "ready", "done", "complete", "completed", "finished", "pass", "passe", "work", "working",
    "exist", "available", "merged", "implemented", "first", "been", "has", "have",
}


@dataclass
class MappingResult:
    graph: TaskGraph
    warnings: list[PlanWarning] = field(default_factory=list)

    @property
    def stats(self) -> dict[str, Any]:
        kinds = Counter(edge.kind for edge in self.graph.edges())
        return {
            "tasks": len(self.graph),
            "edges": sum(kinds.values()),
            "by_kind": dict(sorted(kinds.items())),
            "cycles_broken": sum(1 for w in self.warnings if w.kind == WarningKind.CYCLE_BROKEN),
        }


class DependencyMapper:
    """Build the task graph from cues, category rules and shared entities."""

    def __init__(self, rules: Optional[RuleSet] = None) -> None:
        self.rules = rules or RuleSet()
        self._forward_re = self._cue_regex(self.rules.forward_cues)
        self._reverse_re = self._cue_regex(self.rules.reverse_cues)

    @staticmethod
    def _cue_regex(cues: list[str]) -> Optional[re.Pattern[str]]:
        if not cues:
            return None
        alternatives = "|".join(
            r"\s+".join(re.escape(part) for part in cue.split())
            for cue in sorted(cues, key=len, reverse=True)
        )
        return re.compile(
            rf"(?<![a-z0-9])(?:{alternatives})\s*:?\s+(?P<ref>.+?)"
            r"(?=$|[,.;]|\s+(?:and\s+)?then\b|\s+(?:before|after|once)\b)",
            re.IGNORECASE,
        )

    def map_dependencies(self, tasks: list[Task], project_context: Optional[ProjectContext] = None) -> MappingResult:
        graph = TaskGraph(task.id for task in tasks)
        words = {task.id: significant_words(task.text, self.rules.ignore_words) for task in tasks}

        self._explicit_pass(graph, tasks)
        self._category_pass(graph, tasks, words)
        self._entity_pass(graph, tasks, words)
        warnings = self._break_cycles(graph)

        for task in tasks:
            task.dependencies = graph.dependencies_of(task.id)

        result = MappingResult(graph=graph, warnings=warnings)
        stats = result.stats
        logger.info(
            "Mapped {} dependencies across {} tasks ({} cycle(s) broken)",
            stats["edges"],
            stats["tasks"],
            stats["cycles_broken"],
        )
        return result

    # ------------------------------------------------------------------
    # Pass 1: explicit cues
    # ------------------------------------------------------------------

    def _explicit_pass(self, graph: TaskGraph, tasks: list[Task]) -> None:
        for task in tasks:
            follows = task.hints.get("follows")
            if follows:
                graph.add_edge(follows, task.id, kind="sequence", reason="listed in sequence")

            text = task.text
            for regex, reverse in ((self._forward_re, False), (self._reverse_re, True)):
                if regex is None:
                    continue
                for m in regex.finditer(text):
                    phrase = m.group("ref").strip()
                    ref_id = self.resolve_reference(phrase, tasks, exclude_id=task.id)
                    if ref_id is None:
                        logger.debug("Unresolved reference in {}: {!r}", task.id, phrase)
                        continue
                    cue = m.group(0)[: m.start("ref") - m.start(0)].strip()
                    if reverse:
                        graph.add_edge(task.id, ref_id, kind="explicit", reason=f"{cue} {phrase}")
                    else:
                        graph.add_edge(ref_id, task.id, kind="explicit", reason=f"{cue} {phrase}")

    def resolve_reference(self, phrase: str, tasks: list[Task], exclude_id: Optional[str] = None) -> Optional[str]:
        """Fuzzy-match a referenced phrase to another task.

        Tries, in order: a literal task id, substring containment, significant
        word overlap, then a ``difflib`` similarity ratio above the threshold.
        """
        candidates = [t for t in tasks if t.id != exclude_id]
        if not candidates or not phrase.strip():
            return None

        id_match = _TASK_ID_RE.search(phrase)
        if id_match:
            wanted = id_match.group(0).lower()
            for task in candidates:
                if task.id.lower() == wanted:
                    return task.id

        cleaned = normalize_text(phrase)
        while True:
            stripped = _LEADING_FILLER_RE.sub("", cleaned)
            if stripped == cleaned:
                break
            cleaned = stripped
        if not cleaned:
            return None

        substring_hits = []
        for task in candidates:
            other = normalize_text(task.text)
            if cleaned in other or (len(other) >= 3 and other in cleaned):
                ratio = difflib.SequenceMatcher(None, cleaned, other).ratio()
                substring_hits.append((-ratio, natural_key(task.id), task.id))
        if substring_hits:
            return min(substring_hits)[2]

        phrase_words = significant_words(cleaned, self.rules.ignore_words) - _REFERENCE_FILLER
        if phrase_words:
            overlap_hits = []
            for task in candidates:
                shared = phrase_words & significant_words(task.text, self.rules.ignore_words)
                if shared and len(shared) / len(phrase_words) >= 0.5:
                    overlap_hits.append((-len(shared), natural_key(task.id), task.id))
            if overlap_hits:
                return min(overlap_hits)[2]

        best: Optional[tuple[float, tuple, str]] = None
        for task in candidates:
            ratio = difflib.SequenceMatcher(None, cleaned, normalize_text(task.text)).ratio()
            if ratio >= self.rules.fuzzy_threshold and (best is None or (-ratio, natural_key(task.id)) < best[:2]):
                best = (-ratio, natural_key(task.id), task.id)
        return best[2] if best else None

    # ------------------------------------------------------------------
    # Pass 2: category-order rules
    # ------------------------------------------------------------------

    def _category_pass(self, graph: TaskGraph, tasks: list[Task], words: dict[str, set[str]]) -> None:
        for rule in self.rules.category_rules:
            after_cat = Category(rule["after"])
            before_name = rule["before"]
            requires_overlap = bool(rule.get("requires_overlap", True))
            after_rank = self.rules.rank(after_cat)
            for later in tasks:
                if later.category != after_cat:
                    continue
                for earlier in tasks:
                    if earlier.id == later.id:
                        continue
                    if before_name == "*":
                        if earlier.category == after_cat or self.rules.rank(earlier.category) >= after_rank:
                            continue
                    elif earlier.category.value != before_name:
                        continue
                    shared = words[earlier.id] & words[later.id]
                    if requires_overlap and not shared:
                        continue
                    reason = f"{earlier.category.value} before {after_cat.value}"
                    if shared:
                        reason += f" (shared: {', '.join(sorted(shared))})"
                    self._add_weak_edge(graph, earlier.id, later.id, "category", CATEGORY_EDGE_WEIGHT, reason)

    # ------------------------------------------------------------------
    # Pass 3: shared entities
    # ------------------------------------------------------------------

    def _entity_pass(self, graph: TaskGraph, tasks: list[Task], words: dict[str, set[str]]) -> None:
        for i, first in enumerate(tasks):
            for second in tasks[i + 1:]:
                shared = words[first.id] & words[second.id]
                if not shared:
                    continue
                rank_a = self.rules.rank(first.category)
                rank_b = self.rules.rank(second.category)
                if rank_a == rank_b:
                    continue
                low, high = (first, second) if rank_a < rank_b else (second, first)
                reason = f"shared: {', '.join(sorted(shared))}"
                self._add_weak_edge(graph, low.id, high.id, "entity", ENTITY_EDGE_WEIGHT, reason)

    @staticmethod
    def _add_weak_edge(graph: TaskGraph, source: str, target: str, kind: str, weight: float, reason: str) -> bool:
        if graph.linked(source, target) or graph.reaches(target, source):
            return False
        return graph.add_edge(source, target, kind=kind, weight=weight, reason=reason)

    # ------------------------------------------------------------------
    # Cycle breaking
    # ------------------------------------------------------------------

    def _break_cycles(self, graph: TaskGraph) -> list[PlanWarning]:
        warnings: list[PlanWarning] = []
        while True:
            cycle = graph.find_cycle()
            if cycle is None:
                return warnings
            removed = self._break_cycle(graph, cycle)
            logger.warning(
                "Dependency cycle {} broken by removing {} -> {}",
                " -> ".join(cycle),
                removed.source,
                removed.target,
            )
            warnings.append(
                PlanWarning(
                    kind=WarningKind.CYCLE_BROKEN,
                    message=f"cycle {' -> '.join(cycle)} broken by removing {removed.source} -> {removed.target}",
                    task_ids=list(dict.fromkeys(cycle)),
                    data={"cycle": cycle, "removed_edge": removed.to_dict()},
                )
            )

    @staticmethod
    def _break_cycle(graph: TaskGraph, cycle: list[str]) -> Edge:
        members = cycle[:-1]
        largest = max(members, key=natural_key)
        smallest = min(members, key=natural_key)
        if graph.has_edge(largest, smallest):
            target = smallest
        else:
            target = members[(members.index(largest) + 1) % len(members)]
        edge = graph.remove_edge(largest, target)
        if edge is None:
            raise RuntimeError(f"cycle edge {largest} -> {target} is not in the graph")
        return edge
