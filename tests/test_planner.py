"""Tests for prioritizer and execution planner."""

from __future__ import annotations

import pytest

from todo_autopilot.categorizer import Categorizer
from todo_autopilot.dependencies import DependencyMapper
from todo_autopilot.extraction import TaskExtractor
from todo_autopilot.graph import TaskGraph
from todo_autopilot.models import Task
from todo_autopilot.planner import ExecutionPlanner, render_plan, render_task_table
from todo_autopilot.prioritizer import Prioritizer


def _prepared(text: str) -> tuple[list[Task], TaskGraph]:
    tasks = Categorizer().apply(TaskExtractor().extract(text))
    graph = DependencyMapper().map_dependencies(tasks).graph
    Prioritizer().prioritize(graph, tasks)
    return tasks, graph


def _independent(count: int) -> tuple[list[Task], TaskGraph]:
    tasks = [Task(id=f"task-{i}", raw_text=f"item {i}") for i in range(1, count + 1)]
    return tasks, TaskGraph(t.id for t in tasks)


# ---------------------------------------------------------------------------
# Prioritizer
# ---------------------------------------------------------------------------


class TestPrioritizer:
    """Test composite priority scoring."""

    def test_factors_are_normalized(self):
        tasks, _ = _prepared(
            "- refactor the entire payment system and migrate auth\n- fix typo in readme\n- add red button"
        )

        for task in tasks:
            assert set(task.score_factors) == {"dependency", "value", "complexity", "risk"}
            assert all(0.0 <= v <= 1.0 for v in task.score_factors.values())
            assert 0.0 <= task.priority_score <= 1.0
            assert task.estimated_duration > 0

    def test_scores_are_deterministic(self):
        text = "TODO: create database schema, then create API endpoint, then add red button"
        first, _ = _prepared(text)
        second, _ = _prepared(text)

        assert [t.priority_score for t in first] == [t.priority_score for t in second]

    def test_blocking_task_outranks_its_dependent(self):
        tasks, _ = _prepared("TODO: create database schema, then add red button")

        assert tasks[0].score_factors["dependency"] > tasks[1].score_factors["dependency"]

    def test_sort_is_stable_for_ties(self):
        tasks, graph = _independent(3)

        ordered = Prioritizer().prioritize(graph, tasks)

        assert [t.id for t in ordered] == ["task-1", "task-2", "task-3"]

    def test_simple_tasks_score_higher_complexity_factor(self):
        prioritizer = Prioritizer()

        assert prioritizer.complexity_factor("simple rename") > prioritizer.complexity_factor("refactor entire system")
        assert prioritizer.risk_factor("update docs") > prioritizer.risk_factor("drop production schema")


# ---------------------------------------------------------------------------
# ExecutionPlanner
# ---------------------------------------------------------------------------


class TestExecutionPlanner:
    """Test phase layering."""

    def test_chain_becomes_sequential_phases(self):
        tasks, graph = _prepared("TODO: create database schema, then create API endpoint, then add red button")

        plan = ExecutionPlanner().plan(tasks, graph, 3)

        assert [p.task_ids for p in plan.phases] == [("task-1",), ("task-2",), ("task-3",)]
        assert plan.validate({t.id: t.dependencies for t in tasks}) == []

    def test_independent_tasks_share_a_phase(self):
        tasks, graph = _prepared("- add red button\n- style the login form")

        plan = ExecutionPlanner().plan(tasks, graph, 3)

        assert len(plan.phases) == 1
        assert set(plan.phases[0].task_ids) == {"task-1", "task-2"}

    def test_wide_rounds_are_chunked_by_priority(self):
        tasks, graph = _independent(5)
        for task, score in zip(tasks, [0.1, 0.9, 0.5, 0.9, 0.3]):
            task.priority_score = score

        plan = ExecutionPlanner().plan(tasks, graph, 2)

        assert [p.task_ids for p in plan.phases] == [("task-2", "task-4"), ("task-3", "task-5"), ("task-1",)]
        assert plan.validate({}) == []

    def test_every_task_planned_exactly_once(self):
        tasks, graph = _prepared(
            "- deploy to staging\n- create orders table\n- add orders api endpoint\n- add orders page\n- write readme"
        )

        plan = ExecutionPlanner().plan(tasks, graph, 2)

        assert sorted(plan.task_ids) == sorted(t.id for t in tasks)
        assert plan.validate({t.id: t.dependencies for t in tasks}) == []
        assert plan.phase_of("task-1") == len(plan.phases) - 1

    def test_empty_task_list(self):
        plan = ExecutionPlanner().plan([], TaskGraph(), 3)

        assert plan.phases == ()

    def test_rejects_non_positive_parallelism(self):
        tasks, graph = _independent(2)

        with pytest.raises(ValueError):
            ExecutionPlanner().plan(tasks, graph, 0)

    def test_validate_reports_violations(self):
        tasks, graph = _independent(2)
        plan = ExecutionPlanner().plan(tasks, graph, 2)

        problems = plan.validate({"task-1": {"task-2"}})

        assert problems == ["task-1 (phase 0) depends on task-2 (phase 0)"]


def test_render_plan_and_table() -> None:
    tasks, graph = _prepared("TODO: create database schema, then add [red] button")
    plan = ExecutionPlanner().plan(tasks, graph, 3)

    text = render_plan(plan, {t.id: t for t in tasks})
    table = render_task_table(tasks)

    assert "Phase 1" in text
    assert "Phase 2" in text
    assert "add [red] button" in text
    assert "after task-1" in text
    assert "task-2" in table
