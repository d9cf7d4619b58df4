"""Tests for categorizer, refinement and validation."""

from __future__ import annotations

import pytest

from todo_autopilot.categorizer import Categorizer
from todo_autopilot.config import RuleSet
from todo_autopilot.context import FrameworkRules, ProjectContext
from todo_autopilot.models import Category, Task, TaskState
from todo_autopilot.validation import TaskRefiner, TaskValidator


def _task(text: str, task_id: str = "task-1", category: Category = Category.GENERAL) -> Task:
    return Task(id=task_id, raw_text=text, category=category)


# ---------------------------------------------------------------------------
# Categorizer
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text,expected",
    [
        ("create database schema", Category.DATABASE),
        ("create API endpoint", Category.BACKEND),
        ("add red button", Category.UI),
        ("write unit tests for the login flow", Category.TESTING),
        ("deploy to staging", Category.DEPLOYMENT),
        ("update the README", Category.DOCUMENTATION),
        ("add a users table migration", Category.DATABASE),
    ],
)
def test_pattern_categories(text: str, expected: Category) -> None:
    assert Categorizer().categorize(_task(text)) == expected


def test_latest_is_not_a_test_task() -> None:
    assert Categorizer().categorize(_task("show the latest button")) == Category.UI


def test_keyword_fallback() -> None:
    assert Categorizer().categorize(_task("make the login work again")) == Category.BACKEND
    assert Categorizer().categorize(_task("render nicer")) == Category.UI


def test_context_default_when_nothing_matches() -> None:
    categorizer = Categorizer()
    task = _task("tidy things")

    assert categorizer.categorize(task) == Category.GENERAL
    assert categorizer.categorize(task, ProjectContext(surfaces={"frontend"})) == Category.UI
    assert categorizer.categorize(task, ProjectContext(surfaces={"backend"})) == Category.BACKEND
    assert categorizer.categorize(task, ProjectContext(surfaces={"database"})) == Category.DATABASE


def test_custom_rule_table() -> None:
    rules = RuleSet(category_patterns=[["documentation", r"\bwiki\b"]], category_keywords={})
    categorizer = Categorizer(rules)

    assert categorizer.categorize(_task("refresh the wiki")) == Category.DOCUMENTATION
    assert categorizer.categorize(_task("add red button")) == Category.GENERAL


def test_categorizer_is_deterministic() -> None:
    tasks = [_task(t, f"task-{i}") for i, t in enumerate(["add red button", "create api", "tidy"], 1)]
    first = [t.category for t in Categorizer().apply(tasks)]
    second = [t.category for t in Categorizer().apply(tasks)]

    assert first == second


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


def test_refiner_applies_whole_word_substitutions() -> None:
    rules = FrameworkRules.from_context("substitutions:\n  db: postgres database\n  btn: button")
    task = _task("add db index for the btn   handler and dbx cleanup")

    TaskRefiner().refine(task, rules)

    assert task.refined_text == "add postgres database index for the button handler and dbx cleanup"
    assert task.raw_text == "add db index for the btn   handler and dbx cleanup"


def test_plain_text_context_is_guidance() -> None:
    rules = FrameworkRules.from_context("We use React with a FastAPI backend.\n- keep components small")

    assert rules.guidance == ["We use React with a FastAPI backend.", "keep components small"]
    assert ProjectContext.from_rules(rules).surfaces == {"frontend", "backend"}


def test_blank_context_is_default() -> None:
    assert FrameworkRules.from_context(None).is_default
    assert FrameworkRules.from_context("   \n").is_default


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, TaskState, object]] = []

    def __call__(self, task_id: str, target: TaskState, detail: object) -> bool:
        self.calls.append((task_id, target, detail))
        return True


class TestTaskValidator:
    """Test feasibility checks."""

    def test_accepts_without_declared_context(self):
        recorder = _Recorder()
        result = TaskValidator().validate(_task("add red button", category=Category.UI), ProjectContext(), recorder)

        assert result.accepted
        assert recorder.calls == [("task-1", TaskState.VALIDATED, None)]

    def test_rejects_missing_surface(self):
        recorder = _Recorder()
        context = ProjectContext(surfaces={"backend"})
        result = TaskValidator().validate(_task("add red button", category=Category.UI), context, recorder)

        assert not result.accepted
        assert "frontend" in result.reason
        assert recorder.calls[0][1] == TaskState.REJECTED

    def test_rejects_unknown_element(self):
        context = ProjectContext(elements={"LoginForm", "src/api/users.py"})

        known = TaskValidator().check(_task("fix `LoginForm` spacing and src/api/users.py"), context)
        unknown = TaskValidator().check(_task("fix `SignupForm` spacing"), context)

        assert known.accepted
        assert not unknown.accepted
        assert "SignupForm" in unknown.reason

    def test_framework_names_are_not_paths(self):
        context = ProjectContext(elements={"LoginForm"})

        assert TaskValidator().check(_task("set up ci/cd for next.js"), context).accepted

    def test_rejects_text_without_words(self):
        assert not TaskValidator().check(_task("123 !!!"), ProjectContext()).accepted
