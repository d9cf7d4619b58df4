"""Rule-table driven task categorization."""

from __future__ import annotations

from typing import Optional

from .config import RuleSet
from .context import ProjectContext
from .models import Category, Task
from .utils import keyword_pattern


class Categorizer:
    """Assign a category: ordered patterns, then keyword sets, then a context default.

    Pure and deterministic for a given rule set.
    """

    def __init__(self, rules: Optional[RuleSet] = None) -> None:
        self.rules = rules or RuleSet()
        self._patterns = self.rules.compiled_patterns()

    def categorize(self, task: Task, project_context: Optional[ProjectContext] = None) -> Category:
        text = task.text
        for category, pattern in self._patterns:
            if pattern.search(text):
                return category
        for name, keywords in self.rules.category_keywords.items():
            if any(keyword_pattern(kw).search(text) for kw in keywords):
                return Category(name)
        return self.default_for(project_context)

    @staticmethod
    def default_for(project_context: Optional[ProjectContext]) -> Category:
        if project_context is None:
            return Category.GENERAL
        if project_context.has_frontend:
            return Category.UI
        if project_context.has_backend:
            return Category.BACKEND
        if "database" in project_context.surfaces:
            return Category.DATABASE
        return Category.GENERAL

    def apply(self, tasks: list[Task], project_context: Optional[ProjectContext] = None) -> list[Task]:
        for task in tasks:
            task.category = self.categorize(task, project_context)
        return tasks
