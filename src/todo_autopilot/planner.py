"""Greedy layering of a prioritized task graph into execution phases."""

from __future__ import annotations

from typing import Optional

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .constants import DEFAULT_MAX_PARALLEL
from .graph import TaskGraph
from .models import ExecutionPlan, Phase, Task, TaskState
from .utils import sort_ids


class ExecutionPlanner:
    """Convert the task graph into ordered phases capped at ``max_parallel`` tasks."""

    def plan(self, tasks: list[Task], graph: TaskGraph, max_parallel: int = DEFAULT_MAX_PARALLEL) -> ExecutionPlan:
        """Build the plan.

        Each round collects every unscheduled task whose in-plan dependencies
        were all scheduled in earlier rounds. A round larger than
        ``max_parallel`` is split into consecutive sub-phases by descending
        priority (ties keep input order).

        Raises:
            ValueError: If ``max_parallel`` < 1 or the remaining tasks cannot be
                scheduled (only possible when the graph still has a cycle).
        """
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")

        planned_ids = [t.id for t in tasks]
        in_plan = set(planned_ids)
        priority = {t.id: t.priority_score for t in tasks}
        deps = {tid: graph.dependencies_of(tid) & in_plan for tid in planned_ids}

        scheduled: set[str] = set()
        phases: list[Phase] = []
        remaining = list(planned_ids)

        for _ in range(len(planned_ids)):
            if not remaining:
                break
            ready = [tid for tid in remaining if deps[tid] <= scheduled]
            if not ready:
                raise ValueError(f"Failed to schedule tasks: {remaining}")
            ready.sort(key=lambda tid: -priority[tid])
            for start in range(0, len(ready), max_parallel):
                chunk = tuple(ready[start:start + max_parallel])
                phases.append(Phase(index=len(phases), task_ids=chunk))
            scheduled.update(ready)
            remaining = [tid for tid in remaining if tid not in scheduled]

        if remaining:
            raise ValueError(f"Failed to schedule tasks: {remaining}")

        plan = ExecutionPlan(phases=tuple(phases), max_parallel=max_parallel)
        logger.info(
            "Execution plan: {} task(s) in {} phase(s), max parallelism {}",
            len(planned_ids),
            len(phases),
            max((len(p.task_ids) for p in phases), default=0),
        )
        return plan


_STATE_STYLE = {
    TaskState.COMPLETED: "[green]✓ completed[/green]",
    TaskState.FAILED: "[red]✗ failed[/red]",
    TaskState.CANCELLED: "[yellow]cancelled[/yellow]",
    TaskState.REJECTED: "[red]rejected[/red]",
    TaskState.EXECUTING: "[cyan]executing[/cyan]",
    TaskState.AWAITING_CONFIRMATION: "[cyan]awaiting confirmation[/cyan]",
}


def render_plan(plan: ExecutionPlan, tasks: dict[str, Task], title: Optional[str] = None) -> str:
    """Render the plan as a phase tree.

    Args:
        plan: Execution plan.
        tasks: Task lookup by id.
        title: Optional heading.

    Returns:
        Plain-text rendering.
    """
    console = Console(record=True, width=100)
    tree = Tree(f"[bold]{title or 'Execution Plan'}[/bold]")
    for phase in plan.phases:
        branch = tree.add(f"[bold cyan]Phase {phase.index + 1}[/bold cyan] ({len(phase.task_ids)} task(s) in parallel)")
        for tid in phase.task_ids:
            task = tasks.get(tid)
            if task is None:
                branch.add(tid)
                continue
            label = f"{tid} [dim]\\[{task.category.value}, {task.priority_score:.3f}][/dim] {escape(task.raw_text[:60])}"
            if task.dependencies:
                label += f" [dim](after {', '.join(sort_ids(task.dependencies))})[/dim]"
            status = _STATE_STYLE.get(task.state)
            if status:
                label += f" {status}"
            branch.add(label)
    console.print(tree)
    return console.export_text()


def render_task_table(tasks: list[Task]) -> str:
    console = Console(record=True, width=120)
    table = Table(title="Tasks", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Category")
    table.add_column("Score", justify="right")
    table.add_column("State", style="bold")
    table.add_column("Text")
    table.add_column("Detail", style="red")
    for task in tasks:
        table.add_row(
            task.id,
            task.category.value,
            f"{task.priority_score:.3f}",
            task.state.value,
            escape(task.raw_text[:50]),
            escape((task.detail or "")[:40]),
        )
    console.print(table)
    return console.export_text()
