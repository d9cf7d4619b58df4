"""Command-line entry point: plan, dry-run, inspect rules and serve the API."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from rich.console import Console
from rich.markup import escape

from .config import EngineSettings, RuleSet, load_config
from .errors import ExecutionSurfaceUnavailable, RuleConfigError
from .io_utils import _atomic_write_json, _dump_yaml, _load_data_with_error
from .logging_utils import configure_logging
from .orchestrator import TodoOrchestrator
from .planner import render_plan, render_task_table
from .session import Session
from .surface import ScriptedSurface


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).expanduser().read_text(encoding="utf-8")


def _read_optional(path: Optional[str]) -> Optional[str]:
    return _read_input(path) if path else None


def _load(args: argparse.Namespace) -> tuple[RuleSet, EngineSettings]:
    if args.config:
        return load_config(Path(args.config).expanduser())
    return load_config(project_dir=Path.cwd())


def _scripted_factory(script_path: Optional[str]):
    data: dict[str, Any] = {}
    if script_path:
        data, err = _load_data_with_error(Path(script_path).expanduser(), {})
        if err:
            raise RuleConfigError(err)

    def _factory(session: Session) -> ScriptedSurface:
        return ScriptedSurface(
            session.signals,
            scripts=data.get("tasks") or {},
            on_instruction=data.get("on_instruction", "working on it"),
            on_probe=data.get("on_probe", "yes, done"),
        )

    return _factory


def _plan(args: argparse.Namespace) -> int:
    rules, settings = _load(args)
    orchestrator = TodoOrchestrator(rules, settings)
    session = orchestrator.prepare(_read_input(args.input), _read_optional(args.context), max_parallel=args.max_parallel)
    if args.json:
        sys.stdout.write(json.dumps(session.snapshot(), indent=2) + "\n")
        return 0
    console = Console()
    console.print(render_task_table(list(session.tasks.values())), markup=False, highlight=False)
    if session.plan is not None:
        console.print(render_plan(session.plan, session.tasks), markup=False, highlight=False)
    for warning in session.warnings:
        console.print(f"[yellow]warning[/yellow] {warning.kind.value}: {warning.message}")
    return 0


def _run(args: argparse.Namespace) -> int:
    rules, settings = _load(args)
    if args.timeout is not None:
        settings = EngineSettings.from_dict({**settings.to_dict(), "confirmation_timeout_seconds": args.timeout})
    orchestrator = TodoOrchestrator(rules, settings, surface_factory=_scripted_factory(args.script))
    session = orchestrator.prepare(_read_input(args.input), _read_optional(args.context), max_parallel=args.max_parallel)
    try:
        report = orchestrator.execute(session)
    except ExecutionSurfaceUnavailable as exc:
        sys.stderr.write(f"Execution surface unavailable: {exc}\n")
        return 2
    if args.output:
        _atomic_write_json(Path(args.output).expanduser(), report.to_dict())
    if args.json:
        sys.stdout.write(json.dumps(report.to_dict(), indent=2) + "\n")
    else:
        console = Console()
        console.print(render_plan(session.plan, session.tasks, title="Execution Report"), markup=False, highlight=False)
        for entry in report.failed:
            console.print(f"[red]failed[/red] {entry['id']}: {escape(str(entry['reason']))} ({escape(str(entry['detail']))})")
        for warning in report.warnings:
            console.print(f"[yellow]warning[/yellow] {warning['kind']}: {escape(warning['message'])}")
    return 0 if report.success else 1


def _rules(args: argparse.Namespace) -> int:
    rules, settings = _load(args)
    sys.stdout.write(_dump_yaml({"rules": rules.to_dict(), "engine": settings.to_dict()}))
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    rules, settings = _load(args)
    app = create_app(TodoOrchestrator(rules, settings))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="todo-autopilot", description="Plan and drive free-text TODO lists")
    parser.add_argument("--log-level", default="WARNING", help="loguru level for stderr logging")
    parser.add_argument("--config", help="Config file (defaults to .autopilot/config.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_input(p: argparse.ArgumentParser) -> None:
        p.add_argument("input", help="Task list file, or - for stdin")
        p.add_argument("--context", help="Framework context file (YAML mapping or plain rules)")
        p.add_argument("--max-parallel", type=int, default=None)
        p.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    plan = sub.add_parser("plan", help="Extract, map and plan a task list")
    _add_input(plan)
    plan.set_defaults(func=_plan)

    run = sub.add_parser("run", help="Execute a task list against a scripted surface")
    _add_input(run)
    run.add_argument("--script", help="YAML replies: on_instruction, on_probe, tasks: {task-1: [...]}")
    run.add_argument("--timeout", type=float, default=None, help="Confirmation timeout in seconds")
    run.add_argument("--output", help="Write the session report JSON here")
    run.set_defaults(func=_run)

    rules = sub.add_parser("rules", help="Print the effective rule tables as YAML")
    rules.set_defaults(func=_rules)

    serve = sub.add_parser("serve", help="Serve the session API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8077)
    serve.set_defaults(func=_serve)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    try:
        return args.func(args)
    except RuleConfigError as exc:
        logger.error("Invalid configuration: {}", exc)
        sys.stderr.write(f"Invalid configuration: {exc}\n")
        return 2
    except OSError as exc:
        sys.stderr.write(f"{exc}\n")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
