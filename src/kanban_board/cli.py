from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import uvicorn
from loguru import logger
from rich.console import Console
from rich.table import Table

from .board.engine import BoardEngine
from .board.model import BoardValidationError, Priority
from .client import HttpBoardRemote, LocalBoardRemote, OptimisticBoard, RemoteError
from .client.remote import BoardRemote
from .config import get_client_config, get_log_level, get_server_config, load_board_config
from .constants import ENV_PROJECT_DIR, STATE_DIR_NAME
from .logging_utils import configure_logging, pretty
from .server import create_app

PRIORITY_CHOICES = [p.value for p in Priority]
PRIORITY_STYLES = {"low": "green", "medium": "yellow", "high": "red"}

Action = Callable[[OptimisticBoard], Awaitable[Any]]


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _load_config(args: argparse.Namespace) -> dict[str, Any]:
    config, err = load_board_config(_resolve_project_dir(args.project_dir))
    if err:
        logger.warning("Ignoring invalid config: {}", err)
    return config


def _make_remote(args: argparse.Namespace) -> BoardRemote:
    client_cfg = get_client_config(_load_config(args))
    if args.api_url:
        return HttpBoardRemote(args.api_url, timeout=client_cfg["timeout"])
    if client_cfg["remote"]:
        return HttpBoardRemote(client_cfg["api_url"], timeout=client_cfg["timeout"])
    state_dir = _resolve_project_dir(args.project_dir) / STATE_DIR_NAME
    return LocalBoardRemote(BoardEngine(state_dir))


def _write_json(payload: Any) -> None:
    sys.stdout.write(pretty(payload) + "\n")


async def _session(args: argparse.Namespace, action: Action) -> int:
    """Load the board, run *action*, wait for its writes, and report the outcome."""
    board = OptimisticBoard(_make_remote(args))
    try:
        await board.load()
        if not board.state.ready:
            sys.stderr.write("Could not load the board\n")
            return 1
        payload = await action(board)
        await board.drain()
    except BoardValidationError as exc:
        sys.stderr.write(f"Invalid input: {exc}\n")
        return 1
    except RemoteError as exc:
        sys.stderr.write(f"Remote error: {exc}\n")
        return 1
    finally:
        await board.aclose()

    errors = [n.message for n in board.notices if n.level == "error"]
    if errors:
        for message in errors:
            sys.stderr.write(message + "\n")
        return 1
    if payload is not None:
        _write_json(payload)
    return 0


def _run(args: argparse.Namespace, action: Action) -> int:
    return asyncio.run(_session(args, action))


# ---------------------------------------------------------------------------
# Board-wide commands
# ---------------------------------------------------------------------------

def _server(args: argparse.Namespace) -> int:
    server_cfg = get_server_config(_load_config(args))
    host = args.host or server_cfg["host"]
    port = args.port or server_cfg["port"]
    project_dir = _resolve_project_dir(args.project_dir)
    if args.reload:
        # The reloader re-imports the app, so the project dir travels via the environment.
        os.environ[ENV_PROJECT_DIR] = str(project_dir)
        uvicorn.run("kanban_board.server.api:create_app", factory=True, host=host, port=port, reload=True)
        return 0
    app = create_app(project_dir=project_dir)
    uvicorn.run(app, host=host, port=port)
    return 0


def _state(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        return {
            "projects": [p.to_dict() for p in board.state.ordered_projects()],
            "tasks": [t.to_dict() for t in board.state.tasks],
        }

    return _run(args, action)


def _board(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> None:
        board.set_filters(query=args.query, priority=args.priority, status=args.status)
        console = Console()
        for project in board.state.ordered_projects():
            table = Table(title=f"{project.title} ({project.id})")
            table.add_column("Pos", justify="right")
            table.add_column("ID", style="dim")
            table.add_column("Title")
            table.add_column("Priority")
            table.add_column("Done", justify="center")
            for task in board.visible_tasks(project.id):
                priority = task.priority.value
                table.add_row(
                    f"{task.position:g}",
                    task.id,
                    task.title,
                    f"[{PRIORITY_STYLES[priority]}]{priority}[/]",
                    "x" if task.done else "",
                )
            console.print(table)
        return None

    return _run(args, action)


def _export(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> Optional[dict[str, Any]]:
        text = await board.export_backup()
        if args.output:
            Path(args.output).write_text(text + "\n", encoding="utf-8")
            return {"output": args.output, **board.summary()}
        sys.stdout.write(text + "\n")
        return None

    return _run(args, action)


def _import(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        sys.stderr.write(f"Cannot read {path}: {exc}\n")
        return 1

    async def action(board: OptimisticBoard) -> dict[str, Any]:
        await board.import_backup(text)
        return board.summary()

    return _run(args, action)


def _summary(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        return board.summary()

    return _run(args, action)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def _project_add(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        project_id = board.add_project(args.title).last_used_project_id
        await board.drain()
        project = board.get_project(project_id)
        return {"project": project.to_dict() if project else None}

    return _run(args, action)


def _project_rename(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        board.rename_project(args.project_id, args.title)
        await board.drain()
        project = board.get_project(args.project_id)
        return {"project": project.to_dict() if project else None}

    return _run(args, action)


def _project_move(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        board.reorder_projects(args.active_id, args.over_id)
        await board.drain()
        return {"projects": [p.to_dict() for p in board.state.ordered_projects()]}

    return _run(args, action)


def _project_delete(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        existed = board.get_project(args.project_id) is not None
        board.delete_project(args.project_id)
        return {"removed": existed, "project_id": args.project_id}

    return _run(args, action)


def _project_rebalance(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        state = await board.rebalance_projects()
        return {"projects": [p.to_dict() for p in state.ordered_projects()]}

    return _run(args, action)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def _task_add(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        state = board.add_task(
            args.project_id,
            args.title,
            description=args.description,
            priority=args.priority,
        )
        task_id = state.tasks[-1].id
        await board.drain()
        task = board.state.task(task_id)
        return {"task": task.to_dict() if task else None}

    return _run(args, action)


def _task_move(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        board.reorder_tasks(args.active_id, args.over_id)
        await board.drain()
        task = board.state.task(args.active_id)
        return {"task": task.to_dict() if task else None}

    return _run(args, action)


def _task_toggle(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        board.toggle_task(args.task_id)
        await board.drain()
        task = board.state.task(args.task_id)
        return {"task": task.to_dict() if task else None}

    return _run(args, action)


def _task_delete(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        existed = board.state.task(args.task_id) is not None
        board.delete_task(args.task_id)
        return {"removed": existed, "task_id": args.task_id}

    return _run(args, action)


def _task_rebalance(args: argparse.Namespace) -> int:
    async def action(board: OptimisticBoard) -> dict[str, Any]:
        state = await board.rebalance_tasks(args.project_id, done=args.done)
        bucket = sorted(
            (t for t in state.tasks if t.project_id == args.project_id and t.done == args.done),
            key=lambda t: t.position,
        )
        return {"tasks": [t.to_dict() for t in bucket]}

    return _run(args, action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kanban board CLI")
    parser.add_argument("--project-dir", default=None, help="Board project directory (default: current working directory)")
    parser.add_argument("--api-url", default=None, help="Talk to a running board API instead of the local store")
    parser.add_argument("--log-level", default=None, help="Log level (default: config or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Start the board API server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", default=None, type=int)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=_server)

    state = subparsers.add_parser("state", help="Print the whole board as JSON")
    state.set_defaults(func=_state)

    board = subparsers.add_parser("board", help="Render the board as tables")
    board.add_argument("--query", default="")
    board.add_argument("--priority", default="all", choices=["all", *PRIORITY_CHOICES])
    board.add_argument("--status", default="all", choices=["all", "active", "done"])
    board.set_defaults(func=_board)

    export = subparsers.add_parser("export", help="Export the board as a versioned JSON document")
    export.add_argument("--output", default=None)
    export.set_defaults(func=_export)

    imp = subparsers.add_parser("import", help="Replace the board with an export document")
    imp.add_argument("file")
    imp.set_defaults(func=_import)

    summary = subparsers.add_parser("summary", help="Show project and task counts")
    summary.set_defaults(func=_summary)

    project = subparsers.add_parser("project", help="Manage projects")
    project_sub = project.add_subparsers(dest="project_cmd", required=True)
    padd = project_sub.add_parser("add", help="Create a project")
    padd.add_argument("title")
    padd.set_defaults(func=_project_add)
    prename = project_sub.add_parser("rename", help="Rename a project")
    prename.add_argument("project_id")
    prename.add_argument("title")
    prename.set_defaults(func=_project_rename)
    pmove = project_sub.add_parser("move", help="Move a project into another project's slot")
    pmove.add_argument("active_id")
    pmove.add_argument("over_id")
    pmove.set_defaults(func=_project_move)
    pdelete = project_sub.add_parser("delete", help="Delete a project and its tasks")
    pdelete.add_argument("project_id")
    pdelete.set_defaults(func=_project_delete)
    prebalance = project_sub.add_parser("rebalance", help="Renumber project positions")
    prebalance.set_defaults(func=_project_rebalance)

    task = subparsers.add_parser("task", help="Manage tasks")
    task_sub = task.add_subparsers(dest="task_cmd", required=True)
    tadd = task_sub.add_parser("add", help="Create a task")
    tadd.add_argument("project_id")
    tadd.add_argument("title")
    tadd.add_argument("--description", default=None)
    tadd.add_argument("--priority", default="medium", choices=PRIORITY_CHOICES)
    tadd.set_defaults(func=_task_add)
    tmove = task_sub.add_parser("move", help="Move a task into another task's slot")
    tmove.add_argument("active_id")
    tmove.add_argument("over_id")
    tmove.set_defaults(func=_task_move)
    ttoggle = task_sub.add_parser("toggle", help="Mark a task done or active")
    ttoggle.add_argument("task_id")
    ttoggle.set_defaults(func=_task_toggle)
    tdelete = task_sub.add_parser("delete", help="Delete a task")
    tdelete.add_argument("task_id")
    tdelete.set_defaults(func=_task_delete)
    trebalance = task_sub.add_parser("rebalance", help="Renumber one task bucket")
    trebalance.add_argument("project_id")
    trebalance.add_argument("--done", action="store_true")
    trebalance.set_defaults(func=_task_rebalance)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or get_log_level(_load_config(args)))
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == "__main__":
    sys.exit(main())
