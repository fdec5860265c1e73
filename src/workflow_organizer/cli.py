from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from .config import load_organizer_config
from .errors import OrganizerError
from .locator import Locator
from .model import ItemPriority, ItemStatus
from .organizer import Organizer

TOKEN_ENV = "WORKFLOW_ORGANIZER_TOKEN"


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')


def _token(args: argparse.Namespace) -> Optional[str]:
    return args.token or os.environ.get(TOKEN_ENV)


def _target_locator(organizer: Organizer, args: argparse.Namespace) -> Locator:
    if args.collection:
        if args.space:
            base = Locator.collection(args.space, args.collection, args.group)
        else:
            base = organizer.tree.collection_locator(args.collection)
        if args.status:
            return Locator.status_column(base.space_id or '', base.collection_id or '', args.status, base.group_id)
        return base
    if not args.space:
        raise ValueError("A move target needs --space or --collection")
    if args.group:
        return Locator.group(args.space, args.group)
    return Locator.space(args.space)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _render_outline(organizer: Organizer) -> None:
    console = Console()
    root = Tree("[bold]Workspace[/bold]")
    for space in organizer.outline():
        marker = "▾" if space["is_open"] else "▸"
        branch = root.add(f"{marker} [bold]{space['name']}[/bold] [dim]{space['id']}[/dim]")
        for group in space["groups"]:
            gmarker = "▾" if group["is_open"] else "▸"
            gbranch = branch.add(f"{gmarker} {group['name']} [dim]{group['id']}[/dim]")
            for col in group["collections"]:
                gbranch.add(f"{col['name']} ({col['count']}) [dim]{col['id']}[/dim]")
        for col in space["collections"]:
            branch.add(f"{col['name']} ({col['count']}) [dim]{col['id']}[/dim]")
    console.print(root)


def _render_board(board: dict[str, Any]) -> None:
    console = Console()
    table = Table(title=board["collection"]["name"])
    for column in board["columns"]:
        table.add_column(f"{column['label']} ({column['count']})")
    depth = max((len(c["items"]) for c in board["columns"]), default=0)
    for row in range(depth):
        table.add_row(*[
            c["items"][row]["title"] if row < len(c["items"]) else ""
            for c in board["columns"]
        ])
    console.print(table)


def _render_pipeline(board: dict[str, Any]) -> None:
    console = Console()
    table = Table(title=f"Pipeline ({board['count']} active, {board['archived_count']} archived)")
    table.add_column("#", justify="right")
    table.add_column("Stage")
    table.add_column("Items", justify="right")
    table.add_column("Cards")
    for column in board["columns"]:
        table.add_row(
            str(column["number"]),
            column["short_title"],
            str(column["count"]),
            ", ".join(f"{i['display_title']} [dim]{i['id']}[/dim]" for i in column["items"]),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Tree commands
# ---------------------------------------------------------------------------

def _tree_show(organizer: Organizer, args: argparse.Namespace) -> int:
    if args.collection:
        board = organizer.collection_board(args.collection, search=args.search, sort=args.sort)
        if args.json:
            _emit(board)
        else:
            _render_board(board)
        return 0
    if args.json:
        _emit({'spaces': organizer.outline()})
    else:
        _render_outline(organizer)
    return 0


def _tree_add_space(organizer: Organizer, args: argparse.Namespace) -> int:
    space = organizer.add_space(args.name, color=args.color, icon=args.icon)
    _emit({'space': space.to_dict()})
    return 0


def _tree_add_group(organizer: Organizer, args: argparse.Namespace) -> int:
    group = organizer.add_group(args.space_id, args.name)
    _emit({'group': group.to_dict()})
    return 0


def _tree_add_list(organizer: Organizer, args: argparse.Namespace) -> int:
    collection = organizer.add_collection(args.space_id, args.name, group_id=args.group)
    _emit({'collection': collection.to_dict()})
    return 0


def _tree_add_item(organizer: Organizer, args: argparse.Namespace) -> int:
    item = organizer.add_item(
        args.collection_id,
        args.title,
        description=args.description,
        status=args.status,
        priority=args.priority,
        assignee=args.assignee,
    )
    _emit({'item': item.to_dict()})
    return 0


def _tree_move(organizer: Organizer, args: argparse.Namespace) -> int:
    target = _target_locator(organizer, args)
    moved = organizer.move(args.entity_id, target, args.index)
    _emit({'moved': moved, 'entity_id': args.entity_id, 'to': target.to_dict(), 'index': args.index})
    return 0


def _tree_toggle(organizer: Organizer, args: argparse.Namespace) -> int:
    kind = organizer.tree.entity_kind(args.entity_id).value
    if kind == 'space':
        is_open = organizer.toggle_space(args.entity_id)
    elif kind == 'group':
        is_open = organizer.toggle_group(args.entity_id)
    else:
        raise ValueError(f"Only spaces and groups can be toggled, not a {kind}")
    _emit({'entity_id': args.entity_id, 'is_open': is_open})
    return 0


# ---------------------------------------------------------------------------
# Pipeline commands
# ---------------------------------------------------------------------------

def _pipeline_show(organizer: Organizer, args: argparse.Namespace) -> int:
    if args.archived:
        _emit({'archived': organizer.archived_items(search=args.search)})
        return 0
    board = organizer.pipeline_board(search=args.search, sort=args.sort)
    if args.json:
        _emit(board)
    else:
        _render_pipeline(board)
    return 0


def _pipeline_add_item(organizer: Organizer, args: argparse.Namespace) -> int:
    fields = {k: v for k, v in (('title', args.title), ('domain', args.domain), ('repo_url', args.repo_url)) if v}
    item = organizer.add_pipeline_item(args.name, stage=args.stage, **fields)
    _emit({'item': item.to_dict()})
    return 0


def _pipeline_move(organizer: Organizer, args: argparse.Namespace) -> int:
    moved = organizer.move_pipeline_item(args.item_id, args.stage)
    _emit({'moved': moved, 'item_id': args.item_id, 'stage': args.stage})
    return 0


def _pipeline_insert_stage(organizer: Organizer, args: argparse.Namespace) -> int:
    stage = organizer.insert_stage_after(args.after, args.title, args.short_title or args.title)
    _emit({'stage': stage.to_dict(), 'stage_count': organizer.pipeline.stage_count})
    return 0


def _pipeline_rename_stage(organizer: Organizer, args: argparse.Namespace) -> int:
    stage = organizer.rename_stage(args.stage, args.title, args.short_title or args.title)
    _emit({'stage': stage.to_dict()})
    return 0


def _pipeline_delete_stage(organizer: Organizer, args: argparse.Namespace) -> int:
    relocated = organizer.delete_stage(args.stage, _token(args))
    _emit({'deleted': args.stage, 'relocated': relocated, 'stage_count': organizer.pipeline.stage_count})
    return 0


def _pipeline_archive(organizer: Organizer, args: argparse.Namespace) -> int:
    changed = organizer.archive_pipeline_item(args.item_id, _token(args))
    _emit({'archived': changed, 'item_id': args.item_id})
    return 0


def _pipeline_unarchive(organizer: Organizer, args: argparse.Namespace) -> int:
    changed = organizer.unarchive_pipeline_item(args.item_id)
    _emit({'restored': changed, 'item_id': args.item_id})
    return 0


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'workflow-organizer[server]'\n")
        return 1

    from .server import create_app

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def _with_organizer(handler):
    """Run *handler* against the project's organizer and flush before exit."""

    def run(args: argparse.Namespace) -> int:
        organizer = Organizer.open(_resolve_project_dir(args.project_dir))
        try:
            return handler(organizer, args)
        except (OrganizerError, ValueError) as exc:
            sys.stderr.write(str(exc) + '\n')
            return 1
        finally:
            if not organizer.close():
                sys.stderr.write("Warning: changes could not be saved\n")

    return run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Workflow organizer: workspace tree and stage pipeline')
    parser.add_argument('--project-dir', default=None, help='Directory holding .organizer state (default: cwd)')
    parser.add_argument('--log-level', default=None, help='Log level (default: from config, else INFO)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the HTTP API server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    statuses = [s.value for s in ItemStatus]

    tree = subparsers.add_parser('tree', help='Spaces, groups, lists and items')
    tree_sub = tree.add_subparsers(dest='tree_cmd', required=True)
    tshow = tree_sub.add_parser('show', help='Show the workspace outline or one list board')
    tshow.add_argument('--collection', default=None, help='Show the status board of this list')
    tshow.add_argument('--search', default=None)
    tshow.add_argument('--sort', default='position', choices=['position', 'created_at', 'title'])
    tshow.add_argument('--json', action='store_true')
    tshow.set_defaults(func=_with_organizer(_tree_show))
    tspace = tree_sub.add_parser('add-space', help='Create a space')
    tspace.add_argument('name')
    tspace.add_argument('--color', default='bg-gray-500')
    tspace.add_argument('--icon', default=None)
    tspace.set_defaults(func=_with_organizer(_tree_add_space))
    tgroup = tree_sub.add_parser('add-group', help='Create a group inside a space')
    tgroup.add_argument('space_id')
    tgroup.add_argument('name')
    tgroup.set_defaults(func=_with_organizer(_tree_add_group))
    tlist = tree_sub.add_parser('add-list', help='Create a list in a space or group')
    tlist.add_argument('space_id')
    tlist.add_argument('name')
    tlist.add_argument('--group', default=None)
    tlist.set_defaults(func=_with_organizer(_tree_add_list))
    titem = tree_sub.add_parser('add-item', help='Create a work item in a list')
    titem.add_argument('collection_id')
    titem.add_argument('title')
    titem.add_argument('--description', default='')
    titem.add_argument('--status', default='todo', choices=statuses)
    titem.add_argument('--priority', default=None, choices=[p.value for p in ItemPriority])
    titem.add_argument('--assignee', default=None)
    titem.set_defaults(func=_with_organizer(_tree_add_item))
    tmove = tree_sub.add_parser('move', help='Move an item, list or group')
    tmove.add_argument('entity_id')
    tmove.add_argument('--space', default=None)
    tmove.add_argument('--group', default=None)
    tmove.add_argument('--collection', default=None)
    tmove.add_argument('--status', default=None, choices=statuses)
    tmove.add_argument('--index', default=None, type=int)
    tmove.set_defaults(func=_with_organizer(_tree_move))
    ttoggle = tree_sub.add_parser('toggle', help='Expand or collapse a space or group')
    ttoggle.add_argument('entity_id')
    ttoggle.set_defaults(func=_with_organizer(_tree_toggle))

    pipeline = subparsers.add_parser('pipeline', help='Stage pipeline')
    pipe_sub = pipeline.add_subparsers(dest='pipeline_cmd', required=True)
    pshow = pipe_sub.add_parser('show', help='Show the pipeline board')
    pshow.add_argument('--search', default=None)
    pshow.add_argument('--sort', default='position', choices=['position', 'created_at', 'title'])
    pshow.add_argument('--archived', action='store_true', help='List archived items instead')
    pshow.add_argument('--json', action='store_true')
    pshow.set_defaults(func=_with_organizer(_pipeline_show))
    padd = pipe_sub.add_parser('add-item', help='Add a pipeline item')
    padd.add_argument('name')
    padd.add_argument('--stage', default=1, type=int)
    padd.add_argument('--title', default=None)
    padd.add_argument('--domain', default=None)
    padd.add_argument('--repo-url', default=None)
    padd.set_defaults(func=_with_organizer(_pipeline_add_item))
    pmove = pipe_sub.add_parser('move', help='Move an item to a stage')
    pmove.add_argument('item_id')
    pmove.add_argument('stage', type=int)
    pmove.set_defaults(func=_with_organizer(_pipeline_move))
    pinsert = pipe_sub.add_parser('insert-stage', help='Insert a stage after AFTER (0 = first)')
    pinsert.add_argument('after', type=int)
    pinsert.add_argument('title')
    pinsert.add_argument('--short-title', default=None)
    pinsert.set_defaults(func=_with_organizer(_pipeline_insert_stage))
    prename = pipe_sub.add_parser('rename-stage', help='Rename a stage')
    prename.add_argument('stage', type=int)
    prename.add_argument('title')
    prename.add_argument('--short-title', default=None)
    prename.set_defaults(func=_with_organizer(_pipeline_rename_stage))
    pdelete = pipe_sub.add_parser('delete-stage', help='Delete a stage (requires confirmation)')
    pdelete.add_argument('stage', type=int)
    pdelete.add_argument('--token', default=None, help=f'Confirmation token (or ${TOKEN_ENV})')
    pdelete.set_defaults(func=_with_organizer(_pipeline_delete_stage))
    parchive = pipe_sub.add_parser('archive', help='Archive an item (requires confirmation)')
    parchive.add_argument('item_id')
    parchive.add_argument('--token', default=None, help=f'Confirmation token (or ${TOKEN_ENV})')
    parchive.set_defaults(func=_with_organizer(_pipeline_archive))
    punarchive = pipe_sub.add_parser('unarchive', help='Restore an archived item')
    punarchive.add_argument('item_id')
    punarchive.set_defaults(func=_with_organizer(_pipeline_unarchive))

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = args.log_level
    if level is None:
        config, _ = load_organizer_config(_resolve_project_dir(args.project_dir))
        level = config.log_level
    _configure_logging(level)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == '__main__':
    raise SystemExit(main())
