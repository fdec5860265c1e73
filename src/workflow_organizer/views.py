"""Derived views over the tree and the pipeline.

Every function here is a pure read that returns plain dicts, recomputed on
each call.  Nothing is cached, so a view can never drift from the model.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from .locator import ContainerKind, Locator
from .model import ItemStatus, PipelineItem, WorkItem, _HasSubtasks
from .pipeline import StagePipeline
from .tree import WorkspaceTree

SORT_KEYS = ("position", "created_at", "title")


def _matches(item: WorkItem | PipelineItem, search: Optional[str]) -> bool:
    if not search:
        return True
    needle = search.strip().lower()
    if isinstance(item, PipelineItem):
        haystack = [item.name, item.title or "", item.description, item.domain or "", item.notes or ""]
    else:
        haystack = [item.title, item.description, item.assignee or ""]
    return any(needle in text.lower() for text in haystack)


def _sort_key(sort: str):
    if sort not in SORT_KEYS:
        raise ValueError(f"Unknown sort key {sort!r}; expected one of {', '.join(SORT_KEYS)}")
    if sort == "created_at":
        return lambda i: i.created_at
    if sort == "title":
        return lambda i: (getattr(i, "display_title", None) or i.title).lower()
    return None


def _sorted(items: list[Any], sort: str) -> list[Any]:
    key = _sort_key(sort)
    return items if key is None else sorted(items, key=key)


def subtask_progress(item: _HasSubtasks) -> dict[str, Any]:
    done, total = item.subtask_progress
    return {
        "completed": done,
        "total": total,
        "percent": round(100 * done / total) if total else 0,
    }


def _work_item_view(item: WorkItem, position: int) -> dict[str, Any]:
    data = item.to_dict()
    data["position"] = position
    data["progress"] = subtask_progress(item)
    return data


def _pipeline_item_view(item: PipelineItem) -> dict[str, Any]:
    data = item.to_dict()
    data["display_title"] = item.display_title
    data["progress"] = subtask_progress(item)
    return data


# ---------------------------------------------------------------------------
# Tree views
# ---------------------------------------------------------------------------

def items_in(
    tree: WorkspaceTree,
    locator: Locator,
    *,
    status: Optional[ItemStatus | str] = None,
    search: Optional[str] = None,
    sort: str = "position",
) -> list[dict[str, Any]]:
    """Work items of the collection or status column at *locator*, in order."""
    if locator.kind not in (ContainerKind.COLLECTION, ContainerKind.STATUS):
        raise ValueError(f"items_in needs a collection or status locator, got {locator.kind.value}")
    wanted = ItemStatus(status) if status else None
    key = _sort_key(sort)
    pairs: list[tuple[int, WorkItem]] = []
    for position, item_id in enumerate(tree.container_ids(locator)):
        item = tree.get_item(item_id)
        if wanted is not None and item.status != wanted:
            continue
        if not _matches(item, search):
            continue
        pairs.append((position, item))
    if key is not None:
        pairs.sort(key=lambda pair: key(pair[1]))
    return [_work_item_view(item, position) for position, item in pairs]


def count_in(tree: WorkspaceTree, locator: Locator) -> int:
    """Number of entries in the container at *locator*.

    A space root counts its groups and direct collections together.
    """
    if locator.kind == ContainerKind.SPACE:
        space = tree.get_space(locator.space_id or "")
        return len(space.group_ids) + len(space.collection_ids)
    return len(tree.container_ids(locator))


def collection_board(
    tree: WorkspaceTree,
    collection_id: str,
    *,
    search: Optional[str] = None,
    sort: str = "position",
) -> dict[str, Any]:
    """Items of one collection split into its status columns."""
    locator = tree.collection_locator(collection_id)
    collection = tree.get_collection(collection_id)
    items = items_in(tree, locator, search=search, sort=sort)
    columns = []
    for status in ItemStatus:
        column = [i for i in items if i["status"] == status.value]
        columns.append({
            "status": status.value,
            "label": status.label,
            "count": len(column),
            "items": column,
            "locator": Locator.status_column(
                locator.space_id or "", collection_id, status, locator.group_id
            ).to_dict(),
        })
    return {
        "collection": collection.to_dict(),
        "locator": locator.to_dict(),
        "count": len(items),
        "columns": columns,
    }


def tree_outline(tree: WorkspaceTree) -> list[dict[str, Any]]:
    """Sidebar outline: spaces, their groups and collections with item counts."""

    def collection_entry(space_id: str, cid: str, group_id: Optional[str]) -> dict[str, Any]:
        collection = tree.get_collection(cid)
        return {
            "id": cid,
            "name": collection.name,
            "count": len(collection.item_ids),
            "locator": Locator.collection(space_id, cid, group_id).to_dict(),
        }

    outline = []
    for space in tree.spaces():
        groups = []
        for gid in space.group_ids:
            group = tree.get_group(gid)
            groups.append({
                "id": gid,
                "name": group.name,
                "is_open": group.is_open,
                "count": len(group.collection_ids),
                "collections": [collection_entry(space.id, cid, gid) for cid in group.collection_ids],
            })
        outline.append({
            "id": space.id,
            "name": space.name,
            "color": space.color,
            "icon": space.icon,
            "is_open": space.is_open,
            "count": len(space.group_ids) + len(space.collection_ids),
            "groups": groups,
            "collections": [collection_entry(space.id, cid, None) for cid in space.collection_ids],
        })
    return outline


# ---------------------------------------------------------------------------
# Pipeline views
# ---------------------------------------------------------------------------

def _visible(items: Iterable[PipelineItem], search: Optional[str]) -> list[PipelineItem]:
    return [i for i in items if not i.archived and _matches(i, search)]


def items_at_stage(
    pipeline: StagePipeline,
    stage_number: int,
    *,
    search: Optional[str] = None,
    sort: str = "position",
) -> list[dict[str, Any]]:
    """Non-archived items whose stage reference equals *stage_number*.

    ``position`` order is insertion order of the item pool.
    """
    pipeline.get_stage(stage_number)
    matching = [i for i in _visible(pipeline.items(), search) if i.stage == int(stage_number)]
    return [_pipeline_item_view(i) for i in _sorted(matching, sort)]


def pipeline_board(
    pipeline: StagePipeline,
    *,
    search: Optional[str] = None,
    sort: str = "position",
) -> dict[str, Any]:
    columns = []
    for stage in pipeline.stages():
        items = items_at_stage(pipeline, stage.number, search=search, sort=sort)
        columns.append({
            **stage.to_dict(),
            "count": len(items),
            "items": items,
            "locator": Locator.stage_column(stage.number).to_dict(),
        })
    archived = [i for i in pipeline.items() if i.archived]
    return {
        "stage_count": pipeline.stage_count,
        "count": sum(c["count"] for c in columns),
        "archived_count": len(archived),
        "columns": columns,
    }


def archived_items(pipeline: StagePipeline, *, search: Optional[str] = None) -> list[dict[str, Any]]:
    return [_pipeline_item_view(i) for i in pipeline.items() if i.archived and _matches(i, search)]
