"""Snapshot codec: workspace tree and stage pipeline <-> YAML documents.

The persisted record is an opaque string to the store.  Tree records nest
groups, collections and items under their owner so ordering and ownership are
implied by position; pipeline records are a stage list plus a flat item list.

Decoding is lenient about missing fields (defaults fill them in) and strict
about structure: anything that cannot be turned into a valid model raises
:class:`~workflow_organizer.errors.CorruptSnapshot`.  The ``*_with_error``
variants never raise and hand back the default initial state instead.

Pipeline records written by the old browser client (``workflowSteps`` and
``clientSites`` with camelCase fields) are accepted as well.
"""

from __future__ import annotations

from typing import Any, Optional

import yaml
from loguru import logger

from .defaults import default_pipeline, default_stages, default_tree
from .errors import CorruptSnapshot
from .io_utils import _dump_yaml
from .model import (
    Group,
    LeafCollection,
    PipelineItem,
    Space,
    Stage,
    WorkItem,
    _str,
    new_id,
)
from .ordered import OrderedContainer
from .pipeline import StagePipeline
from .tree import WorkspaceTree

SCHEMA_VERSION = 1
TREE_KIND = "workspace_tree"
PIPELINE_KIND = "pipeline_state"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _parse(record: Optional[str], kind: str) -> dict[str, Any]:
    if record is None or not str(record).strip():
        raise CorruptSnapshot(f"Empty {kind} record", kind=kind)
    try:
        data = yaml.safe_load(record)
    except yaml.YAMLError as exc:
        raise CorruptSnapshot(f"Unparseable {kind} record: {exc}", kind=kind) from exc
    if not isinstance(data, dict):
        raise CorruptSnapshot(f"{kind} record must be a mapping, got {type(data).__name__}", kind=kind)
    found_kind = data.get("kind")
    if found_kind is not None and found_kind != kind:
        raise CorruptSnapshot(f"Expected a {kind} record, got {found_kind!r}", kind=kind)
    version = data.get("schema_version", SCHEMA_VERSION)
    if not isinstance(version, int) or version > SCHEMA_VERSION:
        raise CorruptSnapshot(f"Unsupported schema_version {version!r}", kind=kind)
    return data


def _list_of_dicts(raw: Any, what: str, kind: str) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(entry, dict) for entry in raw):
        raise CorruptSnapshot(f"{what} must be a list of mappings", kind=kind)
    return raw


# ---------------------------------------------------------------------------
# Workspace tree
# ---------------------------------------------------------------------------

def tree_to_dict(tree: WorkspaceTree) -> dict[str, Any]:
    def collection(cid: str) -> dict[str, Any]:
        col = tree.get_collection(cid)
        return {
            "id": col.id,
            "name": col.name,
            "items": [tree.get_item(iid).to_dict() for iid in col.item_ids],
        }

    spaces = []
    for space in tree.spaces():
        groups = []
        for gid in space.group_ids:
            group = tree.get_group(gid)
            groups.append({
                "id": group.id,
                "name": group.name,
                "is_open": group.is_open,
                "collections": [collection(cid) for cid in group.collection_ids],
            })
        spaces.append({
            "id": space.id,
            "name": space.name,
            "color": space.color,
            "icon": space.icon,
            "is_open": space.is_open,
            "groups": groups,
            "collections": [collection(cid) for cid in space.collection_ids],
        })
    return {"schema_version": SCHEMA_VERSION, "kind": TREE_KIND, "spaces": spaces}


def encode_tree(tree: WorkspaceTree) -> str:
    return _dump_yaml(tree_to_dict(tree))


def tree_from_dict(data: dict[str, Any]) -> WorkspaceTree:
    spaces: list[Space] = []
    groups: list[Group] = []
    collections: list[LeafCollection] = []
    items: list[WorkItem] = []

    def collection(raw: dict[str, Any]) -> str:
        entries = [WorkItem.from_dict(i) for i in _list_of_dicts(raw.get("items"), "items", TREE_KIND)]
        items.extend(entries)
        col = LeafCollection(id=_str(raw.get("id")) or new_id("list"), name=_str(raw.get("name")))
        try:
            col.item_ids = OrderedContainer(i.id for i in entries)
        except ValueError as exc:
            raise CorruptSnapshot(str(exc), kind=TREE_KIND) from exc
        collections.append(col)
        return col.id

    def ids(values: list[str]) -> OrderedContainer:
        try:
            return OrderedContainer(values)
        except ValueError as exc:
            raise CorruptSnapshot(str(exc), kind=TREE_KIND) from exc

    for raw_space in _list_of_dicts(data.get("spaces"), "spaces", TREE_KIND):
        group_ids = []
        for raw_group in _list_of_dicts(raw_space.get("groups"), "groups", TREE_KIND):
            group = Group(
                id=_str(raw_group.get("id")) or new_id("group"),
                name=_str(raw_group.get("name")),
                is_open=bool(raw_group.get("is_open", True)),
            )
            group.collection_ids = ids([
                collection(c) for c in _list_of_dicts(raw_group.get("collections"), "collections", TREE_KIND)
            ])
            groups.append(group)
            group_ids.append(group.id)
        name = _str(raw_space.get("name"))
        space = Space(
            id=_str(raw_space.get("id")) or new_id("space"),
            name=name,
            color=_str(raw_space.get("color")) or "bg-gray-500",
            icon=_str(raw_space.get("icon")) or name[:1].upper(),
            is_open=bool(raw_space.get("is_open", False)),
        )
        space.group_ids = ids(group_ids)
        space.collection_ids = ids([
            collection(c) for c in _list_of_dicts(raw_space.get("collections"), "collections", TREE_KIND)
        ])
        spaces.append(space)

    try:
        return WorkspaceTree.from_parts(spaces, groups, collections, items)
    except ValueError as exc:
        raise CorruptSnapshot(f"Inconsistent workspace tree: {exc}", kind=TREE_KIND) from exc


def decode_tree(record: Optional[str]) -> WorkspaceTree:
    return tree_from_dict(_parse(record, TREE_KIND))


def decode_tree_with_error(record: Optional[str]) -> tuple[WorkspaceTree, CorruptSnapshot | None]:
    """Decode *record*, or return the demo workspace and the error."""
    try:
        return decode_tree(record), None
    except CorruptSnapshot as exc:
        logger.warning("Workspace snapshot is corrupt, using defaults: {}", exc.message)
        return default_tree(), exc


# ---------------------------------------------------------------------------
# Stage pipeline
# ---------------------------------------------------------------------------

def pipeline_to_dict(pipeline: StagePipeline) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "kind": PIPELINE_KIND,
        "stages": [s.to_dict() for s in pipeline.stages()],
        "items": [i.to_dict() for i in pipeline.items()],
    }


def encode_pipeline(pipeline: StagePipeline) -> str:
    return _dump_yaml(pipeline_to_dict(pipeline))


def _normalize_stages(raw_stages: list[dict[str, Any]]) -> tuple[list[Stage], dict[int, int]]:
    """Order stages by their recorded number and renumber them ``1..N``.

    Returns the stages and a map from recorded number to new number.
    """
    parsed = [Stage.from_dict(s) for s in raw_stages]
    order = sorted(
        range(len(parsed)),
        key=lambda idx: (parsed[idx].number if parsed[idx].number > 0 else idx + 1, idx),
    )
    renumbered: list[Stage] = []
    mapping: dict[int, int] = {}
    for new_number, idx in enumerate(order, start=1):
        stage = parsed[idx]
        if stage.number > 0:
            mapping.setdefault(stage.number, new_number)
        stage.number = new_number
        if not stage.title.strip():
            stage.title = f"Step {new_number}"
        if not stage.short_title.strip():
            stage.short_title = stage.title
        renumbered.append(stage)
    return renumbered, mapping


def pipeline_from_dict(data: dict[str, Any]) -> StagePipeline:
    raw_stages = data.get("stages", data.get("workflowSteps"))
    raw_items = data.get("items", data.get("clientSites"))
    stage_dicts = _list_of_dicts(raw_stages, "stages", PIPELINE_KIND)
    item_dicts = _list_of_dicts(raw_items, "items", PIPELINE_KIND)

    if stage_dicts:
        stages, mapping = _normalize_stages(stage_dicts)
        if any(old != new for old, new in mapping.items()) or len(mapping) != len(stages):
            logger.warning("Pipeline stages were not numbered 1..{}; renumbered in order", len(stages))
    else:
        stages = default_stages()
        mapping = {s.number: s.number for s in stages}

    items: list[PipelineItem] = []
    seen: set[str] = set()
    for raw in item_dicts:
        item = PipelineItem.from_dict(raw)
        if item.id in seen:
            raise CorruptSnapshot(f"Duplicate pipeline item id {item.id}", kind=PIPELINE_KIND)
        seen.add(item.id)
        stage = mapping.get(item.stage, item.stage)
        clamped = max(1, min(stage, len(stages)))
        if clamped != item.stage and item.stage not in mapping:
            logger.warning("Pipeline item {} referenced stage {}; clamped to {}", item.id, item.stage, clamped)
        item.stage = clamped
        items.append(item)

    try:
        return StagePipeline(stages, items)
    except ValueError as exc:
        raise CorruptSnapshot(f"Inconsistent pipeline: {exc}", kind=PIPELINE_KIND) from exc


def decode_pipeline(record: Optional[str]) -> StagePipeline:
    return pipeline_from_dict(_parse(record, PIPELINE_KIND))


def decode_pipeline_with_error(record: Optional[str]) -> tuple[StagePipeline, CorruptSnapshot | None]:
    try:
        return decode_pipeline(record), None
    except CorruptSnapshot as exc:
        logger.warning("Pipeline snapshot is corrupt, using defaults: {}", exc.message)
        return default_pipeline(), exc


def decode_legacy_pipeline(steps_record: Optional[str], sites_record: Optional[str]) -> StagePipeline:
    """Decode the two separate JSON arrays the browser client kept.

    A missing steps record means the client never edited the default steps.
    """
    def load_list(record: Optional[str], what: str) -> list[Any]:
        if record is None or not record.strip():
            return []
        try:
            data = yaml.safe_load(record)
        except yaml.YAMLError as exc:
            raise CorruptSnapshot(f"Unparseable {what}: {exc}", kind=PIPELINE_KIND) from exc
        if not isinstance(data, list):
            raise CorruptSnapshot(f"{what} must be a list", kind=PIPELINE_KIND)
        return data

    return pipeline_from_dict({
        "workflowSteps": load_list(steps_record, "workflow steps"),
        "clientSites": load_list(sites_record, "client sites"),
    })
