"""Organizer facade: the single mutation surface over tree, pipeline and drag.

The organizer owns the live :class:`WorkspaceTree` and :class:`StagePipeline`,
the current drag session, the confirmation gate and one debounced autosaver
per snapshot key.  Every committed mutation encodes the affected model and
schedules a write; reads go through the view builders and never see live
entities.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from . import drag, views
from .codec import decode_pipeline_with_error, decode_tree_with_error, encode_pipeline, encode_tree
from .config import OrganizerConfig, load_organizer_config, snapshot_dir
from .defaults import default_pipeline, default_tree
from .drag import DragSession, DragSource, DropOutcome, DropTarget
from .errors import CorruptSnapshot, InvalidTarget, NotFound, PersistenceWriteFailed
from .gate import ConfirmationGate, build_gate
from .locator import ContainerKind, Locator
from .model import (
    EntityKind,
    Group,
    ItemStatus,
    LeafCollection,
    PipelineItem,
    Space,
    Stage,
    Subtask,
    WorkItem,
    now_iso,
)
from .persistence import DebouncedSaver, FileSnapshotStore, SnapshotStore
from .pipeline import StagePipeline
from .tree import WorkspaceTree


class Organizer:
    def __init__(
        self,
        store: SnapshotStore,
        *,
        config: Optional[OrganizerConfig] = None,
        gate: Optional[ConfirmationGate] = None,
    ) -> None:
        self.config = config or OrganizerConfig()
        self.store = store
        self.gate = gate or build_gate(self.config.confirmation)
        self._tree: WorkspaceTree = default_tree()
        self._pipeline: StagePipeline = default_pipeline()
        self._session = DragSession()
        self._notices: list[dict[str, Any]] = []
        self._notice_lock = threading.Lock()
        self._tree_saver = DebouncedSaver(
            store, self.config.tree_key, delay=self.config.autosave_delay, on_failure=self._on_write_failed
        )
        self._pipeline_saver = DebouncedSaver(
            store, self.config.pipeline_key, delay=self.config.autosave_delay, on_failure=self._on_write_failed
        )

    @classmethod
    def open(cls, project_dir: Path, *, gate: Optional[ConfirmationGate] = None) -> "Organizer":
        """Open the organizer state kept under ``project_dir/.organizer``."""
        config, err = load_organizer_config(project_dir)
        organizer = cls(FileSnapshotStore(snapshot_dir(project_dir)), config=config, gate=gate)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
            organizer._notice("config_error", "warning", err)
        return organizer.load()

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    def load(self) -> "Organizer":
        """Read both snapshots, degrading to defaults on missing or corrupt records."""
        self._tree = self._load_one(self.config.tree_key, decode_tree_with_error, default_tree)
        self._pipeline = self._load_one(self.config.pipeline_key, decode_pipeline_with_error, default_pipeline)
        self._session = DragSession()
        return self

    def _load_one(self, key: str, decode, default):
        try:
            record = self.store.load(key)
        except CorruptSnapshot as exc:
            self._notice(exc.code, "warning", exc.message, key=key)
            return default()
        if record is None:
            logger.info("No saved {}; starting from defaults", key)
            return default()
        value, err = decode(record)
        if err is not None:
            self._notice(err.code, "warning", f"{key}: {err.message}", key=key)
            self.store.quarantine(key)
        return value

    def _tree_changed(self) -> None:
        self._tree_saver.schedule(encode_tree(self._tree))

    def _pipeline_changed(self) -> None:
        self._pipeline_saver.schedule(encode_pipeline(self._pipeline))

    def _on_write_failed(self, error: PersistenceWriteFailed) -> None:
        self._notice(error.code, "error", error.message, key=error.key)

    def flush(self) -> bool:
        tree_ok = self._tree_saver.flush()
        pipeline_ok = self._pipeline_saver.flush()
        return tree_ok and pipeline_ok

    def close(self) -> bool:
        tree_ok = self._tree_saver.close()
        pipeline_ok = self._pipeline_saver.close()
        return tree_ok and pipeline_ok

    def __enter__(self) -> "Organizer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Notices
    # ------------------------------------------------------------------

    def _notice(self, code: str, level: str, message: str, **details: Any) -> None:
        entry = {"code": code, "level": level, "message": message, "at": now_iso()}
        if details:
            entry["details"] = details
        with self._notice_lock:
            self._notices.append(entry)

    def notices(self) -> list[dict[str, Any]]:
        with self._notice_lock:
            return [dict(n) for n in self._notices]

    def drain_notices(self) -> list[dict[str, Any]]:
        with self._notice_lock:
            drained, self._notices = self._notices, []
        return drained

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def tree(self) -> WorkspaceTree:
        return self._tree.copy()

    @property
    def pipeline(self) -> StagePipeline:
        return self._pipeline.copy()

    def outline(self) -> list[dict[str, Any]]:
        return views.tree_outline(self._tree)

    def collection_board(self, collection_id: str, **options: Any) -> dict[str, Any]:
        return views.collection_board(self._tree, collection_id, **options)

    def items_in(self, locator: Locator, **options: Any) -> list[dict[str, Any]]:
        return views.items_in(self._tree, locator, **options)

    def count_in(self, locator: Locator) -> int:
        return views.count_in(self._tree, locator)

    def pipeline_board(self, **options: Any) -> dict[str, Any]:
        return views.pipeline_board(self._pipeline, **options)

    def items_at_stage(self, stage_number: int, **options: Any) -> list[dict[str, Any]]:
        return views.items_at_stage(self._pipeline, stage_number, **options)

    def archived_items(self, **options: Any) -> list[dict[str, Any]]:
        return views.archived_items(self._pipeline, **options)

    # ------------------------------------------------------------------
    # Drag session
    # ------------------------------------------------------------------

    @property
    def drag_state(self) -> DragSession:
        return self._session

    def _source_for(self, entity_id: str) -> DragSource:
        if entity_id in self._pipeline:
            item = self._pipeline.get_item(entity_id)
            return DragSource(entity_id, EntityKind.PIPELINE_ITEM, Locator.stage_column(item.stage))
        kind, locator, index = self._tree.locate(entity_id)
        status = self._tree.get_item(entity_id).status if kind == EntityKind.WORK_ITEM else None
        return DragSource(entity_id, kind, locator, index, status)

    def _container_size(self, locator: Locator, kind: EntityKind) -> Optional[int]:
        if locator.kind == ContainerKind.STAGE:
            if locator.stage is None or not 1 <= locator.stage <= self._pipeline.stage_count:
                return None
            return sum(1 for item in self._pipeline.items() if item.stage == locator.stage)
        try:
            return self._tree.container_size(locator, kind)
        except (NotFound, InvalidTarget):
            return None

    def pick_up(self, entity_id: str) -> DragSession:
        self._session = drag.pick_up(self._session, self._source_for(entity_id))
        return self._session

    def hover(self, target: DropTarget | Locator, index: Optional[int] = None) -> DragSession:
        if isinstance(target, Locator):
            target = DropTarget(target, index)
        self._session = drag.hover(self._session, target, self._container_size)
        return self._session

    def leave(self) -> DragSession:
        self._session = drag.leave(self._session)
        return self._session

    def cancel(self) -> DragSession:
        self._session = drag.cancel(self._session)
        return self._session

    def drop(self) -> DragSession:
        self._session = drag.drop(self._session, self._commit_drop)
        if self._session.last_outcome == DropOutcome.ABORTED and self._session.notice:
            self._notice("drag_aborted", "warning", self._session.notice.get("message", ""))
        return self._session

    def _commit_drop(self, source: DragSource, target: DropTarget) -> bool:
        if source.kind == EntityKind.PIPELINE_ITEM:
            return self.move_pipeline_item(source.entity_id, int(target.locator.stage or 0))
        return self.move_item(source.entity_id, source.locator, target.locator, target.index)

    # ------------------------------------------------------------------
    # Workspace tree mutations
    # ------------------------------------------------------------------

    def add_space(self, name: str, **fields: Any) -> Space:
        space = self._tree.add_space(name, **fields)
        self._tree_changed()
        return space

    def add_group(self, space_id: str, name: str, **fields: Any) -> Group:
        group = self._tree.add_group(space_id, name, **fields)
        self._tree_changed()
        return group

    def add_collection(self, space_id: str, name: str, **fields: Any) -> LeafCollection:
        collection = self._tree.add_collection(space_id, name, **fields)
        self._tree_changed()
        return collection

    def add_item(self, collection_id: str, title: str, **fields: Any) -> WorkItem:
        item = self._tree.add_item(collection_id, title, **fields)
        self._tree_changed()
        return item

    def move_item(
        self,
        item_id: str,
        from_locator: Locator,
        to_locator: Locator,
        at_index: Optional[int] = None,
    ) -> bool:
        changed = self._tree.move_item(item_id, from_locator, to_locator, at_index)
        if changed:
            self._tree_changed()
        return changed

    def move(self, entity_id: str, to_locator: Locator, at_index: Optional[int] = None) -> bool:
        changed = self._tree.move(entity_id, to_locator, at_index)
        if changed:
            self._tree_changed()
        return changed

    def move_space(self, space_id: str, new_index: int) -> bool:
        changed = self._tree.move_space(space_id, new_index)
        if changed:
            self._tree_changed()
        return changed

    def toggle_space(self, space_id: str) -> bool:
        is_open = self._tree.toggle_space(space_id)
        self._tree_changed()
        return is_open

    def toggle_group(self, group_id: str) -> bool:
        is_open = self._tree.toggle_group(group_id)
        self._tree_changed()
        return is_open

    def rename(self, entity_id: str, name: str) -> None:
        kind = self._tree.entity_kind(entity_id)
        if kind == EntityKind.SPACE:
            self._tree.rename_space(entity_id, name)
        elif kind == EntityKind.GROUP:
            self._tree.rename_group(entity_id, name)
        elif kind == EntityKind.COLLECTION:
            self._tree.rename_collection(entity_id, name)
        else:
            self._tree.update_item(entity_id, {"title": name})
        self._tree_changed()

    def update_item(self, item_id: str, changes: dict[str, Any]) -> WorkItem:
        item = self._tree.update_item(item_id, changes)
        self._tree_changed()
        return item

    def set_item_status(self, item_id: str, status: ItemStatus | str) -> bool:
        changed = self._tree.set_item_status(item_id, status)
        if changed:
            self._tree_changed()
        return changed

    def delete(self, entity_id: str) -> int:
        """Delete any tree entity with everything it owns; returns items removed."""
        kind = self._tree.entity_kind(entity_id)
        if kind == EntityKind.WORK_ITEM:
            self._tree.delete_item(entity_id)
            removed = 1
        elif kind == EntityKind.COLLECTION:
            removed = self._tree.delete_collection(entity_id)
        elif kind == EntityKind.GROUP:
            removed = self._tree.delete_group(entity_id)
        else:
            removed = self._tree.delete_space(entity_id)
        self._tree_changed()
        return removed

    def add_subtask(self, item_id: str, title: str) -> Subtask:
        if item_id in self._pipeline:
            sub = self._pipeline.add_subtask(item_id, title)
            self._pipeline_changed()
            return sub
        sub = self._tree.add_subtask(item_id, title)
        self._tree_changed()
        return sub

    def toggle_subtask(self, item_id: str, subtask_id: str) -> Subtask:
        if item_id in self._pipeline:
            sub = self._pipeline.toggle_subtask(item_id, subtask_id)
            self._pipeline_changed()
            return sub
        sub = self._tree.toggle_subtask(item_id, subtask_id)
        self._tree_changed()
        return sub

    def remove_subtask(self, item_id: str, subtask_id: str) -> Subtask:
        if item_id in self._pipeline:
            sub = self._pipeline.remove_subtask(item_id, subtask_id)
            self._pipeline_changed()
            return sub
        sub = self._tree.remove_subtask(item_id, subtask_id)
        self._tree_changed()
        return sub

    # ------------------------------------------------------------------
    # Pipeline mutations
    # ------------------------------------------------------------------

    def add_pipeline_item(self, name: str, *, stage: int = 1, **fields: Any) -> PipelineItem:
        item = self._pipeline.add_item(name, stage=stage, **fields)
        self._pipeline_changed()
        return item

    def update_pipeline_item(self, item_id: str, changes: dict[str, Any]) -> PipelineItem:
        item = self._pipeline.update_item(item_id, changes)
        self._pipeline_changed()
        return item

    def move_pipeline_item(self, item_id: str, target_stage: int) -> bool:
        changed = self._pipeline.move_item_to_stage(item_id, target_stage)
        if changed:
            self._pipeline_changed()
        return changed

    def delete_pipeline_item(self, item_id: str) -> PipelineItem:
        item = self._pipeline.delete_item(item_id)
        self._pipeline_changed()
        return item

    def insert_stage_after(
        self,
        stage_number: int,
        title: str,
        short_title: str,
        instructions: Optional[str] = None,
    ) -> Stage:
        stage = self._pipeline.insert_stage_after(stage_number, title, short_title, instructions)
        self._pipeline_changed()
        return stage

    def rename_stage(self, stage_number: int, title: str, short_title: str) -> Stage:
        stage = self._pipeline.rename_stage(stage_number, title, short_title)
        self._pipeline_changed()
        return stage

    def update_stage_instructions(self, stage_number: int, instructions: str) -> Stage:
        stage = self._pipeline.update_stage_instructions(stage_number, instructions)
        self._pipeline_changed()
        return stage

    def delete_stage(self, stage_number: int, token: Optional[str]) -> list[str]:
        """Delete a stage after the gate confirms *token*.

        The stage is checked first so a bad number reports ``NotFound`` rather
        than asking for a confirmation that could never apply.
        """
        self._pipeline.get_stage(stage_number)
        self.gate.require(token, f"delete stage {stage_number}")
        relocated = self._pipeline.delete_stage(stage_number)
        self._pipeline_changed()
        return relocated

    def archive_pipeline_item(self, item_id: str, token: Optional[str]) -> bool:
        self._pipeline.get_item(item_id)
        self.gate.require(token, f"archive {item_id}")
        changed = self._pipeline.archive_item(item_id)
        if changed:
            self._pipeline_changed()
        return changed

    def unarchive_pipeline_item(self, item_id: str) -> bool:
        changed = self._pipeline.unarchive_item(item_id)
        if changed:
            self._pipeline_changed()
        return changed
