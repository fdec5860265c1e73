"""Stage pipeline: a contiguous numbered sequence of stages plus a flat item pool.

Unlike the workspace tree, stage membership is not physical: every item keeps
a stage number and "the items in stage n" is a filter over the pool.  That
makes a drop a single field rewrite, and it makes stage insertion and deletion
a renumbering problem instead of a container-shuffling one.

The core invariant is that stage numbers are exactly ``1..N`` and every item
references a stage in that range.  :meth:`StagePipeline.validate` checks it.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, Optional

from loguru import logger

from .errors import CannotDeleteLastStage, InvalidTarget, NotFound
from .model import (
    STAGE_PLACEHOLDER_INSTRUCTIONS,
    PipelineItem,
    Stage,
    Subtask,
    coerce_pipeline_item_changes,
)


def _require_text(value: str, what: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{what} must be non-empty")
    return cleaned


class StagePipeline:
    """Ordered stages and the items assigned to them."""

    def __init__(self, stages: Iterable[Stage], items: Iterable[PipelineItem] = ()) -> None:
        self._stages: list[Stage] = [copy.deepcopy(s) for s in stages]
        self._items: dict[str, PipelineItem] = {}
        if not self._stages:
            raise ValueError("A pipeline needs at least one stage")
        for item in items:
            if item.id in self._items:
                raise ValueError(f"Duplicate pipeline item id {item.id}")
            self._items[item.id] = copy.deepcopy(item)
        errors = self.validate()
        if errors:
            raise ValueError("; ".join(errors))

    # ------------------------------------------------------------------
    # Invariants and equality
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        errors: list[str] = []
        numbers = [s.number for s in self._stages]
        expected = list(range(1, len(self._stages) + 1))
        if numbers != expected:
            errors.append(f"stage numbers {numbers} are not contiguous 1..{len(self._stages)}")
        for item in self._items.values():
            if not 1 <= item.stage <= len(self._stages):
                errors.append(f"item {item.id} references missing stage {item.stage}")
        return errors

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StagePipeline):
            return NotImplemented
        return self._stages == other._stages and list(self._items.values()) == list(other._items.values())

    def copy(self) -> "StagePipeline":
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Reads (copies)
    # ------------------------------------------------------------------

    @property
    def stage_count(self) -> int:
        return len(self._stages)

    def stage_numbers(self) -> list[int]:
        return [s.number for s in self._stages]

    def stages(self) -> list[Stage]:
        return [copy.deepcopy(s) for s in self._stages]

    def get_stage(self, stage_number: int) -> Stage:
        return copy.deepcopy(self._stage(stage_number))

    def items(self) -> list[PipelineItem]:
        return [copy.deepcopy(i) for i in self._items.values()]

    def get_item(self, item_id: str) -> PipelineItem:
        return copy.deepcopy(self._item(item_id))

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def _stage(self, stage_number: int) -> Stage:
        if not 1 <= int(stage_number) <= len(self._stages):
            raise NotFound(f"Stage {stage_number} does not exist", stage=stage_number)
        return self._stages[int(stage_number) - 1]

    def _item(self, item_id: str) -> PipelineItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFound(f"Pipeline item {item_id} not found", item_id=item_id)
        return item

    # ------------------------------------------------------------------
    # Stage operations
    # ------------------------------------------------------------------

    def insert_stage_after(
        self,
        stage_number: int,
        title: str,
        short_title: str,
        instructions: Optional[str] = None,
    ) -> Stage:
        """Insert a stage numbered ``stage_number + 1``.

        ``stage_number`` may be 0 to insert a new first stage.  Stages and item
        references above ``stage_number`` shift up by one.
        """
        stage_number = int(stage_number)
        if not 0 <= stage_number <= len(self._stages):
            raise NotFound(f"Cannot insert after missing stage {stage_number}", stage=stage_number)
        stage = Stage(
            number=stage_number + 1,
            title=_require_text(title, "Stage title"),
            short_title=_require_text(short_title, "Stage short title"),
            instructions=instructions or STAGE_PLACEHOLDER_INSTRUCTIONS,
        )
        for existing in self._stages:
            if existing.number > stage_number:
                existing.number += 1
        for item in self._items.values():
            if item.stage > stage_number:
                item.stage += 1
        self._stages.insert(stage_number, stage)
        logger.info("Inserted stage {} ({}); pipeline has {} stages", stage.number, stage.title, len(self._stages))
        return copy.deepcopy(stage)

    def delete_stage(self, stage_number: int) -> list[str]:
        """Delete a stage, spilling its items to the previous stage.

        Items at the deleted stage move to ``max(stage_number - 1, 1)`` first;
        only then are higher stages and references renumbered down.  Returns
        the ids of the items that were relocated from the deleted stage.
        """
        stage = self._stage(stage_number)
        if len(self._stages) <= 1:
            logger.warning("Refusing to delete stage {}: it is the last stage", stage_number)
            raise CannotDeleteLastStage("A pipeline must keep at least one stage", stage=stage_number)

        stage_number = stage.number
        target = max(stage_number - 1, 1)
        relocated: list[str] = []
        # Phase 1: reassign items of the doomed stage.
        for item in self._items.values():
            if item.stage == stage_number:
                item.stage = target
                relocated.append(item.id)
        # Phase 2: renumber.  Items relocated to stage 1 after deleting stage 1
        # now sit at 1 and are left alone; everything above shifts down.
        for item in self._items.values():
            if item.stage > stage_number:
                item.stage -= 1
        del self._stages[stage_number - 1]
        for existing in self._stages:
            if existing.number > stage_number:
                existing.number -= 1
        logger.info(
            "Deleted stage {} ({}); {} items moved to stage {}",
            stage_number,
            stage.title,
            len(relocated),
            target,
        )
        return relocated

    def rename_stage(self, stage_number: int, title: str, short_title: str) -> Stage:
        stage = self._stage(stage_number)
        stage.title = _require_text(title, "Stage title")
        stage.short_title = _require_text(short_title, "Stage short title")
        return copy.deepcopy(stage)

    def update_stage_instructions(self, stage_number: int, instructions: str) -> Stage:
        stage = self._stage(stage_number)
        stage.instructions = instructions or STAGE_PLACEHOLDER_INSTRUCTIONS
        return copy.deepcopy(stage)

    # ------------------------------------------------------------------
    # Item operations
    # ------------------------------------------------------------------

    def move_item_to_stage(self, item_id: str, target_stage: int) -> bool:
        """Drop handler: rewrite the item's stage reference."""
        item = self._item(item_id)
        target_stage = int(target_stage)
        if not 1 <= target_stage <= len(self._stages):
            raise InvalidTarget(f"Stage {target_stage} does not exist", stage=target_stage)
        if item.stage == target_stage:
            logger.debug("Item {} already at stage {}", item_id, target_stage)
            return False
        previous = item.stage
        item.stage = target_stage
        item.touch()
        logger.info("Moved pipeline item {} from stage {} to {}", item_id, previous, target_stage)
        return True

    def add_item(self, name: str, *, stage: int = 1, **fields: Any) -> PipelineItem:
        self._stage(stage)
        fields = coerce_pipeline_item_changes(fields)
        item = PipelineItem(name=_require_text(name, "Item name"), stage=int(stage), **fields)
        self._items[item.id] = item
        logger.info("Created pipeline item {} at stage {}", item.id, stage)
        return copy.deepcopy(item)

    def update_item(self, item_id: str, changes: dict[str, Any]) -> PipelineItem:
        item = self._item(item_id)
        changes = coerce_pipeline_item_changes(changes)
        if "name" in changes:
            changes = {**changes, "name": _require_text(changes["name"], "Item name")}
        for key, value in changes.items():
            setattr(item, key, value)
        item.touch()
        return copy.deepcopy(item)

    def archive_item(self, item_id: str) -> bool:
        item = self._item(item_id)
        if item.archived:
            return False
        item.archived = True
        item.touch()
        logger.info("Archived pipeline item {}", item_id)
        return True

    def unarchive_item(self, item_id: str) -> bool:
        item = self._item(item_id)
        if not item.archived:
            return False
        item.archived = False
        item.touch()
        logger.info("Restored pipeline item {}", item_id)
        return True

    def delete_item(self, item_id: str) -> PipelineItem:
        self._item(item_id)
        return self._items.pop(item_id)

    def add_subtask(self, item_id: str, title: str) -> Subtask:
        return copy.deepcopy(self._item(item_id).add_subtask(title))

    def toggle_subtask(self, item_id: str, subtask_id: str) -> Subtask:
        return copy.deepcopy(self._item(item_id).toggle_subtask(subtask_id))

    def remove_subtask(self, item_id: str, subtask_id: str) -> Subtask:
        return self._item(item_id).remove_subtask(subtask_id)
