"""Addresses of containers in the workspace tree and the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .model import EntityKind, ItemStatus


class ContainerKind(str, Enum):
    SPACE = "space"  # root of a space: groups and collections
    GROUP = "group"
    COLLECTION = "collection"
    STATUS = "status"  # a status column of one collection
    STAGE = "stage"  # a pipeline stage column


# Which entity kinds each surface accepts as a drop.
ACCEPTS: dict[ContainerKind, frozenset[EntityKind]] = {
    ContainerKind.SPACE: frozenset({EntityKind.COLLECTION, EntityKind.GROUP}),
    ContainerKind.GROUP: frozenset({EntityKind.COLLECTION}),
    ContainerKind.COLLECTION: frozenset({EntityKind.WORK_ITEM}),
    ContainerKind.STATUS: frozenset({EntityKind.WORK_ITEM}),
    ContainerKind.STAGE: frozenset({EntityKind.PIPELINE_ITEM}),
}


@dataclass(frozen=True)
class Locator:
    """Identifies one container: (space, optional group, kind, ...)."""

    kind: ContainerKind
    space_id: Optional[str] = None
    group_id: Optional[str] = None
    collection_id: Optional[str] = None
    stage: Optional[int] = None
    status: Optional[ItemStatus] = None

    # -- constructors -------------------------------------------------------

    @classmethod
    def space(cls, space_id: str) -> "Locator":
        return cls(ContainerKind.SPACE, space_id=space_id)

    @classmethod
    def group(cls, space_id: str, group_id: str) -> "Locator":
        return cls(ContainerKind.GROUP, space_id=space_id, group_id=group_id)

    @classmethod
    def collection(cls, space_id: str, collection_id: str, group_id: Optional[str] = None) -> "Locator":
        return cls(ContainerKind.COLLECTION, space_id=space_id, group_id=group_id, collection_id=collection_id)

    @classmethod
    def status_column(
        cls,
        space_id: str,
        collection_id: str,
        status: ItemStatus | str,
        group_id: Optional[str] = None,
    ) -> "Locator":
        return cls(
            ContainerKind.STATUS,
            space_id=space_id,
            group_id=group_id,
            collection_id=collection_id,
            status=ItemStatus(status),
        )

    @classmethod
    def stage_column(cls, stage: int) -> "Locator":
        return cls(ContainerKind.STAGE, stage=int(stage))

    # -- helpers ------------------------------------------------------------

    def accepts(self, kind: EntityKind) -> bool:
        return kind in ACCEPTS.get(self.kind, frozenset())

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value}
        for key in ("space_id", "group_id", "collection_id", "stage"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.status is not None:
            data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Locator":
        try:
            kind = ContainerKind(str(data.get("kind")))
        except ValueError:
            raise ValueError(f"Unknown container kind {data.get('kind')!r}") from None
        stage = data.get("stage")
        status = data.get("status")
        return cls(
            kind,
            space_id=data.get("space_id"),
            group_id=data.get("group_id"),
            collection_id=data.get("collection_id"),
            stage=int(stage) if stage is not None else None,
            status=ItemStatus(status) if status is not None else None,
        )
