"""Entities of the workspace tree and the stage pipeline.

Tree entities (:class:`Space`, :class:`Group`, :class:`LeafCollection`,
:class:`WorkItem`) never point at their parents.  Ownership is expressed by the
:class:`~workflow_organizer.ordered.OrderedContainer` of the parent holding the
child's id.  Pipeline items reference their stage by number only.

Every entity is a plain dataclass that serializes to a dict with
``to_dict()`` and back with ``from_dict()``; ``from_dict`` is lenient and
fills anything missing from defaults.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import NotFound
from .ordered import OrderedContainer


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ItemStatus(str, Enum):
    """Board column of a work item inside its collection."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_QA = "in_qa"
    DONE = "done"
    ISSUES = "issues"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").upper()


class ItemPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EntityKind(str, Enum):
    """What is being dragged or addressed."""

    WORK_ITEM = "work_item"
    COLLECTION = "collection"
    GROUP = "group"
    SPACE = "space"
    PIPELINE_ITEM = "pipeline_item"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    """Short human-friendly id: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _enum(enum_cls: type[Enum], raw: Any, default: Optional[Enum]) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except (ValueError, KeyError):
        return default


def _str(raw: Any, default: str = "") -> str:
    return default if raw is None else str(raw)


def _opt_str(raw: Any) -> Optional[str]:
    return None if raw is None else str(raw)


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------

@dataclass
class Subtask:
    id: str = field(default_factory=lambda: new_id("sub"))
    title: str = ""
    completed: bool = False
    order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "completed": self.completed, "order": self.order}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=_str(data.get("id")) or new_id("sub"),
            # Older records call the title "name".
            title=_str(data.get("title", data.get("name"))),
            completed=bool(data.get("completed", False)),
            order=int(data.get("order", 0) or 0),
        )


def _renumber(subtasks: list[Subtask]) -> None:
    for idx, sub in enumerate(subtasks):
        sub.order = idx


class _HasSubtasks:
    """Subtask bookkeeping shared by work items and pipeline items."""

    subtasks: list[Subtask]

    def touch(self) -> None:
        self.updated_at = now_iso()

    def add_subtask(self, title: str) -> Subtask:
        title = title.strip()
        if not title:
            raise ValueError("Subtask title must be non-empty")
        sub = Subtask(title=title, order=len(self.subtasks))
        self.subtasks.append(sub)
        self.touch()
        return sub

    def _subtask_index(self, subtask_id: str) -> int:
        for idx, sub in enumerate(self.subtasks):
            if sub.id == subtask_id:
                return idx
        raise NotFound(f"Subtask {subtask_id} not found", subtask_id=subtask_id)

    def toggle_subtask(self, subtask_id: str) -> Subtask:
        sub = self.subtasks[self._subtask_index(subtask_id)]
        sub.completed = not sub.completed
        self.touch()
        return sub

    def remove_subtask(self, subtask_id: str) -> Subtask:
        sub = self.subtasks.pop(self._subtask_index(subtask_id))
        _renumber(self.subtasks)
        self.touch()
        return sub

    @property
    def subtask_progress(self) -> tuple[int, int]:
        done = sum(1 for s in self.subtasks if s.completed)
        return done, len(self.subtasks)


def _subtasks_from(raw: Any) -> list[Subtask]:
    subs = [Subtask.from_dict(s) for s in list(raw or []) if isinstance(s, dict)]
    subs.sort(key=lambda s: s.order)
    _renumber(subs)
    return subs


# ---------------------------------------------------------------------------
# Workspace tree entities
# ---------------------------------------------------------------------------

@dataclass
class WorkItem(_HasSubtasks):
    """A leaf task living in exactly one collection."""

    id: str = field(default_factory=lambda: new_id("item"))
    title: str = ""
    description: str = ""
    status: ItemStatus = ItemStatus.TODO
    priority: Optional[ItemPriority] = None
    assignee: Optional[str] = None
    subtasks: list[Subtask] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value if self.priority else None,
            "assignee": self.assignee,
            "subtasks": [s.to_dict() for s in self.subtasks],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkItem":
        created = _str(data.get("created_at")) or now_iso()
        return cls(
            id=_str(data.get("id")) or new_id("item"),
            title=_str(data.get("title")),
            description=_str(data.get("description")),
            status=_enum(ItemStatus, data.get("status"), ItemStatus.TODO),
            priority=_enum(ItemPriority, data.get("priority"), None),
            assignee=_opt_str(data.get("assignee")),
            subtasks=_subtasks_from(data.get("subtasks")),
            created_at=created,
            updated_at=_str(data.get("updated_at")) or created,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class LeafCollection:
    """A "project" or list: an ordered container of work items."""

    id: str = field(default_factory=lambda: new_id("list"))
    name: str = ""
    item_ids: OrderedContainer = field(default_factory=OrderedContainer)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "item_ids": list(self.item_ids.ids())}


@dataclass
class Group:
    """A folder inside a space, holding leaf collections."""

    id: str = field(default_factory=lambda: new_id("group"))
    name: str = ""
    is_open: bool = True
    collection_ids: OrderedContainer = field(default_factory=OrderedContainer)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_open": self.is_open,
            "collection_ids": list(self.collection_ids.ids()),
        }


@dataclass
class Space:
    """Top-level grouping: groups plus collections held directly."""

    id: str = field(default_factory=lambda: new_id("space"))
    name: str = ""
    color: str = "bg-gray-500"
    icon: str = ""
    is_open: bool = False
    group_ids: OrderedContainer = field(default_factory=OrderedContainer)
    collection_ids: OrderedContainer = field(default_factory=OrderedContainer)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "is_open": self.is_open,
            "group_ids": list(self.group_ids.ids()),
            "collection_ids": list(self.collection_ids.ids()),
        }


# ---------------------------------------------------------------------------
# Pipeline entities
# ---------------------------------------------------------------------------

STAGE_PLACEHOLDER_INSTRUCTIONS = (
    "<strong>Instructions:</strong>\n"
    "<ul>\n"
    "    <li>Add your SOP instructions here</li>\n"
    "</ul>"
)


@dataclass
class Stage:
    """A numbered pipeline step; ``number`` is its identity."""

    number: int
    title: str
    short_title: str = ""
    instructions: str = STAGE_PLACEHOLDER_INSTRUCTIONS

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "short_title": self.short_title,
            "instructions": self.instructions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Stage":
        title = _str(data.get("title"))
        return cls(
            number=int(data.get("number", 0) or 0),
            title=title,
            short_title=_str(data.get("short_title", data.get("shortTitle")), title),
            instructions=_str(data.get("instructions", data.get("sop")), STAGE_PLACEHOLDER_INSTRUCTIONS),
        )


@dataclass
class PipelineItem(_HasSubtasks):
    """A card on the pipeline board (a client site in the product)."""

    id: str = field(default_factory=lambda: new_id("card"))
    name: str = ""
    title: Optional[str] = None
    description: str = ""
    domain: Optional[str] = None
    repo_url: Optional[str] = None
    notes: Optional[str] = None
    is_mobile_business: bool = False
    stage: int = 1
    archived: bool = False
    subtasks: list[Subtask] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_title(self) -> str:
        return self.title or self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "domain": self.domain,
            "repo_url": self.repo_url,
            "notes": self.notes,
            "is_mobile_business": self.is_mobile_business,
            "stage": self.stage,
            "archived": self.archived,
            "subtasks": [s.to_dict() for s in self.subtasks],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineItem":
        d = dict(data)
        created = _str(d.get("created_at", d.get("createdAt"))) or now_iso()
        stage_raw = d.get("stage", d.get("currentStep", 1))
        try:
            stage = int(stage_raw)
        except (TypeError, ValueError):
            stage = 1
        return cls(
            id=_str(d.get("id")) or new_id("card"),
            name=_str(d.get("name", d.get("clientName"))),
            title=_opt_str(d.get("title", d.get("taskName"))),
            description=_str(d.get("description")),
            domain=_opt_str(d.get("domain")),
            repo_url=_opt_str(d.get("repo_url", d.get("repoUrl"))),
            notes=_opt_str(d.get("notes")),
            is_mobile_business=bool(d.get("is_mobile_business", d.get("isMobileBusiness", False))),
            stage=stage,
            archived=bool(d.get("archived", False)),
            subtasks=_subtasks_from(d.get("subtasks")),
            created_at=created,
            updated_at=_str(d.get("updated_at")) or created,
            metadata=dict(d.get("metadata") or {}),
        )


# Fields callers may change through ``update_item``; identity and ownership
# are excluded.
WORK_ITEM_MUTABLE_FIELDS = frozenset({"title", "description", "status", "priority", "assignee", "metadata"})
PIPELINE_ITEM_MUTABLE_FIELDS = frozenset(
    f.name for f in fields(PipelineItem)
    if f.name not in {"id", "stage", "archived", "subtasks", "created_at", "updated_at"}
)


def _coerce_field_types(
    out: dict[str, Any],
    *,
    text: frozenset[str],
    optional_text: frozenset[str],
    flags: frozenset[str] = frozenset(),
) -> None:
    for key in out.keys() & text:
        if out[key] is None:
            raise ValueError(f"{key} cannot be null")
        out[key] = str(out[key])
    for key in out.keys() & optional_text:
        if out[key] is not None:
            out[key] = str(out[key])
    for key in out.keys() & flags:
        if not isinstance(out[key], bool):
            raise ValueError(f"{key} must be a boolean")
    if "metadata" in out:
        if not isinstance(out["metadata"], dict):
            raise ValueError("metadata must be a mapping")
        out["metadata"] = dict(out["metadata"])


def coerce_work_item_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Validate and coerce a partial update for a :class:`WorkItem`.

    Raises ``ValueError`` before anything is written, so a rejected update
    leaves the item untouched.
    """
    unknown = set(changes) - WORK_ITEM_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")
    out = dict(changes)
    _coerce_field_types(
        out,
        text=frozenset({"title", "description"}),
        optional_text=frozenset({"assignee"}),
    )
    if "status" in out:
        try:
            out["status"] = ItemStatus(out["status"])
        except ValueError:
            raise ValueError(f"Unknown status {out['status']!r}") from None
    if "priority" in out and out["priority"] is not None:
        try:
            out["priority"] = ItemPriority(out["priority"])
        except ValueError:
            raise ValueError(f"Unknown priority {out['priority']!r}") from None
    return out


def coerce_pipeline_item_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Validate and coerce pipeline item fields for creation or update."""
    unknown = set(changes) - PIPELINE_ITEM_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")
    out = dict(changes)
    _coerce_field_types(
        out,
        text=frozenset({"name", "description"}),
        optional_text=frozenset({"title", "domain", "repo_url", "notes"}),
        flags=frozenset({"is_mobile_business"}),
    )
    return out
