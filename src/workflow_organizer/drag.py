"""Drag session state machine.

A session is an immutable value; each transition takes a session and returns
a new one, so the presentation layer can keep the current value and never
worry about a half-applied transition.

States::

    idle -> dragging -> hovering_legal | hovering_no_target
         -> dropped | cancelled      (at rest, like idle)

Only ``hovering_legal`` commits on drop.  A drop while at rest is ignored,
which makes duplicate drop events harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from .errors import InvalidTarget, NotFound
from .locator import ContainerKind, Locator
from .model import EntityKind, ItemStatus


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    HOVERING_LEGAL = "hovering_legal"
    HOVERING_NO_TARGET = "hovering_no_target"
    DROPPED = "dropped"
    CANCELLED = "cancelled"

    @property
    def at_rest(self) -> bool:
        return self in (DragState.IDLE, DragState.DROPPED, DragState.CANCELLED)


class DropOutcome(str, Enum):
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DragSource:
    """What was picked up and where it sat at that moment."""

    entity_id: str
    kind: EntityKind
    locator: Locator
    index: int = 0
    status: Optional[ItemStatus] = None

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "locator": self.locator.to_dict(),
            "index": self.index,
            "status": self.status.value if self.status else None,
        }


@dataclass(frozen=True)
class DropTarget:
    locator: Locator
    index: Optional[int] = None

    def to_dict(self) -> dict:
        return {"locator": self.locator.to_dict(), "index": self.index}


@dataclass(frozen=True)
class DragSession:
    state: DragState = DragState.IDLE
    source: Optional[DragSource] = None
    target: Optional[DropTarget] = None
    last_outcome: Optional[DropOutcome] = None
    notice: Optional[dict] = None

    @property
    def active(self) -> bool:
        return not self.state.at_rest

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "source": self.source.to_dict() if self.source else None,
            "target": self.target.to_dict() if self.target else None,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "notice": dict(self.notice) if self.notice else None,
        }


# A resolver looks up the live container a drop would land in and returns how
# many entries of the dragged kind it holds, or None when it no longer exists.
# A commit applies the move to the model and returns whether anything changed.
Resolver = Callable[[Locator, EntityKind], Optional[int]]
Commit = Callable[[DragSource, DropTarget], bool]


# ---------------------------------------------------------------------------
# Legality
# ---------------------------------------------------------------------------

def _same_container(source: DragSource, target: Locator) -> bool:
    here = source.locator
    if target.kind == ContainerKind.STAGE:
        return here.kind == ContainerKind.STAGE and here.stage == target.stage
    if target.kind == ContainerKind.STATUS:
        return here.collection_id == target.collection_id and source.status == target.status
    if target.kind == ContainerKind.COLLECTION:
        return here.collection_id == target.collection_id
    return here.kind == target.kind and here.space_id == target.space_id and here.group_id == target.group_id


def is_noop(source: DragSource, target: DropTarget, size: Optional[int] = None) -> bool:
    """True when dropping *source* on *target* would leave it where it is.

    With the container *size* known, the index is clamped the same way a move
    within the container clamps it, so dropping past the end of a list onto
    an entry that is already last counts as a no-op.
    """
    if not _same_container(source, target.locator):
        return False
    if target.locator.kind == ContainerKind.STAGE:
        return True
    if target.index is None:
        return True
    index = max(int(target.index), 0)
    if size is not None:
        index = min(index, max(size - 1, 0))
    return index == source.index


def is_legal(source: DragSource, target: DropTarget, resolver: Optional[Resolver] = None) -> bool:
    if not target.locator.accepts(source.kind):
        return False
    size = None
    if resolver is not None:
        size = resolver(target.locator, source.kind)
        if size is None:
            return False
    return not is_noop(source, target, size)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def pick_up(session: DragSession, source: DragSource) -> DragSession:
    if not session.state.at_rest:
        logger.debug("Ignoring pick-up of {} while {}", source.entity_id, session.state.value)
        return session
    return DragSession(state=DragState.DRAGGING, source=source, last_outcome=session.last_outcome)


def hover(session: DragSession, target: DropTarget, resolver: Optional[Resolver] = None) -> DragSession:
    if session.state.at_rest or session.source is None:
        return session
    legal = is_legal(session.source, target, resolver)
    logger.debug(
        "Hover {} over {}: {}",
        session.source.entity_id,
        target.locator.to_dict(),
        "legal" if legal else "no target",
    )
    state = DragState.HOVERING_LEGAL if legal else DragState.HOVERING_NO_TARGET
    return replace(session, state=state, target=target)


def leave(session: DragSession) -> DragSession:
    if session.state not in (DragState.HOVERING_LEGAL, DragState.HOVERING_NO_TARGET):
        return session
    return replace(session, state=DragState.DRAGGING, target=None)


def cancel(session: DragSession) -> DragSession:
    if session.state.at_rest:
        return session
    return DragSession(state=DragState.CANCELLED, last_outcome=DropOutcome.CANCELLED)


def drop(session: DragSession, commit: Commit) -> DragSession:
    """Finish the session, committing through *commit* when the hover is legal.

    ``NotFound`` and ``InvalidTarget`` from *commit* mean the model changed
    under the drag (a stale id); the session aborts to idle with a notice and
    the model is left as *commit* found it.
    """
    if session.state.at_rest:
        return replace(session, last_outcome=DropOutcome.IGNORED)
    if session.state != DragState.HOVERING_LEGAL or session.source is None or session.target is None:
        return cancel(session)
    try:
        commit(session.source, session.target)
    except (NotFound, InvalidTarget) as exc:
        logger.warning("Drop of {} aborted: {}", session.source.entity_id, exc.message)
        return DragSession(state=DragState.IDLE, last_outcome=DropOutcome.ABORTED, notice=exc.to_dict())
    return DragSession(state=DragState.DROPPED, last_outcome=DropOutcome.COMMITTED)
