"""Ordered container of id references.

The container is the only place where positional ownership lives: an entity
belongs to whichever container's id list holds its id.  Positions are zero
based and dense, and no id appears twice.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from loguru import logger

from .errors import NotFound


class OrderedContainer:
    """A dense, duplicate-free ordered list of ids."""

    __slots__ = ("_ids",)

    def __init__(self, ids: Optional[Iterable[str]] = None) -> None:
        self._ids: list[str] = []
        for item_id in ids or ():
            self.insert_at(len(self._ids), item_id)

    # -- reads --------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._ids))

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def __eq__(self, other: object) -> bool:
        if isinstance(other, OrderedContainer):
            return self._ids == other._ids
        return NotImplemented

    def __repr__(self) -> str:
        return f"OrderedContainer({self._ids!r})"

    def ids(self) -> tuple[str, ...]:
        """Return a snapshot of the ids; the live list never escapes."""
        return tuple(self._ids)

    def index_of(self, item_id: str) -> int:
        try:
            return self._ids.index(item_id)
        except ValueError:
            raise NotFound(f"{item_id} is not in this container", item_id=item_id) from None

    def clamp(self, index: Optional[int], *, moving_within: bool = False) -> int:
        """Clamp *index* to a valid insert position.

        ``None`` means "append".  When the entry already lives here the list
        is one shorter once it has been detached, so the upper bound drops by
        one.
        """
        upper = len(self._ids) - 1 if moving_within else len(self._ids)
        upper = max(upper, 0)
        if index is None:
            return upper
        return max(0, min(int(index), upper))

    def copy(self) -> "OrderedContainer":
        clone = OrderedContainer()
        clone._ids = list(self._ids)
        return clone

    def __deepcopy__(self, memo: dict) -> "OrderedContainer":
        return self.copy()

    # -- mutations ----------------------------------------------------------

    def insert_at(self, index: Optional[int], item_id: str) -> int:
        """Insert *item_id* at *index* (clamped) and return the final position."""
        if item_id in self._ids:
            raise ValueError(f"{item_id} already exists in this container")
        pos = self.clamp(index)
        self._ids.insert(pos, item_id)
        return pos

    def remove_by_id(self, item_id: str) -> str:
        try:
            pos = self._ids.index(item_id)
        except ValueError:
            logger.warning("Cannot remove {}: not in container", item_id)
            raise NotFound(f"{item_id} is not in this container", item_id=item_id) from None
        del self._ids[pos]
        return item_id

    def move_within(self, item_id: str, new_index: Optional[int]) -> bool:
        """Move *item_id* to *new_index*; returns False when nothing changed."""
        current = self.index_of(item_id)
        target = self.clamp(new_index, moving_within=True)
        if target == current:
            return False
        # Build the new order first so a failure never leaves a partial list.
        reordered = [i for i in self._ids if i != item_id]
        reordered.insert(target, item_id)
        self._ids = reordered
        return True
