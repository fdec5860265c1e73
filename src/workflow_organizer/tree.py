"""Containment tree: spaces → groups → leaf collections → work items.

Entities live in id-indexed lookup tables.  Ownership is established by which
parent's :class:`OrderedContainer` holds an id, never by a back-pointer, so a
move is always "detach from one id list, insert into another".  Every
operation validates before it mutates; a raised error leaves the tree as it
was.

Reads hand out deep copies.  The live entities never leave this module, which
keeps callers from breaking the single-owner invariant behind the tree's back.
"""

from __future__ import annotations

import copy
from typing import Any, Optional

from loguru import logger

from .errors import InvalidTarget, NotFound
from .locator import ContainerKind, Locator
from .model import (
    EntityKind,
    Group,
    ItemPriority,
    ItemStatus,
    LeafCollection,
    Space,
    Subtask,
    WorkItem,
    coerce_work_item_changes,
)
from .ordered import OrderedContainer


def _require_name(name: str, what: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError(f"{what} name must be non-empty")
    return cleaned


class WorkspaceTree:
    """A forest of spaces with single ownership of every child."""

    def __init__(self) -> None:
        self._space_order = OrderedContainer()
        self._spaces: dict[str, Space] = {}
        self._groups: dict[str, Group] = {}
        self._collections: dict[str, LeafCollection] = {}
        self._items: dict[str, WorkItem] = {}

    # ------------------------------------------------------------------
    # Construction from parts (used by the snapshot codec)
    # ------------------------------------------------------------------

    @classmethod
    def from_parts(
        cls,
        spaces: list[Space],
        groups: list[Group],
        collections: list[LeafCollection],
        items: list[WorkItem],
    ) -> "WorkspaceTree":
        """Assemble a tree from already-linked entities.

        Raises :class:`ValueError` when an id is duplicated, dangling, or owned
        by more than one container.
        """
        tree = cls()
        for table, entities, what in (
            (tree._spaces, spaces, "space"),
            (tree._groups, groups, "group"),
            (tree._collections, collections, "collection"),
            (tree._items, items, "item"),
        ):
            for entity in entities:
                if entity.id in table:
                    raise ValueError(f"Duplicate {what} id {entity.id}")
                table[entity.id] = entity
        for space in spaces:
            tree._space_order.insert_at(None, space.id)
        errors = tree.validate()
        if errors:
            raise ValueError("; ".join(errors))
        return tree

    def validate(self) -> list[str]:
        """Return ownership violations (empty list = healthy)."""
        errors: list[str] = []
        group_owners: dict[str, int] = {}
        collection_owners: dict[str, int] = {}
        item_owners: dict[str, int] = {}

        for space_id in self._space_order:
            space = self._spaces.get(space_id)
            if space is None:
                errors.append(f"space order references unknown space {space_id}")
                continue
            for gid in space.group_ids:
                group_owners[gid] = group_owners.get(gid, 0) + 1
            for cid in space.collection_ids:
                collection_owners[cid] = collection_owners.get(cid, 0) + 1
        for group in self._groups.values():
            for cid in group.collection_ids:
                collection_owners[cid] = collection_owners.get(cid, 0) + 1
        for collection in self._collections.values():
            for iid in collection.item_ids:
                item_owners[iid] = item_owners.get(iid, 0) + 1

        if set(self._space_order.ids()) != set(self._spaces):
            errors.append("space table and space order disagree")
        for what, table, owners in (
            ("group", self._groups, group_owners),
            ("collection", self._collections, collection_owners),
            ("item", self._items, item_owners),
        ):
            for entity_id, count in owners.items():
                if entity_id not in table:
                    errors.append(f"dangling {what} reference {entity_id}")
                elif count > 1:
                    errors.append(f"{what} {entity_id} has {count} owners")
            for entity_id in table:
                if entity_id not in owners:
                    errors.append(f"orphaned {what} {entity_id}")
        return errors

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WorkspaceTree):
            return NotImplemented
        return (
            self._space_order == other._space_order
            and self._spaces == other._spaces
            and self._groups == other._groups
            and self._collections == other._collections
            and self._items == other._items
        )

    def copy(self) -> "WorkspaceTree":
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _space(self, space_id: Optional[str]) -> Space:
        space = self._spaces.get(space_id or "")
        if space is None:
            raise NotFound(f"Space {space_id} not found", space_id=space_id)
        return space

    def _group(self, group_id: Optional[str]) -> Group:
        group = self._groups.get(group_id or "")
        if group is None:
            raise NotFound(f"Group {group_id} not found", group_id=group_id)
        return group

    def _collection(self, collection_id: Optional[str]) -> LeafCollection:
        collection = self._collections.get(collection_id or "")
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found", collection_id=collection_id)
        return collection

    def _item(self, item_id: str) -> WorkItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", item_id=item_id)
        return item

    def entity_kind(self, entity_id: str) -> EntityKind:
        if entity_id in self._items:
            return EntityKind.WORK_ITEM
        if entity_id in self._collections:
            return EntityKind.COLLECTION
        if entity_id in self._groups:
            return EntityKind.GROUP
        if entity_id in self._spaces:
            return EntityKind.SPACE
        raise NotFound(f"{entity_id} not found", entity_id=entity_id)

    def __contains__(self, entity_id: object) -> bool:
        return any(entity_id in t for t in (self._spaces, self._groups, self._collections, self._items))

    def _owner_of_group(self, group_id: str) -> Space:
        for space in self._spaces.values():
            if group_id in space.group_ids:
                return space
        raise NotFound(f"Group {group_id} has no owner", group_id=group_id)

    def _owner_of_collection(self, collection_id: str) -> tuple[Space, Optional[Group]]:
        for space in self._spaces.values():
            if collection_id in space.collection_ids:
                return space, None
            for gid in space.group_ids:
                if collection_id in self._groups[gid].collection_ids:
                    return space, self._groups[gid]
        raise NotFound(f"Collection {collection_id} has no owner", collection_id=collection_id)

    def _owner_of_item(self, item_id: str) -> LeafCollection:
        for collection in self._collections.values():
            if item_id in collection.item_ids:
                return collection
        raise NotFound(f"Item {item_id} has no owner", item_id=item_id)

    def collection_locator(self, collection_id: str) -> Locator:
        self._collection(collection_id)
        space, group = self._owner_of_collection(collection_id)
        return Locator.collection(space.id, collection_id, group.id if group else None)

    def locate(self, entity_id: str) -> tuple[EntityKind, Locator, int]:
        """Return ``(kind, locator_of_owning_container, index)`` for *entity_id*."""
        kind = self.entity_kind(entity_id)
        if kind == EntityKind.SPACE:
            raise InvalidTarget("Spaces are top-level and have no owning container", entity_id=entity_id)
        if kind == EntityKind.GROUP:
            space = self._owner_of_group(entity_id)
            return kind, Locator.space(space.id), space.group_ids.index_of(entity_id)
        if kind == EntityKind.COLLECTION:
            space, group = self._owner_of_collection(entity_id)
            if group is None:
                return kind, Locator.space(space.id), space.collection_ids.index_of(entity_id)
            return kind, Locator.group(space.id, group.id), group.collection_ids.index_of(entity_id)
        collection = self._owner_of_item(entity_id)
        return kind, self.collection_locator(collection.id), collection.item_ids.index_of(entity_id)

    def _resolve_collection(self, locator: Locator) -> LeafCollection:
        space = self._space(locator.space_id)
        collection = self._collection(locator.collection_id)
        if locator.group_id:
            group = self._group(locator.group_id)
            if locator.group_id not in space.group_ids or collection.id not in group.collection_ids:
                raise NotFound(
                    f"Collection {collection.id} is not in group {locator.group_id}",
                    locator=locator.to_dict(),
                )
        elif collection.id not in space.collection_ids:
            raise NotFound(f"Collection {collection.id} is not at the root of {space.id}", locator=locator.to_dict())
        return collection

    def _container_for(self, locator: Locator, kind: EntityKind) -> OrderedContainer:
        """Resolve the live ordered container *locator* addresses for *kind*."""
        if not locator.accepts(kind) or locator.kind == ContainerKind.STAGE:
            raise InvalidTarget(
                f"A {locator.kind.value} container cannot hold a {kind.value}",
                locator=locator.to_dict(),
                kind=kind.value,
            )
        if locator.kind == ContainerKind.SPACE:
            space = self._space(locator.space_id)
            return space.group_ids if kind == EntityKind.GROUP else space.collection_ids
        if locator.kind == ContainerKind.GROUP:
            space = self._space(locator.space_id)
            group = self._group(locator.group_id)
            if group.id not in space.group_ids:
                raise NotFound(f"Group {group.id} is not in space {space.id}", locator=locator.to_dict())
            return group.collection_ids
        if locator.kind == ContainerKind.STATUS and locator.status is None:
            raise InvalidTarget("A status column needs a status", locator=locator.to_dict())
        return self._resolve_collection(locator).item_ids

    def container_size(self, locator: Locator, kind: EntityKind) -> int:
        """Length of the ordered container a move of *kind* to *locator* lands in."""
        return len(self._container_for(locator, kind))

    def container_ids(self, locator: Locator, kind: Optional[EntityKind] = None) -> tuple[str, ...]:
        """Ids held by the container at *locator* (for space roots, pick with *kind*)."""
        if kind is None:
            kind = {
                ContainerKind.SPACE: EntityKind.COLLECTION,
                ContainerKind.GROUP: EntityKind.COLLECTION,
            }.get(locator.kind, EntityKind.WORK_ITEM)
        ids = self._container_for(locator, kind).ids()
        if locator.kind == ContainerKind.STATUS:
            ids = tuple(i for i in ids if self._items[i].status == locator.status)
        return ids

    # ------------------------------------------------------------------
    # Defensive-copy reads
    # ------------------------------------------------------------------

    def space_ids(self) -> tuple[str, ...]:
        return self._space_order.ids()

    def get_space(self, space_id: str) -> Space:
        return copy.deepcopy(self._space(space_id))

    def get_group(self, group_id: str) -> Group:
        return copy.deepcopy(self._group(group_id))

    def get_collection(self, collection_id: str) -> LeafCollection:
        return copy.deepcopy(self._collection(collection_id))

    def get_item(self, item_id: str) -> WorkItem:
        return copy.deepcopy(self._item(item_id))

    def spaces(self) -> list[Space]:
        return [copy.deepcopy(self._spaces[sid]) for sid in self._space_order]

    def counts(self) -> dict[str, int]:
        return {
            "spaces": len(self._spaces),
            "groups": len(self._groups),
            "collections": len(self._collections),
            "items": len(self._items),
        }

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def add_space(
        self,
        name: str,
        *,
        color: str = "bg-gray-500",
        icon: Optional[str] = None,
        is_open: bool = True,
        index: Optional[int] = None,
    ) -> Space:
        name = _require_name(name, "Space")
        space = Space(name=name, color=color, icon=icon or name[:1].upper(), is_open=is_open)
        self._spaces[space.id] = space
        self._space_order.insert_at(index, space.id)
        logger.info("Created space {}: {}", space.id, name)
        return copy.deepcopy(space)

    def add_group(self, space_id: str, name: str, *, index: Optional[int] = None) -> Group:
        space = self._space(space_id)
        group = Group(name=_require_name(name, "Group"), is_open=True)
        self._groups[group.id] = group
        space.group_ids.insert_at(index, group.id)
        space.is_open = True
        logger.info("Created group {} in space {}", group.id, space_id)
        return copy.deepcopy(group)

    def add_collection(
        self,
        space_id: str,
        name: str,
        *,
        group_id: Optional[str] = None,
        index: Optional[int] = None,
    ) -> LeafCollection:
        space = self._space(space_id)
        target = space.collection_ids
        if group_id is not None:
            group = self._group(group_id)
            if group_id not in space.group_ids:
                raise NotFound(f"Group {group_id} is not in space {space_id}", group_id=group_id)
            target = group.collection_ids
            group.is_open = True
        collection = LeafCollection(name=_require_name(name, "Collection"))
        self._collections[collection.id] = collection
        target.insert_at(index, collection.id)
        space.is_open = True
        logger.info("Created collection {} in space {}", collection.id, space_id)
        return copy.deepcopy(collection)

    def add_item(
        self,
        collection_id: str,
        title: str,
        *,
        description: str = "",
        status: ItemStatus | str = ItemStatus.TODO,
        priority: Optional[ItemPriority | str] = None,
        assignee: Optional[str] = None,
        index: Optional[int] = None,
    ) -> WorkItem:
        collection = self._collection(collection_id)
        item = WorkItem(
            title=_require_name(title, "Item"),
            description=description,
            status=ItemStatus(status),
            priority=ItemPriority(priority) if priority else None,
            assignee=assignee,
        )
        self._items[item.id] = item
        collection.item_ids.insert_at(index, item.id)
        logger.info("Created item {} in collection {}", item.id, collection_id)
        return copy.deepcopy(item)

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def move_item(
        self,
        item_id: str,
        from_locator: Locator,
        to_locator: Locator,
        at_index: Optional[int] = None,
    ) -> bool:
        """Move a work item, collection or group between (or within) containers.

        ``at_index`` is the final position in the destination, clamped into
        range.  ``None`` appends to a different container and keeps the
        current position inside the same one.  Returns False for a no-op.
        """
        kind = self.entity_kind(item_id)
        if kind == EntityKind.SPACE:
            raise InvalidTarget("Spaces are reordered with move_space", entity_id=item_id)

        source = self._container_for(from_locator, kind)
        if item_id not in source:
            raise NotFound(
                f"{item_id} is no longer in {from_locator.kind.value} container",
                item_id=item_id,
                locator=from_locator.to_dict(),
            )
        dest = self._container_for(to_locator, kind)

        status_change: Optional[ItemStatus] = None
        if to_locator.kind == ContainerKind.STATUS and self._items[item_id].status != to_locator.status:
            status_change = to_locator.status

        if source is dest:
            current = source.index_of(item_id)
            target = current if at_index is None else source.clamp(at_index, moving_within=True)
            if target == current and status_change is None:
                logger.debug("Move of {} is a no-op", item_id)
                return False
            source.move_within(item_id, target)
        else:
            source.remove_by_id(item_id)
            dest.insert_at(at_index, item_id)

        if status_change is not None:
            item = self._items[item_id]
            item.status = status_change
            item.touch()
        self._reveal(to_locator)
        logger.info(
            "Moved {} {} from {} to {} at {}",
            kind.value,
            item_id,
            from_locator.to_dict(),
            to_locator.to_dict(),
            at_index,
        )
        return True

    def move(self, entity_id: str, to_locator: Locator, at_index: Optional[int] = None) -> bool:
        """Like :meth:`move_item` but the source container is looked up."""
        _, from_locator, _ = self.locate(entity_id)
        return self.move_item(entity_id, from_locator, to_locator, at_index)

    def move_space(self, space_id: str, new_index: int) -> bool:
        self._space(space_id)
        return self._space_order.move_within(space_id, new_index)

    def _reveal(self, locator: Locator) -> None:
        if locator.space_id:
            self._spaces[locator.space_id].is_open = True
        if locator.group_id:
            self._groups[locator.group_id].is_open = True

    # ------------------------------------------------------------------
    # Presentation flags
    # ------------------------------------------------------------------

    def toggle_space(self, space_id: str) -> bool:
        space = self._space(space_id)
        space.is_open = not space.is_open
        return space.is_open

    def toggle_group(self, group_id: str) -> bool:
        group = self._group(group_id)
        group.is_open = not group.is_open
        return group.is_open

    def set_open(self, entity_id: str, is_open: bool) -> None:
        kind = self.entity_kind(entity_id)
        if kind == EntityKind.SPACE:
            self._spaces[entity_id].is_open = bool(is_open)
        elif kind == EntityKind.GROUP:
            self._groups[entity_id].is_open = bool(is_open)
        else:
            raise InvalidTarget(f"A {kind.value} has no open/closed flag", entity_id=entity_id)

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    def rename_space(self, space_id: str, name: str) -> None:
        self._space(space_id).name = _require_name(name, "Space")

    def rename_group(self, group_id: str, name: str) -> None:
        self._group(group_id).name = _require_name(name, "Group")

    def rename_collection(self, collection_id: str, name: str) -> None:
        self._collection(collection_id).name = _require_name(name, "Collection")

    def update_item(self, item_id: str, changes: dict[str, Any]) -> WorkItem:
        item = self._item(item_id)
        coerced = coerce_work_item_changes(changes)
        if "title" in coerced:
            coerced["title"] = _require_name(coerced["title"], "Item")
        for key, value in coerced.items():
            setattr(item, key, value)
        item.touch()
        return copy.deepcopy(item)

    def set_item_status(self, item_id: str, status: ItemStatus | str) -> bool:
        item = self._item(item_id)
        new_status = ItemStatus(status)
        if item.status == new_status:
            return False
        item.status = new_status
        item.touch()
        return True

    def add_subtask(self, item_id: str, title: str) -> Subtask:
        return copy.deepcopy(self._item(item_id).add_subtask(title))

    def toggle_subtask(self, item_id: str, subtask_id: str) -> Subtask:
        return copy.deepcopy(self._item(item_id).toggle_subtask(subtask_id))

    def remove_subtask(self, item_id: str, subtask_id: str) -> Subtask:
        return self._item(item_id).remove_subtask(subtask_id)

    # ------------------------------------------------------------------
    # Deletion (cascading)
    # ------------------------------------------------------------------

    def delete_item(self, item_id: str) -> WorkItem:
        self._item(item_id)
        self._owner_of_item(item_id).item_ids.remove_by_id(item_id)
        item = self._items.pop(item_id)
        logger.info("Deleted item {}", item_id)
        return item

    def _drop_collection(self, collection_id: str) -> int:
        collection = self._collections.pop(collection_id)
        for iid in collection.item_ids:
            self._items.pop(iid, None)
        return len(collection.item_ids)

    def delete_collection(self, collection_id: str) -> int:
        """Delete a collection and its items; returns the number of items removed."""
        self._collection(collection_id)
        space, group = self._owner_of_collection(collection_id)
        (group.collection_ids if group else space.collection_ids).remove_by_id(collection_id)
        removed = self._drop_collection(collection_id)
        logger.info("Deleted collection {} ({} items)", collection_id, removed)
        return removed

    def delete_group(self, group_id: str) -> int:
        """Delete a group with its collections; returns the number of items removed."""
        group = self._group(group_id)
        self._owner_of_group(group_id).group_ids.remove_by_id(group_id)
        removed = sum(self._drop_collection(cid) for cid in group.collection_ids)
        del self._groups[group_id]
        logger.info("Deleted group {} ({} items)", group_id, removed)
        return removed

    def delete_space(self, space_id: str) -> int:
        space = self._space(space_id)
        self._space_order.remove_by_id(space_id)
        removed = 0
        for gid in space.group_ids:
            removed += sum(self._drop_collection(cid) for cid in self._groups[gid].collection_ids)
            del self._groups[gid]
        removed += sum(self._drop_collection(cid) for cid in space.collection_ids)
        del self._spaces[space_id]
        logger.info("Deleted space {} ({} items)", space_id, removed)
        return removed
