"""
Parent/child index over a set of work items.

The tree is an id index plus an adjacency map from parent id to child ids.
Items never hold pointers to each other, so a dangling or cyclic
``parent_id`` cannot break traversal. An item whose parent is missing from
the indexed set is shown as a root; this is a display rule only and never
changes the stored ``parent_id``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from worklog.core.items.models import WorkItem


class WorkItemTree:
    """
    Read-only hierarchy view over a collection of work items.

    Example:
        >>> tree = WorkItemTree(items)
        >>> for item, depth in tree.walk():
        ...     print("  " * depth + item.title)
    """

    def __init__(self, items: Iterable[WorkItem]) -> None:
        self._items: dict[str, WorkItem] = {}
        for item in items:
            self._items[item.id] = item

        self._children: dict[str, list[str]] = {}
        for item in self._items.values():
            if item.parent_id is not None and item.parent_id in self._items:
                self._children.setdefault(item.parent_id, []).append(item.id)

        self._cycle_ids = self._find_cycle_members()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def get(self, item_id: str) -> WorkItem | None:
        return self._items.get(item_id)

    def _sorted(self, ids: Iterable[str]) -> list[WorkItem]:
        return sorted(
            (self._items[i] for i in ids),
            key=lambda item: (item.sort_index, item.created_at, item.id),
        )

    def _find_cycle_members(self) -> set[str]:
        """Ids of items whose ancestor chain loops back on itself."""
        members: set[str] = set()
        for start in self._items:
            seen: list[str] = []
            current: str | None = start
            while current is not None and current in self._items:
                if current in seen:
                    members.update(seen[seen.index(current) :])
                    break
                if current in members:
                    break
                seen.append(current)
                current = self._items[current].parent_id
        return members

    def cycles(self) -> list[list[WorkItem]]:
        """
        Groups of items that form parent cycles.

        Each group is ordered like siblings (sortIndex, then createdAt).
        """
        remaining = set(self._cycle_ids)
        groups: list[list[WorkItem]] = []
        while remaining:
            start = min(remaining)
            group = [start]
            current = self._items[start].parent_id
            while current is not None and current != start:
                group.append(current)
                current = self._items[current].parent_id
            remaining.difference_update(group)
            groups.append(self._sorted(group))
        return groups

    def roots(self) -> list[WorkItem]:
        """
        Top-level items for display.

        Includes items with no parent, items whose parent is not in this
        tree, and one entry point into every parent cycle.
        """
        root_ids = [
            item.id
            for item in self._items.values()
            if item.parent_id is None or item.parent_id not in self._items
        ]
        for group in self.cycles():
            root_ids.append(group[0].id)
        return self._sorted(root_ids)

    def children(self, item_id: str) -> list[WorkItem]:
        """Direct children of an item ordered by sortIndex."""
        return self._sorted(self._children.get(item_id, []))

    def walk(self) -> Iterator[tuple[WorkItem, int]]:
        """
        Depth-first traversal yielding ``(item, depth)``.

        Every item is yielded exactly once, even when parent links form a
        cycle.
        """
        visited: set[str] = set()
        stack: list[tuple[WorkItem, int]] = [(root, 0) for root in reversed(self.roots())]
        while stack:
            item, depth = stack.pop()
            if item.id in visited:
                continue
            visited.add(item.id)
            yield item, depth
            for child in reversed(self.children(item.id)):
                if child.id not in visited:
                    stack.append((child, depth + 1))
