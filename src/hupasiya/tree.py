"""Session tree: parent/child links between sessions.

The tree is a forest. Edges are stored on the child row (``parent_id`` and
``sibling_position``), so the "parent has child" and "child has parent"
views can never disagree. Every attach walks the ancestor chain first.

Traversals are lazy generators over fresh reads; calling them again
restarts from the current stored state.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from typing import Callable, Iterator, Optional

from hupasiya.activity import ActivityRecorder
from hupasiya.exceptions import (
    AlreadyAttachedError,
    CycleDetectedError,
    HasChildrenError,
    SessionLockedError,
)
from hupasiya.models.activity import ActivityKind
from hupasiya.models.session import SessionInfo
from hupasiya.store import SessionStore
from hupasiya.storage.schema import SessionRow

logger = logging.getLogger(__name__)


class TraversalOrder(str, enum.Enum):
    BREADTH_FIRST = "breadth_first"
    POST_ORDER = "post_order"

    def __str__(self) -> str:
        return self.value


class SessionTree:
    """Attach/detach and traversal over the session forest."""

    def __init__(self, store: SessionStore, recorder: ActivityRecorder | None = None) -> None:
        self._store = store
        self._recorder = recorder or ActivityRecorder(store)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def attach(self, parent_ref: str, child_ref: str) -> SessionInfo:
        """Attach ``child`` as the last child of ``parent``.

        Attaching to the parent it already has is a no-op.

        Raises:
            SessionNotFoundError: If either session does not exist.
            SessionLockedError: If either session is locked.
            CycleDetectedError: If child is parent or one of its ancestors.
            AlreadyAttachedError: If child already has a different parent.
        """
        parent = self._store.get_row(parent_ref)
        child = self._store.get_row(child_ref)

        if child.id == parent.id or self._store.sessions.has_ancestor(parent.id, child.id):
            raise CycleDetectedError(parent.name, child.name)
        if child.parent_id == parent.id:
            return self._store.to_info(child)
        if child.parent_id is not None:
            raise AlreadyAttachedError(child.name, self._store.name_of(child.parent_id) or "")
        for row in (parent, child):
            if row.locked_by is not None:
                raise SessionLockedError(row.name, row.locked_by)

        with self._store.transaction():
            child.sibling_position = self._store.sessions.next_sibling_position(parent.id)
            child.parent_id = parent.id
            self._store.sessions.save(child)
            self._recorder.record(parent.id, ActivityKind.CHILD_ADDED, child.name)
            self._recorder.record(child.id, ActivityKind.PARENT_LINKED, parent.name)

        logger.debug("Attached %s under %s", child.name, parent.name)
        return self._store.to_info(child)

    def detach(self, ref: str, cascade_detach: bool = False) -> SessionInfo:
        """Remove a session from its parent.

        A session with non-terminal children is only detached when
        ``cascade_detach`` is set; its children are then appended, in order,
        to the detached session's former parent (or become roots).

        Raises:
            SessionLockedError: If the session is locked.
            HasChildrenError: If active children exist and cascade_detach is False.
        """
        row = self._store.get_row(ref)
        if row.locked_by is not None:
            raise SessionLockedError(row.name, row.locked_by)

        children = self._store.sessions.get_children(row.id)
        active = [c.name for c in children if not c.status.is_terminal]
        if active and not cascade_detach:
            raise HasChildrenError(row.name, active)

        former_parent = row.parent_id
        if former_parent is None and not (cascade_detach and children):
            return self._store.to_info(row)

        with self._store.transaction():
            if cascade_detach:
                for c in children:
                    self._reparent(c, former_parent)
            if former_parent is not None:
                row.parent_id = None
                row.sibling_position = 0
                self._store.sessions.save(row)
                self._recorder.record(
                    row.id,
                    ActivityKind.PARENT_UNLINKED,
                    self._store.name_of(former_parent) or "",
                )

        logger.debug("Detached %s (cascade_detach=%s)", row.name, cascade_detach)
        return self._store.to_info(row)

    def _reparent(self, child: SessionRow, new_parent_id: Optional[str]) -> None:
        old_parent = self._store.name_of(child.parent_id) or ""
        if new_parent_id is None:
            child.parent_id = None
            child.sibling_position = 0
            self._store.sessions.save(child)
            self._recorder.record(child.id, ActivityKind.PARENT_UNLINKED, old_parent)
            return
        child.sibling_position = self._store.sessions.next_sibling_position(new_parent_id)
        child.parent_id = new_parent_id
        self._store.sessions.save(child)
        new_parent = self._store.name_of(new_parent_id) or ""
        self._recorder.record(new_parent_id, ActivityKind.CHILD_ADDED, child.name)
        self._recorder.record(child.id, ActivityKind.PARENT_LINKED, new_parent)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def parent(self, ref: str) -> SessionInfo | None:
        row = self._store.get_row(ref)
        if row.parent_id is None:
            return None
        return self._store.info(row.parent_id)

    def children(self, ref: str) -> list[SessionInfo]:
        row = self._store.get_row(ref)
        return [self._store.to_info(c) for c in self._store.sessions.get_children(row.id)]

    def ancestors(self, ref: str) -> list[SessionInfo]:
        """Ancestors nearest-first, ending at the root."""
        row = self._store.get_row(ref)
        result: list[SessionInfo] = []
        seen = {row.id}
        while row.parent_id is not None and row.parent_id not in seen:
            row = self._store.get_row(row.parent_id)
            seen.add(row.id)
            result.append(self._store.to_info(row))
        return result

    def roots(self) -> list[SessionInfo]:
        return [self._store.to_info(r) for r in self._store.sessions.get_roots()]

    def descendants(
        self,
        ref: str,
        order: TraversalOrder = TraversalOrder.BREADTH_FIRST,
        *,
        prune: Callable[[SessionInfo], bool] | None = None,
    ) -> Iterator[SessionInfo]:
        """Lazily yield every descendant of a session (the session itself excluded).

        Args:
            ref: Session name or id.
            order: Breadth-first in stored child order, or post-order
                (children before their parent).
            prune: If given, descendants for which it returns True are
                neither yielded nor descended into.

        Yields:
            SessionInfo snapshots read as the traversal advances.
        """
        root = self._store.get_row(ref)
        if order == TraversalOrder.BREADTH_FIRST:
            return self._breadth_first(root.id, prune)
        return self._post_order(root.id, prune)

    def _kids(
        self, session_id: str, prune: Callable[[SessionInfo], bool] | None
    ) -> list[SessionInfo]:
        kids = [self._store.to_info(c) for c in self._store.sessions.get_children(session_id)]
        if prune is None:
            return kids
        return [k for k in kids if not prune(k)]

    def _breadth_first(
        self, root_id: str, prune: Callable[[SessionInfo], bool] | None
    ) -> Iterator[SessionInfo]:
        queue = deque(self._kids(root_id, prune))
        seen = {root_id}
        while queue:
            node = queue.popleft()
            if node.id in seen:
                continue
            seen.add(node.id)
            yield node
            queue.extend(self._kids(node.id, prune))

    def _post_order(
        self, root_id: str, prune: Callable[[SessionInfo], bool] | None
    ) -> Iterator[SessionInfo]:
        # Stack of (node, expanded) pairs; a node is yielded on its second visit.
        stack: list[tuple[SessionInfo, bool]] = [
            (k, False) for k in reversed(self._kids(root_id, prune))
        ]
        seen = {root_id}
        while stack:
            node, expanded = stack.pop()
            if expanded:
                yield node
                continue
            if node.id in seen:
                continue
            seen.add(node.id)
            stack.append((node, True))
            stack.extend((k, False) for k in reversed(self._kids(node.id, prune)))

    def subtree(self, ref: str) -> Iterator[tuple[int, SessionInfo]]:
        """Depth-first (pre-order) walk yielding ``(depth, info)``, root at depth 0."""
        root = self._store.info(ref)
        stack: list[tuple[int, SessionInfo]] = [(0, root)]
        seen: set[str] = set()
        while stack:
            depth, node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            yield depth, node
            kids = self._kids(node.id, None)
            stack.extend((depth + 1, k) for k in reversed(kids))

    def depth(self, ref: str) -> int:
        return len(self.ancestors(ref))
