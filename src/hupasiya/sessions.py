"""Session lifecycle: register, close, lock, unlock, link, list.

Also provides ``exclusive``, the lock-all-or-nothing context manager the
orchestration and shepherd engines wrap their sweeps in.
"""

from __future__ import annotations

import getpass
import logging
import re
import socket
import uuid
from contextlib import contextmanager
from typing import Iterator, Sequence

from hupasiya.activity import ActivityRecorder
from hupasiya.exceptions import (
    InvalidSessionNameError,
    SessionExistsError,
    SessionLockedError,
    ValidationError,
    WorkspaceMissingError,
)
from hupasiya.models.activity import ActivityKind
from hupasiya.models.session import ChangeRequestStatus, SessionInfo, SessionStatus
from hupasiya.protocols import Workspace
from hupasiya.store import SessionStore, utcnow
from hupasiya.storage.schema import SessionRow
from hupasiya.tree import SessionTree

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


def default_owner() -> str:
    """Lock owner string in ``user@host`` form."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


def validate_name(name: str) -> None:
    """Reject names that cannot serve as a session (and branch) name.

    Raises:
        InvalidSessionNameError: With the first rule the name breaks.
    """
    if not name or not name.strip():
        raise InvalidSessionNameError(name, "name cannot be empty")
    if "/" in name or "\\" in name:
        raise InvalidSessionNameError(name, "name cannot contain slashes")
    if name.startswith("-"):
        raise InvalidSessionNameError(name, "name cannot start with '-'")
    if not _NAME_RE.match(name):
        raise InvalidSessionNameError(
            name, "only letters, digits, '.', '-' and '_' are allowed"
        )


@contextmanager
def exclusive(
    store: SessionStore,
    rows: Sequence[SessionRow],
    owner: str,
) -> Iterator[None]:
    """Hold the lock on every row for the duration of the block.

    Locks are taken one row at a time with an atomic check-and-set. If any
    row is already locked, the locks taken so far are released and
    SessionLockedError is raised before the block runs. All locks are
    released when the block exits, however it exits.
    """
    acquired: list[SessionRow] = []
    seen: set[str] = set()
    try:
        for row in rows:
            if row.id in seen:
                continue
            seen.add(row.id)
            if not store.sessions.try_lock(row.id, owner):
                current = store.sessions.get(row.id)
                holder = current.locked_by if current is not None else None
                raise SessionLockedError(row.name, holder)
            acquired.append(row)
        store.commit()
    except Exception:
        # Nothing was committed yet, so rolling back releases every lock taken.
        store.rollback()
        raise

    try:
        yield
    finally:
        for row in acquired:
            store.sessions.unlock(row.id, owner)
        store.commit()
        logger.debug("Released %d lock(s) held by %s", len(acquired), owner)


class SessionManager:
    """Registers sessions and manages their lifecycle metadata."""

    def __init__(
        self,
        store: SessionStore,
        workspace: Workspace | None = None,
        recorder: ActivityRecorder | None = None,
    ) -> None:
        self._store = store
        self._workspace = workspace
        self._recorder = recorder or ActivityRecorder(store)
        self._tree = SessionTree(store, self._recorder)

    def register(
        self,
        name: str,
        workspace_ref: str,
        *,
        parent: str | None = None,
        agent_type: str = "feature",
        notes: str = "",
    ) -> SessionInfo:
        """Create a session bound to an existing workspace.

        Branch, base branch, VCS kind and commit are read from the
        workspace collaborator.

        Args:
            name: Unique session name.
            workspace_ref: Opaque workspace reference.
            parent: Optional parent session to attach under.
            agent_type: Agent type label (one of KNOWN_AGENT_TYPES or custom).
            notes: Free-form notes.

        Returns:
            Snapshot of the new session.

        Raises:
            InvalidSessionNameError: If the name is malformed.
            SessionExistsError: If the name is taken.
            WorkspaceMissingError: If the workspace does not resolve.
            SessionLockedError: If the parent is locked.
        """
        validate_name(name)
        if self._store.sessions.get_by_name(name) is not None:
            raise SessionExistsError(name)
        if self._workspace is None:
            raise ValidationError("A workspace is required to register sessions")
        parent_row = self._store.get_row(parent) if parent is not None else None
        if parent_row is not None and parent_row.locked_by is not None:
            raise SessionLockedError(parent_row.name, parent_row.locked_by)

        ws = self._workspace.resolve(workspace_ref)
        if ws is None:
            raise WorkspaceMissingError(workspace_ref)

        now = utcnow()
        row = SessionRow(
            id=uuid.uuid4().hex,
            name=name,
            parent_id=None,
            sibling_position=0,
            workspace_ref=workspace_ref,
            vcs_kind=ws.vcs_kind,
            branch=ws.branch,
            base_branch=ws.base_branch,
            status=SessionStatus.ACTIVE,
            agent_type=agent_type,
            commit_ref=ws.commit,
            closure_candidate=False,
            notes=notes,
            created_at=now,
            last_active=now,
        )
        with self._store.transaction():
            self._store.sessions.save(row)
            self._recorder.record(
                row.id,
                ActivityKind.SESSION_CREATED,
                f"{agent_type} session on {ws.branch} ({ws.vcs_kind.value})",
            )
        logger.info("Registered session %s on %s", name, ws.branch)

        if parent_row is not None:
            return self._tree.attach(parent_row.id, row.id)
        return self._store.to_info(row)

    def set_status(self, ref: str, status: SessionStatus) -> SessionInfo:
        """Change a session's status. Locked sessions are rejected."""
        row = self._store.get_row(ref)
        if row.locked_by is not None:
            raise SessionLockedError(row.name, row.locked_by)
        if row.status == status:
            return self._store.to_info(row)
        with self._store.transaction():
            old = row.status
            row.status = status
            self._store.sessions.save(row)
            self._recorder.record(
                row.id, ActivityKind.STATUS_CHANGED, f"{old.value} -> {status.value}"
            )
        return self._store.to_info(row)

    def close(self, ref: str, status: SessionStatus = SessionStatus.INTEGRATED) -> SessionInfo:
        """Move a session into a terminal status.

        Raises:
            ValidationError: If ``status`` is not terminal.
            SessionLockedError: If the session is locked.
        """
        if not status.is_terminal:
            raise ValidationError(
                f"close() needs a terminal status, got '{status.value}'"
            )
        return self.set_status(ref, status)

    def lock(self, ref: str, owner: str | None = None) -> SessionInfo:
        """Lock a session for exclusive use.

        Raises:
            SessionLockedError: If someone already holds the lock.
        """
        owner = owner or default_owner()
        row = self._store.get_row(ref)
        with self._store.transaction():
            if not self._store.sessions.try_lock(row.id, owner):
                raise SessionLockedError(row.name, row.locked_by)
            self._recorder.record(row.id, ActivityKind.LOCKED, owner)
        return self._store.info(row.id)

    def unlock(self, ref: str, owner: str | None = None) -> bool:
        """Release a lock. With owner, only that owner's lock is released.

        Returns:
            True if a lock was released.
        """
        row = self._store.get_row(ref)
        holder = row.locked_by
        with self._store.transaction():
            released = self._store.sessions.unlock(row.id, owner)
            if released:
                self._recorder.record(row.id, ActivityKind.UNLOCKED, holder or "")
        return released

    def link_change_request(
        self,
        ref: str,
        change_request_ref: str,
        status: ChangeRequestStatus | None = ChangeRequestStatus.OPEN,
    ) -> SessionInfo:
        """Associate a change request with a session."""
        row = self._store.get_row(ref)
        if row.locked_by is not None:
            raise SessionLockedError(row.name, row.locked_by)
        with self._store.transaction():
            row.change_request_ref = change_request_ref
            row.change_request_status = status
            self._store.sessions.save(row)
            detail = change_request_ref
            if status is not None:
                detail += f" ({status.value})"
            self._recorder.record(row.id, ActivityKind.CHANGE_REQUEST_SYNCED, detail)
        return self._store.to_info(row)

    def get(self, ref: str) -> SessionInfo:
        return self._store.info(ref)

    def list(self, status: SessionStatus | None = None) -> list[SessionInfo]:
        return [self._store.to_info(r) for r in self._store.sessions.list(status)]
