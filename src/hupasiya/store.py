"""SessionStore: the unit of work shared by every engine.

Owns the SQLAlchemy engine, the ORM session and one instance of each
repository. Engines never hold on to ORM rows across calls; they resolve a
session reference, work on the row, and commit through the store.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from hupasiya.exceptions import SessionNotFoundError
from hupasiya.models.config import HupasiyaConfig
from hupasiya.models.session import SessionInfo
from hupasiya.storage.engine import (
    create_hupasiya_engine,
    create_session_factory,
    init_db,
)
from hupasiya.storage.schema import SessionRow
from hupasiya.storage.sqlite import (
    SqliteActivityRepository,
    SqliteMetricsRepository,
    SqliteReviewRepository,
    SqliteSessionRepository,
    SqliteSuspensionRepository,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SessionStore:
    """Persistence facade for sessions, activity, metrics and review state.

    Usage::

        with SessionStore.open("hp.db") as store:
            info = store.info("feature")
    """

    def __init__(self, engine: Engine | None, session: Session) -> None:
        self._engine = engine
        self._session = session
        self._closed = False
        self.sessions = SqliteSessionRepository(session)
        self.activity = SqliteActivityRepository(session)
        self.metrics = SqliteMetricsRepository(session)
        self.reviews = SqliteReviewRepository(session)
        self.suspensions = SqliteSuspensionRepository(session)

    @classmethod
    def open(
        cls,
        path: str = ":memory:",
        *,
        url: str | None = None,
    ) -> SessionStore:
        """Open (or create) a session store.

        Args:
            path: SQLite path.  ``":memory:"`` for in-memory (default).
            url: Full SQLAlchemy URL; overrides *path*.

        Returns:
            A ready-to-use ``SessionStore``.
        """
        engine = create_hupasiya_engine(path, url=url)
        init_db(engine)
        session = create_session_factory(engine)()
        logger.debug("Opened session store at %s", url or path)
        return cls(engine, session)

    @classmethod
    def from_config(cls, config: HupasiyaConfig) -> SessionStore:
        return cls.open(config.db_path, url=config.db_url)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_row(self, ref: str) -> SessionRow:
        """Resolve a session reference (name first, then id) to its row.

        Raises:
            SessionNotFoundError: If neither a name nor an id matches.
        """
        row = self.sessions.get_by_name(ref)
        if row is None:
            row = self.sessions.get(ref)
        if row is None:
            raise SessionNotFoundError(ref)
        return row

    def info(self, ref: str) -> SessionInfo:
        """Fresh immutable snapshot of a session."""
        return self.to_info(self.get_row(ref))

    def to_info(self, row: SessionRow) -> SessionInfo:
        children = tuple(c.id for c in self.sessions.get_children(row.id))
        return SessionInfo(
            id=row.id,
            name=row.name,
            parent_id=row.parent_id,
            children=children,
            workspace_ref=row.workspace_ref,
            vcs_kind=row.vcs_kind,
            branch=row.branch,
            base_branch=row.base_branch,
            status=row.status,
            agent_type=row.agent_type,
            created_at=row.created_at,
            last_active=row.last_active,
            commit_ref=row.commit_ref,
            locked_by=row.locked_by,
            change_request_ref=row.change_request_ref,
            change_request_status=row.change_request_status,
            closure_candidate=row.closure_candidate,
            notes=row.notes,
        )

    def name_of(self, session_id: str | None) -> str | None:
        if session_id is None:
            return None
        row = self.sessions.get(session_id)
        return row.name if row is not None else session_id

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield
        except Exception:
            self._session.rollback()
            raise
        self._session.commit()

    def close(self) -> None:
        """Close the session and dispose the engine."""
        if self._closed:
            return
        self._closed = True
        self._session.close()
        if self._engine is not None:
            self._engine.dispose()

    def __enter__(self) -> SessionStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SessionStore(closed={self._closed})"
