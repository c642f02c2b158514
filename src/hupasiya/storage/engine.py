"""Engine, session factory and schema bootstrap for the session store.

File databases are opened with WAL journaling so the CLI can read while a
long sweep holds a write transaction. In-memory databases use a single
shared connection so engine worker threads and the caller see one database.
"""

from __future__ import annotations

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hupasiya.exceptions import ConfigurationError
from hupasiya.storage.schema import Base, HupasiyaMetaRow

SCHEMA_VERSION = "1"

_SCHEMA_KEY = "schema_version"

_SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    "busy_timeout=5000",
    "synchronous=NORMAL",
    "foreign_keys=ON",
)


def _install_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(f"PRAGMA {pragma}")
        cursor.close()


def create_hupasiya_engine(
    db_path: str = ":memory:",
    *,
    url: str | None = None,
) -> Engine:
    """Create the engine backing a SessionStore.

    Args:
        db_path: SQLite file path, or ``":memory:"``. Ignored when *url*
            is given.
        url: Any SQLAlchemy URL. Pragmas are only applied to SQLite.
    """
    if url is not None:
        engine = create_engine(url, echo=False)
    elif db_path == ":memory:":
        engine = create_engine(
            "sqlite://",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(f"sqlite:///{db_path}", echo=False)

    if engine.dialect.name == "sqlite":
        _install_pragmas(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Rows handed to callers stay readable after commit.
    return sessionmaker(bind=engine, expire_on_commit=False)


def _check_schema_version(session: Session) -> None:
    row = session.execute(
        select(HupasiyaMetaRow).where(HupasiyaMetaRow.key == _SCHEMA_KEY)
    ).scalar_one_or_none()
    if row is None:
        session.add(HupasiyaMetaRow(key=_SCHEMA_KEY, value=SCHEMA_VERSION))
        session.commit()
        return
    if row.value != SCHEMA_VERSION:
        raise ConfigurationError(
            f"Unsupported schema version {row.value} "
            f"(this version reads {SCHEMA_VERSION})"
        )


def init_db(engine: Engine) -> None:
    """Create missing tables and record or verify the schema version.

    Raises:
        ConfigurationError: If the database was written by an incompatible
            schema version.
    """
    Base.metadata.create_all(engine)
    with create_session_factory(engine)() as session:
        _check_schema_version(session)
