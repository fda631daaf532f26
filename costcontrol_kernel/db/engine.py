"""
Module: costcontrol_kernel.db.engine
Responsibility: Own the process-wide SQLAlchemy engine and session factory
    for the cost control database, and create or drop its tables.
Architecture position: Kernel > DB.  Imports db/base.py and, lazily, the
    models package (to register tables).  Nothing above the DB layer.

Invariants enforced:
    - PostgreSQL is the production backend.  Connections run READ COMMITTED;
      reconciliation serialises per project with ``SELECT ... FOR UPDATE``
      on the project row.  SQLite is accepted for tests and local use, where
      the compare-and-swap on ``cost_control_projects.version`` is the only
      guard.
    - Sessions are created with ``expire_on_commit=False`` so DTOs can be
      built from committed models without another round trip.

Failure modes:
    - RuntimeError from get_engine/get_session/get_session_factory before
      init_engine_from_url() has been called.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from costcontrol_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first."


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine for ``database_url`` and a session factory bound to it.

    Calling it again replaces the engine; the previous one is disposed.
    Pool options only apply to server databases, SQLite keeps the dialect
    defaults.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        _engine = create_engine(database_url, echo=echo)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            isolation_level="READ COMMITTED",
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per worker or request."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    A session that commits when the block exits normally.

    Any exception rolls the session back and propagates; the session is
    always closed.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from costcontrol_kernel.db.base import Base
    import costcontrol_kernel.models  # noqa: F401  (registers tables)

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"tables": sorted(metadata.tables)})


def drop_tables() -> None:
    """Drop every cost control table.  Test and local use only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def is_postgres(session: Session | None = None) -> bool:
    """True when ``session`` (or else the module engine) is bound to PostgreSQL."""
    if session is not None:
        return session.get_bind().dialect.name == "postgresql"
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
