"""Database connection management."""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from autopilot.config.settings import get_settings
from autopilot.database.models import Base


def get_engine() -> Engine:
    """Create and return a synchronous database engine."""
    settings = get_settings()
    return create_engine(
        str(settings.database_url),
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=settings.log_level == "DEBUG",
    )


_sync_session_factory: sessionmaker | None = None


def get_sync_session_factory() -> sessionmaker:
    """Get or create the synchronous session factory."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = make_session_factory(get_engine())
    return _sync_session_factory


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def get_session(factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """Get a synchronous database session, committed on clean exit."""
    session = (factory or get_sync_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine or get_engine())
