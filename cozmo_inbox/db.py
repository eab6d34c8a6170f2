from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from cozmo_inbox.config import settings


class Base(DeclarativeBase):
    pass


_engine = None


def _engine_options(url: str) -> dict:
    if make_url(url).get_backend_name() == "sqlite":
        # local development database, no server-side pool to size
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
    }


def get_engine():
    global _engine
    if _engine is None:
        _engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
    return _engine


SessionLocal = sessionmaker(autoflush=False, autocommit=False)


def get_session_factory() -> sessionmaker:
    """Return the shared session factory, binding it to the engine on first use."""
    if SessionLocal.kw.get("bind") is None:
        SessionLocal.configure(bind=get_engine())
    return SessionLocal


def get_db():
    """Database session dependency for FastAPI.

    Yields a session and closes it once the request is finished.
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
