# sitebudget/db/session.py
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sitebudget.logger import get_logger

logger = get_logger(__name__)

_engine = None
_SessionLocal = None


def init_engine(db_url: str):
    '''
    (Re)bind the module level engine and session factory to ``db_url``.
    In-memory SQLite shares one connection so every session sees the same tables.
    '''
    global _engine, _SessionLocal
    kwargs = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(db_url, **kwargs)
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=_engine,
    )
    logger.info("Using database URL: %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_engine():
    if _engine is None:
        db_url = os.environ.get("DATABASE_URL")
        if not db_url:
            raise RuntimeError("DATABASE_URL not set")
        init_engine(db_url)
    return _engine


def get_session():
    if _SessionLocal is None:
        get_engine()
    return _SessionLocal()
