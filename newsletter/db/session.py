from __future__ import annotations

import threading

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from newsletter.config import get_settings


_engines: dict[str, Engine] = {}
_engines_lock = threading.Lock()


def get_engine() -> Engine:
    settings = get_settings()
    url = settings.database_url
    with _engines_lock:
        engine = _engines.get(url)
        if engine is None:
            if settings.is_sqlite:
                # Statements run on threadpool workers, not the thread that opened the connection.
                engine = create_engine(url, connect_args={"check_same_thread": False})
            else:
                # psycopg3 driver uses `postgresql+psycopg://...`
                engine = create_engine(url, pool_pre_ping=True, pool_size=settings.database_pool_size)
            _engines[url] = engine
    return engine


def dispose_engines() -> None:
    """Close the pools of every engine created so far (used by tests)."""

    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()


def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
