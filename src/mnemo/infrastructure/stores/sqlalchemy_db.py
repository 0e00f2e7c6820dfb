"""
Engine and session factory for the memory store.

SQLite is the default backend; its file's parent directory is created on
first use and connections may cross threads (FastAPI runs sync handlers in a
thread pool). Other backends get pre-ping pooling.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_URL = "sqlite:///data/mnemo.db"


def get_db_url() -> str:
    return os.getenv("MNEMO_DB_URL") or DEFAULT_DB_URL


def _sqlite_file(url: URL) -> Optional[Path]:
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return None
    return Path(url.database).expanduser().resolve()


def create_db_engine(db_url: Optional[str] = None, *, echo: bool = False) -> Engine:
    url = make_url(db_url or get_db_url())
    options: Dict[str, Any] = {"future": True, "echo": echo}
    if url.get_backend_name() == "sqlite":
        path = _sqlite_file(url)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    return create_engine(url, **options)


class SessionProvider:
    """Owns the engine; hands out sessions that keep loaded attributes after commit."""

    def __init__(self, db_url: Optional[str] = None, *, echo: bool = False):
        self.engine = create_db_engine(db_url, echo=echo)
        self._factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)

    def session(self) -> Session:
        return self._factory()

    def dispose(self) -> None:
        self.engine.dispose()
