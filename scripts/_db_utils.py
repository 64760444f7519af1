from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.golfpoi.db import build_engine, build_sessionmaker, transaction


def resolve_database_url(explicit: str | None = None) -> str:
    return (explicit or os.environ.get("DATABASE_URL") or "sqlite:///golfpoi.db").strip()


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """One committed transaction on a throwaway engine."""
    engine = build_engine(db_url)
    try:
        with transaction(build_sessionmaker(engine)) as s:
            yield s
    finally:
        engine.dispose()
