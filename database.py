from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


class Base(DeclarativeBase):
    pass


def _is_file_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" not in url and url != "sqlite://"


def build_engine(url: str, **kwargs: Any) -> Engine:
    """Engine for ``url`` with foreign keys enforced on SQLite.

    File databases also switch to WAL so readers do not block the writer.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    connect_args = {"check_same_thread": False, **kwargs.pop("connect_args", {})}
    eng = create_engine(url, connect_args=connect_args, **kwargs)
    wal = _is_file_sqlite(url)

    @event.listens_for(eng, "connect")
    def _sqlite_pragmas(dbapi_conn, _record) -> None:
        cursor = dbapi_conn.cursor()
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return eng


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    """Request-scoped session; uncommitted work is rolled back on error."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
