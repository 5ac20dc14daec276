import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


logger = logging.getLogger(__name__)


def _sqlite_pragmas(in_memory: bool):
    def apply(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        # WAL is meaningless for :memory: databases.
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return apply


def build_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or get_settings().database_url
    if not url.startswith("sqlite"):
        return create_engine(url)
    in_memory = ":memory:" in url
    options = {"connect_args": {"check_same_thread": False}}
    if in_memory:
        # One shared connection, or each thread sees an empty database.
        options["poolclass"] = StaticPool
    eng = create_engine(url, **options)
    event.listen(eng, "connect", _sqlite_pragmas(in_memory))
    return eng


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine = engine) -> None:
    import models  # noqa: F401  registers the mapped tables on Base.metadata

    Base.metadata.create_all(bind)
    logger.info(f"schema_ready: url={bind.url.render_as_string(hide_password=True)}")
