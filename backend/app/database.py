"""Database engine, session factory, and declarative base.

One DeclarativeBase for every ledger table. The request-scoped session
from get_db() is the unit of work: services flush, the dependency
commits on success and rolls back on any exception, so a movement and
the balance it changes are written together or not at all.

SQLite (development / tests) needs two driver fixes to behave like the
server database: foreign keys switched on per connection, and pysqlite's
implicit transaction handling disabled so SAVEPOINTs work.
"""

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from app.config import settings


class Base(DeclarativeBase):
    """Base class for all FieldStock models."""
    pass


# ── Engine ──────────────────────────────────────────────────

def _engine_kwargs(url: str) -> dict:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


def configure_sqlite(engine: AsyncEngine) -> None:
    """Enable FK enforcement and working SAVEPOINTs on a SQLite engine."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        # hand transaction control to SQLAlchemy
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(url, echo=echo, **_engine_kwargs(url))
    if engine.dialect.name == "sqlite":
        configure_sqlite(engine)
    return engine


engine = build_engine(settings.database_url, echo=settings.debug)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session whose transaction spans the whole request."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
