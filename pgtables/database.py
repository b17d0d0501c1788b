"""
Database engine and table registry.
Uses SQLAlchemy 2.0 async pattern.
"""

from typing import Dict, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from pgtables.config import Settings, get_settings
from pgtables.kernel.errors import NotImplementedTableError
from pgtables.kernel.tables.base import TableBase
from pgtables.logging_config import get_logger

logger = get_logger(__name__)


def create_engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Build the shared engine.

    Bound parameters are hidden from SQLAlchemy's error messages and logs
    unless ``debug`` is on, so password hashes never end up in a traceback.
    """
    settings = settings or get_settings()
    is_sqlite = settings.database_url.startswith("sqlite")

    if is_sqlite:
        # Every session gets its own connection; used by the test-suite.
        engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            hide_parameters=not settings.debug,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign keys + busy timeout on every new SQLite connection."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return engine

    # PostgreSQL settings with connection pooling
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        hide_parameters=not settings.debug,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        connect_args={"command_timeout": settings.command_timeout},
    )


class PgApp:
    """
    Holds the shared engine and a name-keyed collection of tables.

    Usage:
        app = PgApp(create_engine_from_settings())
        users = app.register(Users(app.engine, "users", ["username", "email"]))
        await app.create_tables()
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.tables: Dict[str, TableBase] = {}

    def register(self, table: TableBase) -> TableBase:
        """Register a table under its name; returns the table for chaining."""
        if table.table_name in self.tables:
            raise ValueError(f"table {table.table_name!r} is already registered")
        self.tables[table.table_name] = table
        return table

    async def create_tables(self) -> None:
        """Call create() on every table, in registration order."""
        for name, table in self.tables.items():
            await table.create()
            logger.info("Table created", extra={"table": name})

    async def alter_tables(self) -> None:
        """Call alter() on every table that defines one."""
        for name, table in self.tables.items():
            try:
                await table.alter()
            except NotImplementedTableError:
                logger.debug("No alter() override, skipping", extra={"table": name})
                continue
            logger.info("Table altered", extra={"table": name})

    async def dispose(self) -> None:
        """Close database connections."""
        await self.engine.dispose()
