"""
Shared machinery behind every table variant.

Statements are built with SQLAlchemy Core against a lightweight
``TableClause``: table and column names are quoted by the dialect's
identifier preparer and every value travels as a bound parameter. Nothing
caller-supplied is ever formatted into SQL text.
"""

from __future__ import annotations

import asyncio
import math
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from pgtables.config import get_settings
from pgtables.kernel.errors import (
    ConnectionCancelledError,
    DisallowedColumnError,
    EmptyPayloadError,
    EngineRejectionError,
    TableError,
)
from pgtables.logging_config import get_logger
from pgtables.schemas.table import TableDescriptor

logger = get_logger(__name__)

Row = Dict[str, Any]

# query_canceled, admin_shutdown, crash_shutdown, cannot_connect_now
_CANCELLED_SQLSTATES = frozenset({"57014", "57P01", "57P02", "57P03"})


@runtime_checkable
class TableBase(Protocol):
    """Capabilities every table exposes to the registry."""

    table_name: str
    visibles: Sequence[str]

    async def create(self) -> None: ...

    async def alter(self) -> None: ...


def _round_half_up(value: float) -> int:
    if not math.isfinite(value):
        raise ValueError(f"pagination value must be finite, got {value!r}")
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class PaginationWindow:
    """LIMIT/OFFSET pair clamped to a per-table ceiling."""

    rows_limit: int
    rows_offset: int

    @classmethod
    def compute(cls, limit: float, page_number: float, ceiling: int) -> "PaginationWindow":
        rows_limit = max(min(_round_half_up(limit), ceiling), 0)
        rows_offset = max(_round_half_up(page_number), 0) * rows_limit
        return cls(rows_limit=rows_limit, rows_offset=rows_offset)


def _sqlstate(error: sa_exc.DBAPIError) -> Optional[str]:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _engine_message(error: sa_exc.DBAPIError) -> str:
    # str(error) carries the SQL and bound parameters; only the driver's
    # own first line is safe to surface.
    lines = str(error.orig).strip().splitlines()
    return lines[0] if lines else type(error.orig).__name__


@contextmanager
def translate_engine_errors(table_name: str) -> Iterator[None]:
    """Map SQLAlchemy failures onto ConnectionCancelledError / EngineRejectionError."""
    try:
        yield
    except TableError:
        raise
    except (sa_exc.TimeoutError, asyncio.TimeoutError, TimeoutError) as e:
        raise ConnectionCancelledError(table_name, "statement timed out") from e
    except sa_exc.DBAPIError as e:
        state = _sqlstate(e)
        if (
            e.connection_invalidated
            or isinstance(e, sa_exc.InterfaceError)
            or state in _CANCELLED_SQLSTATES
            or (state is not None and state.startswith("08"))
        ):
            raise ConnectionCancelledError(
                table_name, f"connection failed: {_engine_message(e)}", state
            ) from e
        logger.warning(
            "Engine rejected statement",
            extra={"table": table_name, "sqlstate": state},
        )
        raise EngineRejectionError(
            table_name, f"statement rejected by the engine: {_engine_message(e)}", state
        ) from e


class RowStore:
    """
    Validated reads and writes against one table.

    Owned by each table variant; the variants decide which of these
    operations they expose.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        descriptor: TableDescriptor,
        primary_key: str = "id",
        max_rows_fetched: Optional[int] = None,
        hidden_columns: Iterable[str] = (),
    ):
        self.engine = engine
        self.descriptor = descriptor
        self.primary_key = primary_key
        self.max_rows_fetched = (
            get_settings().max_rows_fetched if max_rows_fetched is None else max_rows_fetched
        )
        if self.max_rows_fetched < 1:
            raise ValueError("max_rows_fetched must be at least 1")

        columns = [primary_key, *descriptor.visible_columns, *hidden_columns]
        self.clause = sa.table(
            descriptor.name,
            *(sa.column(name) for name in dict.fromkeys(columns)),
            schema=descriptor.schema_name,
        )

    @property
    def table_name(self) -> str:
        return self.descriptor.name

    def column(self, name: str) -> sa.ColumnClause:
        return self.clause.c[name]

    def visible_projection(self) -> List[sa.ColumnClause]:
        return [self.clause.c[name] for name in self.descriptor.visible_columns]

    def check_writable(self, payload: Mapping[str, Any], operation: str) -> Row:
        """Return a copy of payload, or raise before anything is sent."""
        if not payload:
            raise EmptyPayloadError(self.table_name, operation)
        for key in payload:
            if not self.descriptor.allows(key):
                raise DisallowedColumnError(self.table_name, key, self.descriptor.visible_columns)
        return dict(payload)

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """One transaction on the engine, with driver errors translated."""
        with translate_engine_errors(self.table_name):
            async with self.engine.begin() as conn:
                yield conn

    async def execute(self, statement: Any) -> sa.engine.CursorResult:
        async with self.begin() as conn:
            return await conn.execute(statement)

    async def insert_row(self, values: Row) -> int:
        stmt = sa.insert(self.clause).values(values).returning(self.column(self.primary_key))
        async with self.begin() as conn:
            row_id = (await conn.execute(stmt)).scalar_one()
        logger.debug(
            "Row inserted",
            extra={"table": self.table_name, "columns": sorted(values), "row_id": row_id},
        )
        return row_id

    async def fetch_row(self, row_id: int) -> Optional[Row]:
        stmt = sa.select(*self.visible_projection()).where(
            self.column(self.primary_key) == row_id
        )
        async with self.begin() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return dict(row) if row is not None else None

    async def list_rows(self, limit: float, page_number: float) -> List[Row]:
        window = PaginationWindow.compute(limit, page_number, self.max_rows_fetched)
        stmt = (
            sa.select(*self.visible_projection())
            .order_by(self.column(self.primary_key))
            .limit(window.rows_limit)
            .offset(window.rows_offset)
        )
        async with self.begin() as conn:
            return [dict(row) for row in (await conn.execute(stmt)).mappings()]

    async def list_all_rows(self) -> List[Row]:
        stmt = sa.select(*self.visible_projection()).order_by(self.column(self.primary_key))
        async with self.begin() as conn:
            return [dict(row) for row in (await conn.execute(stmt)).mappings()]

    async def delete_row(self, row_id: int) -> None:
        stmt = sa.delete(self.clause).where(self.column(self.primary_key) == row_id)
        async with self.begin() as conn:
            await conn.execute(stmt)
        logger.debug("Row deleted", extra={"table": self.table_name, "row_id": row_id})

    async def update_row(self, row_id: int, values: Row) -> Optional[int]:
        pk = self.column(self.primary_key)
        stmt = sa.update(self.clause).where(pk == row_id).values(values).returning(pk)
        async with self.begin() as conn:
            updated = (await conn.execute(stmt)).scalar_one_or_none()
        logger.debug(
            "Row updated",
            extra={"table": self.table_name, "columns": sorted(values), "row_id": updated},
        )
        return updated

    async def select_one_by(
        self, column: str, value: Any, columns: Sequence[str]
    ) -> Optional[Row]:
        """First row whose ``column`` equals ``value``, projecting ``columns``."""
        stmt = (
            sa.select(*(self.column(name) for name in columns))
            .where(self.column(column) == value)
            .order_by(self.column(self.primary_key))
            .limit(1)
        )
        async with self.begin() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return dict(row) if row is not None else None
