"""
Mutable resource table: full CRUD behind the column allow-list.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine

from pgtables.kernel.errors import NotImplementedTableError
from pgtables.kernel.tables.base import Row, RowStore
from pgtables.schemas.table import TableDescriptor


class MutableTable:
    """
    Table with insert, fetch, list, update and delete.

    Subclasses describe their schema by overriding ``create()`` (and
    ``alter()`` when the schema evolves). Only ``visible_columns`` can be
    written or read through this class; anything else in the schema is
    unreachable.

    Usage:
        class Notes(MutableTable):
            async def create(self):
                await self.execute(text("CREATE TABLE IF NOT EXISTS notes (...)"))

        notes = Notes(engine, "notes", ["title", "body"])
        row_id = await notes.insert({"title": "hi", "body": "there"})
    """

    primary_key = "id"

    def __init__(
        self,
        engine: AsyncEngine,
        name: str,
        visible_columns: Sequence[str],
        *,
        schema_name: Optional[str] = None,
        max_rows_fetched: Optional[int] = None,
    ):
        self.descriptor = TableDescriptor(
            name=name,
            visible_columns=tuple(visible_columns),
            schema_name=schema_name,
        )
        self._rows = RowStore(
            engine,
            self.descriptor,
            primary_key=self.primary_key,
            max_rows_fetched=max_rows_fetched,
            hidden_columns=self._hidden_columns(),
        )

    def _hidden_columns(self) -> Tuple[str, ...]:
        """Columns the table's own code touches but callers can never name."""
        return ()

    @property
    def table_name(self) -> str:
        return self.descriptor.name

    @property
    def visibles(self) -> Tuple[str, ...]:
        return self.descriptor.visible_columns

    @property
    def engine(self) -> AsyncEngine:
        return self._rows.engine

    @property
    def max_rows_fetched(self) -> int:
        return self._rows.max_rows_fetched

    async def execute(self, statement: Any):
        """Run a schema statement from a ``create()``/``alter()`` override."""
        return await self._rows.execute(statement)

    async def create(self) -> None:
        raise NotImplementedTableError(self.table_name, "create", "CREATE TABLE")

    async def alter(self) -> None:
        raise NotImplementedTableError(self.table_name, "alter", "ALTER TABLE")

    def _prepare_insert(self, payload: Mapping[str, Any]) -> Row:
        return self._rows.check_writable(payload, "insert")

    def _prepare_update(self, payload: Mapping[str, Any]) -> Row:
        return self._rows.check_writable(payload, "update")

    async def insert(self, payload: Mapping[str, Any]) -> int:
        """Insert one row and return its id."""
        return await self._rows.insert_row(self._prepare_insert(payload))

    async def fetch(self, row_id: int) -> Optional[Row]:
        return await self._rows.fetch_row(row_id)

    async def list(self, limit: float = 50, page_number: float = 0) -> List[Row]:
        """
        One page of rows, ordered by primary key.

        ``limit`` is clamped to ``max_rows_fetched`` whatever the caller asks for.
        """
        return await self._rows.list_rows(limit, page_number)

    async def list_all(self) -> List[Row]:
        """
        Every row, unbounded.

        Meant for small internal tables. Callers exposing it to untrusted
        input must apply their own bound.
        """
        return await self._rows.list_all_rows()

    async def delete(self, row_id: int) -> None:
        await self._rows.delete_row(row_id)

    async def update(self, row_id: int, payload: Mapping[str, Any]) -> Optional[int]:
        """Update the given columns of one row; returns its id, or None if absent."""
        return await self._rows.update_row(row_id, self._prepare_update(payload))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.table_name!r}, visibles={list(self.visibles)!r})"
