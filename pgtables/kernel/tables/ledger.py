"""
Append-only ledger table.

The application-layer refusal of update/delete is a convenience. The real
boundary is installed by ``create()`` inside PostgreSQL itself:

- row level security, forced on the owner too, with restrictive policies
  that deny UPDATE and DELETE to PUBLIC
- statement-level triggers that raise on UPDATE, DELETE and TRUNCATE,
  enabled ALWAYS so they also fire under ``session_replication_role = replica``
- TRUNCATE revoked from PUBLIC

so a session that skips this module entirely still cannot rewrite history.
"""

from __future__ import annotations

import hashlib
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import DDL
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine

from pgtables.kernel.errors import ImmutabilityViolationError, NotImplementedTableError, TableError
from pgtables.kernel.tables.base import Row, RowStore
from pgtables.logging_config import get_logger
from pgtables.schemas.table import MAX_IDENTIFIER_BYTES, TableDescriptor

logger = get_logger(__name__)

# Every identifier below reaches the statement through the DDL context,
# already quoted by the dialect's identifier preparer.
_ENABLE_RLS = "ALTER TABLE %(table)s ENABLE ROW LEVEL SECURITY"
_FORCE_RLS = "ALTER TABLE %(table)s FORCE ROW LEVEL SECURITY"
_DROP_POLICY = "DROP POLICY IF EXISTS %(policy)s ON %(table)s"
_ALLOW_SELECT = (
    "CREATE POLICY %(policy)s ON %(table)s AS PERMISSIVE "
    "FOR SELECT TO PUBLIC USING (true)"
)
_ALLOW_INSERT = (
    "CREATE POLICY %(policy)s ON %(table)s AS PERMISSIVE "
    "FOR INSERT TO PUBLIC WITH CHECK (true)"
)
_DENY_UPDATE = (
    "CREATE POLICY %(policy)s ON %(table)s AS RESTRICTIVE "
    "FOR UPDATE TO PUBLIC USING (false) WITH CHECK (false)"
)
_DENY_DELETE = (
    "CREATE POLICY %(policy)s ON %(table)s AS RESTRICTIVE "
    "FOR DELETE TO PUBLIC USING (false)"
)
_REJECT_FUNCTION = """CREATE OR REPLACE FUNCTION %(function)s() RETURNS trigger
LANGUAGE plpgsql AS $$
BEGIN
    RAISE EXCEPTION 'ledger table %% is append-only: %% is not permitted', TG_TABLE_NAME, TG_OP;
END;
$$"""
_DROP_TRIGGER = "DROP TRIGGER IF EXISTS %(trigger)s ON %(table)s"
_CREATE_TRIGGER = (
    "CREATE TRIGGER %(trigger)s BEFORE %(event)s ON %(table)s "
    "FOR EACH STATEMENT EXECUTE FUNCTION %(function)s()"
)
_ALWAYS_TRIGGER = "ALTER TABLE %(table)s ENABLE ALWAYS TRIGGER %(trigger)s"
_REVOKE_TRUNCATE = "REVOKE TRUNCATE ON %(table)s FROM PUBLIC"

_POLICIES = (
    ("allow_select", _ALLOW_SELECT),
    ("allow_insert", _ALLOW_INSERT),
    ("no_update", _DENY_UPDATE),
    ("no_delete", _DENY_DELETE),
)
_BLOCKED_EVENTS = ("UPDATE", "DELETE", "TRUNCATE")

# The function suffix is the longest one appended to the stem.
_FUNCTION_SUFFIX = "_reject_mutation"
_MAX_STEM_BYTES = MAX_IDENTIFIER_BYTES - len(_FUNCTION_SUFFIX)
_STEM_DIGEST_CHARS = 8


def enforcement_stem(name: str) -> str:
    """
    Prefix for the policy, trigger and function names of ledger ``name``.

    PostgreSQL truncates identifiers past 63 bytes, which would fold
    ``<name>_no_update`` and ``<name>_no_delete`` into one object. Names too
    long to take every suffix are cut down and tagged with a digest of the
    full name, so the derived names stay distinct and stable across runs.
    """
    raw = name.encode("utf-8")
    if len(raw) <= _MAX_STEM_BYTES:
        return name
    digest = hashlib.sha256(raw).hexdigest()[:_STEM_DIGEST_CHARS]
    keep = _MAX_STEM_BYTES - _STEM_DIGEST_CHARS - 1
    head = raw[:keep].decode("utf-8", errors="ignore")
    return f"{head}_{digest}"


def ledger_enforcement_ddl(
    dialect: Dialect, name: str, schema_name: Optional[str] = None
) -> List[DDL]:
    """
    Statements that make ``name`` append-only, in execution order.

    Re-running them is safe: policies and triggers are dropped before being
    recreated and the function is replaced in place.
    """
    preparer = dialect.identifier_preparer

    def qualified(identifier: str) -> str:
        quoted = preparer.quote(identifier)
        if schema_name:
            return f"{preparer.quote_schema(schema_name)}.{quoted}"
        return quoted

    table = qualified(name)
    stem = enforcement_stem(name)
    function = qualified(f"{stem}{_FUNCTION_SUFFIX}")

    statements = [
        DDL(_ENABLE_RLS, context={"table": table}),
        DDL(_FORCE_RLS, context={"table": table}),
    ]
    for suffix, template in _POLICIES:
        context = {"table": table, "policy": preparer.quote(f"{stem}_{suffix}")}
        statements.append(DDL(_DROP_POLICY, context=context))
        statements.append(DDL(template, context=context))

    statements.append(DDL(_REJECT_FUNCTION, context={"function": function}))
    for event in _BLOCKED_EVENTS:
        context = {
            "table": table,
            "function": function,
            "event": event,
            "trigger": preparer.quote(f"{stem}_no_{event.lower()}"),
        }
        statements.append(DDL(_DROP_TRIGGER, context=context))
        statements.append(DDL(_CREATE_TRIGGER, context=context))
        statements.append(DDL(_ALWAYS_TRIGGER, context=context))

    statements.append(DDL(_REVOKE_TRUNCATE, context={"table": table}))
    return statements


class LedgerTable:
    """
    Insert-and-read-only table.

    Subclasses override ``create_table()`` with their CREATE TABLE statement;
    callers use ``create()``, which runs it and then installs enforcement.
    An ``alter()`` override must never drop or disable the ledger's
    policies or triggers.
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
        )

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
        """Run a schema statement from a ``create_table()``/``alter()`` override."""
        return await self._rows.execute(statement)

    async def create_table(self) -> None:
        raise NotImplementedTableError(self.table_name, "create_table", "CREATE TABLE")

    async def alter(self) -> None:
        raise NotImplementedTableError(self.table_name, "alter", "ALTER TABLE")

    async def create(self) -> None:
        """Create the table, then make it append-only inside the engine."""
        dialect = self.engine.dialect
        if dialect.name != "postgresql":
            raise TableError(
                f"ledger {self.table_name!r} needs PostgreSQL for enforcement, "
                f"engine dialect is {dialect.name!r}"
            )
        await self.create_table()

        statements = ledger_enforcement_ddl(dialect, self.table_name, self.descriptor.schema_name)
        async with self._rows.begin() as conn:
            for statement in statements:
                await conn.execute(statement)
        logger.info(
            "Ledger enforcement installed",
            extra={"table": self.table_name, "statements": len(statements)},
        )

    async def insert(self, payload: Mapping[str, Any]) -> int:
        return await self._rows.insert_row(self._rows.check_writable(payload, "insert"))

    async def fetch(self, row_id: int) -> Optional[Row]:
        return await self._rows.fetch_row(row_id)

    async def list(self, limit: float = 50, page_number: float = 0) -> List[Row]:
        return await self._rows.list_rows(limit, page_number)

    async def list_all(self) -> List[Row]:
        return await self._rows.list_all_rows()

    async def delete(self, row_id: int) -> None:
        raise ImmutabilityViolationError(self.table_name, "delete")

    async def update(self, row_id: int, payload: Optional[Mapping[str, Any]] = None) -> Optional[int]:
        raise ImmutabilityViolationError(self.table_name, "update")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.table_name!r}, visibles={list(self.visibles)!r})"
