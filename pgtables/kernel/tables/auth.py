"""
Credential table: a mutable table that owns a password hash column.

The plaintext password only exists between the caller and
``PasswordHasher.hash()``; the table stores and compares bcrypt hashes.
Lookups that find no row still pay for one bcrypt comparison against a
fixed dummy hash, so "no such user" and "wrong password" take the same time.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine

from pgtables.kernel.errors import DisallowedColumnError, UnauthorizedColumnAccessError
from pgtables.kernel.identity.password import PasswordHasher
from pgtables.kernel.tables.base import Row
from pgtables.kernel.tables.mutable import MutableTable
from pgtables.logging_config import get_logger

logger = get_logger(__name__)

PLAINTEXT_KEY = "password"


class CredentialTable(MutableTable):
    """
    Table of accounts identified by ``identify_user_by`` (``username`` by default).

    ``insert`` takes the plaintext under the ``password`` key and stores only
    its hash. The hash column is never part of ``visibles``: it cannot be
    written directly, fetched, or listed.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        name: str,
        visible_columns: Sequence[str] = (),
        identify_user_by: str = "username",
        *,
        password_field: str = "password_hash",
        hasher: Optional[PasswordHasher] = None,
        schema_name: Optional[str] = None,
        max_rows_fetched: Optional[int] = None,
    ):
        visible_columns = tuple(visible_columns)
        for reserved in (password_field, PLAINTEXT_KEY):
            if reserved in visible_columns:
                raise ValueError(f"{reserved!r} can never be a visible column of {name!r}")
        self.identify_user_by = identify_user_by
        self.password_field = password_field
        self.hasher = hasher or PasswordHasher()
        super().__init__(
            engine,
            name,
            visible_columns,
            schema_name=schema_name,
            max_rows_fetched=max_rows_fetched,
        )
        # Pay for the dummy hash now rather than on the first failed lookup.
        self.hasher.dummy_hash

    def _hidden_columns(self) -> Tuple[str, ...]:
        return (self.identify_user_by, self.password_field)

    def _reject_hash_column(self, payload: Mapping[str, Any]) -> None:
        if self.password_field in payload:
            raise DisallowedColumnError(self.table_name, self.password_field, self.visibles)

    def _prepare_insert(self, payload: Mapping[str, Any]) -> Row:
        self._reject_hash_column(payload)
        values = dict(payload)
        password = values.pop(PLAINTEXT_KEY, None)
        self.hasher.check_policy(password)
        values = self._rows.check_writable(values, "insert")
        values[self.password_field] = self.hasher.hash(password)
        return values

    def _prepare_update(self, payload: Mapping[str, Any]) -> Row:
        # Rotation goes through update_password()
        self._reject_hash_column(payload)
        return super()._prepare_update(payload)

    async def update_password(self, row_id: int, new_password: str) -> Optional[int]:
        """Replace the stored hash of one row; returns its id, or None if absent."""
        password_hash = self.hasher.hash(new_password)
        updated = await self._rows.update_row(row_id, {self.password_field: password_hash})
        if updated is None:
            logger.debug("Password rotation matched no row", extra={"table": self.table_name, "row_id": row_id})
        else:
            logger.info("Password rotated", extra={"table": self.table_name, "row_id": updated})
        return updated

    async def _authenticate(
        self, user_identifier: Any, plain_password: str, columns: Sequence[str] = ()
    ) -> Optional[Row]:
        """The matching row projected onto id + columns, or None."""
        wanted = (self.primary_key, self.password_field, *columns)
        row = await self._rows.select_one_by(
            self.identify_user_by, user_identifier, tuple(dict.fromkeys(wanted))
        )
        stored_hash = row.get(self.password_field) if row is not None else None
        if not self.hasher.verify(plain_password, stored_hash):
            logger.info("Authentication failed", extra={"table": self.table_name})
            return None
        row.pop(self.password_field)
        return row

    async def verify_password(self, user_identifier: Any, plain_password: str) -> bool:
        return await self._authenticate(user_identifier, plain_password) is not None

    async def id_after_auth(self, user_identifier: Any, plain_password: str) -> Optional[int]:
        row = await self._authenticate(user_identifier, plain_password)
        return row[self.primary_key] if row is not None else None

    async def fetch_after_auth(
        self, user_identifier: Any, plain_password: str, columns: Sequence[str]
    ) -> Optional[Row]:
        """
        Authenticate, then return only the requested visible columns.

        Raises:
            UnauthorizedColumnAccessError: If any requested column is outside
                ``visibles``. Checked before the lookup.
        """
        columns = tuple(columns)
        denied = [c for c in columns if not self.descriptor.allows(c)]
        if denied:
            raise UnauthorizedColumnAccessError(self.table_name, denied, self.visibles)
        row = await self._authenticate(user_identifier, plain_password, columns)
        if row is None:
            return None
        return {c: row[c] for c in columns}
