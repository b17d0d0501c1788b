"""
Pytest fixtures for pgtables tests.

Unit tests run against a file-based SQLite database per test (in-memory
SQLite is per-connection and every table operation opens its own).
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from pgtables.config import Settings
from pgtables.database import create_engine_from_settings
from pgtables.kernel.identity.password import MIN_BCRYPT_ROUNDS, PasswordHasher
from pgtables.kernel.tables import CredentialTable, LedgerTable, MutableTable


class Notes(MutableTable):
    """Resource table with one column kept out of the allow-list."""

    async def create(self) -> None:
        await self.execute(text(
            "CREATE TABLE IF NOT EXISTS notes ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "title TEXT NOT NULL, "
            "body TEXT, "
            "internal_flag TEXT NOT NULL DEFAULT 'staff-only')"
        ))


class Users(CredentialTable):
    async def create(self) -> None:
        await self.execute(text(
            "CREATE TABLE IF NOT EXISTS users ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "username TEXT NOT NULL UNIQUE, "
            "email TEXT, "
            "password_hash TEXT)"
        ))


class AuditLog(LedgerTable):
    async def create_table(self) -> None:
        await self.execute(text(
            "CREATE TABLE IF NOT EXISTS audit_log ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "actor TEXT NOT NULL, "
            "action TEXT NOT NULL)"
        ))


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine on a fresh database file."""
    settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'tables.db'}")
    engine = create_engine_from_settings(settings)
    yield engine
    await engine.dispose()


@pytest.fixture
def hasher() -> PasswordHasher:
    """Cheapest hasher the policy allows, to keep the suite fast."""
    return PasswordHasher(rounds=MIN_BCRYPT_ROUNDS)


@pytest_asyncio.fixture
async def notes(engine: AsyncEngine) -> Notes:
    table = Notes(engine, "notes", ["title", "body"])
    await table.create()
    return table


@pytest_asyncio.fixture
async def users(engine: AsyncEngine, hasher: PasswordHasher) -> Users:
    table = Users(engine, "users", ["username", "email"], hasher=hasher)
    await table.create()
    return table


@pytest_asyncio.fixture
async def audit_log(engine: AsyncEngine) -> AuditLog:
    """Ledger with its schema only; enforcement needs PostgreSQL."""
    table = AuditLog(engine, "audit_log", ["actor", "action"])
    await table.create_table()
    return table


@pytest.fixture
def table_classes():
    """Concrete table classes, for tests that build their own instances."""
    return {"notes": Notes, "users": Users, "audit_log": AuditLog}
