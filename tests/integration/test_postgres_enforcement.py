"""Integration tests against a real PostgreSQL.

Set PGTABLES_TEST_DATABASE_URL (postgresql+asyncpg://...) to run them.
"""

import os
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import exc as sa_exc
from sqlalchemy import text

from pgtables.config import Settings
from pgtables.database import PgApp, create_engine_from_settings
from pgtables.kernel.errors import EngineRejectionError, ImmutabilityViolationError
from pgtables.kernel.tables import CredentialTable, LedgerTable
from pgtables.kernel.tables.ledger import enforcement_stem

TEST_DATABASE_URL = os.environ.get("PGTABLES_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(
    not TEST_DATABASE_URL, reason="Requires running database (PGTABLES_TEST_DATABASE_URL)"
)


class Payments(LedgerTable):
    async def create_table(self) -> None:
        await self.execute(text(
            f'CREATE TABLE IF NOT EXISTS "{self.table_name}" ('
            "id SERIAL PRIMARY KEY, "
            "payer TEXT NOT NULL, "
            "amount_cents INTEGER NOT NULL)"
        ))


class Accounts(CredentialTable):
    async def create(self) -> None:
        await self.execute(text(
            f'CREATE TABLE IF NOT EXISTS "{self.table_name}" ('
            "id SERIAL PRIMARY KEY, "
            "username TEXT NOT NULL UNIQUE, "
            "email TEXT, "
            "password_hash TEXT)"
        ))


@pytest_asyncio.fixture
async def pg_app():
    engine = create_engine_from_settings(Settings(database_url=TEST_DATABASE_URL))
    app = PgApp(engine)
    yield app
    async with engine.begin() as conn:
        for name in app.tables:
            await conn.execute(text(f'DROP TABLE IF EXISTS "{name}"'))
            await conn.execute(text(f'DROP FUNCTION IF EXISTS "{enforcement_stem(name)}_reject_mutation"()'))
    await app.dispose()


@pytest_asyncio.fixture
async def payments(pg_app):
    # Test-generated names are lowercase hex, safe to inline above.
    table = pg_app.register(Payments(pg_app.engine, f"payments_{uuid.uuid4().hex[:8]}", ["payer", "amount_cents"]))
    await pg_app.create_tables()
    return table


class TestLedgerEnforcement:
    """Append-only holds even when the application layer is bypassed."""

    async def test_insert_and_read(self, payments):
        row_id = await payments.insert({"payer": "alice", "amount_cents": 500})

        assert await payments.fetch(row_id) == {"payer": "alice", "amount_cents": 500}

    @pytest.mark.parametrize("statement", [
        'UPDATE "{t}" SET amount_cents = 0',
        'UPDATE "{t}" SET amount_cents = 0 WHERE id = -1',
        'DELETE FROM "{t}"',
        'TRUNCATE "{t}"',
    ])
    async def test_direct_mutation_rejected(self, payments, statement):
        await payments.insert({"payer": "alice", "amount_cents": 500})

        with pytest.raises(EngineRejectionError) as exc_info:
            await payments.execute(text(statement.format(t=payments.table_name)))

        assert exc_info.value.sqlstate == "P0001"
        assert "append-only" in str(exc_info.value)
        assert await payments.list_all() == [{"payer": "alice", "amount_cents": 500}]

    async def test_replica_role_cannot_bypass(self, payments, pg_app):
        await payments.insert({"payer": "bob", "amount_cents": 100})

        with pytest.raises(sa_exc.DBAPIError):
            async with pg_app.engine.begin() as conn:
                await conn.execute(text("SET LOCAL session_replication_role = replica"))
                await conn.execute(text(f'DELETE FROM "{payments.table_name}"'))

        assert len(await payments.list_all()) == 1

    async def test_application_layer_refuses(self, payments):
        row_id = await payments.insert({"payer": "carol", "amount_cents": 1})

        with pytest.raises(ImmutabilityViolationError):
            await payments.delete(row_id)

    async def test_create_is_rerunnable(self, payments):
        await payments.create()

        with pytest.raises(EngineRejectionError):
            await payments.execute(text(f'DELETE FROM "{payments.table_name}"'))

    @pytest.mark.parametrize("statement", ['UPDATE "{t}" SET amount_cents = 0', 'DELETE FROM "{t}"'])
    async def test_long_name_keeps_every_trigger(self, pg_app, statement):
        name = f"payments_{uuid.uuid4().hex}".ljust(60, "x")
        ledger = pg_app.register(Payments(pg_app.engine, name, ["payer", "amount_cents"]))
        await pg_app.create_tables()
        await ledger.insert({"payer": "dave", "amount_cents": 7})

        with pytest.raises(EngineRejectionError):
            await ledger.execute(text(statement.format(t=name)))

        assert await ledger.list_all() == [{"payer": "dave", "amount_cents": 7}]


class TestCredentialsOnPostgres:
    async def test_scenario_bob(self, pg_app):
        accounts = pg_app.register(
            Accounts(pg_app.engine, f"accounts_{uuid.uuid4().hex[:8]}", ["username", "email"])
        )
        await pg_app.create_tables()

        row_id = await accounts.insert({"username": "bob", "email": "b@x.com", "password": "secretpw1"})

        assert isinstance(row_id, int)
        assert await accounts.fetch_after_auth("bob", "secretpw1", ["email"]) == {"email": "b@x.com"}
        assert await accounts.fetch_after_auth("bob", "wrongpw", ["email"]) is None

    async def test_duplicate_username_rejected(self, pg_app):
        accounts = pg_app.register(
            Accounts(pg_app.engine, f"accounts_{uuid.uuid4().hex[:8]}", ["username"])
        )
        await pg_app.create_tables()
        await accounts.insert({"username": "dup", "password": "secretpw1"})

        with pytest.raises(EngineRejectionError) as exc_info:
            await accounts.insert({"username": "dup", "password": "secretpw2"})

        assert exc_info.value.sqlstate == "23505"
        assert "$2b$" not in str(exc_info.value)
