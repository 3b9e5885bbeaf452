"""
Tests for the Database module.
"""

from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from etl.src.database import STANDARD_TABLES, Database, quote_identifier
from etl.src.exceptions import PersistenceError


class TestDatabase:
    """Test suite for Database class."""

    @pytest.fixture
    def connection(self):
        return AsyncMock()

    @pytest.fixture
    def database(self, connection):
        database = Database({'dsn': "postgresql://localhost/test"})
        database.pool = MagicMock()
        database.pool.acquire.return_value.__aenter__.return_value = connection
        return database

    def test_quote_identifier(self):
        assert quote_identifier("smlouva") == '"smlouva"'
        with pytest.raises(ValueError):
            quote_identifier('smlouva"; DROP TABLE x; --')

    @pytest.mark.asyncio
    async def test_postgres_errors_become_persistence_errors(self, database, connection):
        connection.fetch.side_effect = asyncpg.exceptions.UndefinedTableError("missing")

        with pytest.raises(PersistenceError):
            await database.fetch("SELECT 1 FROM nowhere")

    @pytest.mark.asyncio
    async def test_resolve_table_names(self, database, connection):
        connection.fetch.return_value = [{'tablename': 'smlouva'}, {'tablename': 'Dodavatel'}]

        resolved = await database.resolve_table_names()

        assert resolved == {'contracts': 'smlouva', 'suppliers': 'Dodavatel', 'amendments': 'dodatek'}
        assert database.table('suppliers') == '"Dodavatel"'

    def test_default_table_names(self, database):
        assert database.tables == STANDARD_TABLES
        assert database.table('contracts') == '"smlouva"'

    @pytest.mark.asyncio
    async def test_add_column_if_missing(self, database, connection):
        connection.fetchval.return_value = False

        added = await database.add_column_if_missing('contracts', 'external_id', 'TEXT')

        assert added is True
        statement = connection.execute.await_args.args[0]
        assert statement == 'ALTER TABLE "smlouva" ADD COLUMN IF NOT EXISTS "external_id" TEXT'

    @pytest.mark.asyncio
    async def test_existing_column_is_left_alone(self, database, connection):
        connection.fetchval.return_value = True

        assert await database.add_column_if_missing('contracts', 'external_id', 'TEXT') is False
        connection.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_drop_not_null(self, database, connection):
        connection.fetchval.return_value = 'NO'

        dropped = await database.drop_not_null('suppliers', 'datum_zalozeni')

        assert dropped is True
        statement = connection.execute.await_args.args[0]
        assert statement == 'ALTER TABLE "dodavatel" ALTER COLUMN "datum_zalozeni" DROP NOT NULL'

    @pytest.mark.asyncio
    async def test_nullable_column_is_left_alone(self, database, connection):
        connection.fetchval.return_value = 'YES'

        assert await database.drop_not_null('suppliers', 'ico') is False
        connection.execute.assert_not_awaited()
