"""
Database Module
Thin asyncpg layer shared by the reconciler and the derived-entity extractors:
connection pool, table-name resolution, raw statements and the additive
schema helpers the pipeline relies on.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import asyncpg
from asyncpg import Pool

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Logical table -> conventional name
STANDARD_TABLES = {
    'contracts': 'smlouva',
    'suppliers': 'dodavatel',
    'amendments': 'dodatek',
}

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return f'"{name}"'


class Database:
    """
    Async PostgreSQL access for the synchronization job.

    Every statement runs on its own pooled connection in autocommit mode.
    """

    def __init__(self, db_config: Dict[str, Any]):
        """
        Initialize the Database.

        Args:
            db_config: Either {'dsn': ...} or a dictionary with keys:
                - host: Database host
                - port: Database port
                - database: Database name
                - user: Database user
                - password: Database password
        """
        self.db_config = db_config
        self.pool: Optional[Pool] = None
        self.tables: Dict[str, str] = dict(STANDARD_TABLES)

    async def initialize_pool(self):
        """Initialize the connection pool."""
        if not self.pool:
            if self.db_config.get('dsn'):
                self.pool = await asyncpg.create_pool(
                    dsn=self.db_config['dsn'],
                    min_size=1,
                    max_size=5,
                    command_timeout=60
                )
            else:
                self.pool = await asyncpg.create_pool(
                    host=self.db_config['host'],
                    port=self.db_config.get('port', 5432),
                    database=self.db_config['database'],
                    user=self.db_config['user'],
                    password=self.db_config['password'],
                    min_size=1,
                    max_size=5,
                    command_timeout=60
                )
            logger.info("Database connection pool initialized")

    async def close_pool(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize_pool()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close_pool()

    # Raw statements

    async def fetch(self, query: str, *args) -> List[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e

    async def fetchrow(self, query: str, *args) -> Optional[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e

    async def fetchval(self, query: str, *args) -> Any:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, *args)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e

    async def execute(self, query: str, *args) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e

    # Table names

    async def resolve_table_names(self) -> Dict[str, str]:
        """
        Map logical tables to the names that exist in the public schema.

        Exact names win, then a case-insensitive match; missing tables keep
        their conventional name.

        Returns:
            Dictionary of logical name -> actual table name
        """
        rows = await self.fetch(
            "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
        )
        existing = [row['tablename'] for row in rows]

        resolved = {}
        for key, standard in STANDARD_TABLES.items():
            if standard in existing:
                resolved[key] = standard
                continue
            match = next((name for name in existing if name.lower() == standard.lower()), None)
            if match:
                logger.info(f"Using table '{match}' for {key}")
                resolved[key] = match
            else:
                logger.debug(f"Table for {key} not found, assuming '{standard}'")
                resolved[key] = standard

        self.tables = resolved
        return resolved

    def table(self, key: str) -> str:
        """Quoted table name for a logical table."""
        return quote_identifier(self.tables.get(key, STANDARD_TABLES[key]))

    # Schema helpers

    async def table_exists(self, key: str) -> bool:
        name = self.tables.get(key, STANDARD_TABLES[key])
        return bool(await self.fetchval(
            "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = 'public' AND table_name = $1)",
            name
        ))

    async def add_column_if_missing(self, key: str, column: str, definition: str) -> bool:
        """
        Add a column when the table does not have it yet.

        Args:
            key: Logical table name
            column: Column name
            definition: SQL type and constraints, e.g. 'TEXT'

        Returns:
            True if the column was added
        """
        name = self.tables.get(key, STANDARD_TABLES[key])
        exists = await self.fetchval(
            "SELECT EXISTS (SELECT 1 FROM information_schema.columns "
            "WHERE table_schema = 'public' AND table_name = $1 AND column_name = $2)",
            name, column
        )
        if exists:
            return False

        await self.execute(
            f"ALTER TABLE {self.table(key)} ADD COLUMN IF NOT EXISTS "
            f"{quote_identifier(column)} {definition}"
        )
        logger.info(f"Added column {column} to {name}")
        return True

    async def drop_not_null(self, key: str, column: str) -> bool:
        """
        Make a column nullable when a pre-existing table declares it NOT NULL.

        Returns:
            True if the constraint was dropped
        """
        name = self.tables.get(key, STANDARD_TABLES[key])
        nullable = await self.fetchval(
            "SELECT is_nullable FROM information_schema.columns "
            "WHERE table_schema = 'public' AND table_name = $1 AND column_name = $2",
            name, column
        )
        if nullable != 'NO':
            return False

        await self.execute(
            f"ALTER TABLE {self.table(key)} ALTER COLUMN {quote_identifier(column)} DROP NOT NULL"
        )
        logger.info(f"Dropped NOT NULL from {name}.{column}")
        return True

    async def ensure_index(self, key: str, index_name: str, column: str):
        await self.execute(
            f"CREATE INDEX IF NOT EXISTS {quote_identifier(index_name)} "
            f"ON {self.table(key)} ({quote_identifier(column)})"
        )

    async def prepare_contract_schema(self):
        """Columns the reconciler writes beyond the base contract table."""
        await self.add_column_if_missing('contracts', 'external_id', 'TEXT')
        await self.add_column_if_missing('contracts', 'dodavatel_ico', 'TEXT')
        await self.add_column_if_missing('contracts', 'zadavatel_adresa', 'TEXT')
        await self.ensure_index('contracts', 'idx_smlouva_external_id', 'external_id')

    async def get_statistics(self) -> Dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with row counts and contract date range
        """
        stats = {}
        for key in ('contracts', 'suppliers', 'amendments'):
            if await self.table_exists(key):
                stats[f'total_{key}'] = await self.fetchval(
                    f"SELECT COUNT(*) FROM {self.table(key)}"
                )
            else:
                stats[f'total_{key}'] = 0

        if await self.table_exists('contracts'):
            contracts = self.table('contracts')
            stats['earliest_contract'] = await self.fetchval(f"SELECT MIN(datum) FROM {contracts}")
            stats['latest_contract'] = await self.fetchval(f"SELECT MAX(datum) FROM {contracts}")
            stats['geocoded_contracts'] = await self.fetchval(
                f"SELECT COUNT(*) FROM {contracts} WHERE lat IS NOT NULL AND lng IS NOT NULL"
            )

        return stats
