"""
Supplier Extractor Module
Builds the supplier registry from the supplier names (and IČO) found on
contracts. Suppliers are only ever inserted or touched, never removed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .database import Database
from .models import NOT_SPECIFIED

logger = logging.getLogger(__name__)

CREATE_SUPPLIERS_SQL = """
    CREATE TABLE IF NOT EXISTS {suppliers} (
        nazev TEXT PRIMARY KEY,
        ico TEXT UNIQUE,
        datum_zalozeni TIMESTAMP(3),
        pocet_zamestnancu INTEGER,
        created_at TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
"""

SUPPLIERS_FOR_CONTRACTS_SQL = """
    SELECT dodavatel AS nazev, MAX(dodavatel_ico) AS ico
    FROM {contracts}
    WHERE id = ANY($1::int[]) AND dodavatel IS NOT NULL AND dodavatel <> $2
    GROUP BY dodavatel
    ORDER BY dodavatel
"""

ALL_SUPPLIERS_SQL = """
    SELECT dodavatel AS nazev, MAX(dodavatel_ico) AS ico
    FROM {contracts}
    WHERE dodavatel IS NOT NULL AND dodavatel <> $1
    GROUP BY dodavatel
    ORDER BY dodavatel
"""

FIND_SUPPLIER_BY_NAME_SQL = "SELECT nazev, ico FROM {suppliers} WHERE nazev = $1"

FIND_SUPPLIER_BY_ICO_SQL = "SELECT nazev, ico FROM {suppliers} WHERE ico = $1"

TOUCH_SUPPLIER_SQL = "UPDATE {suppliers} SET updated_at = CURRENT_TIMESTAMP WHERE ico = $1"

# Tables created by the web application declare these NOT NULL, but dumps
# rarely carry an IČO and never a founding date
OPTIONAL_SUPPLIER_COLUMNS = ('ico', 'datum_zalozeni')

INSERT_SUPPLIER_SQL = """
    INSERT INTO {suppliers} (nazev, ico, created_at, updated_at)
    VALUES ($1, $2, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    ON CONFLICT DO NOTHING
    RETURNING nazev
"""


@dataclass
class SupplierExtractionResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'inserted': self.inserted,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': self.errors,
        }


class SupplierExtractor:
    """
    Insert-if-absent of suppliers referenced by contracts.
    """

    def __init__(self, database: Database, batch_size: int = 20):
        self.database = database
        self.batch_size = batch_size

    def _sql(self, template: str) -> str:
        return template.format(
            contracts=self.database.table('contracts'),
            suppliers=self.database.table('suppliers'),
        )

    async def ensure_table(self):
        await self.database.execute(self._sql(CREATE_SUPPLIERS_SQL))
        for column in OPTIONAL_SUPPLIER_COLUMNS:
            await self.database.drop_not_null('suppliers', column)

    async def extract(self, contract_ids: Sequence[int]) -> SupplierExtractionResult:
        """
        Register the suppliers of the given contracts.

        Args:
            contract_ids: Contract row IDs touched by the current run

        Returns:
            SupplierExtractionResult
        """
        if not contract_ids:
            return SupplierExtractionResult()

        await self.ensure_table()
        rows = await self.database.fetch(
            self._sql(SUPPLIERS_FOR_CONTRACTS_SQL), list(contract_ids), NOT_SPECIFIED
        )
        logger.info(f"Found {len(rows)} distinct suppliers in {len(contract_ids)} contracts")
        return await self._register(rows)

    async def extract_all(self) -> SupplierExtractionResult:
        """Register the suppliers of every contract in the store."""
        await self.ensure_table()
        rows = await self.database.fetch(self._sql(ALL_SUPPLIERS_SQL), NOT_SPECIFIED)
        logger.info(f"Found {len(rows)} distinct suppliers across all contracts")
        return await self._register(rows)

    async def _register(self, rows: List[Any]) -> SupplierExtractionResult:
        result = SupplierExtractionResult()

        for start in range(0, len(rows), self.batch_size):
            batch = rows[start:start + self.batch_size]
            for row in batch:
                name, ico = row['nazev'], row['ico']
                try:
                    outcome = await self.register_supplier(name, ico)
                    setattr(result, outcome, getattr(result, outcome) + 1)
                except Exception as e:
                    logger.error(f"Error registering supplier {name}: {e}")
                    result.errors += 1

            logger.info(
                f"Processed supplier batch {start // self.batch_size + 1}: "
                f"{result.inserted} inserted, {result.updated} updated, {result.skipped} skipped"
            )

        return result

    async def register_supplier(self, name: str, ico: Optional[str]) -> str:
        """
        Insert one supplier unless it is already known by name or IČO.

        Returns:
            'inserted', 'updated' or 'skipped'
        """
        existing = await self.database.fetchrow(self._sql(FIND_SUPPLIER_BY_NAME_SQL), name)
        if existing is not None:
            return 'skipped'

        if ico:
            by_ico = await self.database.fetchrow(self._sql(FIND_SUPPLIER_BY_ICO_SQL), ico)
            if by_ico is not None:
                # Same company registered under another spelling
                await self.database.execute(self._sql(TOUCH_SUPPLIER_SQL), ico)
                logger.debug(f"Supplier {name} is known as {by_ico['nazev']} (IČO {ico})")
                return 'updated'

        inserted = await self.database.fetchval(self._sql(INSERT_SUPPLIER_SQL), name, ico)
        if inserted is None:
            return 'skipped'
        logger.debug(f"Created supplier {name}")
        return 'inserted'
