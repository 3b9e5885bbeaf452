"""
Amendment Synthesizer Module
Creates placeholder amendment rows for contracts that have none.

The rows are generated, not read from the registry: amounts and dates are
drawn at random within fixed bounds. The phase is therefore off by default
and has to be enabled explicitly (SYNC_CREATE_AMENDMENTS or the CLI).
"""

import calendar
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from .database import Database

logger = logging.getLogger(__name__)

MIN_CONTRACT_AMOUNT = 1000
MAX_AMENDMENTS_PER_CONTRACT = 3
AMOUNT_SHARE_RANGE = (0.1, 0.3)
MONTH_OFFSET_RANGE = (3, 11)

CREATE_AMENDMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS {amendments} (
        id SERIAL PRIMARY KEY,
        smlouva_id INTEGER NOT NULL REFERENCES {contracts}(id) ON DELETE CASCADE,
        castka DOUBLE PRECISION NOT NULL,
        datum TIMESTAMP(3) NOT NULL,
        created_at TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
"""

CREATE_AMENDMENTS_NO_FK_SQL = """
    CREATE TABLE IF NOT EXISTS {amendments} (
        id SERIAL PRIMARY KEY,
        smlouva_id INTEGER NOT NULL,
        castka DOUBLE PRECISION NOT NULL,
        datum TIMESTAMP(3) NOT NULL,
        created_at TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
"""

ELIGIBLE_CONTRACTS_SQL = """
    SELECT c.id, c.castka, c.datum
    FROM {contracts} c
    WHERE c.id = ANY($1::int[]) AND c.castka > $2
      AND NOT EXISTS (SELECT 1 FROM {amendments} a WHERE a.smlouva_id = c.id)
    ORDER BY c.id
"""

ALL_ELIGIBLE_CONTRACTS_SQL = """
    SELECT c.id, c.castka, c.datum
    FROM {contracts} c
    WHERE c.castka > $1
      AND NOT EXISTS (SELECT 1 FROM {amendments} a WHERE a.smlouva_id = c.id)
    ORDER BY c.id DESC
"""

INSERT_AMENDMENT_SQL = """
    INSERT INTO {amendments} (smlouva_id, castka, datum, created_at)
    VALUES ($1, $2, $3, CURRENT_TIMESTAMP)
"""


def add_months(value: datetime, months: int) -> datetime:
    """Shift a datetime by whole months, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass
class AmendmentResult:
    contracts: int = 0
    created: int = 0
    errors: int = 0


class AmendmentSynthesizer:
    """
    Generates 1-3 amendments for eligible contracts without any.
    """

    def __init__(
        self,
        database: Database,
        rng: random.Random = None,
        batch_size: int = 10,
        min_contract_amount: float = MIN_CONTRACT_AMOUNT
    ):
        self.database = database
        self.rng = rng or random.Random()
        self.batch_size = batch_size
        self.min_contract_amount = min_contract_amount

    def _sql(self, template: str) -> str:
        return template.format(
            contracts=self.database.table('contracts'),
            amendments=self.database.table('amendments'),
        )

    async def ensure_table(self):
        try:
            await self.database.execute(self._sql(CREATE_AMENDMENTS_SQL))
        except Exception as e:
            logger.warning(f"Could not create amendment table with foreign key ({e}), retrying without")
            await self.database.execute(self._sql(CREATE_AMENDMENTS_NO_FK_SQL))

    async def create_for(self, contract_ids: Sequence[int]) -> AmendmentResult:
        """
        Create amendments for the given contracts where eligible.

        Args:
            contract_ids: Contract row IDs touched by the current run

        Returns:
            AmendmentResult
        """
        if not contract_ids:
            return AmendmentResult()

        await self.ensure_table()
        rows = await self.database.fetch(
            self._sql(ELIGIBLE_CONTRACTS_SQL), list(contract_ids), self.min_contract_amount
        )
        return await self._create(rows)

    async def create_for_all_eligible(self, limit: Optional[int] = None) -> AmendmentResult:
        """Create amendments for every eligible contract, newest first."""
        await self.ensure_table()
        rows = await self.database.fetch(
            self._sql(ALL_ELIGIBLE_CONTRACTS_SQL), self.min_contract_amount
        )
        if limit is not None:
            rows = rows[:limit]
        return await self._create(rows)

    def plan(self, amount: float, signed: datetime) -> List[tuple]:
        """
        Draw the (amount, date) pairs for one contract.

        Returns:
            1 to MAX_AMENDMENTS_PER_CONTRACT tuples
        """
        count = self.rng.randint(1, MAX_AMENDMENTS_PER_CONTRACT)
        low_share, high_share = AMOUNT_SHARE_RANGE
        low_offset, high_offset = MONTH_OFFSET_RANGE

        planned = []
        for _ in range(count):
            share = self.rng.uniform(low_share, high_share)
            offset = self.rng.randint(low_offset, high_offset)
            planned.append((round(float(amount) * share, 2), add_months(signed, offset)))
        return planned

    async def _create(self, rows: List) -> AmendmentResult:
        result = AmendmentResult()
        logger.info(f"Creating amendments for {len(rows)} contracts")

        for start in range(0, len(rows), self.batch_size):
            for row in rows[start:start + self.batch_size]:
                try:
                    for amount, date in self.plan(row['castka'], row['datum']):
                        await self.database.execute(
                            self._sql(INSERT_AMENDMENT_SQL), row['id'], amount, date
                        )
                        result.created += 1
                    result.contracts += 1
                except Exception as e:
                    logger.error(f"Error creating amendments for contract {row['id']}: {e}")
                    result.errors += 1

        logger.info(f"Created {result.created} amendments for {result.contracts} contracts")
        return result
