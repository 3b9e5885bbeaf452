"""
Contract Reconciler Module
Responsible for turning dump records into contract rows: transform, look up
an existing row, enrich with coordinates, then update or insert.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .database import Database
from .geocoder import Geocoder
from .models import NOT_SPECIFIED, BatchResult, ContractData, ReconcileResult
from .transformer import ContractTransformer

logger = logging.getLogger(__name__)

# Composite identity tolerates a one-day drift of the conclusion date
DATE_TOLERANCE = timedelta(days=1)

FIND_BY_EXTERNAL_ID_SQL = """
    SELECT id, lat, lng FROM {contracts}
    WHERE external_id = $1
    ORDER BY id
    LIMIT 1
"""

FIND_BY_ATTRIBUTES_SQL = """
    SELECT id, lat, lng FROM {contracts}
    WHERE nazev = $1 AND zadavatel = $2 AND dodavatel = $3
      AND datum BETWEEN $4 AND $5
    ORDER BY id
    LIMIT 1
"""

UPDATE_CONTRACT_SQL = """
    UPDATE {contracts}
    SET nazev = $2,
        castka = $3,
        kategorie = $4,
        datum = $5,
        dodavatel = $6,
        zadavatel = $7,
        typ_rizeni = $8,
        external_id = COALESCE($9, external_id),
        dodavatel_ico = COALESCE($10, dodavatel_ico),
        zadavatel_adresa = COALESCE($11, zadavatel_adresa),
        lat = COALESCE(lat, $12),
        lng = COALESCE(lng, $13),
        updated_at = CURRENT_TIMESTAMP
    WHERE id = $1
"""

INSERT_CONTRACT_SQL = """
    INSERT INTO {contracts} (
        nazev, castka, kategorie, datum, dodavatel, zadavatel, typ_rizeni,
        external_id, dodavatel_ico, zadavatel_adresa, lat, lng,
        created_at, updated_at
    ) VALUES (
        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
        CURRENT_TIMESTAMP, CURRENT_TIMESTAMP
    )
    RETURNING id
"""


class ContractReconciler:
    """
    Idempotent upsert of contracts into the store.
    """

    def __init__(
        self,
        database: Database,
        geocoder: Optional[Geocoder] = None,
        transformer: ContractTransformer = None
    ):
        """
        Initialize the ContractReconciler.

        Args:
            database: Open Database
            geocoder: Geocoder used for rows without coordinates; None disables geocoding
            transformer: Record transformer
        """
        self.database = database
        self.geocoder = geocoder
        self.transformer = transformer or ContractTransformer()

    def _sql(self, template: str) -> str:
        return template.format(contracts=self.database.table('contracts'))

    async def find_existing(self, contract: ContractData) -> Optional[Dict[str, Any]]:
        """
        Look up the stored row for a contract.

        The registry ID is authoritative; without one the composite
        (title, authority, supplier, date +/- one day) is used.

        Returns:
            Row with id, lat, lng or None
        """
        if contract.external_id:
            row = await self.database.fetchrow(
                self._sql(FIND_BY_EXTERNAL_ID_SQL), contract.external_id
            )
            if row is not None:
                return row

        return await self.database.fetchrow(
            self._sql(FIND_BY_ATTRIBUTES_SQL),
            contract.title,
            contract.authority,
            contract.supplier,
            contract.date - DATE_TOLERANCE,
            contract.date + DATE_TOLERANCE,
        )

    async def reconcile(self, contract: ContractData) -> ReconcileResult:
        """
        Insert the contract or update its stored row.

        Coordinates are only looked up (and only written) when the stored row
        has none; every other field is overwritten except the creation time.

        Args:
            contract: Transformed contract

        Returns:
            ReconcileResult with the row id and whether it was created
        """
        existing = await self.find_existing(contract)

        needs_coordinates = existing is None or existing['lat'] is None or existing['lng'] is None
        if needs_coordinates and not contract.has_coordinates and self.geocoder is not None:
            authority = contract.authority if contract.authority != NOT_SPECIFIED else None
            coordinates = await self.geocoder.geocode(
                address=contract.authority_address,
                authority_name=authority
            )
            if coordinates is not None:
                contract.lat, contract.lng = coordinates

        if existing is not None:
            await self.database.execute(
                self._sql(UPDATE_CONTRACT_SQL),
                existing['id'],
                contract.title,
                contract.amount,
                contract.category,
                contract.date,
                contract.supplier,
                contract.authority,
                contract.procedure_type,
                contract.external_id,
                contract.supplier_tax_id,
                contract.authority_address,
                contract.lat,
                contract.lng,
            )
            logger.debug(f"Updated contract {existing['id']}: {contract.title}")
            return ReconcileResult(existing['id'], False)

        contract_id = await self.database.fetchval(
            self._sql(INSERT_CONTRACT_SQL),
            contract.title,
            contract.amount,
            contract.category,
            contract.date,
            contract.supplier,
            contract.authority,
            contract.procedure_type,
            contract.external_id,
            contract.supplier_tax_id,
            contract.authority_address,
            contract.lat,
            contract.lng,
        )
        logger.debug(f"Created contract {contract_id}: {contract.title}")
        return ReconcileResult(contract_id, True)

    async def process_batch(self, records: List[Any], first_index: int = 0) -> BatchResult:
        """
        Transform and reconcile a batch of records.

        A failing record is counted and reported; the rest of the batch goes on.

        Args:
            records: Raw records from the extractor
            first_index: Position of the first record within its month (for messages)

        Returns:
            BatchResult
        """
        result = BatchResult()

        for position, record in enumerate(records, start=first_index + 1):
            try:
                contract = self.transformer.transform(record)
                if contract is None:
                    result.skipped += 1
                    continue

                outcome = await self.reconcile(contract)
                if outcome.is_new:
                    result.new += 1
                else:
                    result.updated += 1
                result.contract_ids.append(outcome.id)

            except Exception as e:
                message = f"Record {position}: {e}"
                logger.error(f"Error processing contract: {message}")
                result.errors += 1
                result.error_messages.append(message)

        logger.info(
            f"Batch processing complete: {result.new} new, {result.updated} updated, "
            f"{result.skipped} skipped, {result.errors} errors"
        )
        return result
