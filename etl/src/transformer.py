"""
Transformer Module
Builds a ContractData value from one extracted dump record.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .extractor import first_field, unwrap_contract
from .field_mappings import (
    AMOUNT_FIELDS,
    CATEGORY_FIELDS,
    DATE_FIELDS,
    PROCEDURE_FIELDS,
    PUBLISHED_AT_FIELD,
    TITLE_FIELDS,
    extract_external_id,
)
from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_PROCEDURE_TYPE,
    NOT_SPECIFIED,
    ContractData,
)
from .party_resolver import PartyResolver
from .validator import DataValidator

logger = logging.getLogger(__name__)


class ContractTransformer:
    """
    Map a raw record onto contract attributes.
    """

    def __init__(self, resolver: PartyResolver = None, validator: DataValidator = None):
        self.validator = validator or DataValidator()
        self.resolver = resolver or PartyResolver(self.validator)

    def transform(self, record: Dict[str, Any]) -> Optional[ContractData]:
        """
        Transform one record.

        Args:
            record: Record as returned by the record extractor

        Returns:
            ContractData, or None when title, supplier and authority are all unknown
        """
        contract = unwrap_contract(record)

        title = self.validator.clean_text(first_field(contract, *TITLE_FIELDS)) or NOT_SPECIFIED
        parties = self.resolver.resolve(contract)

        data = ContractData(
            title=title,
            amount=self._amount(contract),
            date=self._date(contract, record),
            supplier=parties.supplier,
            authority=parties.authority,
            category=first_field(contract, *CATEGORY_FIELDS) or DEFAULT_CATEGORY,
            procedure_type=first_field(contract, *PROCEDURE_FIELDS) or DEFAULT_PROCEDURE_TYPE,
            external_id=extract_external_id(record) if isinstance(record, dict) else None,
            supplier_tax_id=parties.supplier_tax_id,
            authority_address=parties.authority_address,
        )

        if data.is_empty():
            logger.debug("Discarding record without title, supplier and authority")
            return None

        if parties.degraded:
            logger.warning(
                f"Party roles for '{data.title}' ({data.external_id}) were resolved "
                f"by a fallback rule: authority='{data.authority}', supplier='{data.supplier}'"
            )

        return data

    def _amount(self, contract: Dict[str, Any]) -> float:
        raw = first_field(contract, *AMOUNT_FIELDS)
        amount = self.validator.normalize_amount(raw) if raw else None
        return float(amount) if amount is not None else 0.0

    def _date(self, contract: Dict[str, Any], record: Dict[str, Any]) -> datetime:
        raw = first_field(contract, *DATE_FIELDS) or first_field(record, PUBLISHED_AT_FIELD)
        parsed = self.validator.normalize_date(raw) if raw else None
        return parsed or datetime.now()
