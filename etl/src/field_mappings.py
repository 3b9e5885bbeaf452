"""
Field Mappings Module
Maps the Czech field names of the contract registry dumps to contract
attributes, and holds the vocabularies used to recognise party roles.

The registry has renamed fields across dump versions. Every attribute lists
its candidate source fields in priority order.
"""

from typing import Any, Dict, Optional, Tuple

from .extractor import first_field, first_node

# Contract attribute -> source fields, highest priority first
TITLE_FIELDS: Tuple[str, ...] = ('predmet', 'nazev', 'popis')
AMOUNT_FIELDS: Tuple[str, ...] = ('hodnotaBezDph', 'hodnotaVcetneDph', 'castka')
DATE_FIELDS: Tuple[str, ...] = ('datumUzavreni', 'datum')
PUBLISHED_AT_FIELD = 'casZverejneni'
CATEGORY_FIELDS: Tuple[str, ...] = ('typSmlouvy', 'kategorie')
PROCEDURE_FIELDS: Tuple[str, ...] = ('druhRizeni', 'typ_rizeni')

# Party sources
SUBJECT_FIELD = 'subjekt'
PARTY_FIELD = 'smluvniStrana'
APPROVER_FIELD = 'schvalil'
SUPPLIER_FIELD = 'dodavatel'
AUTHORITY_FIELD = 'zadavatel'

# Party attributes
PARTY_NAME_FIELDS: Tuple[str, ...] = ('nazev', 'jmeno')
PARTY_TAX_ID_FIELDS: Tuple[str, ...] = ('ico',)
PARTY_ADDRESS_FIELDS: Tuple[str, ...] = ('adresa',)
PARTY_EMAIL_FIELDS: Tuple[str, ...] = ('email',)
SUBJECT_ROLE_FIELD = 'typ'
PARTY_ROLE_FIELD = 'role'
RECIPIENT_FLAG_FIELD = 'prijemce'
RECIPIENT_FLAG_VALUES = frozenset({'true', '1'})

# Role keywords as they appear in 'typ' / 'role' values
AUTHORITY_ROLE_KEYWORDS: Tuple[str, ...] = (
    'zadavatel', 'objednatel', 'kupující', 'objednávající',
)
SUPPLIER_ROLE_KEYWORDS: Tuple[str, ...] = (
    'dodavatel', 'poskytovatel', 'zhotovitel', 'prodávající',
)


def role_from_text(value: Optional[str]) -> Optional[str]:
    """
    Classify a role label.

    Args:
        value: Free-text role label from the dump

    Returns:
        'authority', 'supplier' or None
    """
    if not value:
        return None
    lowered = value.lower()
    if any(keyword in lowered for keyword in AUTHORITY_ROLE_KEYWORDS):
        return 'authority'
    if any(keyword in lowered for keyword in SUPPLIER_ROLE_KEYWORDS):
        return 'supplier'
    return None


def extract_external_id(record: Dict[str, Any]) -> Optional[str]:
    """
    Extract the registry identifier of a record.

    Prefers the contract ID over the version ID, then a bare 'id' field.

    Args:
        record: Record as extracted from the dump (before unwrapping)

    Returns:
        Identifier or None
    """
    identifier = first_node(record, 'identifikator')
    if identifier:
        value = first_field(identifier, 'idSmlouvy', 'idVerze')
        if value:
            return value
    return first_field(record, 'id')


def extract_party_name(party: Any) -> Optional[str]:
    """Name of a party node, or the node itself when it is a bare string."""
    if isinstance(party, dict):
        return first_field(party, *PARTY_NAME_FIELDS)
    return first_field({'value': party}, 'value')
