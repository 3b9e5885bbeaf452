"""
Record Extractor Module
Turns a parsed dump into a flat list of contract records.

The registry has published its dump under several layouts over the years.
Each known layout is an extraction strategy; strategies are tried in order
and the first non-empty result wins.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .exceptions import MalformedDumpError

logger = logging.getLogger(__name__)

Tree = Dict[str, Any]

TEXT_KEY = "_"
ATTRS_KEY = "$"


def _local_name(tag: str) -> str:
    """Strip an ElementTree '{namespace}' prefix from a tag."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def element_to_value(element: ET.Element) -> Union[str, Dict[str, Any]]:
    """
    Convert an element to plain Python data.

    Text-only elements become strings. Elements with children or attributes
    become dicts: every child is appended to a list under its local name,
    attributes go under '$' and non-blank text under '_'.
    """
    children = list(element)
    text = (element.text or "").strip()

    if not children and not element.attrib:
        return text

    node: Dict[str, Any] = {}
    if element.attrib:
        node[ATTRS_KEY] = {_local_name(k): v for k, v in element.attrib.items()}
    if text:
        node[TEXT_KEY] = text
    for child in children:
        node.setdefault(_local_name(child.tag), []).append(element_to_value(child))
    return node


def parse_dump_bytes(content: bytes) -> Tree:
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise MalformedDumpError(f"Invalid XML: {e}") from e
    return {_local_name(root.tag): element_to_value(root)}


def parse_dump(path: Path) -> Tree:
    """
    Parse a dump file into a tree keyed by the root element name.

    Raises:
        MalformedDumpError: If the file is not well-formed XML
    """
    try:
        root = ET.parse(str(path)).getroot()
    except ET.ParseError as e:
        raise MalformedDumpError(f"Invalid XML in {path}: {e}") from e
    return {_local_name(root.tag): element_to_value(root)}


def _child(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    return None


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _as_records(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list) and value:
        return value
    return None


# Strategies

def _dump_records(tree: Tree) -> Optional[List[Any]]:
    return _as_records(_child(tree.get("dump"), "zaznam"))


def _dump_contracts(tree: Tree) -> Optional[List[Any]]:
    return _as_records(_child(tree.get("dump"), "smlouva"))


def _dump_nested_contracts(tree: Tree) -> Optional[List[Any]]:
    return _as_records(_child(_first(_child(tree.get("dump"), "smlouvy")), "smlouva"))


def _dump_nested_records(tree: Tree) -> Optional[List[Any]]:
    return _as_records(_child(_first(_child(tree.get("dump"), "zaznamy")), "zaznam"))


def _root_contracts(tree: Tree) -> Optional[List[Any]]:
    return _as_records(_child(tree.get("smlouvy"), "smlouva"))


EXTRACTION_STRATEGIES: Tuple[Tuple[str, Callable[[Tree], Optional[List[Any]]]], ...] = (
    ("dump.zaznam", _dump_records),
    ("dump.smlouva", _dump_contracts),
    ("dump.smlouvy.smlouva", _dump_nested_contracts),
    ("dump.zaznamy.zaznam", _dump_nested_records),
    ("smlouvy.smlouva", _root_contracts),
)


def extract_records(tree: Tree) -> List[Any]:
    """
    Locate the contract records in a parsed dump.

    Args:
        tree: Parsed dump as returned by parse_dump

    Returns:
        Records from the first matching strategy, or an empty list
    """
    if not isinstance(tree, dict):
        logger.warning(f"Unexpected dump root type: {type(tree)}")
        return []

    for name, strategy in EXTRACTION_STRATEGIES:
        records = strategy(tree)
        if records:
            logger.info(f"Found {len(records)} records using layout '{name}'")
            return records

    logger.warning(f"No records found; root keys: {list(tree.keys())}")
    return []


def load_dump_records(path: Path) -> List[Any]:
    """Parse a dump file and return its records."""
    return extract_records(parse_dump(path))


def unwrap_contract(record: Any) -> Dict[str, Any]:
    """Return the contract body of a record, unwrapping one 'smlouva' level."""
    if not isinstance(record, dict):
        return {}
    nested = record.get("smlouva")
    if isinstance(nested, list) and nested and isinstance(nested[0], dict):
        return nested[0]
    if isinstance(nested, dict):
        return nested
    return record


def first_value(value: Any) -> Optional[str]:
    """
    Collapse the shapes a field can take into one optional string.

    Handles a bare scalar, a list (first element wins) and a dict carrying
    its text under '_'. Blank values become None.
    """
    if value is None:
        return None

    if isinstance(value, list):
        if not value:
            return None
        return first_value(value[0])

    if isinstance(value, dict):
        text = value.get(TEXT_KEY)
        return first_value(text) if text is not None else None

    text = str(value).strip()
    return text or None


def first_field(node: Any, *names: str) -> Optional[str]:
    """First non-empty value among the given field names of a record."""
    if not isinstance(node, dict):
        return None
    for name in names:
        value = first_value(node.get(name))
        if value:
            return value
    return None


def first_node(node: Any, name: str) -> Optional[Dict[str, Any]]:
    """First dict-shaped child of a record, or None."""
    if not isinstance(node, dict):
        return None
    value = _first(node.get(name))
    return value if isinstance(value, dict) else None
