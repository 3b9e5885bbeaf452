"""
Party Resolver Module
Decides which party of a contract record is the contracting authority and
which is the supplier.

Dumps name parties in several places (publishing subject, contracting
parties, approver, direct supplier/authority fields) and rarely label them
consistently. Every mention is scored against a fixed set of rules and the
decision procedure below picks the two roles from the accumulated scores.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .extractor import first_field, first_value
from .field_mappings import (
    APPROVER_FIELD,
    AUTHORITY_FIELD,
    PARTY_ADDRESS_FIELDS,
    PARTY_EMAIL_FIELDS,
    PARTY_FIELD,
    PARTY_ROLE_FIELD,
    PARTY_TAX_ID_FIELDS,
    RECIPIENT_FLAG_FIELD,
    RECIPIENT_FLAG_VALUES,
    SUBJECT_FIELD,
    SUBJECT_ROLE_FIELD,
    SUPPLIER_FIELD,
    extract_party_name,
    role_from_text,
)
from .models import NOT_SPECIFIED
from .validator import DataValidator

logger = logging.getLogger(__name__)

AUTHORITY = 'authority'
SUPPLIER = 'supplier'


@dataclass(frozen=True)
class ScoringRule:
    """A name or contact pattern and the score it adds to each role."""
    name: str
    pattern: Pattern[str]
    authority_weight: int = 0
    supplier_weight: int = 0


def _alternation(*parts: str) -> Pattern[str]:
    return re.compile("|".join(parts), re.IGNORECASE)


PUBLIC_BODY_RULE = ScoringRule(
    name='public_body',
    pattern=_alternation(
        *(re.escape(keyword) for keyword in (
            'ministerstvo', 'úřad', 'magistrát', 'městský', 'obecní', 'kraj',
            'město ', 'obec ', 'státní', 'česká republika', 'ředitelství',
        )),
        r'krajsk[áý]', r'městsk[áý]', r'obecn[íý]', r'státn[íý]',
    ),
    authority_weight=70,
)

PRIVATE_LEGAL_FORM_RULE = ScoringRule(
    name='private_legal_form',
    pattern=_alternation(
        *(re.escape(suffix) for suffix in (
            's.r.o.', 'a.s.', 'spol. s r.o.', 's. r. o.',
            'akciová společnost', 'společnost s ručením',
        )),
    ),
    supplier_weight=30,
)

INSTITUTIONAL_EMAIL_RULE = ScoringRule(
    name='institutional_email',
    pattern=re.compile(r'(\.gov\.cz|\.muni\.cz|-mucs\.cz|\.mesto\.cz)$', re.IGNORECASE),
    authority_weight=20,
)


# Source-derived weights
EXPLICIT_ROLE_WEIGHT = 150
RECIPIENT_WEIGHT = 100
APPROVER_WEIGHT = 50
# Names without any public-body marker lean towards the supplier role
NON_PUBLIC_SUPPLIER_WEIGHT = 40


def normalize_party_name(name: str) -> str:
    return re.sub(r'\s+', ' ', name).strip().casefold()


def looks_public(name: Optional[str]) -> bool:
    return bool(name) and bool(PUBLIC_BODY_RULE.pattern.search(name))


@dataclass
class PartyCandidate:
    """A party mentioned by a record together with its accumulated scores."""
    name: str
    authority_score: int = 0
    supplier_score: int = 0
    explicit_role: Optional[str] = None
    is_public_body: bool = False
    is_private_company: bool = False
    tax_id: Optional[str] = None
    address: Optional[str] = None

    def score(self, role: str) -> int:
        return self.authority_score if role == AUTHORITY else self.supplier_score

    def add(self, role: str, weight: int):
        if role == AUTHORITY:
            self.authority_score += weight
        else:
            self.supplier_score += weight


@dataclass
class PartyResolution:
    authority: str = NOT_SPECIFIED
    supplier: str = NOT_SPECIFIED
    supplier_tax_id: Optional[str] = None
    authority_address: Optional[str] = None
    degraded: bool = False


class PartyResolver:
    """
    Score-based assignment of the authority and supplier roles.
    """

    def __init__(self, validator: DataValidator = None):
        self.validator = validator or DataValidator()

    def resolve(self, contract: Dict[str, Any]) -> PartyResolution:
        """
        Resolve both roles for one (unwrapped) contract record.

        Args:
            contract: Contract body as produced by the record extractor

        Returns:
            PartyResolution; unresolved roles hold the NOT_SPECIFIED sentinel
        """
        candidates = self.collect_candidates(contract)
        return self.select(candidates)

    # Candidate collection

    def collect_candidates(self, contract: Dict[str, Any]) -> List[PartyCandidate]:
        """Gather every named party of the record with its scores, in first-seen order."""
        pool: Dict[str, PartyCandidate] = {}

        for subject in self._nodes(contract, SUBJECT_FIELD):
            candidate = self._mention(pool, subject)
            if candidate is None:
                continue
            role = role_from_text(first_field(subject, SUBJECT_ROLE_FIELD))
            if role:
                self._tag(candidate, role)

        for party in self._nodes(contract, PARTY_FIELD):
            candidate = self._mention(pool, party)
            if candidate is None:
                continue
            role = role_from_text(first_field(party, PARTY_ROLE_FIELD))
            if role:
                self._tag(candidate, role)

            recipient = first_field(party, RECIPIENT_FLAG_FIELD)
            if recipient and recipient.lower() in RECIPIENT_FLAG_VALUES:
                candidate.add(SUPPLIER, RECIPIENT_WEIGHT)
                if candidate.explicit_role is None:
                    candidate.explicit_role = SUPPLIER

            email = first_field(party, *PARTY_EMAIL_FIELDS)
            if email and INSTITUTIONAL_EMAIL_RULE.pattern.search(email):
                candidate.add(AUTHORITY, INSTITUTIONAL_EMAIL_RULE.authority_weight)

        approver = first_value(contract.get(APPROVER_FIELD)) if isinstance(contract, dict) else None
        if approver:
            candidate = self._mention(pool, approver)
            if candidate is not None:
                candidate.add(AUTHORITY, APPROVER_WEIGHT)

        for supplier in self._nodes(contract, SUPPLIER_FIELD):
            candidate = self._mention(pool, supplier)
            if candidate is not None:
                self._tag(candidate, SUPPLIER)

        for authority in self._nodes(contract, AUTHORITY_FIELD):
            candidate = self._mention(pool, authority)
            if candidate is not None:
                self._tag(candidate, AUTHORITY)

        candidates = list(pool.values())
        logger.debug(
            "Party candidates: " + ", ".join(
                f"{c.name} (A={c.authority_score}, S={c.supplier_score}, "
                f"explicit={c.explicit_role}, public={c.is_public_body})"
                for c in candidates
            )
        )
        return candidates

    @staticmethod
    def _nodes(contract: Any, field_name: str) -> List[Any]:
        if not isinstance(contract, dict):
            return []
        value = contract.get(field_name)
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]

    def _mention(self, pool: Dict[str, PartyCandidate], node: Any) -> Optional[PartyCandidate]:
        """Find or create the candidate a node refers to; nameless nodes are ignored."""
        name = extract_party_name(node)
        if not name:
            return None
        name = self.validator.clean_text(name)
        if not name or name == NOT_SPECIFIED:
            return None

        key = normalize_party_name(name)
        candidate = pool.get(key)
        if candidate is None:
            candidate = PartyCandidate(
                name=name,
                is_public_body=bool(PUBLIC_BODY_RULE.pattern.search(name)),
                is_private_company=bool(PRIVATE_LEGAL_FORM_RULE.pattern.search(name)),
            )
            pool[key] = candidate
        self._score_name(candidate)

        if isinstance(node, dict):
            if candidate.tax_id is None:
                raw_ico = first_field(node, *PARTY_TAX_ID_FIELDS)
                if raw_ico:
                    is_valid, clean_ico = self.validator.validate_ico(raw_ico)
                    if is_valid:
                        candidate.tax_id = clean_ico
                    else:
                        logger.debug(f"Ignoring invalid IČO {raw_ico!r} of {name}")
            if candidate.address is None:
                candidate.address = self.validator.clean_text(first_field(node, *PARTY_ADDRESS_FIELDS))

        return candidate

    @staticmethod
    def _score_name(candidate: PartyCandidate):
        """Add the name-derived weights; repeated mentions accumulate them."""
        if candidate.is_public_body:
            candidate.add(AUTHORITY, PUBLIC_BODY_RULE.authority_weight)
        else:
            candidate.add(SUPPLIER, NON_PUBLIC_SUPPLIER_WEIGHT)
        if candidate.is_private_company:
            candidate.add(SUPPLIER, PRIVATE_LEGAL_FORM_RULE.supplier_weight)

    @staticmethod
    def _tag(candidate: PartyCandidate, role: str):
        candidate.add(role, EXPLICIT_ROLE_WEIGHT)
        candidate.explicit_role = role

    # Decision procedure

    def select(self, candidates: List[PartyCandidate]) -> PartyResolution:
        """
        Pick authority and supplier from scored candidates.

        Args:
            candidates: Candidates in first-seen order

        Returns:
            PartyResolution
        """
        if not candidates:
            return PartyResolution()

        authority = self._pick(candidates, AUTHORITY)
        supplier = self._pick(candidates, SUPPLIER)

        if len(candidates) == 2 and authority is not supplier:
            if authority is not None and supplier is None:
                supplier = self._other(candidates, authority)
            elif supplier is not None and authority is None:
                authority = self._other(candidates, supplier)

        if len(candidates) == 1 and authority is None and supplier is None:
            only = candidates[0]
            if only.is_public_body:
                authority = only
            else:
                supplier = only

        degraded = False
        if authority is not None and authority is supplier:
            authority, supplier, degraded = self._resolve_collision(candidates, authority)

        if (
            authority is not None
            and supplier is not None
            and supplier.is_public_body
            and not authority.is_public_body
        ):
            logger.debug(f"Swapping roles: '{supplier.name}' looks like a public body")
            authority, supplier = supplier, authority

        return PartyResolution(
            authority=authority.name if authority else NOT_SPECIFIED,
            supplier=supplier.name if supplier else NOT_SPECIFIED,
            supplier_tax_id=supplier.tax_id if supplier else None,
            authority_address=authority.address if authority else None,
            degraded=degraded,
        )

    @staticmethod
    def _pick(candidates: List[PartyCandidate], role: str) -> Optional[PartyCandidate]:
        for candidate in candidates:
            if candidate.explicit_role == role:
                return candidate
        # max() keeps the first of equal scores
        best = max(candidates, key=lambda c: c.score(role))
        return best if best.score(role) > 0 else None

    @staticmethod
    def _other(candidates: List[PartyCandidate], taken: PartyCandidate) -> Optional[PartyCandidate]:
        for candidate in candidates:
            if candidate is not taken:
                return candidate
        return None

    def _resolve_collision(
        self,
        candidates: List[PartyCandidate],
        chosen: PartyCandidate
    ) -> Tuple[Optional[PartyCandidate], Optional[PartyCandidate], bool]:
        """
        Split a candidate picked for both roles.

        Returns:
            Tuple of (authority, supplier, degraded)
        """
        others = [c for c in candidates if c is not chosen]

        if not others:
            logger.warning(
                f"Only party '{chosen.name}' matched both roles; keeping a single role"
            )
            if chosen.is_public_body:
                return chosen, None, True
            return None, chosen, True

        runner_up = max(others, key=lambda c: c.supplier_score)
        if runner_up.supplier_score > 0:
            return chosen, runner_up, False

        public = [c for c in candidates if c.is_public_body]
        private = [c for c in candidates if not c.is_public_body]
        if public and private:
            return (
                max(public, key=lambda c: c.authority_score),
                max(private, key=lambda c: c.supplier_score),
                False,
            )

        ordered = sorted(candidates, key=lambda c: c.name)
        logger.warning(
            f"Could not separate parties {[c.name for c in candidates]}; "
            f"falling back to name order"
        )
        return ordered[0], ordered[1], True
