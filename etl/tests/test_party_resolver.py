"""
Tests for the Party Resolver module.
"""

import pytest

from etl.src.models import NOT_SPECIFIED
from etl.src.party_resolver import (
    APPROVER_WEIGHT,
    EXPLICIT_ROLE_WEIGHT,
    NON_PUBLIC_SUPPLIER_WEIGHT,
    PartyResolver,
    looks_public,
    normalize_party_name,
)


def party(name, **fields):
    node = {'nazev': [name]}
    for key, value in fields.items():
        node[key] = [value]
    return node


class TestPartyResolver:
    """Test suite for PartyResolver class."""

    @pytest.fixture
    def resolver(self):
        return PartyResolver()

    def test_person_and_company_without_labels(self, resolver):
        contract = {
            'subjekt': [party("Jan Novák")],
            'smluvniStrana': [party("Stavby a.s.")],
        }

        result = resolver.resolve(contract)

        assert result.supplier == "Stavby a.s."
        assert result.authority == "Jan Novák"
        assert result.degraded is False

    def test_single_public_body(self, resolver):
        contract = {'subjekt': [party("Město Kolín")]}

        result = resolver.resolve(contract)

        assert result.authority == "Město Kolín"
        assert result.supplier == NOT_SPECIFIED

    def test_single_private_party_becomes_supplier(self, resolver):
        contract = {'smluvniStrana': [party("Truhlářství Dvořák")]}

        result = resolver.resolve(contract)

        assert result.supplier == "Truhlářství Dvořák"
        assert result.authority == NOT_SPECIFIED

    def test_direct_fields_are_explicit(self, resolver):
        contract = {
            'dodavatel': ["ACME s.r.o."],
            'zadavatel': ["Ministerstvo financí"],
        }

        result = resolver.resolve(contract)

        assert result.supplier == "ACME s.r.o."
        assert result.authority == "Ministerstvo financí"

    def test_no_parties(self, resolver):
        result = resolver.resolve({'predmet': ["Bez stran"]})

        assert result.authority == NOT_SPECIFIED
        assert result.supplier == NOT_SPECIFIED
        assert result.supplier_tax_id is None

    def test_sentinel_and_blank_names_are_ignored(self, resolver):
        contract = {'smluvniStrana': [party(NOT_SPECIFIED), party("   "), {'ico': ['00006947']}]}

        assert resolver.collect_candidates(contract) == []

    def test_recipient_flag_marks_supplier(self, resolver):
        contract = {
            'subjekt': [party("Krajský úřad Plzeňského kraje")],
            'smluvniStrana': [party("Alfa Beta", prijemce="true")],
        }

        result = resolver.resolve(contract)

        assert result.supplier == "Alfa Beta"
        assert result.authority == "Krajský úřad Plzeňského kraje"

    def test_role_labels(self, resolver):
        contract = {
            'smluvniStrana': [
                party("Nemocnice Na Kopci", role="objednatel"),
                party("Zdravotní technika", role="zhotovitel"),
            ],
        }

        result = resolver.resolve(contract)

        assert result.authority == "Nemocnice Na Kopci"
        assert result.supplier == "Zdravotní technika"

    def test_roles_are_always_distinct(self, resolver):
        contract = {
            'subjekt': [party("Alfa s.r.o.", typ="zadavatel")],
            'smluvniStrana': [party("Beta s.r.o."), party("Gama a.s.")],
        }

        result = resolver.resolve(contract)

        assert result.authority == "Alfa s.r.o."
        assert result.supplier in ("Beta s.r.o.", "Gama a.s.")

    def test_public_supplier_is_swapped_with_private_authority(self, resolver):
        contract = {
            'subjekt': [party("Jan Novák", typ="zadavatel")],
            'smluvniStrana': [party("Krajský úřad Plzeň", prijemce="1")],
        }

        result = resolver.resolve(contract)

        assert result.authority == "Krajský úřad Plzeň"
        assert result.supplier == "Jan Novák"

    def test_tax_id_and_address_follow_the_roles(self, resolver):
        contract = {
            'subjekt': [party("Ministerstvo financí", ico="00006947",
                              adresa="Letenská 15,  118 10 Praha 1")],
            'smluvniStrana': [party("ACME s.r.o.", ico="25596641", prijemce="1")],
        }

        result = resolver.resolve(contract)

        assert result.supplier_tax_id == "25596641"
        assert result.authority_address == "Letenská 15, 118 10 Praha 1"

    def test_invalid_tax_id_is_dropped(self, resolver):
        contract = {
            'subjekt': [party("Obec Lhota")],
            'smluvniStrana': [party("ACME s.r.o.", ico="12345678", prijemce="1")],
        }

        assert resolver.resolve(contract).supplier_tax_id is None

    def test_short_tax_id_is_padded(self, resolver):
        contract = {
            'subjekt': [party("Obec Lhota")],
            'smluvniStrana': [party("ACME s.r.o.", ico="6947", prijemce="1")],
        }

        assert resolver.resolve(contract).supplier_tax_id == "00006947"


class TestCandidateScoring:
    """Test suite for candidate collection and scores."""

    @pytest.fixture
    def resolver(self):
        return PartyResolver()

    def test_repeated_mentions_merge_into_one_candidate(self, resolver):
        contract = {
            'subjekt': [party("Ministerstvo financí")],
            'zadavatel': ["ministerstvo   Financí"],
        }

        candidates = resolver.collect_candidates(contract)

        assert len(candidates) == 1
        assert candidates[0].name == "Ministerstvo financí"
        assert candidates[0].authority_score == 70 + 70 + EXPLICIT_ROLE_WEIGHT

    def test_repeated_mentions_accumulate_name_weights(self, resolver):
        contract = {'smluvniStrana': [party("Stavby a.s."), party("Stavby a.s.")]}

        candidates = resolver.collect_candidates(contract)

        assert len(candidates) == 1
        assert candidates[0].supplier_score == 2 * (NON_PUBLIC_SUPPLIER_WEIGHT + 30)

    def test_more_often_mentioned_public_body_becomes_authority(self, resolver):
        contract = {
            'subjekt': [party("Obec Alfa"), party("Obec Beta")],
            'smluvniStrana': [party("Obec Beta")],
        }

        scores = {c.name: c.authority_score for c in resolver.collect_candidates(contract)}
        result = resolver.resolve(contract)

        assert scores == {"Obec Alfa": 70, "Obec Beta": 140}
        assert result.authority == "Obec Beta"
        assert result.supplier == "Obec Alfa"
        assert result.degraded is False

    def test_private_legal_form_and_non_public_weight(self, resolver):
        candidates = resolver.collect_candidates({'smluvniStrana': [party("Stavby a.s.")]})

        assert candidates[0].supplier_score == NON_PUBLIC_SUPPLIER_WEIGHT + 30
        assert candidates[0].authority_score == 0
        assert candidates[0].is_private_company

    def test_institutional_email(self, resolver):
        contract = {'smluvniStrana': [party("Správa silnic", email="podatelna@ssk.gov.cz")]}

        candidates = resolver.collect_candidates(contract)

        assert candidates[0].authority_score == 20

    def test_approver_adds_authority_score(self, resolver):
        candidates = resolver.collect_candidates({'schvalil': ["Ing. Petr Malý"]})

        assert candidates[0].authority_score == APPROVER_WEIGHT
        assert candidates[0].supplier_score == NON_PUBLIC_SUPPLIER_WEIGHT

    def test_candidates_keep_first_seen_order(self, resolver):
        contract = {
            'subjekt': [party("Obec Lhota")],
            'smluvniStrana': [party("Beta s.r.o."), party("Alfa s.r.o.")],
        }

        names = [c.name for c in resolver.collect_candidates(contract)]

        assert names == ["Obec Lhota", "Beta s.r.o.", "Alfa s.r.o."]


class TestCollisionResolution:
    """Test suite for splitting a candidate picked for both roles."""

    @pytest.fixture
    def resolver(self):
        return PartyResolver()

    def test_runner_up_supplier(self, resolver):
        contract = {
            'smluvniStrana': [
                party("Alfa s.r.o.", email="info@alfa.gov.cz"),
                party("Beta"),
            ],
        }

        result = resolver.resolve(contract)

        assert result.authority == "Alfa s.r.o."
        assert result.supplier == "Beta"
        assert result.degraded is False

    def test_public_private_split(self, resolver):
        contract = {
            'subjekt': [party("Alfa s.r.o.", typ="zadavatel")],
            'smluvniStrana': [party("Obec Lhota")],
        }

        result = resolver.resolve(contract)

        assert result.authority == "Obec Lhota"
        assert result.supplier == "Alfa s.r.o."
        assert result.degraded is False

    def test_name_order_fallback_is_degraded(self, resolver):
        contract = {
            'smluvniStrana': [
                party("Obec Lhota", prijemce="1"),
                party("Město Kolín"),
            ],
        }

        result = resolver.resolve(contract)

        assert result.authority == "Město Kolín"
        assert result.supplier == "Obec Lhota"
        assert result.degraded is True

    def test_single_candidate_keeps_one_role(self, resolver):
        contract = {'smluvniStrana': [party("Alfa s.r.o.", email="info@alfa.gov.cz")]}

        result = resolver.resolve(contract)

        assert result.supplier == "Alfa s.r.o."
        assert result.authority == NOT_SPECIFIED
        assert result.degraded is True


class TestHelpers:
    """Test suite for module helpers."""

    @pytest.mark.parametrize("name,expected", [
        ("Ministerstvo vnitra", True),
        ("Krajská správa údržby silnic", True),
        ("Statutární město Brno", True),
        ("Obecní úřad Lhota", True),
        ("ACME s.r.o.", False),
        ("Jan Novák", False),
        (None, False),
        ("", False),
    ])
    def test_looks_public(self, name, expected):
        assert looks_public(name) is expected

    def test_normalize_party_name(self):
        assert normalize_party_name("  ACME   S.R.O. ") == "acme s.r.o."
