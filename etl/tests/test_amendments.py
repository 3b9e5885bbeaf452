"""
Tests for the Amendment Synthesizer module.
"""

import random
from datetime import datetime

import pytest

from etl.src.amendments import (
    AMOUNT_SHARE_RANGE,
    MAX_AMENDMENTS_PER_CONTRACT,
    AmendmentSynthesizer,
    add_months,
)


def add_contract(db, amount, date=datetime(2024, 1, 31)):
    return db._insert_contract(
        "Smlouva", amount, "ostatni", date, "ACME s.r.o.", "Obec Lhota",
        "standardní", None, None, None, None, None,
    )


class TestAmendmentSynthesizer:
    """Test suite for AmendmentSynthesizer class."""

    @pytest.fixture
    def synthesizer(self, fake_db):
        return AmendmentSynthesizer(fake_db, rng=random.Random(42))

    @pytest.mark.asyncio
    async def test_only_contracts_above_minimum_amount(self, synthesizer, fake_db):
        small = add_contract(fake_db, 1000.0)
        large = add_contract(fake_db, 500000.0)

        result = await synthesizer.create_for([small, large])

        assert result.contracts == 1
        assert {a['smlouva_id'] for a in fake_db.amendments} == {large}

    @pytest.mark.asyncio
    async def test_amendments_stay_within_bounds(self, synthesizer, fake_db):
        contract_id = add_contract(fake_db, 200000.0)

        result = await synthesizer.create_for([contract_id])

        low, high = AMOUNT_SHARE_RANGE
        assert 1 <= result.created <= MAX_AMENDMENTS_PER_CONTRACT
        for amendment in fake_db.amendments:
            assert 200000.0 * low - 0.01 <= amendment['castka'] <= 200000.0 * high + 0.01
            assert datetime(2024, 4, 30) <= amendment['datum'] <= datetime(2024, 12, 31)

    @pytest.mark.asyncio
    async def test_contract_with_amendments_is_not_eligible_again(self, synthesizer, fake_db):
        contract_id = add_contract(fake_db, 200000.0)

        await synthesizer.create_for([contract_id])
        created = len(fake_db.amendments)
        again = await synthesizer.create_for([contract_id])

        assert again.contracts == 0
        assert len(fake_db.amendments) == created

    @pytest.mark.asyncio
    async def test_create_for_all_eligible_respects_limit(self, synthesizer, fake_db):
        ids = [add_contract(fake_db, 50000.0) for _ in range(4)]

        result = await synthesizer.create_for_all_eligible(limit=2)

        assert result.contracts == 2
        assert {a['smlouva_id'] for a in fake_db.amendments} == set(ids[2:])

    @pytest.mark.asyncio
    async def test_empty_id_list_is_a_no_op(self, synthesizer, fake_db):
        result = await synthesizer.create_for([])

        assert result.contracts == 0
        assert fake_db.statements == []

    def test_plan_is_reproducible_with_seeded_rng(self, fake_db):
        first = AmendmentSynthesizer(fake_db, rng=random.Random(3)).plan(10000.0, datetime(2024, 5, 1))
        second = AmendmentSynthesizer(fake_db, rng=random.Random(3)).plan(10000.0, datetime(2024, 5, 1))

        assert first == second


class TestAddMonths:
    """Test suite for add_months."""

    @pytest.mark.parametrize("start,months,expected", [
        (datetime(2024, 1, 15), 3, datetime(2024, 4, 15)),
        (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
        (datetime(2023, 11, 30), 3, datetime(2024, 2, 29)),
        (datetime(2024, 10, 5, 12, 30), 11, datetime(2025, 9, 5, 12, 30)),
    ])
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected
