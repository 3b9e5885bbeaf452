"""
Tests for the Transformer module.
"""

from datetime import datetime

import pytest

from etl.src.models import DEFAULT_CATEGORY, DEFAULT_PROCEDURE_TYPE, NOT_SPECIFIED
from etl.src.transformer import ContractTransformer


class TestContractTransformer:
    """Test suite for ContractTransformer class."""

    @pytest.fixture
    def transformer(self):
        return ContractTransformer()

    @pytest.fixture
    def record(self):
        return {
            'identifikator': [{'idSmlouvy': ['1234567'], 'idVerze': ['7654321']}],
            'casZverejneni': ['2024-03-16T10:22:33+01:00'],
            'smlouva': [{
                'subjekt': [{'nazev': ['Ministerstvo financí'], 'ico': ['00006947']}],
                'smluvniStrana': [{'nazev': ['ACME s.r.o.'], 'ico': ['25596641'],
                                   'prijemce': ['true']}],
                'predmet': ['Dodávka kancelářských potřeb'],
                'datumUzavreni': ['2024-03-15'],
                'hodnotaBezDph': ['125000.50'],
                'typSmlouvy': ['dodávky'],
            }],
        }

    def test_transform_full_record(self, transformer, record):
        data = transformer.transform(record)

        assert data.title == 'Dodávka kancelářských potřeb'
        assert data.amount == 125000.50
        assert data.date == datetime(2024, 3, 15)
        assert data.supplier == 'ACME s.r.o.'
        assert data.authority == 'Ministerstvo financí'
        assert data.category == 'dodávky'
        assert data.procedure_type == DEFAULT_PROCEDURE_TYPE
        assert data.external_id == '1234567'
        assert data.supplier_tax_id == '25596641'
        assert data.has_coordinates is False

    def test_version_id_used_without_contract_id(self, transformer, record):
        record['identifikator'] = [{'idVerze': ['7654321']}]

        assert transformer.transform(record).external_id == '7654321'

    def test_amount_field_fallbacks(self, transformer, record):
        contract = record['smlouva'][0]
        del contract['hodnotaBezDph']
        contract['hodnotaVcetneDph'] = ['1 210 000,00 Kč']

        assert transformer.transform(record).amount == 1210000.0

    def test_missing_amount_defaults_to_zero(self, transformer, record):
        del record['smlouva'][0]['hodnotaBezDph']

        assert transformer.transform(record).amount == 0.0

    def test_date_falls_back_to_publication_time(self, transformer, record):
        del record['smlouva'][0]['datumUzavreni']

        assert transformer.transform(record).date == datetime(2024, 3, 16, 10, 22, 33)

    def test_missing_date_defaults_to_now(self, transformer, record):
        del record['smlouva'][0]['datumUzavreni']
        del record['casZverejneni']
        before = datetime.now()

        data = transformer.transform(record)

        assert before <= data.date <= datetime.now()

    def test_title_fallback_and_defaults(self, transformer):
        record = {'nazev': ['Servisní smlouva'], 'dodavatel': ['Servis s.r.o.']}

        data = transformer.transform(record)

        assert data.title == 'Servisní smlouva'
        assert data.supplier == 'Servis s.r.o.'
        assert data.authority == NOT_SPECIFIED
        assert data.category == DEFAULT_CATEGORY
        assert data.external_id is None

    def test_record_without_title_and_parties_is_discarded(self, transformer):
        record = {'identifikator': [{'idSmlouvy': ['1']}], 'smlouva': [{'hodnotaBezDph': ['100']}]}

        assert transformer.transform(record) is None

    def test_title_only_record_is_kept(self, transformer):
        data = transformer.transform({'smlouva': [{'predmet': ['Oprava střechy']}]})

        assert data is not None
        assert data.supplier == NOT_SPECIFIED
        assert data.authority == NOT_SPECIFIED
