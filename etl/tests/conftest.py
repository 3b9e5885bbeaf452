"""
Shared fixtures: an in-memory stand-in for the Database collaborator.
"""

import itertools
from datetime import datetime

import pytest

from etl.src.database import STANDARD_TABLES, quote_identifier


class FakeDatabase:
    """
    Interprets the handful of statements the pipeline issues against
    dictionaries instead of PostgreSQL.
    """

    def __init__(self):
        self.tables = dict(STANDARD_TABLES)
        self.contracts = {}
        self.suppliers = {}
        self.amendments = []
        self.statements = []
        self.relaxed_columns = []
        self._ids = itertools.count(1)
        self.opened = 0

    async def __aenter__(self):
        self.opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    def table(self, key):
        return quote_identifier(self.tables[key])

    async def resolve_table_names(self):
        return dict(self.tables)

    async def prepare_contract_schema(self):
        return None

    async def drop_not_null(self, key, column):
        self.relaxed_columns.append((key, column))
        return False

    # Statement dispatch

    async def fetchrow(self, query, *args):
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None

    async def fetchval(self, query, *args):
        self.statements.append(query)
        if 'INSERT INTO "smlouva"' in query:
            return self._insert_contract(*args)
        if 'INSERT INTO "dodavatel"' in query:
            return self._insert_supplier(*args)
        raise AssertionError(f"Unexpected fetchval: {query}")

    async def execute(self, query, *args):
        self.statements.append(query)
        if 'CREATE TABLE' in query:
            return "CREATE TABLE"
        if 'UPDATE "smlouva"' in query:
            self._update_contract(*args)
            return "UPDATE 1"
        if 'UPDATE "dodavatel"' in query:
            for supplier in self.suppliers.values():
                if supplier['ico'] == args[0]:
                    supplier['updated_at'] = datetime.now()
            return "UPDATE 1"
        if 'INSERT INTO "dodatek"' in query:
            self.amendments.append({'smlouva_id': args[0], 'castka': args[1], 'datum': args[2]})
            return "INSERT 0 1"
        raise AssertionError(f"Unexpected execute: {query}")

    async def fetch(self, query, *args):
        self.statements.append(query)

        if 'WHERE external_id = $1' in query:
            return [
                self._contract_row(c) for c in self._ordered_contracts()
                if c['external_id'] == args[0]
            ][:1]

        if 'datum BETWEEN $4 AND $5' in query:
            title, authority, supplier, low, high = args
            return [
                self._contract_row(c) for c in self._ordered_contracts()
                if c['nazev'] == title and c['zadavatel'] == authority
                and c['dodavatel'] == supplier and low <= c['datum'] <= high
            ][:1]

        if 'MAX(dodavatel_ico)' in query:
            if 'id = ANY' in query:
                ids, sentinel = set(args[0]), args[1]
                selected = [c for c in self.contracts.values() if c['id'] in ids]
            else:
                sentinel = args[0]
                selected = list(self.contracts.values())
            grouped = {}
            for contract in selected:
                name = contract['dodavatel']
                if name is None or name == sentinel:
                    continue
                icos = [ico for ico in (grouped.get(name), contract.get('dodavatel_ico')) if ico]
                grouped[name] = max(icos) if icos else None
            return [{'nazev': name, 'ico': grouped[name]} for name in sorted(grouped)]

        if 'FROM "dodavatel" WHERE nazev = $1' in query:
            supplier = self.suppliers.get(args[0])
            return [dict(supplier)] if supplier else []

        if 'FROM "dodavatel" WHERE ico = $1' in query:
            return [dict(s) for s in self.suppliers.values() if s['ico'] == args[0]][:1]

        if 'FROM "smlouva" c' in query:
            with_amendments = {a['smlouva_id'] for a in self.amendments}
            if 'c.id = ANY' in query:
                ids, minimum = set(args[0]), args[1]
                selected = [c for c in self._ordered_contracts() if c['id'] in ids]
            else:
                minimum = args[0]
                selected = list(reversed(self._ordered_contracts()))
            return [
                {'id': c['id'], 'castka': c['castka'], 'datum': c['datum']}
                for c in selected
                if c['castka'] > minimum and c['id'] not in with_amendments
            ]

        raise AssertionError(f"Unexpected fetch: {query}")

    # Contract table

    def _ordered_contracts(self):
        return [self.contracts[key] for key in sorted(self.contracts)]

    @staticmethod
    def _contract_row(contract):
        return {'id': contract['id'], 'lat': contract['lat'], 'lng': contract['lng']}

    def _insert_contract(self, title, amount, category, date, supplier, authority,
                         procedure_type, external_id, supplier_ico, authority_address, lat, lng):
        contract_id = next(self._ids)
        now = datetime.now()
        self.contracts[contract_id] = {
            'id': contract_id, 'nazev': title, 'castka': amount, 'kategorie': category,
            'datum': date, 'dodavatel': supplier, 'zadavatel': authority,
            'typ_rizeni': procedure_type, 'external_id': external_id,
            'dodavatel_ico': supplier_ico, 'zadavatel_adresa': authority_address,
            'lat': lat, 'lng': lng, 'created_at': now, 'updated_at': now,
        }
        return contract_id

    def _update_contract(self, contract_id, title, amount, category, date, supplier, authority,
                         procedure_type, external_id, supplier_ico, authority_address, lat, lng):
        row = self.contracts[contract_id]
        row.update({
            'nazev': title, 'castka': amount, 'kategorie': category, 'datum': date,
            'dodavatel': supplier, 'zadavatel': authority, 'typ_rizeni': procedure_type,
            'updated_at': datetime.now(),
        })
        if external_id is not None:
            row['external_id'] = external_id
        if supplier_ico is not None:
            row['dodavatel_ico'] = supplier_ico
        if authority_address is not None:
            row['zadavatel_adresa'] = authority_address
        if row['lat'] is None:
            row['lat'] = lat
        if row['lng'] is None:
            row['lng'] = lng

    # Supplier table

    def _insert_supplier(self, name, ico):
        if name in self.suppliers:
            return None
        if ico is not None and any(s['ico'] == ico for s in self.suppliers.values()):
            return None
        now = datetime.now()
        self.suppliers[name] = {'nazev': name, 'ico': ico, 'created_at': now, 'updated_at': now}
        return name


@pytest.fixture
def fake_db():
    """An empty in-memory store."""
    return FakeDatabase()
