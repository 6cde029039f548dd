from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.models import Availability, Base, Customer, Product, SyncStatus, SyncStatusValue
from app.services.erp_client import ErpTransientError
from app.services.sync_service import (
    FULL_SYNC_STATUS_KEY,
    SyncType,
    format_address,
    normalize_customer,
    parse_timestamp,
    run_sync,
)


class FakeErpClient:
    def __init__(self, *, products=None, availability=None, customers=None, fail_on=None):
        self.products = products or []
        self.availability = availability or {}
        self.customers = customers or []
        self.fail_on = fail_on or set()
        self.locations_requested: list[str] = []

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise ErpTransientError('Too Many Requests', status=429, retry_after=5)

    def list_products(self):
        self._maybe_fail('products')
        return list(self.products)

    def list_product_availability(self, *, location=None):
        self._maybe_fail('availability')
        self.locations_requested.append(location)
        return [dict(row, Location=location) for row in self.availability.get(location, [])]

    def list_customers(self):
        self._maybe_fail('customers')
        return list(self.customers)


class NormalizeCustomerTests(unittest.TestCase):
    def test_picks_typed_addresses_and_contacts(self) -> None:
        record = {
            'ID': 'abc-1',
            'Name': 'Veld Farms',
            'PaymentTerms': '30 days',
            'PriceTier': 'Dealer',
            'Addresses': [
                {'Type': 'Business', 'Line1': '1 Main Rd', 'City': 'Bethlehem', 'PostCode': '9701'},
                {'Type': 'Shipping', 'Line1': 'Farm 12', 'City': 'Reitz', 'Default': True},
            ],
            'Contacts': [
                {'Name': 'Piet', 'Email': 'piet@veld.test', 'Phone': '012'},
                {'Comment': 'no name or email'},
            ],
        }

        normalized = normalize_customer(record)

        self.assertEqual(normalized['erp_customer_id'], 'abc-1')
        self.assertEqual(normalized['company_name'], 'Veld Farms')
        self.assertEqual(normalized['terms'], '30 days')
        self.assertEqual(normalized['price_tier'], 'Dealer')
        self.assertIn('1 Main Rd', normalized['billing_address'])
        self.assertIn('Farm 12', normalized['shipping_address'])
        self.assertEqual(normalized['default_address'], normalized['shipping_address'])
        self.assertEqual(len(normalized['contacts']), 1)
        self.assertEqual(normalized['contacts'][0]['role'], 'Contact')

    def test_contact_person_becomes_primary_contact(self) -> None:
        normalized = normalize_customer({'CustomerCode': 'C9', 'CompanyName': 'Solo', 'ContactPerson': 'Anna'})
        self.assertEqual(normalized['erp_customer_id'], 'C9')
        self.assertEqual(normalized['contacts'], [
            {'name': 'Anna', 'email': None, 'phone': None, 'role': 'Primary Contact'}
        ])

    def test_missing_price_tier_uses_default(self) -> None:
        normalized = normalize_customer({'ID': 'x'})
        self.assertEqual(normalized['price_tier'], settings.default_price_tier)
        self.assertEqual(normalized['contacts'], [])

    def test_null_address_entries_are_ignored(self) -> None:
        normalized = normalize_customer({'ID': 'c1', 'Addresses': [None, {'Line1': '4 Dam St'}]})
        self.assertEqual(normalized['default_address'], '4 Dam St')

        normalized = normalize_customer({'ID': 'c2', 'Addresses': [None]})
        self.assertIsNone(normalized['default_address'])

    def test_format_address_skips_blanks(self) -> None:
        self.assertIsNone(format_address(None))
        self.assertIsNone(format_address({}))

    def test_parse_timestamp(self) -> None:
        self.assertEqual(parse_timestamp('2024-03-01T10:00:00Z'), datetime(2024, 3, 1, 10, tzinfo=timezone.utc))
        self.assertIsNone(parse_timestamp('not a date'))
        self.assertIsNone(parse_timestamp(None))


class RunSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            'sqlite://',
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _status(self, sync_type: str) -> SyncStatus | None:
        with self.session_factory() as db:
            return db.get(SyncStatus, sync_type)

    def test_availability_sync_fetches_each_allowed_location(self) -> None:
        client = FakeErpClient(
            products=[{'SKU': 'T1', 'Name': 'Tyre one', 'PriceTier1': 80}],
            availability={
                'B-VDB': [{'SKU': 'T1', 'Available': 4}],
                'S-BFN': [{'SKU': 'T1', 'Available': 1}],
            },
        )

        result = run_sync(SyncType.AVAILABILITY, client=client, session_factory=self.session_factory)

        self.assertTrue(result.success)
        self.assertEqual(result.records_processed, 1)
        self.assertEqual(sorted(client.locations_requested), ['B-CPT', 'B-VDB', 'S-BFN', 'S-CPT', 'S-POM'])
        with self.session_factory() as db:
            product = db.execute(select(Product).where(Product.sku == 'T1')).scalar_one()
            self.assertEqual(product.default_sell_price, Decimal('80'))
            total = db.execute(select(func.sum(Availability.available))).scalar_one()
            self.assertEqual(Decimal(str(total)), Decimal('5'))
        self.assertEqual(self._status('availability').status, SyncStatusValue.SUCCESS)

    def test_customer_sync_skips_records_without_id(self) -> None:
        client = FakeErpClient(customers=[{'ID': 'C1', 'Name': 'One'}, {'Name': 'No id'}])

        result = run_sync(SyncType.CUSTOMERS, client=client, session_factory=self.session_factory)

        self.assertTrue(result.success)
        self.assertEqual(result.records_processed, 1)
        with self.session_factory() as db:
            self.assertEqual(db.execute(select(func.count()).select_from(Customer)).scalar_one(), 1)

    def test_since_filters_old_records(self) -> None:
        client = FakeErpClient(
            customers=[
                {'ID': 'old', 'LastModified': '2023-01-01T00:00:00Z'},
                {'ID': 'new', 'LastModified': '2024-06-01T00:00:00Z'},
            ]
        )
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)

        result = run_sync(SyncType.CUSTOMERS, client=client, session_factory=self.session_factory, since=since)

        self.assertEqual(result.records_processed, 1)

    def test_since_filters_old_availability_rows(self) -> None:
        client = FakeErpClient(
            products=[{'SKU': 'T1'}, {'SKU': 'T2'}],
            availability={
                'B-VDB': [
                    {'SKU': 'T1', 'Available': 4, 'LastModified': '2020-05-01T00:00:00Z'},
                    {'SKU': 'T2', 'Available': 2, 'LastModified': '2024-06-01T00:00:00Z'},
                ],
            },
        )
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)

        result = run_sync(SyncType.AVAILABILITY, client=client, session_factory=self.session_factory, since=since)

        self.assertEqual(result.records_processed, 1)
        with self.session_factory() as db:
            skus = db.execute(select(Product.sku)).scalars().all()
        self.assertEqual(skus, ['T2'])

    def test_failure_returns_result_and_records_error(self) -> None:
        client = FakeErpClient(fail_on={'products'})

        result = run_sync(SyncType.PRODUCTS, client=client, session_factory=self.session_factory)

        self.assertFalse(result.success)
        self.assertEqual(result.status_code, 429)
        self.assertEqual(result.retry_after, 5)
        self.assertIn('Too Many Requests', result.error)
        status = self._status('products')
        self.assertEqual(status.status, SyncStatusValue.ERROR)
        self.assertEqual(status.error_message, 'Too Many Requests')

    def test_full_sync_continues_after_failure(self) -> None:
        client = FakeErpClient(
            products=[{'SKU': 'T1', 'PriceTier1': 10}],
            customers=[{'ID': 'C1'}],
            fail_on={'availability'},
        )

        result = run_sync(SyncType.ALL, client=client, session_factory=self.session_factory)

        self.assertFalse(result.success)
        self.assertEqual(result.records_processed, 2)
        self.assertIn('Partial sync', result.message)
        self.assertEqual(self._status(FULL_SYNC_STATUS_KEY).status, SyncStatusValue.PARTIAL)
        self.assertEqual(self._status('customers').status, SyncStatusValue.SUCCESS)
        self.assertEqual(self._status('availability').status, SyncStatusValue.ERROR)

    def test_full_sync_survives_malformed_customer_record(self) -> None:
        client = FakeErpClient(
            products=[{'SKU': 'T1'}],
            availability={'B-CPT': [{'SKU': 'T1', 'Available': 3}]},
            customers=[{'ID': 'c1', 'Addresses': [None]}, None],
        )

        result = run_sync(SyncType.ALL, client=client, session_factory=self.session_factory)

        self.assertFalse(result.success)
        self.assertEqual(self._status('customers').status, SyncStatusValue.ERROR)
        self.assertEqual(self._status('availability').status, SyncStatusValue.SUCCESS)
        self.assertEqual(self._status(FULL_SYNC_STATUS_KEY).status, SyncStatusValue.PARTIAL)
        with self.session_factory() as db:
            total = db.execute(select(func.sum(Availability.available))).scalar_one()
            self.assertEqual(Decimal(str(total)), Decimal('3'))

    def test_full_sync_success(self) -> None:
        client = FakeErpClient(products=[{'SKU': 'T1'}], customers=[{'ID': 'C1'}])

        result = run_sync(SyncType.ALL, client=client, session_factory=self.session_factory)

        self.assertTrue(result.success)
        self.assertEqual(self._status(FULL_SYNC_STATUS_KEY).status, SyncStatusValue.SUCCESS)


if __name__ == '__main__':
    unittest.main()
