from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import Principal, Role, get_current_principal
from app.db import get_db
from app.dependencies import get_cart_store, get_erp_client, get_sync_runner
from app.main import app
from app.models import AuthEvent, Base, Customer, Quote, QuoteStatus, User, UserRole
from app.security.passwords import hash_password
from app.services.cache_upsert_service import write_aggregated_products
from app.services.cart_service import CartItem, CartStore
from app.services.catalog_aggregation_service import aggregate_availability, build_pricing_map
from app.services.erp_client import ErpTransientError
from app.services.sync_service import SyncResult


CSRF = 'test-csrf-token'


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            'sqlite://',
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        with self.session_factory() as db:
            customer = Customer(
                erp_customer_id='erp-c1',
                company_name='Veld Farms',
                contacts=[],
                is_active=True,
                allow_portal_access=True,
            )
            db.add(customer)
            db.flush()
            admin = User(email='admin@portal.test', password_hash=hash_password('adminpass'), role=UserRole.ADMIN)
            buyer = User(
                email='buyer@veld.test',
                password_hash=hash_password('buyerpass'),
                role=UserRole.BUYER,
                customer_id=customer.id,
            )
            db.add_all([admin, buyer])
            db.commit()
            self.customer_id = customer.id
            self.admin = Principal(id=admin.id, email=admin.email, role=Role.ADMIN, customer_id=None, active=True)
            self.buyer = Principal(
                id=buyer.id, email=buyer.email, role=Role.BUYER, customer_id=customer.id, active=True
            )

        self.cart_store = CartStore()
        self.erp = MagicMock()
        self.runner = MagicMock(return_value=SyncResult(success=True, message='Successfully synced 4 customers', records_processed=4))

        def _get_db():
            with self.session_factory() as db:
                yield db

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_cart_store] = lambda: self.cart_store
        app.dependency_overrides[get_erp_client] = lambda: self.erp
        app.dependency_overrides[get_sync_runner] = lambda: self.runner

        self.client = TestClient(app)
        self.client.cookies.set('csrf_token', CSRF)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def login_as(self, principal: Principal) -> None:
        app.dependency_overrides[get_current_principal] = lambda: principal

    def post(self, url: str, **kwargs):
        return self.client.post(url, headers={'X-CSRF-Token': CSRF}, **kwargs)


class PublicEndpointTests(ApiTestCase):
    def test_health(self) -> None:
        self.assertEqual(self.client.get('/healthz').json(), {'status': 'ok'})
        body = self.client.get('/api/health').json()
        self.assertEqual(body['status'], 'ok')
        self.assertFalse(body['scheduler']['is_running'])

    def test_api_responses_are_not_cached(self) -> None:
        response = self.client.get('/api/health')
        self.assertEqual(response.headers['cache-control'], 'no-store')
        self.assertEqual(response.headers['x-content-type-options'], 'nosniff')

    def test_catalog_requires_login(self) -> None:
        self.assertEqual(self.client.get('/api/products').status_code, 401)

    def test_session_reports_anonymous(self) -> None:
        self.assertIsNone(self.client.get('/api/session').json()['user'])


class LoginTests(ApiTestCase):
    def test_login_sets_session_cookie(self) -> None:
        response = self.post('/api/login', json={'email': 'Buyer@Veld.test', 'password': 'buyerpass'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['user']['role'], 'BUYER')
        self.assertIn('tyre_portal_session', response.headers['set-cookie'])

    def test_bad_password_is_rejected_and_logged(self) -> None:
        response = self.post('/api/login', json={'email': 'buyer@veld.test', 'password': 'nope'})

        self.assertEqual(response.status_code, 401)
        with self.session_factory() as db:
            event = db.execute(select(AuthEvent)).scalar_one()
            self.assertFalse(event.success)
            self.assertEqual(event.failure_reason, 'BAD_PASSWORD')

    def test_buyer_without_portal_access_cannot_login(self) -> None:
        with self.session_factory() as db:
            db.get(Customer, self.customer_id).allow_portal_access = False
            db.commit()

        response = self.post('/api/login', json={'email': 'buyer@veld.test', 'password': 'buyerpass'})

        self.assertEqual(response.status_code, 401)

    def test_login_requires_csrf_header(self) -> None:
        response = self.client.post('/api/login', json={'email': 'buyer@veld.test', 'password': 'buyerpass'})
        self.assertEqual(response.status_code, 403)


class CatalogApiTests(ApiTestCase):
    def test_products_show_capped_region_stock(self) -> None:
        with self.session_factory() as db:
            aggregated = aggregate_availability(
                [
                    {'SKU': 'T1', 'Location': 'B-VDB', 'Available': 45, 'OnHand': 45},
                    {'SKU': 'T1', 'Location': 'S-CPT', 'Available': 3, 'OnHand': 3},
                ],
                build_pricing_map([{'SKU': 'T1', 'Name': 'Tractor rear', 'PriceTier1': 4200}]),
            )
            write_aggregated_products(db, aggregated)
            db.commit()
        self.login_as(self.buyer)

        body = self.client.get('/api/products', params={'q': 'tractor'}).json()

        self.assertEqual(body['total'], 1)
        [product] = body['products']
        self.assertEqual(product['warehouse_breakdown']['jhb']['available'], '20+')
        self.assertEqual(product['warehouse_breakdown']['cpt']['available'], '3')
        self.assertEqual(product['warehouse_breakdown']['bfn']['available'], '0')
        self.assertEqual(Decimal(str(product['price'])), Decimal('4200'))

    def test_warehouses_fall_back_to_region_table(self) -> None:
        self.login_as(self.buyer)
        names = [row['name'] for row in self.client.get('/api/warehouses').json()]
        self.assertEqual(names, ['JHB Warehouse', 'CPT Warehouse', 'BFN Warehouse'])


class CartApiTests(ApiTestCase):
    def test_checkout_with_empty_cart_is_bad_request(self) -> None:
        self.login_as(self.buyer)

        response = self.post('/api/cart/checkout', json={})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail'], 'Cart is empty')
        self.erp.create_sale.assert_not_called()

    def test_cart_update_and_checkout(self) -> None:
        self.login_as(self.buyer)
        self.erp.create_sale.return_value = {'ID': 'sale-1'}

        update = self.post('/api/cart', json={'items': [{'sku': 'T1', 'quantity': 2, 'price': 99}], 'location': 'CPT'})
        self.assertEqual(update.status_code, 200)
        self.assertEqual(self.client.get('/api/cart').json()['items'][0]['sku'], 'T1')

        response = self.post('/api/cart/checkout', json={'order_reference': 'PO-77'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['erp_sale_id'], 'sale-1')
        self.assertEqual(self.erp.create_sale.call_args.args[0]['Location'], 'B-CPT')
        self.assertEqual(self.client.get('/api/cart').json()['items'], [])

    def test_invalid_cart_item_is_bad_request(self) -> None:
        self.login_as(self.buyer)
        response = self.post('/api/cart', json={'items': [{'sku': 'T1', 'quantity': -1}]})
        self.assertEqual(response.status_code, 400)

    def test_fractional_quantity_is_rejected(self) -> None:
        self.login_as(self.buyer)
        response = self.post('/api/cart', json={'items': [{'sku': 'T1', 'quantity': 1.5}]})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.client.get('/api/cart').json()['items'], [])

    def test_cart_is_kept_when_quote_commit_fails(self) -> None:
        self.login_as(self.buyer)
        self.cart_store.replace(self.buyer.id, items=[CartItem(sku='T1', quantity=1)], location='JHB')
        self.erp.create_sale.return_value = {'ID': 'sale-2'}
        client = TestClient(app, raise_server_exceptions=False)
        client.cookies.set('csrf_token', CSRF)

        with patch.object(Session, 'commit', side_effect=OperationalError('COMMIT', {}, Exception('disk full'))):
            response = client.post('/api/cart/checkout', json={}, headers={'X-CSRF-Token': CSRF})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(len(self.cart_store.get(self.buyer.id).items), 1)

    def test_erp_failure_returns_failed_quote_id(self) -> None:
        self.login_as(self.buyer)
        self.cart_store.replace(self.buyer.id, items=[CartItem(sku='T1', quantity=1)], location='JHB')
        self.erp.create_sale.side_effect = ErpTransientError('ERP API error on POST /sale: HTTP 503 error', status=503)

        response = self.post('/api/cart/checkout', json={})

        self.assertEqual(response.status_code, 500)
        quote_id = response.json()['quote_id']
        with self.session_factory() as db:
            self.assertEqual(db.get(Quote, quote_id).status, QuoteStatus.FAILED)

    def test_mutations_require_csrf(self) -> None:
        self.login_as(self.buyer)
        response = self.client.delete('/api/cart')
        self.assertEqual(response.status_code, 403)


class AdminApiTests(ApiTestCase):
    def test_buyers_cannot_use_admin_routes(self) -> None:
        self.login_as(self.buyer)
        self.assertEqual(self.client.get('/api/admin/customers').status_code, 403)

    def test_activate_and_create_client(self) -> None:
        with self.session_factory() as db:
            customer = Customer(erp_customer_id='erp-new', company_name='New Co', contacts=[])
            db.add(customer)
            db.commit()
            new_id = customer.id
        self.login_as(self.admin)

        refused = self.post(
            '/api/admin/create-client',
            json={'customer_id': new_id, 'email': 'ops@new.test', 'password': 'longenough'},
        )
        self.assertEqual(refused.status_code, 400)

        activated = self.post(f'/api/admin/customers/{new_id}/activate', json={'active': True})
        self.assertTrue(activated.json()['allow_portal_access'])

        created = self.post(
            '/api/admin/create-client',
            json={'customer_id': new_id, 'email': 'Ops@New.test', 'password': 'longenough'},
        )
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()['email'], 'ops@new.test')

    def test_admin_cannot_delete_self(self) -> None:
        self.login_as(self.admin)
        response = self.client.delete(f'/api/admin/users/{self.admin.id}', headers={'X-CSRF-Token': CSRF})
        self.assertEqual(response.status_code, 403)

    def test_create_and_delete_admin(self) -> None:
        self.login_as(self.admin)
        created = self.post('/api/admin/create-admin', json={'email': 'second@portal.test', 'password': 'password9'})
        self.assertEqual(created.status_code, 200)
        self.assertEqual(len(self.client.get('/api/admin/users').json()), 2)

        response = self.client.delete(f"/api/admin/users/{created.json()['id']}", headers={'X-CSRF-Token': CSRF})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(self.client.get('/api/admin/users').json()), 1)

    def test_trigger_sync(self) -> None:
        self.login_as(self.admin)

        response = self.post('/api/admin/sync/customers')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['records_processed'], 4)
        self.assertEqual(self.post('/api/admin/sync/bogus').status_code, 400)

    def test_failed_sync_is_server_error(self) -> None:
        self.login_as(self.admin)
        self.runner.return_value = SyncResult(success=False, message='Products sync failed', error='boom')
        self.assertEqual(self.post('/api/admin/sync/products').status_code, 500)

    def test_connection_check(self) -> None:
        self.login_as(self.admin)
        self.erp.test_connection.return_value = True
        self.assertTrue(self.client.get('/api/admin/test-connection').json()['success'])


if __name__ == '__main__':
    unittest.main()
