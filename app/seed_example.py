from sqlalchemy import select

from app.config import settings
from app.db import SessionLocal
from app.models import Customer, User, UserRole
from app.security.passwords import hash_password
from app.services.cache_upsert_service import upsert_customer, upsert_warehouses


def seed() -> None:
    with SessionLocal() as db:
        upsert_warehouses(db)

        if not settings.admin_email or not settings.admin_password:
            raise RuntimeError('ADMIN_EMAIL and ADMIN_PASSWORD are required to seed the admin user')
        admin_email = settings.admin_email.strip().lower()
        admin = db.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
        if not admin:
            db.add(
                User(
                    email=admin_email,
                    password_hash=hash_password(settings.admin_password),
                    name='Administrator',
                    role=UserRole.ADMIN,
                    customer_id=None,
                    active=True,
                )
            )

        demo = db.execute(select(Customer).where(Customer.erp_customer_id == 'DEMO-CUSTOMER')).scalar_one_or_none()
        if not demo:
            customer_id = upsert_customer(
                db,
                {
                    'erp_customer_id': 'DEMO-CUSTOMER',
                    'company_name': 'Demo Farm Supplies',
                    'terms': '30 days',
                    'price_tier': settings.default_price_tier,
                    'default_address': None,
                    'billing_address': None,
                    'shipping_address': None,
                    'contacts': [],
                },
            )
            demo = db.get(Customer, customer_id)
            demo.is_active = True
            demo.allow_portal_access = True

        buyer = db.execute(select(User).where(User.email == 'buyer@example.com')).scalar_one_or_none()
        if not buyer:
            db.add(
                User(
                    email='buyer@example.com',
                    password_hash=hash_password('buyerpass'),
                    name='Demo Buyer',
                    role=UserRole.BUYER,
                    customer_id=demo.id,
                    active=True,
                )
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
