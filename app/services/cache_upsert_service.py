from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models import Availability, Customer, Product, SyncStatus, SyncStatusValue, Warehouse
from app.services.catalog_aggregation_service import AggregatedProduct, StockTotals
from app.services.region_service import REGIONS


def _insert(db: Session, model):
    if db.get_bind().dialect.name == 'sqlite':
        return sqlite.insert(model)
    return postgresql.insert(model)


def upsert_warehouses(db: Session) -> dict[str, int]:
    ids: dict[str, int] = {}
    for region in REGIONS:
        stmt = _insert(db, Warehouse).values(
            name=region.name,
            label=region.label,
            location_codes=list(region.location_codes),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Warehouse.name],
            set_={'label': stmt.excluded.label, 'location_codes': stmt.excluded.location_codes},
        ).returning(Warehouse.id)
        ids[region.name] = db.execute(stmt).scalar_one()
    return ids


def upsert_product(
    db: Session,
    *,
    sku: str,
    name: str | None,
    brand: str | None = None,
    barcode: str | None = None,
    image_url: str | None = None,
    category: str | None = None,
    default_sell_price: Decimal | None = None,
) -> int:
    values = {
        'sku': sku,
        'name': name,
        'brand': brand,
        'barcode': barcode,
        'image_url': image_url,
        'category': category,
    }
    if default_sell_price is not None:
        values['default_sell_price'] = default_sell_price

    stmt = _insert(db, Product).values(**values)
    # Null incoming metadata keeps what the cache already has.
    update_set = {
        column: func.coalesce(getattr(stmt.excluded, column), getattr(Product, column))
        for column in ('name', 'brand', 'barcode', 'image_url', 'category')
    }
    if default_sell_price is not None:
        update_set['default_sell_price'] = stmt.excluded.default_sell_price
    update_set['updated_at'] = func.now()

    stmt = stmt.on_conflict_do_update(index_elements=[Product.sku], set_=update_set).returning(Product.id)
    return db.execute(stmt).scalar_one()


def upsert_availability(db: Session, *, product_id: int, warehouse_id: int, totals: StockTotals) -> None:
    stmt = _insert(db, Availability).values(
        product_id=product_id,
        warehouse_id=warehouse_id,
        on_hand=totals.on_hand,
        allocated=totals.allocated,
        available=totals.available,
        on_order=totals.on_order,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Availability.product_id, Availability.warehouse_id],
        set_={
            'on_hand': stmt.excluded.on_hand,
            'allocated': stmt.excluded.allocated,
            'available': stmt.excluded.available,
            'on_order': stmt.excluded.on_order,
        },
    )
    db.execute(stmt)


def write_aggregated_products(db: Session, products: list[AggregatedProduct]) -> int:
    warehouse_ids = upsert_warehouses(db)
    written = 0
    for product in products:
        product_id = upsert_product(
            db,
            sku=product.sku,
            name=product.name,
            brand=product.brand,
            barcode=product.barcode,
            image_url=product.image_url,
            category=product.category,
            default_sell_price=product.price,
        )
        for region_name, totals in product.regions.items():
            upsert_availability(db, product_id=product_id, warehouse_id=warehouse_ids[region_name], totals=totals)
        written += 1
    db.flush()
    return written


def upsert_customer(db: Session, normalized: dict) -> int:
    stmt = _insert(db, Customer).values(
        erp_customer_id=normalized['erp_customer_id'],
        company_name=normalized.get('company_name'),
        terms=normalized.get('terms'),
        price_tier=normalized.get('price_tier'),
        default_address=normalized.get('default_address'),
        billing_address=normalized.get('billing_address'),
        shipping_address=normalized.get('shipping_address'),
        contacts=normalized.get('contacts') or [],
    )
    # is_active / allow_portal_access belong to the admin portal.
    stmt = stmt.on_conflict_do_update(
        index_elements=[Customer.erp_customer_id],
        set_={
            'company_name': stmt.excluded.company_name,
            'terms': stmt.excluded.terms,
            'price_tier': stmt.excluded.price_tier,
            'default_address': stmt.excluded.default_address,
            'billing_address': stmt.excluded.billing_address,
            'shipping_address': stmt.excluded.shipping_address,
            'contacts': stmt.excluded.contacts,
            'synced_at': func.now(),
            'updated_at': func.now(),
        },
    ).returning(Customer.id)
    return db.execute(stmt).scalar_one()


def record_sync_status(
    db: Session,
    *,
    sync_type: str,
    status: SyncStatusValue,
    records_processed: int,
    error_message: str | None = None,
) -> None:
    stmt = _insert(db, SyncStatus).values(
        sync_type=sync_type,
        status=status,
        records_processed=records_processed,
        error_message=error_message,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[SyncStatus.sync_type],
        set_={
            'status': stmt.excluded.status,
            'records_processed': stmt.excluded.records_processed,
            'error_message': stmt.excluded.error_message,
            'updated_at': func.now(),
        },
    )
    db.execute(stmt)
