from __future__ import annotations

from collections import defaultdict

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.models import Availability, Product, Warehouse
from app.services.region_service import REGION_NAMES, REGIONS, cap_available


MAX_PAGE_SIZE = 1000


def _empty_breakdown() -> dict[str, dict]:
    return {name.lower(): {'available': '0', 'on_hand': 0, 'on_order': 0} for name in REGION_NAMES}


def list_products(db: Session, *, search: str | None = None, page: int = 1, page_size: int = 50) -> dict:
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    query = select(Product)
    count_query = select(func.count(Product.id))
    term = (search or '').strip()
    if term:
        condition = or_(Product.name.ilike(f'%{term}%'), Product.sku.ilike(f'%{term}%'), Product.brand.ilike(f'%{term}%'))
        query = query.where(condition)
        count_query = count_query.where(condition)

    total = db.execute(count_query).scalar_one()
    products = db.execute(
        query.order_by(Product.name.asc(), Product.sku.asc()).offset((page - 1) * page_size).limit(page_size)
    ).scalars().all()

    stock_by_product: dict[int, list[tuple[Availability, Warehouse]]] = defaultdict(list)
    if products:
        rows = db.execute(
            select(Availability, Warehouse)
            .join(Warehouse, Warehouse.id == Availability.warehouse_id)
            .where(Availability.product_id.in_([p.id for p in products]))
        ).all()
        for availability, warehouse in rows:
            stock_by_product[availability.product_id].append((availability, warehouse))

    items = []
    for product in products:
        breakdown = _empty_breakdown()
        available = on_hand = on_order = 0
        for availability, warehouse in stock_by_product.get(product.id, []):
            breakdown[warehouse.name.lower()] = {
                'available': cap_available(availability.available),
                'on_hand': availability.on_hand,
                'on_order': availability.on_order,
            }
            available += availability.available
            on_hand += availability.on_hand
            on_order += availability.on_order
        items.append(
            {
                'id': product.id,
                'sku': product.sku,
                'name': product.name or product.sku,
                'brand': product.brand,
                'barcode': product.barcode,
                'image_url': product.image_url,
                'category': product.category,
                'price': product.default_sell_price,
                'currency': 'ZAR',
                'available': available,
                'on_hand': on_hand,
                'on_order': on_order,
                'warehouse_breakdown': breakdown,
            }
        )

    return {
        'products': items,
        'total': total,
        'page': page,
        'page_size': page_size,
        'filtered_warehouses': list(REGION_NAMES),
    }


def list_warehouses(db: Session) -> list[dict]:
    warehouses = db.execute(select(Warehouse).order_by(Warehouse.id.asc())).scalars().all()
    if not warehouses:
        return [
            {'id': idx, 'name': region.label, 'region': region.name, 'internal_locations': list(region.location_codes)}
            for idx, region in enumerate(REGIONS, start=1)
        ]
    return [
        {
            'id': warehouse.id,
            'name': warehouse.label,
            'region': warehouse.name,
            'internal_locations': list(warehouse.location_codes or []),
        }
        for warehouse in warehouses
    ]


def list_availability(db: Session, *, sku: str | None = None) -> list[dict]:
    query = (
        select(Availability, Product, Warehouse)
        .join(Product, Product.id == Availability.product_id)
        .join(Warehouse, Warehouse.id == Availability.warehouse_id)
        .order_by(Product.sku.asc(), Warehouse.id.asc())
    )
    if sku and sku.strip():
        query = query.where(Product.sku == sku.strip())

    return [
        {
            'product_sku': product.sku,
            'product_name': product.name,
            'warehouse_name': warehouse.label,
            'region': warehouse.name,
            'internal_locations': list(warehouse.location_codes or []),
            'available': availability.available,
            'allocated': availability.allocated,
            'on_hand': availability.on_hand,
            'on_order': availability.on_order,
        }
        for availability, product, warehouse in db.execute(query).all()
    ]
