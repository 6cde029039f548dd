from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from app.services.region_service import REGION_NAMES, region_for_location


DEFAULT_CATEGORY = 'Agriculture Tire'
ZERO = Decimal('0')


@dataclass
class StockTotals:
    available: Decimal = ZERO
    on_hand: Decimal = ZERO
    allocated: Decimal = ZERO
    on_order: Decimal = ZERO

    def add(self, *, available: Decimal, on_hand: Decimal, allocated: Decimal, on_order: Decimal) -> None:
        self.available += available
        self.on_hand += on_hand
        self.allocated += allocated
        self.on_order += on_order


@dataclass(frozen=True)
class PricingInfo:
    price: Decimal
    name: str | None = None
    category: str | None = None
    brand: str | None = None
    barcode: str | None = None
    image_url: str | None = None


@dataclass
class AggregatedProduct:
    sku: str
    name: str
    price: Decimal = ZERO
    category: str = DEFAULT_CATEGORY
    brand: str | None = None
    barcode: str | None = None
    image_url: str | None = None
    totals: StockTotals = field(default_factory=StockTotals)
    regions: dict[str, StockTotals] = field(default_factory=lambda: {name: StockTotals() for name in REGION_NAMES})


def to_decimal(value) -> Decimal:
    if value is None or value == '':
        return ZERO
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO


def _clean(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_pricing_map(products: list[dict]) -> dict[str, PricingInfo]:
    pricing: dict[str, PricingInfo] = {}
    for product in products:
        sku = _clean(product.get('SKU') or product.get('Sku'))
        if not sku:
            continue
        pricing[sku] = PricingInfo(
            price=to_decimal(product.get('PriceTier1') or product.get('DefaultSellPrice')),
            name=_clean(product.get('Name')),
            category=_clean(product.get('Category')),
            brand=_clean(product.get('Brand')),
            barcode=_clean(product.get('Barcode')),
            image_url=_clean(product.get('ImageURL') or product.get('ImageUrl') or product.get('Image')),
        )
    return pricing


def aggregate_availability(
    rows: list[dict],
    pricing: dict[str, PricingInfo] | None = None,
) -> list[AggregatedProduct]:
    """Group per-location availability rows into per-SKU region totals.

    Rows whose location is not in the region table are dropped before
    grouping, so they add to no region and no grand total.
    """
    pricing = pricing or {}
    by_sku: dict[str, AggregatedProduct] = {}

    for row in rows:
        sku = _clean(row.get('SKU') or row.get('Sku') or row.get('ProductCode'))
        if not sku:
            continue
        region = region_for_location(row.get('Location'))
        if region is None:
            continue

        item = by_sku.get(sku)
        if item is None:
            info = pricing.get(sku)
            item = AggregatedProduct(
                sku=sku,
                name=(info.name if info and info.name else None) or _clean(row.get('Name') or row.get('ProductName')) or sku,
                price=info.price if info else ZERO,
                category=(info.category if info and info.category else DEFAULT_CATEGORY),
                brand=(info.brand if info else None) or _clean(row.get('Brand')),
                barcode=(info.barcode if info else None) or _clean(row.get('Barcode')),
                image_url=(info.image_url if info else None) or _clean(row.get('ImageURL') or row.get('ImageUrl')),
            )
            by_sku[sku] = item

        quantities = {
            'available': to_decimal(row.get('Available')),
            'on_hand': to_decimal(row.get('OnHand')),
            'allocated': to_decimal(row.get('Allocated')),
            'on_order': to_decimal(row.get('OnOrder')),
        }
        item.totals.add(**quantities)
        item.regions[region].add(**quantities)

    return list(by_sku.values())
