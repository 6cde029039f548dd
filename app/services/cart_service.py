from __future__ import annotations

import threading
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation


@dataclass(frozen=True)
class CartItem:
    sku: str
    quantity: int
    warehouse: str | None = None
    price: Decimal | None = None


@dataclass
class Cart:
    items: list[CartItem] = field(default_factory=list)
    location: str | None = None

    def to_dict(self) -> dict:
        return {
            'items': [
                {
                    'sku': item.sku,
                    'quantity': item.quantity,
                    'warehouse': item.warehouse,
                    'price': str(item.price) if item.price is not None else None,
                }
                for item in self.items
            ],
            'location': self.location,
        }


def build_cart_items(raw_items: list[dict]) -> list[CartItem]:
    items: list[CartItem] = []
    for raw in raw_items:
        sku = str(raw.get('sku') or '').strip()
        if not sku:
            raise ValueError('Every cart item needs a SKU')
        raw_quantity = raw.get('quantity', 1)
        try:
            if isinstance(raw_quantity, bool):
                raise InvalidOperation
            exact = Decimal(str(raw_quantity).strip())
        except InvalidOperation as exc:
            raise ValueError(f'Invalid quantity for {sku}') from exc
        if not exact.is_finite() or exact != exact.to_integral_value():
            raise ValueError(f'Quantity for {sku} must be a whole number')
        quantity = int(exact)
        if quantity <= 0:
            raise ValueError(f'Quantity for {sku} must be greater than zero')
        price: Decimal | None = None
        if raw.get('price') not in (None, ''):
            try:
                price = Decimal(str(raw['price']))
            except InvalidOperation as exc:
                raise ValueError(f'Invalid price for {sku}') from exc
        items.append(
            CartItem(
                sku=sku,
                quantity=quantity,
                warehouse=(str(raw['warehouse']).strip() or None) if raw.get('warehouse') else None,
                price=price,
            )
        )
    return items


class CartStore:
    """Carts keyed by user id. Process memory only; lost on restart."""

    def __init__(self) -> None:
        self._carts: dict[int, Cart] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> Cart:
        with self._lock:
            cart = self._carts.get(user_id)
            if cart is None:
                return Cart()
            return Cart(items=list(cart.items), location=cart.location)

    def replace(self, user_id: int, *, items: list[CartItem], location: str | None) -> Cart:
        cart = Cart(items=list(items), location=(location or '').strip() or None)
        with self._lock:
            self._carts[user_id] = cart
        return Cart(items=list(cart.items), location=cart.location)

    def clear(self, user_id: int) -> None:
        with self._lock:
            self._carts.pop(user_id, None)


cart_store = CartStore()
