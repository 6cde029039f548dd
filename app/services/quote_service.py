from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import Principal
from app.config import settings
from app.models import Customer, Quote, QuoteStatus
from app.services.cart_service import Cart, CartStore
from app.services.erp_client import ErpClient, ErpError
from app.services.region_service import ALLOWED_LOCATIONS, dispatch_location_for


logger = logging.getLogger(__name__)


class QuoteSubmissionError(Exception):
    def __init__(self, message: str, *, quote_id: int) -> None:
        super().__init__(message)
        self.quote_id = quote_id


@dataclass(frozen=True)
class CheckoutResult:
    quote_id: int
    erp_sale_id: str | None
    erp_response: dict


def resolve_checkout_location(cart: Cart) -> str:
    if cart.location:
        code = cart.location.strip().upper()
        if code in ALLOWED_LOCATIONS:
            return code
        location = dispatch_location_for(cart.location)
        if location:
            return location
    for item in cart.items:
        location = dispatch_location_for(item.warehouse)
        if location:
            return location
    raise ValueError('Location is required for checkout')


def build_sale_payload(
    *,
    cart: Cart,
    customer: Customer,
    location: str,
    order_reference: str | None = None,
) -> dict:
    payload = {
        'Customer': customer.company_name or customer.erp_customer_id,
        'CustomerID': customer.erp_customer_id,
        'PriceTier': customer.price_tier or settings.default_price_tier,
        'Location': location,
        'OrderStatus': settings.erp_quote_status,
        'SaleOrderDate': date.today().isoformat(),
        'Lines': [
            {
                'SKU': item.sku,
                'Quantity': item.quantity,
                'Price': float(item.price) if item.price is not None else 0,
                'TaxRule': 'Default',
            }
            for item in cart.items
        ],
    }
    if order_reference and order_reference.strip():
        payload['CustomerReference'] = order_reference.strip()
    return payload


def checkout(
    db: Session,
    *,
    principal: Principal,
    cart_store: CartStore,
    client: ErpClient,
    order_reference: str | None = None,
) -> CheckoutResult:
    cart = cart_store.get(principal.id)
    if not cart.items:
        raise ValueError('Cart is empty')

    location = resolve_checkout_location(cart)

    customer = db.get(Customer, principal.customer_id) if principal.customer_id else None
    if not customer:
        raise LookupError('Customer profile required for checkout')

    payload = build_sale_payload(cart=cart, customer=customer, location=location, order_reference=order_reference)
    snapshot = {
        'request': payload,
        'original_cart': cart.to_dict(),
        'user_id': principal.id,
        'customer_id': customer.id,
    }

    try:
        response = client.create_sale(payload)
    except ErpError as exc:
        logger.error('Quote creation failed for customer %s: %s', customer.erp_customer_id, exc)
        quote = Quote(
            status=QuoteStatus.FAILED,
            payload={**snapshot, 'error': str(exc)},
            user_id=principal.id,
            customer_id=customer.id,
        )
        db.add(quote)
        db.flush()
        raise QuoteSubmissionError(f'Quote creation failed: {exc}', quote_id=quote.id) from exc

    sale_id = response.get('ID') or response.get('SaleID')
    quote = Quote(
        erp_sale_id=str(sale_id) if sale_id else None,
        status=QuoteStatus.NOTAUTHORISED,
        payload={**snapshot, 'erp_response': response},
        user_id=principal.id,
        customer_id=customer.id,
    )
    db.add(quote)
    db.flush()

    # caller clears the cart once the quote row is committed
    logger.info('Created quote %s (ERP sale %s) for customer %s', quote.id, sale_id, customer.erp_customer_id)
    return CheckoutResult(quote_id=quote.id, erp_sale_id=quote.erp_sale_id, erp_response=response)


def list_quotes_for_principal(db: Session, *, principal: Principal) -> list[dict]:
    quotes = db.execute(
        select(Quote).where(Quote.user_id == principal.id).order_by(Quote.created_at.desc(), Quote.id.desc())
    ).scalars().all()
    return [
        {
            'id': quote.id,
            'erp_sale_id': quote.erp_sale_id,
            'status': quote.status.value,
            'created_at': quote.created_at,
            'lines': (quote.payload or {}).get('request', {}).get('Lines', []),
            'location': (quote.payload or {}).get('request', {}).get('Location'),
        }
        for quote in quotes
    ]
