from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_cart_store, get_client_ip, get_erp_client
from app.security.csrf import verify_csrf
from app.services.audit_service import log_audit
from app.services.cart_service import CartStore, build_cart_items
from app.services.erp_client import ErpClient
from app.services.quote_service import QuoteSubmissionError, checkout

router = APIRouter(prefix='/api/cart', tags=['cart'])


class CartItemIn(BaseModel):
    sku: str
    quantity: int = 1
    warehouse: str | None = None
    price: Decimal | None = None


class CartUpdate(BaseModel):
    items: list[CartItemIn] = Field(default_factory=list)
    location: str | None = None


class CheckoutRequest(BaseModel):
    order_reference: str | None = None


@router.get('')
def get_cart(principal: Principal = Depends(get_current_principal), store: CartStore = Depends(get_cart_store)):
    return store.get(principal.id).to_dict()


@router.post('')
def update_cart(
    body: CartUpdate,
    principal: Principal = Depends(get_current_principal),
    store: CartStore = Depends(get_cart_store),
    _: None = Depends(verify_csrf),
):
    try:
        items = build_cart_items([item.model_dump() for item in body.items])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.replace(principal.id, items=items, location=body.location).to_dict()


@router.delete('')
def clear_cart(
    principal: Principal = Depends(get_current_principal),
    store: CartStore = Depends(get_cart_store),
    _: None = Depends(verify_csrf),
):
    store.clear(principal.id)
    return {'ok': True}


@router.post('/checkout')
def checkout_cart(
    request: Request,
    body: CheckoutRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    store: CartStore = Depends(get_cart_store),
    client: ErpClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        result = checkout(
            db,
            principal=principal,
            cart_store=store,
            client=client,
            order_reference=body.order_reference if body else None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except QuoteSubmissionError as exc:
        db.commit()
        return JSONResponse({'detail': str(exc), 'quote_id': exc.quote_id}, status_code=500)

    log_audit(
        db,
        actor_user_id=principal.id,
        action='QUOTE_CREATED',
        ip=get_client_ip(request),
        metadata={'quote_id': result.quote_id, 'erp_sale_id': result.erp_sale_id},
    )
    db.commit()
    store.clear(principal.id)
    return {
        'quote_id': result.quote_id,
        'erp_sale_id': result.erp_sale_id,
        'status': 'NOTAUTHORISED',
        'erp_response': result.erp_response,
    }
