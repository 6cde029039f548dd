from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.services.catalog_service import list_availability, list_products, list_warehouses

router = APIRouter(prefix='/api', tags=['catalog'])


@router.get('/products')
def products(
    q: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=1000),
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_products(db, search=q, page=page, page_size=page_size)


@router.get('/warehouses')
def warehouses(_: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return list_warehouses(db)


@router.get('/availability')
def availability(
    sku: str | None = None,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_availability(db, sku=sku)
