from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.services.customer_admin_service import get_customer_profile
from app.services.quote_service import list_quotes_for_principal

router = APIRouter(prefix='/api', tags=['customers'])


@router.get('/customers/me')
def my_customer(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    try:
        return get_customer_profile(db, principal=principal)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/quotes')
def my_quotes(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return list_quotes_for_principal(db, principal=principal)
