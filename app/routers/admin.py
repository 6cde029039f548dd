from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.auth import Principal, Role, require_role
from app.db import get_db
from app.dependencies import get_client_ip, get_erp_client, get_scheduler, get_sync_runner
from app.security.csrf import verify_csrf
from app.services.audit_service import log_audit
from app.services.customer_admin_service import (
    create_admin_user,
    create_client_user,
    delete_admin_user,
    list_admin_users,
    list_customers,
    set_portal_access,
)
from app.services.erp_client import ErpClient, ErpError
from app.services.sync_service import SyncResult, SyncType, list_sync_status

router = APIRouter(prefix='/api/admin', tags=['admin'])
admin_access = require_role(Role.ADMIN)


class ActivateRequest(BaseModel):
    active: bool = True


class CreateClientRequest(BaseModel):
    customer_id: int
    email: str
    password: str
    name: str | None = None


class CreateAdminRequest(BaseModel):
    email: str
    password: str
    name: str | None = None


def _sync_response(result: SyncResult) -> JSONResponse:
    return JSONResponse(asdict(result), status_code=200 if result.success else 500)


@router.get('/customers')
def customers(_: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_customers(db)


@router.post('/customers/{customer_id}/activate')
def activate_customer(
    customer_id: int,
    request: Request,
    body: ActivateRequest | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    active = body.active if body else True
    try:
        customer = set_portal_access(db, customer_id=customer_id, active=active)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_ACTIVATED' if active else 'CUSTOMER_DEACTIVATED',
        ip=get_client_ip(request),
        metadata={'customer_id': customer.id, 'erp_customer_id': customer.erp_customer_id},
    )
    db.commit()
    return {'id': customer.id, 'is_active': customer.is_active, 'allow_portal_access': customer.allow_portal_access}


@router.post('/sync-customers')
def sync_customers_now(
    request: Request,
    principal: Principal = Depends(admin_access),
    runner=Depends(get_sync_runner),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    result = runner(SyncType.CUSTOMERS)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SYNC_TRIGGERED',
        ip=get_client_ip(request),
        metadata={'sync_type': SyncType.CUSTOMERS.value, 'success': result.success},
    )
    db.commit()
    return _sync_response(result)


@router.post('/create-client')
def create_client(
    body: CreateClientRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        user = create_client_user(
            db,
            actor=principal,
            customer_id=body.customer_id,
            email=body.email,
            password=body.password,
            name=body.name,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CLIENT_USER_CREATED',
        ip=get_client_ip(request),
        metadata={'user_id': user.id, 'email': user.email, 'customer_id': user.customer_id},
    )
    db.commit()
    return {'id': user.id, 'email': user.email, 'customer_id': user.customer_id, 'role': user.role.value}


@router.get('/users')
def admin_users(_: Principal = Depends(admin_access), db: Session = Depends(get_db)):
    return list_admin_users(db)


@router.post('/create-admin')
def create_admin(
    body: CreateAdminRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        user = create_admin_user(db, actor=principal, email=body.email, password=body.password, name=body.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ADMIN_USER_CREATED',
        ip=get_client_ip(request),
        metadata={'user_id': user.id, 'email': user.email},
    )
    db.commit()
    return {'id': user.id, 'email': user.email, 'role': user.role.value}


@router.delete('/users/{user_id}')
def delete_admin(
    user_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        user = delete_admin_user(db, actor=principal, target_user_id=user_id)
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ADMIN_USER_DELETED',
        ip=get_client_ip(request),
        metadata={'user_id': user_id, 'email': user.email},
    )
    db.commit()
    return {'ok': True}


@router.get('/sync/status')
def sync_status(
    _: Principal = Depends(admin_access),
    scheduler=Depends(get_scheduler),
    db: Session = Depends(get_db),
):
    return {
        'status': list_sync_status(db),
        'stats': scheduler.get_stats() if scheduler else {},
        'health': scheduler.get_health() if scheduler else {'is_running': False},
    }


@router.post('/sync/{sync_type}')
def trigger_sync(
    sync_type: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    runner=Depends(get_sync_runner),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        selected = SyncType(sync_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f'Unknown sync type: {sync_type}') from exc

    result = runner(selected)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SYNC_TRIGGERED',
        ip=get_client_ip(request),
        metadata={'sync_type': selected.value, 'success': result.success},
    )
    db.commit()
    return _sync_response(result)


@router.get('/test-connection')
def test_connection(_: Principal = Depends(admin_access), client: ErpClient = Depends(get_erp_client)):
    try:
        client.test_connection()
    except ErpError as exc:
        return {'success': False, 'message': str(exc), 'status': exc.status}
    return {'success': True, 'message': 'Connected to ERP'}
