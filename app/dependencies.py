from fastapi import HTTPException, Request

from app.services.cart_service import CartStore, cart_store
from app.services.erp_client import ErpClient
from app.services.sync_service import run_sync


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_erp_client() -> ErpClient:
    try:
        return ErpClient.from_settings()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_cart_store() -> CartStore:
    return cart_store


def get_scheduler(request: Request):
    return getattr(request.app.state, 'scheduler', None)


def get_sync_runner(request: Request):
    scheduler = get_scheduler(request)
    if scheduler is not None:
        return scheduler.trigger_sync
    return run_sync
