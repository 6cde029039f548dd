import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import settings
from app.logging_config import configure_logging
from app.routers import admin, auth, cart, catalog, customers, health
from app.security.csrf import install_csrf_cookie_middleware
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware
from app.services.erp_client import ErpError
from app.services.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = SyncScheduler.from_settings()
        scheduler.start()
    else:
        logger.info('Sync scheduler disabled')
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown()


app = FastAPI(title='Tyre Wholesale Portal', lifespan=lifespan)
app.state.scheduler = None

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(customers.router)
app.include_router(admin.router)


@app.exception_handler(ErpError)
async def erp_error_handler(request: Request, exc: ErpError):
    logger.error('ERP error on %s %s: %s', request.method, request.url.path, exc)
    return JSONResponse({'detail': str(exc)}, status_code=500)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse({'detail': 'Internal server error'}, status_code=500)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
