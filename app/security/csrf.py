from __future__ import annotations

import logging
import secrets

from fastapi import HTTPException, Request, status

from app.config import settings


logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'x-csrf-token'
SAFE_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS'})


def _issue_token(request: Request) -> str:
    return request.cookies.get(CSRF_COOKIE_NAME) or secrets.token_urlsafe(32)


def install_csrf_cookie_middleware(app) -> None:
    """Double-submit cookie: the SPA echoes the readable cookie back in X-CSRF-Token."""

    @app.middleware('http')
    async def csrf_cookie_middleware(request: Request, call_next):
        token = _issue_token(request)
        request.state.csrf_token = token

        response = await call_next(request)
        if request.cookies.get(CSRF_COOKIE_NAME) != token:
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=token,
                httponly=False,
                secure=settings.session_cookie_secure,
                samesite=settings.session_cookie_samesite,
                max_age=settings.session_ttl_minutes * 60,
            )
        return response


async def verify_csrf(request: Request) -> None:
    if request.method in SAFE_METHODS:
        return

    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    header_token = request.headers.get(CSRF_HEADER_NAME)
    if not cookie_token or not header_token:
        logger.warning('CSRF token missing on %s %s', request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Missing CSRF token')
    if not secrets.compare_digest(header_token, cookie_token):
        logger.warning('CSRF token mismatch on %s %s', request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Invalid CSRF token')
