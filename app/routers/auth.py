from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.auth import public_user
from app.config import settings
from app.db import get_db
from app.dependencies import get_client_ip
from app.security.csrf import verify_csrf
from app.security.sessions import create_web_session, principal_from_user, revoke_web_session
from app.services.audit_service import log_audit, log_auth_event
from app.services.customer_admin_service import authenticate_user

router = APIRouter(prefix='/api', tags=['auth'])


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post('/login')
def login(
    body: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    email = body.email.strip().lower()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    outcome = authenticate_user(db, email=email, password=body.password)
    if not outcome.success:
        log_auth_event(
            db,
            attempted_email=email,
            success=False,
            failure_reason=outcome.failure_reason,
            user_id=outcome.user.id if outcome.user else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        message = 'Invalid email or password'
        if outcome.failure_reason == 'PORTAL_ACCESS_DISABLED':
            message = 'Portal access has not been enabled for your account'
        return JSONResponse({'detail': message}, status_code=401)

    user = outcome.user
    token = create_web_session(db, user.id, ip=ip, user_agent=user_agent)
    log_auth_event(db, attempted_email=email, success=True, user_id=user.id, ip=ip, user_agent=user_agent)
    log_audit(db, actor_user_id=user.id, action='AUTH_LOGIN', ip=ip, metadata={'email': email})
    db.commit()

    response = JSONResponse({'user': public_user(principal_from_user(user))})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/session')
def session_info(request: Request):
    principal = getattr(request.state, 'principal', None)
    return {
        'user': public_user(principal),
        'csrf_token': getattr(request.state, 'csrf_token', None),
    }
