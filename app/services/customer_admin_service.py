from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.models import Customer, User, UserRole
from app.security.passwords import hash_password, normalize_email, validate_new_password, verify_password
from app.security.sessions import revoke_user_sessions


@dataclass(frozen=True)
class LoginOutcome:
    user: User | None
    failure_reason: str | None

    @property
    def success(self) -> bool:
        return self.user is not None and self.failure_reason is None


def _customer_row(customer: Customer, user_count: int = 0) -> dict:
    return {
        'id': customer.id,
        'erp_customer_id': customer.erp_customer_id,
        'company_name': customer.company_name,
        'terms': customer.terms,
        'price_tier': customer.price_tier,
        'default_address': customer.default_address,
        'billing_address': customer.billing_address,
        'shipping_address': customer.shipping_address,
        'contacts': customer.contacts or [],
        'is_active': customer.is_active,
        'allow_portal_access': customer.allow_portal_access,
        'synced_at': customer.synced_at,
        'user_count': user_count,
    }


def _user_row(user: User) -> dict:
    return {
        'id': user.id,
        'email': user.email,
        'name': user.name,
        'role': user.role.value,
        'customer_id': user.customer_id,
        'active': user.active,
        'created_at': user.created_at,
    }


def list_customers(db: Session) -> list[dict]:
    customers = db.execute(
        select(Customer).order_by(Customer.company_name.asc(), Customer.id.asc())
    ).scalars().all()
    buyers = db.execute(select(User.customer_id).where(User.customer_id.is_not(None))).scalars().all()
    counts: dict[int, int] = {}
    for customer_id in buyers:
        counts[customer_id] = counts.get(customer_id, 0) + 1
    return [_customer_row(customer, counts.get(customer.id, 0)) for customer in customers]


def set_portal_access(db: Session, *, customer_id: int, active: bool) -> Customer:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise LookupError('Customer not found')
    customer.is_active = active
    customer.allow_portal_access = active
    if not active:
        buyer_ids = db.execute(select(User.id).where(User.customer_id == customer.id)).scalars().all()
        for user_id in buyer_ids:
            revoke_user_sessions(db, user_id)
    return customer


def get_customer_profile(db: Session, *, principal: Principal) -> dict:
    if not principal.customer_id:
        raise LookupError('No customer profile linked to this account')
    customer = db.get(Customer, principal.customer_id)
    if not customer:
        raise LookupError('Customer not found')
    return _customer_row(customer)


def _ensure_email_free(db: Session, email: str) -> None:
    existing = db.execute(select(User.id).where(User.email == email)).scalar_one_or_none()
    if existing is not None:
        raise ValueError('A user with that email already exists')


def _flush_new_user(db: Session, user: User) -> User:
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ValueError('A user with that email already exists') from exc
    return user


def create_client_user(
    db: Session,
    *,
    actor: Principal,
    customer_id: int,
    email: str,
    password: str,
    name: str | None = None,
) -> User:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise LookupError('Customer not found')
    if not customer.allow_portal_access:
        raise ValueError('Customer must be activated before creating a login')

    normalized = normalize_email(email)
    raw_password = validate_new_password(password)
    _ensure_email_free(db, normalized)

    return _flush_new_user(
        db,
        User(
            email=normalized,
            password_hash=hash_password(raw_password),
            name=(name or '').strip() or customer.company_name,
            role=UserRole.BUYER,
            customer_id=customer.id,
            active=True,
            created_by_id=actor.id,
        ),
    )


def list_admin_users(db: Session) -> list[dict]:
    users = db.execute(
        select(User).where(User.role == UserRole.ADMIN).order_by(User.email.asc())
    ).scalars().all()
    return [_user_row(user) for user in users]


def create_admin_user(
    db: Session,
    *,
    actor: Principal | None,
    email: str,
    password: str,
    name: str | None = None,
) -> User:
    normalized = normalize_email(email)
    raw_password = validate_new_password(password)
    _ensure_email_free(db, normalized)

    return _flush_new_user(
        db,
        User(
            email=normalized,
            password_hash=hash_password(raw_password),
            name=(name or '').strip() or None,
            role=UserRole.ADMIN,
            customer_id=None,
            active=True,
            created_by_id=actor.id if actor else None,
        ),
    )


def delete_admin_user(db: Session, *, actor: Principal, target_user_id: int) -> User:
    if target_user_id == actor.id:
        raise PermissionError('You cannot delete your own account')
    user = db.get(User, target_user_id)
    if not user or user.role != UserRole.ADMIN:
        raise LookupError('Admin user not found')
    db.delete(user)
    return user


def authenticate_user(db: Session, *, email: str, password: str) -> LoginOutcome:
    normalized = (email or '').strip().lower()
    user = db.execute(select(User).where(User.email == normalized)).scalar_one_or_none()
    if not user:
        return LoginOutcome(user=None, failure_reason='UNKNOWN_EMAIL')
    if not user.active:
        return LoginOutcome(user=user, failure_reason='INACTIVE_USER')
    if not verify_password(password or '', user.password_hash):
        return LoginOutcome(user=user, failure_reason='BAD_PASSWORD')
    if user.role == UserRole.BUYER:
        customer = db.get(Customer, user.customer_id) if user.customer_id else None
        if not customer or not customer.allow_portal_access:
            return LoginOutcome(user=user, failure_reason='PORTAL_ACCESS_DISABLED')
    return LoginOutcome(user=user, failure_reason=None)
