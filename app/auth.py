from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    BUYER = "BUYER"


@dataclass
class Principal:
    id: int
    email: str
    role: Role
    customer_id: int | None
    active: bool
    name: str | None = None


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def public_user(principal: Principal | None) -> dict | None:
    if not principal:
        return None
    return {
        "id": principal.id,
        "email": principal.email,
        "role": principal.role.value,
        "customer_id": principal.customer_id,
        "name": principal.name,
    }
