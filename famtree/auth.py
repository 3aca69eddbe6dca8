from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Optional

import bcrypt
from flask import current_app, g, request
from jose import JWTError, jwt

from .errors import AuthError, PermissionDeniedError

ALGORITHM = "HS256"

# Lowest to highest
ROLE_ORDER = ["Visitor", "Arborist", "Ranger", "Warden", "Admin"]


@dataclass
class Principal:
    id: str
    email: str
    role: str
    tenant_id: Optional[str]

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "role": self.role, "tenantId": self.tenant_id}


def has_role(actual: str, required: str) -> bool:
    if actual not in ROLE_ORDER or required not in ROLE_ORDER:
        return False
    return ROLE_ORDER.index(actual) >= ROLE_ORDER.index(required)


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes
    password_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    password_bytes = password.encode("utf-8")[:72]
    return bcrypt.checkpw(password_bytes, hashed.encode())


def create_access_token(principal: Principal) -> str:
    expire = datetime.utcnow() + timedelta(hours=current_app.config["JWT_EXPIRES_HOURS"])
    claims = {
        "sub": principal.id,
        "email": principal.email,
        "role": principal.role,
        "tenantId": principal.tenant_id,
        "exp": expire,
    }
    return jwt.encode(claims, current_app.config["JWT_SECRET"], algorithm=ALGORITHM)


def decode_access_token(token: str) -> Principal:
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[ALGORITHM])
    except JWTError:
        raise AuthError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token")
    return Principal(
        id=user_id,
        email=payload.get("email") or "",
        role=payload.get("role") or "Visitor",
        tenant_id=payload.get("tenantId"),
    )


def current_principal() -> Principal:
    return g.principal


def auth_required(view):
    """Reject the request unless it carries a valid bearer token."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            raise AuthError("Missing authorization header")
        g.principal = decode_access_token(header[7:].strip())
        return view(*args, **kwargs)

    return wrapper


def require_role(principal: Principal, required: str) -> None:
    if not has_role(principal.role, required):
        raise PermissionDeniedError("Insufficient role")
