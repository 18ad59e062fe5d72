"""
Replenishment Engine Security Utilities

JWT handling for the bearer tokens the API consumes. Token issuance and
user management live outside this service; ``create_access_token`` exists
for local tooling and tests.
"""

from datetime import datetime, timedelta

from jose import JWTError, jwt

from core.config import get_settings

WILDCARD_PERMISSION = "*"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally signed JWT. None when invalid or expired."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def has_permission(user: dict, permission: str) -> bool:
    granted = user.get("permissions") or []
    if isinstance(granted, str):
        granted = granted.split()
    return WILDCARD_PERMISSION in granted or permission in granted
