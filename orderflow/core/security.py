"""Bearer-token identity resolution.

Tokens are issued by the external session service; this module only decodes
them and trusts the ``sub``/``role`` claims verbatim.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from orderflow.core.config import settings
from orderflow.core.errors import NotAuthorized
from orderflow.models.enums import Role

bearer_scheme: HTTPBearer = HTTPBearer(auto_error=True)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller: user id, admin id or delivery partner id plus role."""

    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_access_token(data: dict[str, Any]) -> str:
    """Create a signed JWT access token from payload data."""
    to_encode: dict[str, Any] = data.copy()
    expire: datetime = datetime.now(timezone.utc) + timedelta(
        minutes=settings.jwt_expire_minutes
    )
    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def create_identity_token(identity_id: int, role: Role | str) -> str:
    """Issue a token for an identity; used by local tooling and tests."""
    return create_access_token({"sub": str(identity_id), "role": Role(role).value})


def decode_identity(token: str) -> Identity:
    """Decode a JWT and return the identity it carries."""
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        raise NotAuthorized("Could not validate credentials") from exc

    try:
        return Identity(id=int(payload.get("sub")), role=Role(payload.get("role")))
    except (TypeError, ValueError) as exc:
        raise NotAuthorized("Invalid authentication token") from exc


def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Identity:
    """Resolve the authenticated identity from the Authorization header."""
    try:
        return decode_identity(credentials.credentials)
    except NotAuthorized as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.reason,
        ) from exc
