"""JWT authentication dependencies for FastAPI.

Validates Bearer tokens from the Authorization header and exposes the caller
as an ``AuthenticatedUser``. Tokens are issued by the identity service; this
backend only verifies them.
"""

import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from marketplace.config import settings
from marketplace.exceptions import ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthenticatedUser:
    id: uuid.UUID
    email: str
    role: str = ROLE_CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """Extract and validate the caller from the Bearer token."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    payload = _decode_token(credentials.credentials)
    try:
        user = AuthenticatedUser(
            id=uuid.UUID(payload["sub"]),
            email=payload["email"],
            role=payload.get("role", ROLE_CUSTOMER),
        )
    except (KeyError, ValueError) as exc:
        raise UnauthorizedException("Token is missing required claims") from exc

    request.state.user = user
    return user


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise ForbiddenException("Administrator access required")
    return user
