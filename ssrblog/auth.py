"""
Verification of access tokens issued by the auth service.

Tokens are HS256 JWTs carrying ``id``, ``username`` and ``role``.  They are
read from an ``Authorization: Bearer`` header or from the token cookie.
Issuing them (login/registration) happens outside this application.
"""
import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from ssrblog.config import settings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    id: int | None
    username: str | None
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _extract_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return request.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME)


def decode_token(token: str) -> Principal | None:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected access token: %s", exc)
        return None
    return Principal(
        id=payload.get("id"),
        username=payload.get("username"),
        role=payload.get("role") or "user",
    )


async def get_optional_principal(request: Request) -> Principal | None:
    """Principal for the request, or None for anonymous/invalid credentials."""
    token = _extract_token(request)
    return decode_token(token) if token else None


async def get_current_principal(request: Request) -> Principal:
    token = _extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    principal = decode_token(token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required",
        )
    return principal
