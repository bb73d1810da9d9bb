"""Auth dependencies.

Customers authenticate with the content backend's JWT (``Authorization:
Bearer`` or the ``strapi_jwt`` cookie the storefront sets). Services call
each other with a short-lived HS256 token carrying ``role=service_role``.
"""

import time
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from libs.auth.models import AuthUser, ServicePrincipal
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.strapi import StrapiClient, get_strapi_client

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

SESSION_COOKIE = "strapi_jwt"
SERVICE_ROLE = "service_role"
SERVICE_TOKEN_TTL_SECONDS = 60


def _service_role_jwt(calling_service: str) -> str:
    """Mint a service-role token for an internal call."""
    now = int(time.time())
    payload = {
        "sub": f"service:{calling_service}",
        "role": SERVICE_ROLE,
        "iat": now,
        "exp": now + SERVICE_TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, get_settings().SERVICE_JWT_SECRET, algorithm="HS256")


def _bearer_or_cookie(
    request: Request, token: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if token and token.credentials:
        return token.credentials
    cookie = request.cookies.get(SESSION_COOKIE)
    return cookie.strip() if cookie and cookie.strip() else None


async def get_optional_user(
    request: Request,
    token: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    strapi: Annotated[StrapiClient, Depends(get_strapi_client)],
) -> Optional[AuthUser]:
    """Resolve the customer if a valid session is present, else None."""
    jwt_value = _bearer_or_cookie(request, token)
    if not jwt_value:
        return None

    me = await strapi.me(jwt_value)
    if not me or me.get("id") is None:
        return None

    try:
        return AuthUser(
            id=str(me["id"]),
            email=me.get("email"),
            username=me.get("username"),
        )
    except ValidationError:
        logger.warning("Unusable users/me payload", extra={"extra_fields": {"keys": list(me)}})
        return None


async def get_current_user(
    user: Annotated[Optional[AuthUser], Depends(get_optional_user)],
) -> AuthUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not logged in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_service_role(
    token: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> ServicePrincipal:
    """Only other services may call internal endpoints."""
    if not token or not token.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing service credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            token.credentials,
            get_settings().SERVICE_JWT_SECRET,
            algorithms=["HS256"],
        )
        principal = ServicePrincipal(**payload)
    except (JWTError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if principal.role != SERVICE_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service role required",
        )
    return principal
