# backend/app/api/dependencies/auth.py
"""
Authentication dependencies.

Every payment and booking route requires `Authorization: Bearer <jwt>`.
Missing or unusable tokens are rejected with 401 before any service runs.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt

from ...auth import AuthenticatedUser, TokenClaimError, user_from_token
from ...core.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    exc = UnauthorizedException(message, code="UNAUTHORIZED").to_http_exception()
    exc.headers = {"WWW-Authenticate": "Bearer"}
    return exc


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """Resolve the caller from the bearer token."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing authorization token")
    try:
        return user_from_token(credentials.credentials)
    except (jwt.PyJWTError, TokenClaimError) as exc:
        logger.info("auth_token_rejected", extra={"reason": str(exc)})
        raise _unauthorized("Invalid authorization token")
