"""
Bearer token handling.

Tokens are issued and signature-checked by the platform's identity
gateway in front of this service. Here the payload is decoded and its
claims are enforced: a subject, the "authenticated" role, and the
configured audience when the token carries one.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Optional, cast

import jwt

from .core.config import settings

logger = logging.getLogger(__name__)

AUTHENTICATED_ROLE = "authenticated"


class TokenClaimError(Exception):
    """Raised when a decoded token is missing a required claim."""


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity taken from the access token."""

    id: str
    role: str
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def _audiences(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return []


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode a JWT payload without verifying its signature.

    Raises:
        jwt.PyJWTError: Malformed or expired token
        TokenClaimError: Required claims missing or wrong
    """
    payload = cast(
        Dict[str, Any],
        jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True, "verify_aud": False},
        ),
    )
    if "aud" in payload and settings.jwt_audience not in _audiences(payload["aud"]):
        raise TokenClaimError("Unexpected token audience")
    if not payload.get("sub"):
        raise TokenClaimError("Token has no subject")
    if payload.get("role") != AUTHENTICATED_ROLE:
        raise TokenClaimError("Token role is not authenticated")
    return payload


def user_from_token(token: str) -> AuthenticatedUser:
    payload = decode_access_token(token)
    return AuthenticatedUser(
        id=str(payload["sub"]),
        role=str(payload["role"]),
        email=payload.get("email"),
        claims=payload,
    )
