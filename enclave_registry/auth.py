"""Capability token utilities.

A capability is a bearer token: whoever holds the token may mutate the
one config it was minted for. There is no caller identity. Only a bcrypt
hash of the token is stored, plus a short prefix for fast lookup.

Settings administration uses a separate operator token (`admin.api_token`).
"""

from __future__ import annotations

import logging
import secrets

import bcrypt
from fastapi import Header, HTTPException

from .settings import get_setting, get_setting_int

logger = logging.getLogger(__name__)

CAPABILITY_TOKEN_PREFIX = "cap_"


def generate_capability_token() -> str:
    """Generate a new capability token in format: cap_{43-chars}"""
    return f"{CAPABILITY_TOKEN_PREFIX}{secrets.token_urlsafe(32)}"


def hash_capability_token(token: str) -> str:
    """Hash a capability token using bcrypt.

    Work factor comes from the ``auth.capability_hash_rounds`` setting.
    """
    rounds = get_setting_int("auth.capability_hash_rounds", fallback=12)
    salt = bcrypt.gensalt(rounds=max(4, min(rounds, 31)))
    return bcrypt.hashpw(token.encode(), salt).decode()


def verify_capability_token(token: str, hash: str) -> bool:
    """Verify a capability token against its hash.

    Returns:
        True if valid, False otherwise
    """
    try:
        return bcrypt.checkpw(token.encode(), hash.encode())
    except ValueError:
        return False


def get_token_prefix(token: str) -> str:
    """First 12 characters of the token, used as the lookup key."""
    return token[:12] if len(token) >= 12 else token


# Middleware dependencies


def _bearer_token(authorization: str | None, expected: str) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail=f"Invalid Authorization header format. Expected: Bearer <{expected}>",
        )
    return parts[1]


async def require_capability_token(authorization: str = Header(None)) -> str:
    """FastAPI dependency extracting the bearer capability token.

    Only the header shape is checked here. Whether the token authorizes the
    target config is decided inside the mutating transaction.

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    return _bearer_token(authorization, "capability")


async def require_admin_token(authorization: str = Header(None)) -> None:
    """FastAPI dependency guarding settings administration.

    Raises:
        HTTPException: 401 on a missing/malformed header, 403 if the token is
            wrong or ``admin.api_token`` is not configured
    """
    token = _bearer_token(authorization, "token")
    expected = get_setting("admin.api_token")
    if not expected:
        raise HTTPException(status_code=403, detail="Settings administration is disabled")
    if not secrets.compare_digest(token.encode(), expected.encode()):
        logger.warning(f"Rejected admin token {get_token_prefix(token)!r}...")
        raise HTTPException(status_code=403, detail="Invalid admin token")
