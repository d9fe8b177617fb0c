"""
Bearer token verification.

Access tokens are issued by the hosted auth provider and signed with a
shared secret. Only the ``sub`` claim (the user id) is used here.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from nearcast.config import get_settings


def verify_token(token: str) -> dict[str, Any]:
    """
    Decode and validate an access token.

    Raises:
        jwt.InvalidTokenError: bad signature, expired, wrong audience or no subject.
    """
    settings = get_settings()
    options: dict[str, Any] = {"require": ["sub", "exp"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience or None,
        options=options,
    )


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Mint an access token for ``user_id`` (local development and tests)."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    ttl = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    payload: dict[str, Any] = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=ttl),
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
