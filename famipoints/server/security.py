"""
Access tokens for the REST server: HS256 JWTs carrying the user id as ``sub``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from famipoints.config import Settings

ALGORITHM = "HS256"


def create_access_token(sub: str, settings: Settings, minutes: Optional[int] = None) -> str:
    exp_min = minutes if minutes is not None else settings.access_token_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=exp_min)
    payload = {"sub": sub, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Optional[str]:
    """Return the user id carried by ``token``, or None if it is not valid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    return payload.get("sub")
