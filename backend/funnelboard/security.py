"""Security utilities for JWTs and API keys.

WHAT:
    JWT helpers for the UI session identity and hashing/generation helpers for
    the API keys that authenticate the public lead API.

WHY:
    - Authentication itself is handled upstream; the dashboard only needs to
      validate the session token and map its `sub` (email) to a user row.
    - API keys are never stored in plaintext: only the SHA-256 hex digest is
      persisted, so a database leak does not leak usable keys.

REFERENCES:
    - funnelboard/deps.py (get_current_user, get_api_key_user)
    - funnelboard/services/api_key_service.py (issuing and revoking keys)
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError

from .config import get_settings


logger = logging.getLogger(__name__)


def create_access_token(subject: str, expires_minutes: Optional[int] = None) -> str:
    """Create a signed JWT for the given subject (user email)."""
    settings = get_settings()
    if expires_minutes is None:
        expires_minutes = settings.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes)
    to_encode: Dict[str, Any] = {"sub": subject, "iat": int(now.timestamp()), "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT, returning its payload.

    Raises jose.JWTError on failure.
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        logger.debug("[AUTH] Rejected JWT")
        raise


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hex digest of a presented API key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    """Return a new plaintext API key, e.g. `fb_Xk3...`.

    The plaintext is shown to the user exactly once; callers persist
    `hash_api_key(key)` only.
    """
    return f"{get_settings().API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
