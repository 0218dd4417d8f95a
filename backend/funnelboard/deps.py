"""Authentication dependencies.

Two identities reach this service:
    - the dashboard UI, carrying a session JWT (Bearer header or `access_token`
      cookie) whose `sub` is the user's email
    - integrations calling the public lead API with an `X-API-Key` header

Both resolve to a `User` row; anything else is a 401. The API-key path never
says whether a key was unknown or malformed.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException, status
from jose import JWTError
from sqlalchemy.orm import Session

from .database import get_db
from .models import ApiKey, User
from .security import decode_token, hash_api_key
from .services.errors import CRMError
from .telemetry import set_user_context


logger = logging.getLogger(__name__)


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
) -> User:
    """Resolve the current user from the Authorization header or cookie.

    Either value may be in the form "Bearer <jwt>".
    """
    raw = authorization or access_token
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    # Remove optional "Bearer " prefix
    if raw.startswith("Bearer "):
        token = raw[len("Bearer ") :]
    else:
        token = raw

    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    user = (
        db.query(User)
        .filter(User.email == subject)
        .first()
    )
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    set_user_context(str(user.id), user.email)
    return user


def get_api_key_user(
    db: Session = Depends(get_db),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> User:
    """Resolve the acting user from an `X-API-Key` header.

    The presented key is SHA-256 hashed and matched against non-revoked keys.
    `last_used_at` is bumped on every successful lookup.
    """
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-API-Key header")

    api_key = (
        db.query(ApiKey)
        .filter(ApiKey.key_hash == hash_api_key(x_api_key), ApiKey.revoked_at.is_(None))
        .first()
    )
    if not api_key:
        logger.info("[API_KEY] Rejected request with unknown key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    api_key.last_used_at = datetime.utcnow()
    db.commit()
    return api_key.user


@contextmanager
def http_errors():
    """Translate domain errors raised inside the block into HTTPException.

    Usage:
        with http_errors():
            return LeadService(db).get_lead(lead_id, current_user.id)
    """
    try:
        yield
    except CRMError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
