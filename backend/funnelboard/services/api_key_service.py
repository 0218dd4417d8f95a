"""Issue, list and revoke API keys for the public lead API."""

import logging
from datetime import datetime
from typing import List, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..database import atomic
from ..models import ApiKey
from ..security import generate_api_key, hash_api_key
from .errors import NotFoundError

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 10


class ApiKeyService:
    def __init__(self, db: Session):
        self.db = db

    def issue_key(self, user_id: UUID, name: str) -> Tuple[ApiKey, str]:
        """Create a key and return (record, plaintext).

        The plaintext is not stored and cannot be recovered later.
        """
        raw_key = generate_api_key()
        api_key = ApiKey(
            user_id=user_id,
            name=name.strip(),
            key_prefix=raw_key[:PREFIX_LENGTH],
            key_hash=hash_api_key(raw_key),
        )
        with atomic(self.db, "API_KEY"):
            self.db.add(api_key)
        self.db.refresh(api_key)
        logger.info(f"[API_KEY] Issued key {api_key.key_prefix}... for user {user_id}")
        return api_key, raw_key

    def list_keys(self, user_id: UUID) -> List[ApiKey]:
        return (
            self.db.query(ApiKey)
            .filter(ApiKey.user_id == user_id)
            .order_by(ApiKey.created_at.desc())
            .all()
        )

    def revoke_key(self, key_id: UUID, user_id: UUID) -> ApiKey:
        """Mark a key revoked; revoking twice keeps the first timestamp."""
        api_key = self.db.query(ApiKey).filter(ApiKey.id == key_id, ApiKey.user_id == user_id).first()
        if not api_key:
            raise NotFoundError("API key not found")
        if api_key.revoked_at is None:
            with atomic(self.db, "API_KEY"):
                api_key.revoked_at = datetime.utcnow()
            logger.info(f"[API_KEY] Revoked key {api_key.key_prefix}...")
        return api_key
