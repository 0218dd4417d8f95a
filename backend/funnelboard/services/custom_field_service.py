"""User-defined custom fields for leads.

Definitions live in `custom_fields`; values live in the open
`Lead.custom_fields` JSON bag keyed by `field_key`. Values are validated only
where they are consumed (UI create/update); keys without a definition pass
through untouched so integrations can push arbitrary data.
"""

import logging
import re
import unicodedata
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import atomic
from ..models import CustomField, CustomFieldTypeEnum
from ..schemas import CustomFieldCreate, CustomFieldUpdate
from .errors import CRMValidationError, NotFoundError
from .number_parsing import parse_brazilian_number

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "sim", "y", "s"}
_FALSE = {"false", "0", "no", "não", "nao", "n"}


def slugify_field_key(name: str) -> str:
    """'Orçamento Mensal' -> 'orcamento_mensal'."""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "_", ascii_name.lower()).strip("_")


def coerce_value(definition: CustomField, value: Any) -> Any:
    """Coerce one value to the definition's type. None clears the field.

    Raises:
        CRMValidationError: value does not fit the type.
    """
    if value is None or value == "":
        return None

    field_type = definition.field_type
    label = definition.name

    if field_type == CustomFieldTypeEnum.text:
        return str(value)

    if field_type == CustomFieldTypeEnum.number:
        if isinstance(value, bool):
            raise CRMValidationError(f"'{label}' must be a number")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        if not re.search(r"\d", text):
            raise CRMValidationError(f"'{label}' must be a number")
        return parse_brazilian_number(text)

    if field_type == CustomFieldTypeEnum.date:
        try:
            return date.fromisoformat(str(value)[:10]).isoformat()
        except ValueError:
            raise CRMValidationError(f"'{label}' must be a date (YYYY-MM-DD)")

    if field_type == CustomFieldTypeEnum.select:
        if str(value) not in (definition.options or []):
            raise CRMValidationError(f"'{label}' must be one of: {', '.join(definition.options or [])}")
        return str(value)

    if field_type == CustomFieldTypeEnum.boolean:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise CRMValidationError(f"'{label}' must be true or false")

    return value


class CustomFieldService:
    def __init__(self, db: Session):
        self.db = db

    def list_fields(self, user_id: UUID) -> List[CustomField]:
        return (
            self.db.query(CustomField)
            .filter(CustomField.user_id == user_id)
            .order_by(CustomField.created_at)
            .all()
        )

    def _get_owned(self, field_id: UUID, user_id: UUID) -> CustomField:
        definition = (
            self.db.query(CustomField)
            .filter(CustomField.id == field_id, CustomField.user_id == user_id)
            .first()
        )
        if not definition:
            raise NotFoundError("Custom field not found")
        return definition

    def create(self, user_id: UUID, payload: CustomFieldCreate) -> CustomField:
        field_key = slugify_field_key(payload.name)
        if not field_key:
            raise CRMValidationError("Custom field name must contain letters or digits")
        if payload.field_type == CustomFieldTypeEnum.select and not payload.options:
            raise CRMValidationError("Select fields need at least one option")

        definition = CustomField(
            user_id=user_id,
            name=payload.name.strip(),
            field_key=field_key,
            field_type=payload.field_type,
            options=payload.options,
            required=payload.required,
        )
        try:
            with atomic(self.db, "CUSTOM_FIELDS"):
                self.db.add(definition)
        except IntegrityError:
            raise CRMValidationError(f"A custom field with key '{field_key}' already exists")
        self.db.refresh(definition)
        logger.info(f"[CUSTOM_FIELDS] Created {field_key} ({payload.field_type.value}) for user {user_id}")
        return definition

    def update(self, field_id: UUID, user_id: UUID, payload: CustomFieldUpdate) -> CustomField:
        """Rename/adjust a definition. field_key stays stable so stored values keep resolving."""
        definition = self._get_owned(field_id, user_id)
        changes = payload.model_dump(exclude_unset=True)
        if "name" in changes:
            if not (changes["name"] or "").strip():
                raise CRMValidationError("name must not be empty")
            changes["name"] = changes["name"].strip()
        # required is NOT NULL: an explicit null leaves it unchanged
        if changes.get("required", False) is None:
            changes.pop("required")
        with atomic(self.db, "CUSTOM_FIELDS"):
            for key, value in changes.items():
                setattr(definition, key, value)
        self.db.refresh(definition)
        return definition

    def delete(self, field_id: UUID, user_id: UUID) -> None:
        definition = self._get_owned(field_id, user_id)
        with atomic(self.db, "CUSTOM_FIELDS"):
            self.db.delete(definition)

    def coerce_values(self, user_id: UUID, values: Optional[Dict[str, Any]], partial: bool = False) -> Dict[str, Any]:
        """Validate values whose key has a definition; unknown keys pass through.

        With partial=False (creation) required fields must be present.
        """
        values = dict(values or {})
        for definition in self.list_fields(user_id):
            if definition.field_key in values:
                values[definition.field_key] = coerce_value(definition, values[definition.field_key])
            if definition.required and not partial and values.get(definition.field_key) is None:
                raise CRMValidationError(f"'{definition.name}' is required")
        return values
