"""Helpers for raw MongoDB documents."""

from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC) and ISO-8601 strings, which
    external workflows sometimes write instead of BSON dates.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return as_utc(parsed)
    return None


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for a valid id, else None."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_document(value: Any) -> Any:
    """Recursively convert BSON types into JSON-safe values."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {str(k): serialize_document(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_document(v) for v in value]
    return value
