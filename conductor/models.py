"""Base model and helpers shared by every persisted record type."""

import secrets
import string
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_ID_ALPHABET = string.ascii_letters + string.digits


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def new_id(prefix: str, length: int = 8) -> str:
    """Random short identifier such as ``mem_a1B2c3D4``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))
    return f"{prefix}_{suffix}"


class Record(BaseModel):
    """Pydantic model persisted with camelCase keys.

    Accepts both ``created_at`` and ``createdAt`` on input and always dumps
    camelCase, so records on disk and over HTTP share one shape.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self, **kwargs: Any) -> dict[str, Any]:
        """Serialize for storage or a JSON response."""
        return self.model_dump(mode="json", by_alias=True, **kwargs)

    def merged(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Serialized copy with *changes* applied.

        Keys may be camelCase or snake_case; unknown keys are ignored.
        """
        data = self.to_record()
        fields = type(self).model_fields
        for key, value in changes.items():
            if key in fields:
                key = fields[key].alias or key
            if key in data:
                data[key] = value
        return data
