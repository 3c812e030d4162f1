"""Base Pydantic models and helpers."""

from datetime import datetime, timezone

from pydantic import BaseModel as PydanticBaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class BaseModel(PydanticBaseModel):
    """Base model for mutable engine-owned state."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
    )


class FrozenModel(PydanticBaseModel):
    """Base model for values that never change once built."""

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
    )


class CamelModel(PydanticBaseModel):
    """Base model for payloads sent to the presentation layer.

    Serializes with camelCase keys via ``to_message()``.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        alias_generator=to_camel,
    )

    def to_message(self) -> dict:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
