from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PreferenceType(StrEnum):
    """Delivery preference kinds."""

    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"
    FIXED = "fixed"


class DeliveryPreference(BaseModel):
    """When a subscriber wants their daily session to start."""

    type: str | None = None
    times: list[str] | None = None
    fuzziness_minutes: int | None = Field(default=None, ge=0)


class Subscriber(BaseModel):
    """Subscriber document as stored by the subscriber repository.

    The delivery core only reads these fields and only writes
    ``next_delivery_at`` and ``signed_up_at``. Unknown fields are kept so a
    round trip through this model never drops data owned by other features.
    Instants stay raw strings here because stored values may be unparsable.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    timezone: str | None = None
    delivery_preference: DeliveryPreference | None = None
    next_delivery_at: str | None = None
    is_premium: bool = False
    signed_up_at: str | None = None

    @field_validator("delivery_preference", mode="before")
    @classmethod
    def _drop_malformed_preference(cls, value: Any) -> Any:
        if value is None or isinstance(value, DeliveryPreference):
            return value
        if not isinstance(value, dict):
            return None
        try:
            return DeliveryPreference.model_validate(value)
        except ValueError:
            return None

    @field_validator("next_delivery_at", "signed_up_at", mode="before")
    @classmethod
    def _stringify_instants(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)
