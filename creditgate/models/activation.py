"""
Activation code models - the entitlement carried inside an activation code.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActivationEntitlement(BaseModel):
    """
    Entitlement encoded in an activation code.

    Wire keys are the camelCase names the extension reads:
    {email, tokens, purchaseDate, expiryDate, isActive}.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    email: str = Field(..., min_length=1, max_length=255)
    tokens: int = Field(..., ge=0)
    purchase_date: datetime = Field(..., alias="purchaseDate")
    expiry_date: datetime = Field(..., alias="expiryDate")
    is_active: bool = Field(True, alias="isActive")

    @field_validator("purchase_date", "expiry_date")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """UTC at millisecond precision, the resolution codes are written at."""
        if v.tzinfo is None:
            raise ValueError("dates must carry a timezone")
        try:
            v = v.astimezone(UTC)
        except OverflowError as e:
            raise ValueError("date out of range") from e
        return v.replace(microsecond=v.microsecond // 1000 * 1000)
