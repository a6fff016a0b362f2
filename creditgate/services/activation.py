"""
Activation Codec - Self-describing activation codes.

A code is base64 over compact JSON of the entitlement, keys in a fixed order:
{"email", "tokens", "purchaseDate", "expiryDate", "isActive"}. Codes are
not signed or encrypted; anyone can mint one, so redemption also requires an
active account for the email.
"""

import base64
import binascii
import json
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from creditgate.exceptions import ActivationFormatError
from creditgate.models.activation import ActivationEntitlement
from creditgate.models.domain import utc_now


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ActivationCodec:
    """Encode, decode and issue activation codes."""

    def __init__(self, validity_days: int = 30) -> None:
        self.validity_days = validity_days

    def issue(self, email: str, tokens: int, now: datetime | None = None) -> ActivationEntitlement:
        """Entitlement for `tokens` credits, valid for validity_days from now."""
        purchased = now or utc_now()
        return ActivationEntitlement(
            email=email,
            tokens=tokens,
            purchase_date=purchased,
            expiry_date=purchased + timedelta(days=self.validity_days),
            is_active=True,
        )

    def encode(self, entitlement: ActivationEntitlement) -> str:
        payload = {
            "email": entitlement.email,
            "tokens": entitlement.tokens,
            "purchaseDate": format_timestamp(entitlement.purchase_date),
            "expiryDate": format_timestamp(entitlement.expiry_date),
            "isActive": entitlement.is_active,
        }
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def decode(self, token: object) -> ActivationEntitlement:
        """
        Parse an activation code.

        Raises:
            ActivationFormatError: for any input that is not a well-formed code
        """
        if not isinstance(token, str):
            raise ActivationFormatError(f"expected a string, got {type(token).__name__}")

        try:
            raw = base64.b64decode(token.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ActivationFormatError("not valid base64") from e

        try:
            payload = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise ActivationFormatError("not valid UTF-8") from e
        except (ValueError, RecursionError) as e:
            raise ActivationFormatError("not valid JSON") from e

        if not isinstance(payload, dict):
            raise ActivationFormatError("payload is not an object")

        try:
            return ActivationEntitlement.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ActivationFormatError(f"invalid fields: {fields}") from e
