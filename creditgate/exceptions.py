"""
Exception Classes - Strongly typed exception hierarchy.

Every business failure is a subclass of CreditGateError. Routes translate them
into structured `success: false` responses; none of them is fatal.
"""


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class CreditGateError(Exception):
    """Base exception for all credit gate errors."""

    pass


class AccountNotFoundError(CreditGateError):
    """Raised when an identity does not resolve to an account."""

    def __init__(self, email: str, device_id: str | None = None) -> None:
        self.email = email
        self.device_id = device_id
        target = f"device {device_id}" if device_id else email
        super().__init__(f"Account not found: {target}")


class CreditsDepletedError(CreditGateError):
    """Raised when an account has neither paid nor free credits left."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"No credits left for {email}")


class MalformedEventError(CreditGateError):
    """Raised when a payment event lacks the fields needed to credit it."""

    def __init__(self, reason: str, event_id: str | None = None) -> None:
        self.reason = reason
        self.event_id = event_id
        super().__init__(f"Malformed payment event {event_id or '<no id>'}: {reason}")


class ActivationFormatError(CreditGateError):
    """Raised when an activation code cannot be decoded."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid activation code format: {reason}")


class UpstreamError(CreditGateError):
    """Raised when the completion service or payment provider fails or times out."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        self.message = message
        super().__init__(f"{service} error: {message}")


class StoreUnavailableError(CreditGateError):
    """Raised when the account store cannot be reached."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Account store unavailable: {message}")


class DuplicatePaymentError(CreditGateError):
    """Raised when a provider payment id has already been credited."""

    def __init__(self, payment_id: str) -> None:
        self.payment_id = payment_id
        super().__init__(f"Payment already recorded: {payment_id}")

