"""
Tests for domain model validation and API model invariants.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from creditgate.models.api import (
    BalanceResponse,
    BalanceStatus,
    CompletionResponse,
    RegisterRequest,
)
from creditgate.models.domain import (
    AccountData,
    AccountIdentity,
    CompletionResult,
    CreditGrant,
    PaymentRecord,
    utc_now,
)


class TestAccountIdentity:
    def test_email_only(self):
        identity = AccountIdentity(email="a@x.com")
        assert identity.device_id is None

    @pytest.mark.parametrize("email", ["", "   "])
    def test_blank_email_rejected(self, email: str):
        with pytest.raises(ValueError, match="email cannot be empty"):
            AccountIdentity(email=email)

    def test_blank_device_rejected(self):
        with pytest.raises(ValueError):
            AccountIdentity(email="a@x.com", device_id=" ")

    def test_frozen(self):
        identity = AccountIdentity(email="a@x.com")
        with pytest.raises(AttributeError):
            identity.email = "b@y.com"  # type: ignore[misc]


class TestAccountData:
    def _account(self, free: int, paid: int) -> AccountData:
        now = utc_now()
        return AccountData(
            account_id=uuid4(),
            email="a@x.com",
            device_id="dev1",
            free_credits=free,
            paid_credits=paid,
            is_active=True,
            entitlement_expires_at=None,
            created_at=now,
            updated_at=now,
        )

    def test_total(self):
        assert self._account(50, 2000).total_credits == 2050

    @pytest.mark.parametrize(("free", "paid"), [(-1, 0), (0, -1)])
    def test_negative_balances_rejected(self, free: int, paid: int):
        with pytest.raises(ValueError, match="cannot be negative"):
            self._account(free, paid)

    def test_to_identity(self):
        identity = self._account(1, 1).to_identity()
        assert identity == AccountIdentity(email="a@x.com", device_id="dev1")


class TestGrantsAndPayments:
    def test_zero_grant_rejected(self):
        with pytest.raises(ValueError):
            CreditGrant(package="basic", credits=0)

    def test_payment_requires_positive_credits(self):
        with pytest.raises(ValueError):
            PaymentRecord(email="a@x.com", credits_added=0, package="basic")

    def test_payment_requires_email(self):
        with pytest.raises(ValueError):
            PaymentRecord(email="", credits_added=10, package="basic")


class TestFailureMessages:
    """A failure is never reported without a message."""

    def test_completion_result_needs_message(self):
        with pytest.raises(ValueError):
            CompletionResult(success=False)

    def test_response_model_needs_message(self):
        with pytest.raises(ValidationError):
            CompletionResponse(success=False, message="  ")

    def test_balance_failure_with_message(self):
        response = BalanceResponse(
            success=False, status=BalanceStatus.NO_SUBSCRIPTION, message="No active subscription"
        )
        assert response.model_dump(by_alias=True)["showPaymentLink"] is False


class TestRequestModels:
    def test_email_normalized(self):
        request = RegisterRequest.model_validate({"email": "  Alice@Example.COM ", "deviceId": "d"})
        assert request.email == "alice@example.com"

    def test_snake_case_accepted(self):
        request = RegisterRequest(email="a@x.com", device_id="d")
        assert request.device_id == "d"
