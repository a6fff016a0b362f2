"""
Tests for the HTTP surface.

Drives the FastAPI application through TestClient with the in-memory store
and fake collaborators from conftest.
"""

import asyncio
import json
from collections.abc import Iterator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from creditgate.config import Settings
from creditgate.exceptions import StoreUnavailableError
from creditgate.main import create_app
from creditgate.models.domain import AccountIdentity, utc_now
from creditgate.services.activation import ActivationCodec
from creditgate.services.completion import NOT_CONFIGURED_MESSAGE, NOT_REGISTERED_MESSAGE
from creditgate.services.container import build_container
from creditgate.stores.memory import InMemoryAccountStore
from helpers import (
    FixedVerifier,
    RecordingNotifier,
    ScriptedCompletionClient,
    paypal_event,
    upstream_failure,
)

BUYER = "buyer@example.com"


def _client(
    config: Settings,
    store: InMemoryAccountStore | None = None,
    notifier: RecordingNotifier | None = None,
    verifier: FixedVerifier | None = None,
    completion_client: ScriptedCompletionClient | None = None,
) -> TestClient:
    services = build_container(
        config,
        store=store or InMemoryAccountStore(),
        notifier=notifier or RecordingNotifier(),
        verifier=verifier or FixedVerifier(True),
        completion_client=completion_client,
    )
    return TestClient(create_app(services))


def _register(client: TestClient, email: str = "alice@example.com", device: str = "dev-alice"):
    return client.post("/api/register", json={"email": email, "deviceId": device})


def _pay(client: TestClient, **kwargs) -> str:
    response = client.post("/webhook/paypal", content=json.dumps(paypal_event(**kwargs)))
    assert response.status_code == 200
    return response.text


def _seed_expiry(store: InMemoryAccountStore, email: str, delta: timedelta) -> None:
    asyncio.run(store.add_paid_credits(AccountIdentity(email=email), 500, utc_now() + delta))


# ============================================================================
# Registration
# ============================================================================


class TestRegister:
    def test_new_device(self, client: TestClient):
        response = _register(client, email="Alice@Example.com")

        assert response.status_code == 200
        data = response.json()
        assert data == {
            "success": True,
            "message": "Welcome! 50 free credits granted.",
            "freeCredits": 50,
            "paidCredits": 0,
            "isNewDevice": True,
        }

    def test_known_device(self, client: TestClient):
        _register(client)
        data = _register(client).json()

        assert data["isNewDevice"] is False
        assert data["message"] == "Device already registered."
        assert data["freeCredits"] == 50

    def test_new_device_sees_earlier_payment(self, client: TestClient):
        _pay(client, email="alice@example.com")

        data = _register(client).json()

        assert data["isNewDevice"] is True
        assert data["paidCredits"] == 2000

    def test_store_unavailable(self, test_settings: Settings):
        class DownStore(InMemoryAccountStore):
            async def register_device(self, email, device_id, free_credits):
                raise StoreUnavailableError("connection refused")

        with _client(test_settings, store=DownStore()) as client:
            response = _register(client)

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "message": "Service temporarily unavailable",
        }

    @pytest.mark.parametrize(
        "body",
        [{"email": "alice@example.com"}, {"deviceId": "dev-1"}, {"email": "nope", "deviceId": "d"}],
    )
    def test_invalid_body(self, client: TestClient, body: dict):
        assert client.post("/api/register", json=body).status_code == 422


# ============================================================================
# Balance and expiry
# ============================================================================


class TestBalance:
    def test_unknown_account(self, client: TestClient):
        data = client.post("/api/balance", json={"email": "ghost@example.com"}).json()

        assert data["success"] is False
        assert data["status"] == "no_subscription"
        assert data["message"] == "No active subscription"
        assert data["showPaymentLink"] is True

    def test_free_only_is_low(self, client: TestClient):
        _register(client)

        data = client.post(
            "/api/balance", json={"email": "alice@example.com", "deviceId": "dev-alice"}
        ).json()

        assert data["success"] is True
        assert data["status"] == "low_tokens"
        assert data["message"] == "Only 50 credits left! Buy more?"
        assert (data["free"], data["paid"], data["balance"]) == (50, 0, 50)

    def test_paid_account_active(self, client: TestClient):
        _pay(client, email=BUYER)

        data = client.post("/api/balance", json={"email": BUYER}).json()

        assert data["success"] is True
        assert data["status"] == "active"
        assert data["paid"] == 2000
        assert data["expiryDate"].endswith("Z")
        assert data["showPaymentLink"] is False

    def test_reported_balance_drives_low_status(self, client: TestClient):
        _pay(client, email=BUYER)

        data = client.post("/api/balance", json={"email": BUYER, "tokenBalance": 20}).json()

        assert data["status"] == "low_tokens"
        assert data["message"] == "Only 20 credits left! Buy more?"

    def test_expired(self, test_settings: Settings):
        store = InMemoryAccountStore()
        _seed_expiry(store, BUYER, timedelta(days=-1))

        with _client(test_settings, store=store) as client:
            data = client.post("/api/balance", json={"email": BUYER}).json()

        assert data["success"] is False
        assert data["status"] == "expired"
        assert data["showPaymentLink"] is True
        assert data["message"]

    def test_store_unavailable(self, test_settings: Settings):
        """An unreachable store is reported in the body, never as a 5xx."""

        class DownStore(InMemoryAccountStore):
            async def find(self, identity):
                raise StoreUnavailableError("connection refused")

        with _client(test_settings, store=DownStore()) as client:
            response = client.post("/api/balance", json={"email": BUYER})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["status"] == "unavailable"
        assert data["message"] == "Service temporarily unavailable"


class TestCheckExpiry:
    def test_unknown_user(self, client: TestClient):
        data = client.post("/api/check-expiry", json={"email": "ghost@example.com"}).json()

        assert data["needsRenewal"] is False
        assert data["message"] == "User not found"

    def test_no_expiry_recorded(self, client: TestClient):
        _register(client)

        data = client.post("/api/check-expiry", json={"email": "alice@example.com"}).json()

        assert data["needsRenewal"] is False
        assert data["showReminder"] is False
        assert data["daysLeft"] == 0

    def test_fresh_payment(self, client: TestClient):
        _pay(client, email=BUYER)

        data = client.post("/api/check-expiry", json={"email": BUYER}).json()

        assert data["daysLeft"] == 30
        assert data["showReminder"] is False
        assert data["needsRenewal"] is False

    @pytest.mark.parametrize(
        ("delta", "needs_renewal", "show_reminder", "days_left"),
        [
            (timedelta(days=3), False, True, 3),
            (timedelta(days=7), False, True, 7),
            (timedelta(days=8), False, False, 8),
            (timedelta(hours=-1), True, False, 0),
        ],
    )
    def test_reminder_window(
        self, test_settings: Settings, delta, needs_renewal, show_reminder, days_left
    ):
        store = InMemoryAccountStore()
        _seed_expiry(store, BUYER, delta)

        with _client(test_settings, store=store) as client:
            data = client.post("/api/check-expiry", json={"email": BUYER}).json()

        assert data["needsRenewal"] is needs_renewal
        assert data["showReminder"] is show_reminder
        assert data["daysLeft"] == days_left


# ============================================================================
# Activation
# ============================================================================


class TestActivate:
    def test_code_from_payment_redeems(self, client: TestClient):
        _pay(client, email=BUYER)
        code = client.get("/api/admin/payments").json()["payments"][0]["activationCode"]

        data = client.post("/api/activate", json={"activationCode": code}).json()

        assert data["success"] is True
        assert data["tokens"] == 2000
        assert data["message"].startswith("2000 tokens activated! Valid until ")
        assert data["expiryDate"].endswith("Z")

    def test_garbage_code(self, client: TestClient):
        data = client.post("/api/activate", json={"activationCode": "%%%not-a-code%%%"}).json()

        assert data == {
            "success": False,
            "message": "Invalid activation code format",
            "tokens": 0,
            "expiryDate": None,
        }

    @pytest.mark.parametrize(
        "body",
        [{"activationCode": 123}, {"activationCode": None}, {"activationCode": ["x"]}, {}],
    )
    def test_missing_or_non_string_code(self, client: TestClient, body: dict):
        response = client.post("/api/activate", json=body)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["message"] == "Invalid activation code format"

    def test_well_formed_code_without_account(self, client: TestClient, codec: ActivationCodec):
        code = codec.encode(codec.issue("stranger@example.com", 5000))

        data = client.post("/api/activate", json={"activationCode": code}).json()

        assert data["success"] is False
        assert data["message"] == "Invalid or expired activation code"


class TestManualActivate:
    def test_grants_and_returns_code(self, client: TestClient, codec: ActivationCodec):
        data = client.post("/api/manual-activate", json={"email": BUYER}).json()

        assert data["success"] is True
        assert data["message"] == f"Use this code in extension: {data['activationCode']}"
        assert codec.decode(data["activationCode"]).tokens == 2000
        balance = client.post("/api/balance", json={"email": BUYER}).json()
        assert balance["paid"] == 2000

    def test_custom_token_count(self, client: TestClient, codec: ActivationCodec):
        data = client.post("/api/manual-activate", json={"email": BUYER, "tokens": 500}).json()

        assert codec.decode(data["activationCode"]).tokens == 500

    def test_disabled_is_404(self, test_settings: Settings):
        config = test_settings.model_copy(update={"manual_activation_enabled": False})

        with _client(config) as client:
            response = client.post("/api/manual-activate", json={"email": BUYER})

        assert response.status_code == 404


class TestAdminKey:
    """ADMIN_API_KEY protects operator endpoints when set."""

    @pytest.fixture
    def keyed_client(self, test_settings: Settings) -> Iterator[TestClient]:
        config = test_settings.model_copy(update={"admin_api_key": "s3cret"})
        with _client(config) as client:
            yield client

    def test_missing_key(self, keyed_client: TestClient):
        assert keyed_client.get("/api/admin/payments").status_code == 401

    def test_wrong_key(self, keyed_client: TestClient):
        response = keyed_client.post(
            "/api/manual-activate", json={"email": BUYER}, headers={"X-Admin-Key": "guess"}
        )
        assert response.status_code == 401

    def test_correct_key(self, keyed_client: TestClient):
        response = keyed_client.get("/api/admin/payments", headers={"X-Admin-Key": "s3cret"})

        assert response.status_code == 200
        assert response.json() == {"total": 0, "payments": []}

    def test_open_without_configured_key(self, client: TestClient):
        assert client.get("/api/admin/payments").status_code == 200


class TestAdminPayments:
    def test_lists_newest_first(self, client: TestClient):
        _pay(client, email=BUYER, payment_id="SALE-1", event_id="WH-1")
        _pay(client, email=BUYER, payment_id="SALE-2", event_id="WH-2", amount="10.00")

        data = client.get("/api/admin/payments").json()

        assert data["total"] == 2
        first = data["payments"][0]
        assert first["paymentId"] == "SALE-2"
        assert first["tokens"] == 5000
        assert first["package"] == "premium"
        assert first["amount"] == "10.00"
        assert first["date"].endswith("Z")

    def test_limit(self, client: TestClient):
        _pay(client, payment_id="SALE-1")
        _pay(client, payment_id="SALE-2")

        assert client.get("/api/admin/payments?limit=1").json()["total"] == 1


# ============================================================================
# Completion proxy
# ============================================================================


class TestCompletionRoute:
    def test_success(self, client: TestClient, completion_client: ScriptedCompletionClient):
        _register(client)

        data = client.post(
            "/api/openai",
            json={"email": "alice@example.com", "deviceId": "dev-alice", "prompt": "Hi"},
        ).json()

        assert data["success"] is True
        assert data["response"] == "Hello from the model"
        assert data["remaining"] == 49
        assert len(completion_client.calls) == 1

    def test_unregistered(self, client: TestClient):
        data = client.post(
            "/api/openai",
            json={"email": "ghost@example.com", "deviceId": "dev-ghost", "prompt": "Hi"},
        ).json()

        assert data["success"] is False
        assert data["message"] == NOT_REGISTERED_MESSAGE

    def test_upstream_failure_refunded(
        self, client: TestClient, completion_client: ScriptedCompletionClient
    ):
        completion_client.error = upstream_failure("Rate limit exceeded")
        _register(client)

        data = client.post(
            "/api/openai",
            json={"email": "alice@example.com", "deviceId": "dev-alice", "prompt": "Hi"},
        ).json()
        balance = client.post(
            "/api/balance", json={"email": "alice@example.com", "deviceId": "dev-alice"}
        ).json()

        assert data["success"] is False
        assert data["message"] == "Rate limit exceeded"
        assert balance["free"] == 50

    def test_not_configured(self, test_settings: Settings):
        with _client(test_settings, completion_client=None) as client:
            _register(client)
            data = client.post(
                "/api/openai",
                json={"email": "alice@example.com", "deviceId": "dev-alice", "prompt": "Hi"},
            ).json()

        assert data["success"] is False
        assert data["message"] == NOT_CONFIGURED_MESSAGE

    def test_empty_prompt_rejected(self, client: TestClient):
        response = client.post(
            "/api/openai", json={"email": "alice@example.com", "prompt": ""}
        )
        assert response.status_code == 422


# ============================================================================
# Webhook
# ============================================================================


class TestPayPalWebhook:
    """The webhook always answers 200 with a short status text."""

    def test_credited(self, test_settings: Settings):
        notifier = RecordingNotifier()
        with _client(test_settings, notifier=notifier) as client:
            assert _pay(client, email=BUYER) == "OK"

        # Leaving the client drains the background send
        assert notifier.sent[0]["email"] == BUYER
        assert notifier.sent[0]["credits"] == 2000

    def test_duplicate(self, client: TestClient):
        _pay(client)
        assert _pay(client) == "Duplicate event"

    def test_ignored(self, client: TestClient):
        assert _pay(client, event_type="BILLING.SUBSCRIPTION.CREATED") == "Event ignored"

    def test_malformed_body(self, client: TestClient):
        response = client.post("/webhook/paypal", content=b"{broken")

        assert response.status_code == 200
        assert response.text == "Malformed event"

    def test_rejected_signature(self, test_settings: Settings):
        with _client(test_settings, verifier=FixedVerifier(False)) as client:
            assert _pay(client) == "Verification failed"

    def test_unexpected_error_still_200(self, test_settings: Settings):
        with _client(test_settings, verifier=FixedVerifier(error=RuntimeError("bug"))) as client:
            assert _pay(client) == "Processing failed"

    def test_email_failure_still_credits(self, test_settings: Settings):
        notifier = RecordingNotifier(fail_with=upstream_failure("smtp down"))
        with _client(test_settings, notifier=notifier) as client:
            assert _pay(client, email=BUYER) == "OK"
            balance = client.post("/api/balance", json={"email": BUYER}).json()

        assert balance["paid"] == 2000


# ============================================================================
# Status
# ============================================================================


class TestStatus:
    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["store"] == "ok"
        assert data["store_backend"] == "memory"

    def test_health_store_down(self, test_settings: Settings):
        class DownStore(InMemoryAccountStore):
            async def ping(self):
                raise StoreUnavailableError("connection refused")

        with _client(test_settings, store=DownStore()) as client:
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["store"] == "unavailable"

    def test_root(self, client: TestClient):
        assert client.get("/").json()["status"] == "running"

    def test_metrics(self, client: TestClient):
        _register(client)
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "creditgate_registrations_total" in response.text

    def test_request_id_echoed(self, client: TestClient):
        response = client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
