"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- In-memory account store and ledger
- Recording notifier, scripted completion client, fixed webhook verifier
- Service container and API test client built around those fakes
"""

import os
from collections.abc import AsyncIterator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Set environment BEFORE importing creditgate modules (settings validate at import)
os.environ["DATABASE_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["TRACING_ENABLED"] = "false"
os.environ.pop("ADMIN_API_KEY", None)

from creditgate.config import Settings
from creditgate.models.domain import AccountIdentity
from creditgate.services.activation import ActivationCodec
from creditgate.services.container import ServiceContainer, build_container
from creditgate.services.credit_packs import CreditPackPolicy
from creditgate.services.ledger import CreditLedger
from creditgate.services.notifier import NotificationDispatcher
from creditgate.stores.memory import InMemoryAccountStore
from helpers import FixedVerifier, RecordingNotifier, ScriptedCompletionClient

# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any .env file."""
    return Settings(
        _env_file=None,
        database_url="",
        openai_api_key="",
        sendgrid_api_key="",
        admin_api_key=None,
        manual_activation_enabled=True,
    )


# ============================================================================
# Ledger Fixtures
# ============================================================================


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def ledger(store: InMemoryAccountStore) -> CreditLedger:
    return CreditLedger(store, free_credits_per_device=50)


@pytest.fixture
def codec() -> ActivationCodec:
    return ActivationCodec(validity_days=30)


@pytest.fixture
def pack_policy() -> CreditPackPolicy:
    return CreditPackPolicy()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def dispatcher(notifier: RecordingNotifier) -> AsyncIterator[NotificationDispatcher]:
    """Dispatcher whose background sends are drained at teardown."""
    dispatcher = NotificationDispatcher(notifier)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
def completion_client() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def alice() -> AccountIdentity:
    return AccountIdentity(email="alice@example.com", device_id="dev-alice")


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def services(
    test_settings: Settings,
    store: InMemoryAccountStore,
    notifier: RecordingNotifier,
    completion_client: ScriptedCompletionClient,
) -> ServiceContainer:
    return build_container(
        test_settings,
        store=store,
        notifier=notifier,
        verifier=FixedVerifier(True),
        completion_client=completion_client,
    )


@pytest.fixture
def app(services: ServiceContainer) -> FastAPI:
    from creditgate.main import create_app

    return create_app(services)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Test client; leaving the context drains background notifications."""
    with TestClient(app) as test_client:
        yield test_client
