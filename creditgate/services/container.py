"""
Service wiring - builds the object graph from Settings.

Collaborators can be injected (tests pass fakes); anything not injected is
built from configuration.
"""

from dataclasses import dataclass

from structlog import get_logger

from creditgate.config import Settings
from creditgate.services.activation import ActivationCodec
from creditgate.services.completion import (
    CompletionClient,
    CompletionProxy,
    OpenAICompletionClient,
)
from creditgate.services.credit_packs import CreditPackPolicy
from creditgate.services.ledger import CreditLedger
from creditgate.services.notifier import NotificationDispatcher, Notifier, build_notifier
from creditgate.services.payment_events import PaymentEventHandler
from creditgate.services.paypal import (
    PayPalWebhookVerifier,
    UnverifiedWebhookVerifier,
    WebhookVerifier,
)
from creditgate.stores.base import AccountStore
from creditgate.stores.memory import InMemoryAccountStore

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Everything the routes need, built once per application."""

    settings: Settings
    store: AccountStore
    ledger: CreditLedger
    codec: ActivationCodec
    pack_policy: CreditPackPolicy
    verifier: WebhookVerifier
    notifier: Notifier
    dispatcher: NotificationDispatcher
    payment_handler: PaymentEventHandler
    completion_client: CompletionClient | None
    completion_proxy: CompletionProxy

    async def close(self) -> None:
        """Drain background sends, then release clients and the store."""
        await self.dispatcher.drain()
        await self.notifier.close()
        await self.verifier.close()
        if self.completion_client is not None:
            await self.completion_client.close()
        await self.store.close()


def build_store(config: Settings) -> AccountStore:
    if not config.database_url:
        logger.warning("account_store_in_memory", reason="DATABASE_URL not set")
        return InMemoryAccountStore()

    # Imported here so the in-memory mode needs no database driver
    from creditgate.stores.sql import SqlAccountStore

    return SqlAccountStore(config)


def build_verifier(config: Settings) -> WebhookVerifier:
    if not config.paypal_verification_enabled:
        return UnverifiedWebhookVerifier()
    return PayPalWebhookVerifier(
        api_base=config.paypal_api_base,
        client_id=config.paypal_client_id,
        client_secret=config.paypal_client_secret,
        webhook_id=config.paypal_webhook_id,
    )


def build_container(
    config: Settings,
    store: AccountStore | None = None,
    notifier: Notifier | None = None,
    verifier: WebhookVerifier | None = None,
    completion_client: CompletionClient | None = None,
) -> ServiceContainer:
    store = store if store is not None else build_store(config)
    notifier = notifier if notifier is not None else build_notifier(config)
    verifier = verifier if verifier is not None else build_verifier(config)
    if completion_client is None and config.openai_api_key:
        completion_client = OpenAICompletionClient(
            api_key=config.openai_api_key,
            timeout=config.completion_timeout_seconds,
        )

    ledger = CreditLedger(store, free_credits_per_device=config.free_credits_per_device)
    codec = ActivationCodec(validity_days=config.activation_validity_days)
    pack_policy = CreditPackPolicy.from_settings(config)
    dispatcher = NotificationDispatcher(notifier)

    payment_handler = PaymentEventHandler(
        ledger=ledger,
        verifier=verifier,
        pack_policy=pack_policy,
        dispatcher=dispatcher,
        codec=codec if config.activation_codes_enabled else None,
        completed_event_types=config.paypal_completed_event_types,
    )
    completion_proxy = CompletionProxy(
        ledger=ledger,
        client=completion_client,
        default_model=config.completion_model,
        allowed_models=config.completion_allowed_models or [config.completion_model],
        system_prompt=config.completion_system_prompt,
        max_tokens=config.completion_max_tokens,
        timeout_seconds=config.completion_timeout_seconds,
        refund_on_failure=config.refund_on_upstream_failure,
    )

    logger.info(
        "services_built",
        store_backend=store.backend_name,
        email_transport=notifier.transport,
        webhook_verification=type(verifier).__name__,
        completion_configured=completion_client is not None,
        credit_pack_mode=config.credit_pack_mode,
    )

    return ServiceContainer(
        settings=config,
        store=store,
        ledger=ledger,
        codec=codec,
        pack_policy=pack_policy,
        verifier=verifier,
        notifier=notifier,
        dispatcher=dispatcher,
        payment_handler=payment_handler,
        completion_client=completion_client,
        completion_proxy=completion_proxy,
    )
