"""
Completion Proxy - Charges one credit per prompt and forwards it upstream.

Flow:
1. Refuse early (no deduction) when the upstream is not configured or the
   requested model is not allowed
2. Consume one credit through the ledger
3. Forward the prompt with the fixed system instruction and token bound
4. On upstream failure or timeout, give the credit back when configured to
"""

import asyncio
import time
from typing import Protocol

from openai import APIError, APIStatusError, AsyncOpenAI
from structlog import get_logger

from creditgate.exceptions import AccountNotFoundError, CreditsDepletedError, UpstreamError
from creditgate.models.domain import AccountIdentity, CompletionResult
from creditgate.observability import metrics
from creditgate.observability.tracing import add_span_attributes, get_tracer, set_span_error
from creditgate.services.ledger import CreditLedger

logger = get_logger(__name__)
tracer = get_tracer(__name__)

NOT_CONFIGURED_MESSAGE = "AI service is not configured"
NOT_REGISTERED_MESSAGE = "Device not registered. Please register first."
DEPLETED_MESSAGE = "No credits left. Purchase a credit pack to continue."


class CompletionClient(Protocol):
    """Chat completion upstream."""

    async def complete(self, prompt: str, model: str, system_prompt: str, max_tokens: int) -> str:
        """
        Completion text for `prompt`.

        Raises:
            UpstreamError: the upstream failed or returned nothing usable
        """
        ...

    async def close(self) -> None: ...


class OpenAICompletionClient:
    """OpenAI chat completions via the official async SDK."""

    def __init__(self, api_key: str, timeout: float = 30.0, client: AsyncOpenAI | None = None):
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(self, prompt: str, model: str, system_prompt: str, max_tokens: int) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
            )
        except APIStatusError as e:
            raise UpstreamError("openai", _status_error_message(e)) from e
        except APIError as e:
            raise UpstreamError("openai", e.message or type(e).__name__) from e

        if not completion.choices or completion.choices[0].message.content is None:
            raise UpstreamError("openai", "empty completion")
        return completion.choices[0].message.content

    async def close(self) -> None:
        await self._client.close()


def _status_error_message(error: APIStatusError) -> str:
    body = error.body
    if isinstance(body, dict):
        detail = body.get("error", body)
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
    return error.message or f"status {error.status_code}"


class CompletionProxy:
    """Credit-gated completion proxy."""

    def __init__(
        self,
        ledger: CreditLedger,
        client: CompletionClient | None,
        default_model: str = "gpt-4o-mini",
        allowed_models: list[str] | None = None,
        system_prompt: str = "",
        max_tokens: int = 500,
        timeout_seconds: float = 30.0,
        refund_on_failure: bool = True,
    ) -> None:
        self.ledger = ledger
        self.client = client
        self.default_model = default_model
        self.allowed_models = frozenset(allowed_models or [default_model])
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.refund_on_failure = refund_on_failure

    async def complete(
        self, identity: AccountIdentity, prompt: str, model: str | None = None
    ) -> CompletionResult:
        if self.client is None:
            metrics.record_completion("not_configured")
            return CompletionResult(success=False, message=NOT_CONFIGURED_MESSAGE)

        model = model or self.default_model
        if model not in self.allowed_models:
            metrics.record_completion("model_rejected")
            return CompletionResult(success=False, message=f"Model not supported: {model}")

        try:
            consumed = await self.ledger.consume_one_credit(identity)
        except AccountNotFoundError:
            metrics.record_completion("not_registered")
            return CompletionResult(success=False, message=NOT_REGISTERED_MESSAGE)
        except CreditsDepletedError:
            metrics.record_completion("depleted")
            return CompletionResult(success=False, message=DEPLETED_MESSAGE, remaining=0)

        remaining = consumed.account.total_credits
        with tracer.start_as_current_span("completion_upstream") as span:
            add_span_attributes(span, model=model, source=consumed.source.value)
            start = time.perf_counter()
            try:
                text = await self._call_upstream(prompt, model)
            except UpstreamError as e:
                set_span_error(span, e)
                metrics.record_completion("upstream_error", time.perf_counter() - start)
                metrics.record_error("UpstreamError", "completion")
                logger.error(
                    "completion_upstream_failed",
                    email=identity.email,
                    device_id=identity.device_id,
                    model=model,
                    error=e.message,
                )
                charged = True
                if self.refund_on_failure:
                    account = await self.ledger.refund_credit(identity, consumed.source)
                    remaining = account.total_credits
                    charged = False
                return CompletionResult(
                    success=False, message=e.message, remaining=remaining, charged=charged
                )

        metrics.record_completion("success", time.perf_counter() - start)
        logger.info(
            "completion_served",
            email=identity.email,
            device_id=identity.device_id,
            model=model,
            source=consumed.source.value,
            remaining=remaining,
        )
        return CompletionResult(success=True, response=text, remaining=remaining, charged=True)

    async def _call_upstream(self, prompt: str, model: str) -> str:
        try:
            return await asyncio.wait_for(
                self.client.complete(prompt, model, self.system_prompt, self.max_tokens),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                "openai", f"request timed out after {self.timeout_seconds:g}s"
            ) from e
