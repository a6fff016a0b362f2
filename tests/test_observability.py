"""
Tests for logging processors and metric helpers.
"""

import structlog
from prometheus_client import REGISTRY

from creditgate.observability import log_context, metrics
from creditgate.observability.logging import add_app_context, mask_secrets


class TestLoggingProcessors:
    def test_credentials_masked(self):
        event = mask_secrets(None, "info", {"event": "x", "api_key": "sk-live-123456", "password": ""})

        assert event["api_key"] == "sk-l..."
        assert event["password"] == ""

    def test_other_keys_untouched(self):
        event = mask_secrets(None, "info", {"event": "x", "email": "a@x.com"})

        assert event["email"] == "a@x.com"

    def test_app_context(self):
        event = add_app_context(None, "info", {"event": "x"})

        assert event["service"] == "creditgate-api"
        assert "version" in event

    def test_log_context_binds_and_unbinds(self):
        with log_context(request_id="req-1"):
            assert structlog.contextvars.get_contextvars()["request_id"] == "req-1"

        assert "request_id" not in structlog.contextvars.get_contextvars()


class TestMetrics:
    def _sample(self, name: str, labels: dict[str, str]) -> float:
        return REGISTRY.get_sample_value(name, labels) or 0.0

    def test_consumption_counter(self):
        labels = {"source": "paid", "outcome": "consumed"}
        before = self._sample("creditgate_credits_consumed_total", labels)

        metrics.record_consumption("paid", "consumed")

        assert self._sample("creditgate_credits_consumed_total", labels) == before + 1

    def test_depleted_has_no_source(self):
        labels = {"source": "none", "outcome": "depleted"}
        before = self._sample("creditgate_credits_consumed_total", labels)

        metrics.record_consumption(None, "depleted")

        assert self._sample("creditgate_credits_consumed_total", labels) == before + 1
