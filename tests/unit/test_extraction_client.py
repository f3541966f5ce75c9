"""Unit tests for the retrying, escalating extraction client."""

from __future__ import annotations

import json
import threading

import pytest

from purchase_scanner.exceptions import (
    ExtractionDecodeError,
    ExtractionTransientError,
    OracleRateLimitError,
    OracleRequestError,
)
from purchase_scanner.models import ModelTier, RawEmail, ReducedExcerpt
from purchase_scanner.oracle import ExtractionClient, RetryPolicy
from purchase_scanner.reduction import ContentReducer


@pytest.fixture
def excerpt(levi_email: RawEmail) -> ReducedExcerpt:
    return ContentReducer().reduce(levi_email)


def _rate_limited() -> OracleRateLimitError:
    return OracleRateLimitError("HTTP 429")


class TestRetries:
    """Test suite for retry and backoff behavior."""

    def test_success_first_try(self, make_client, excerpt, levi_email, levi_oracle_response, sleeps) -> None:
        client, backend = make_client(levi_oracle_response)

        outcome = client.extract_purchase(excerpt, levi_email)

        assert outcome.purchase.order_number == "LS1234567"
        assert outcome.purchase.source == "oracle-fast"
        assert outcome.final_tier is ModelTier.FAST
        assert backend.models == ["fast-model"]
        assert sleeps == []

    def test_rate_limit_backoff_schedule(self, make_client, excerpt, levi_email, levi_oracle_response, sleeps) -> None:
        client, backend = make_client(_rate_limited(), _rate_limited(), _rate_limited(), levi_oracle_response)

        attempt = client.extract(excerpt, levi_email)

        assert sleeps == [2.0, 4.0, 8.0]
        assert backend.models == ["fast-model"] * 4
        assert attempt.retries_used == 3
        assert attempt.model_tier is ModelTier.FAST

    def test_transient_errors_retried(self, make_client, excerpt, levi_email, levi_oracle_response, sleeps) -> None:
        client, backend = make_client(ExtractionTransientError("503"), levi_oracle_response)

        attempt = client.extract(excerpt, levi_email)

        assert attempt.raw_response == levi_oracle_response
        assert sleeps == [2.0]

    def test_transient_budget_exhausted(self, make_client, excerpt, levi_email, sleeps) -> None:
        client, backend = make_client(*(ExtractionTransientError("503") for _ in range(3)))

        with pytest.raises(ExtractionTransientError):
            client.extract(excerpt, levi_email)

        assert len(backend.models) == 3
        assert sleeps == [2.0, 4.0]

    def test_request_errors_not_retried(self, make_client, excerpt, levi_email, sleeps) -> None:
        client, backend = make_client(OracleRequestError("HTTP 400"))

        with pytest.raises(OracleRequestError):
            client.extract(excerpt, levi_email)

        assert len(backend.models) == 1
        assert sleeps == []

    def test_prompt_sent_to_backend(self, make_client, excerpt, levi_email, levi_oracle_response) -> None:
        client, backend = make_client(levi_oracle_response)

        client.extract(excerpt, levi_email)

        assert "501" in backend.prompts[0]
        assert "email.levi.com" in backend.prompts[0]


class TestEscalation:
    """Test suite for fast -> strong tier escalation."""

    def test_rate_limit_escalates_to_strong(self, make_client, excerpt, levi_email, levi_oracle_response, sleeps) -> None:
        client, backend = make_client(*(_rate_limited() for _ in range(4)), levi_oracle_response)

        outcome = client.extract_purchase(excerpt, levi_email)

        assert backend.models == ["fast-model"] * 4 + ["strong-model"]
        assert outcome.final_tier is ModelTier.STRONG
        assert outcome.purchase.source == "oracle-strong"

    def test_strong_tier_uses_reduced_budget(self, make_client, excerpt, levi_email, sleeps) -> None:
        client, backend = make_client(*(_rate_limited() for _ in range(6)))

        with pytest.raises(OracleRateLimitError):
            client.extract(excerpt, levi_email)

        assert backend.models == ["fast-model"] * 4 + ["strong-model"] * 2
        assert sleeps == [2.0, 4.0, 8.0, 2.0]

    def test_quality_escalation_uses_strong_items(self, make_client, excerpt, levi_email, oracle_json, levi_oracle_response) -> None:
        empty = oracle_json([], order_number="LS1234567", store="Levi's")
        client, backend = make_client(empty, levi_oracle_response)

        outcome = client.extract_purchase(excerpt, levi_email)

        assert backend.models == ["fast-model", "strong-model"]
        assert len(outcome.purchase.items) == 1
        assert outcome.purchase.source == "oracle-strong"
        assert len(outcome.attempts) == 2

    def test_quality_escalation_tolerates_overflowing_quantity(
        self, make_client, excerpt, levi_email, oracle_json
    ) -> None:
        empty = oracle_json([], order_number="LS1234567", store="Levi's")
        strong = '{"items": [{"name": "Slim Jeans", "type": "jeans", "quantity": 1e400}]}'
        client, backend = make_client(empty, strong)

        outcome = client.extract_purchase(excerpt, levi_email)

        assert backend.models == ["fast-model", "strong-model"]
        assert [item.name for item in outcome.purchase.items] == ["Slim Jeans"]
        assert outcome.purchase.items[0].quantity is None

    def test_quality_escalation_keeps_fast_when_strong_is_empty(self, make_client, excerpt, levi_email, oracle_json) -> None:
        empty = oracle_json([], order_number="LS1234567", store="Levi's")
        client, backend = make_client(empty, empty)

        outcome = client.extract_purchase(excerpt, levi_email)

        assert outcome.purchase.items == []
        assert outcome.purchase.source == "oracle-fast"

    def test_quality_escalation_failure_is_not_fatal(self, make_client, excerpt, levi_email, oracle_json) -> None:
        empty = oracle_json([], order_number="LS1234567", store="Levi's")
        client, backend = make_client(empty, "not json at all")

        outcome = client.extract_purchase(excerpt, levi_email)

        assert outcome.purchase.order_number == "LS1234567"
        assert outcome.purchase.source == "oracle-fast"

    def test_no_escalation_without_order_evidence(self, make_client, excerpt, levi_email) -> None:
        client, backend = make_client(json.dumps({"items": []}))

        outcome = client.extract_purchase(excerpt, levi_email)

        assert backend.models == ["fast-model"]
        assert outcome.purchase.items == []

    def test_undecodable_response_raises(self, make_client, excerpt, levi_email) -> None:
        client, _ = make_client("Sorry, I can't help with that.")

        with pytest.raises(ExtractionDecodeError):
            client.extract_purchase(excerpt, levi_email)


def test_call_timeout_is_transient(excerpt, levi_email, sleeps) -> None:
    release = threading.Event()

    class HangingBackend:
        name = "hanging"

        def complete(self, **kwargs) -> str:
            release.wait(5)
            return "{}"

    client = ExtractionClient(
        HangingBackend(),
        {ModelTier.FAST: "fast-model", ModelTier.STRONG: "strong-model"},
        policy=RetryPolicy(rate_limit_retries=0, transient_retries=0),
        timeout_seconds=0.05,
        sleep=sleeps.append,
    )

    try:
        with pytest.raises(ExtractionTransientError):
            client.extract(excerpt, levi_email)
    finally:
        release.set()


def test_retry_policy_delays() -> None:
    policy = RetryPolicy(base_delay=2.0, multiplier=2.0)

    assert [policy.delay(i) for i in range(3)] == [2.0, 4.0, 8.0]
    assert policy.reduced(1).rate_limit_retries == 1
    assert policy.reduced(1).transient_retries == 1


def test_from_settings(mock_settings, fake_backend, levi_oracle_response) -> None:
    client = ExtractionClient.from_settings(mock_settings, backend=fake_backend(levi_oracle_response))

    assert client.models == {ModelTier.FAST: "fast-model", ModelTier.STRONG: "strong-model"}
    assert client.policy.rate_limit_retries == 3
    assert client.strong_policy.rate_limit_retries == 1
