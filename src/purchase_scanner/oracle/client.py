"""Extraction client: one oracle call wrapped in retry, backoff and escalation.

All state that decides retries and tier selection is local to a call or
passed in explicitly (``RetryPolicy``, the injected ``sleep``), so tests can
script any failure sequence with a fake backend.

Escalation rules:

* Failure escalation: when the fast tier exhausts its rate-limit retries, the
  same prompt is sent once to the strong tier with a reduced retry budget.
* Quality escalation: when the fast tier decodes to zero items but reports an
  order number or store, the strong tier is asked once more and its answer is
  used only if it contains at least one item.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace

import structlog

from purchase_scanner.config import Settings
from purchase_scanner.exceptions import (
    ExtractionError,
    ExtractionTransientError,
    OracleRateLimitError,
)
from purchase_scanner.models import ExtractionAttempt, ModelTier, ParsedPurchase, RawEmail, ReducedExcerpt
from purchase_scanner.oracle.backends import OracleBackend, build_backend
from purchase_scanner.oracle.decoding import decode_purchase_response
from purchase_scanner.oracle.prompt import PROMPT_VERSION, SYSTEM_INSTRUCTION, build_purchase_extraction_prompt

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff schedule for one model tier."""

    rate_limit_retries: int = 3
    transient_retries: int = 2
    base_delay: float = 2.0
    multiplier: float = 2.0

    def delay(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0-based): 2s, 4s, 8s, ..."""
        return self.base_delay * (self.multiplier**retry_index)

    def reduced(self, retries: int) -> RetryPolicy:
        return replace(
            self,
            rate_limit_retries=min(self.rate_limit_retries, retries),
            transient_retries=min(self.transient_retries, retries),
        )


@dataclass(frozen=True)
class ExtractionOutcome:
    """Decoded purchase plus every oracle attempt that produced it."""

    purchase: ParsedPurchase
    attempts: tuple[ExtractionAttempt, ...]

    @property
    def final_tier(self) -> ModelTier:
        return self.attempts[-1].model_tier


class ExtractionClient:
    """Drives the oracle for one excerpt at a time.

    Args:
        backend: The completion backend.
        models: Model name per tier.
        policy: Retry policy for the fast tier.
        strong_policy: Retry policy for strong-tier calls made after escalation.
        timeout_seconds: Hard wall-clock limit per oracle call.
        max_tokens: Generation limit per call.
        sleep: Sleep function used for backoff.
    """

    def __init__(
        self,
        backend: OracleBackend,
        models: Mapping[ModelTier, str],
        *,
        policy: RetryPolicy | None = None,
        strong_policy: RetryPolicy | None = None,
        timeout_seconds: float = 60.0,
        max_tokens: int = 4000,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.models = dict(models)
        self.policy = policy or RetryPolicy()
        self.strong_policy = strong_policy or self.policy.reduced(1)
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: OracleBackend | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ExtractionClient:
        if settings.llm_provider == "anthropic":
            models = {ModelTier.FAST: settings.anthropic_fast_model, ModelTier.STRONG: settings.anthropic_strong_model}
        else:
            models = {ModelTier.FAST: settings.ollama_fast_model, ModelTier.STRONG: settings.ollama_strong_model}

        policy = RetryPolicy(
            rate_limit_retries=settings.rate_limit_retries,
            transient_retries=settings.transient_retries,
            base_delay=settings.backoff_base_seconds,
            multiplier=settings.backoff_multiplier,
        )
        return cls(
            backend or build_backend(settings),
            models,
            policy=policy,
            strong_policy=policy.reduced(settings.strong_tier_retries),
            timeout_seconds=settings.oracle_timeout_seconds,
            max_tokens=settings.oracle_max_tokens,
            sleep=sleep,
        )

    def extract(
        self,
        excerpt: ReducedExcerpt,
        email: RawEmail,
        tier: ModelTier = ModelTier.FAST,
    ) -> ExtractionAttempt:
        """Call the oracle and return its raw response.

        Raises:
            OracleRateLimitError: If rate limiting persists on every tier tried.
            ExtractionTransientError: If other transient failures exhaust the budget.
            OracleRequestError: On a non-retryable failure.
        """

        prompt = build_purchase_extraction_prompt(
            excerpt=excerpt.text,
            subject=email.subject,
            from_address=email.from_email,
            sender_domain=email.sender_domain,
        )
        policy = self.policy if tier is ModelTier.FAST else self.strong_policy

        try:
            return self._call_with_retries(tier, prompt, policy, email.id)
        except OracleRateLimitError:
            if tier is not ModelTier.FAST:
                raise
            logger.warning(
                "oracle_escalating_after_rate_limit",
                email_id=email.id,
                from_model=self.models[ModelTier.FAST],
                to_model=self.models[ModelTier.STRONG],
            )
            return self._call_with_retries(ModelTier.STRONG, prompt, self.strong_policy, email.id)

    def extract_purchase(self, excerpt: ReducedExcerpt, email: RawEmail) -> ExtractionOutcome:
        """Extract and decode a purchase, applying quality escalation.

        Raises:
            ExtractionError: If the first attempt fails or cannot be decoded.
        """

        attempt = self.extract(excerpt, email)
        purchase = decode_purchase_response(attempt.raw_response)
        purchase.source = f"oracle-{attempt.model_tier.value}"
        attempts = [attempt]

        needs_second_look = (
            attempt.model_tier is ModelTier.FAST
            and not purchase.items
            and bool(purchase.order_number or purchase.store)
        )
        if needs_second_look:
            logger.info(
                "oracle_quality_escalation",
                email_id=email.id,
                order_number=purchase.order_number,
                store=purchase.store,
            )
            try:
                strong_attempt = self.extract(excerpt, email, ModelTier.STRONG)
                attempts.append(strong_attempt)
                strong = decode_purchase_response(strong_attempt.raw_response)
            except ExtractionError as exc:
                logger.warning(
                    "oracle_quality_escalation_failed",
                    email_id=email.id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            else:
                if strong.items:
                    strong.source = f"oracle-{ModelTier.STRONG.value}"
                    purchase = strong

        logger.info(
            "oracle_extraction_completed",
            email_id=email.id,
            prompt_version=PROMPT_VERSION,
            attempts=len(attempts),
            items=len(purchase.items),
            source=purchase.source,
        )
        return ExtractionOutcome(purchase=purchase, attempts=tuple(attempts))

    def _call_with_retries(
        self,
        tier: ModelTier,
        prompt: str,
        policy: RetryPolicy,
        email_id: str,
    ) -> ExtractionAttempt:
        model = self.models[tier]
        rate_limit_retries = 0
        transient_retries = 0

        while True:
            try:
                raw = self._call_once(model, prompt)
            except OracleRateLimitError as exc:
                if rate_limit_retries >= policy.rate_limit_retries:
                    logger.error(
                        "oracle_rate_limit_exhausted",
                        email_id=email_id,
                        model=model,
                        retries=rate_limit_retries,
                    )
                    raise
                delay = policy.delay(rate_limit_retries + transient_retries)
                rate_limit_retries += 1
                self._log_retry(email_id, model, "rate_limited", rate_limit_retries, delay, exc)
            except ExtractionTransientError as exc:
                if transient_retries >= policy.transient_retries:
                    logger.error(
                        "oracle_transient_exhausted",
                        email_id=email_id,
                        model=model,
                        retries=transient_retries,
                        error=str(exc),
                    )
                    raise
                delay = policy.delay(rate_limit_retries + transient_retries)
                transient_retries += 1
                self._log_retry(email_id, model, "transient", transient_retries, delay, exc)
            else:
                return ExtractionAttempt(
                    model_tier=tier,
                    model=model,
                    raw_response=raw,
                    retries_used=rate_limit_retries + transient_retries,
                )

            self._sleep(delay)

    def _call_once(self, model: str, prompt: str) -> str:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="oracle-call")
        try:
            future = executor.submit(
                self.backend.complete,
                model=model,
                system=SYSTEM_INSTRUCTION,
                prompt=prompt,
                max_tokens=self.max_tokens,
                timeout=self.timeout_seconds,
            )
            try:
                return future.result(timeout=self.timeout_seconds)
            except FutureTimeoutError as exc:
                future.cancel()
                raise ExtractionTransientError(
                    f"oracle call exceeded {self.timeout_seconds}s wall-clock limit"
                ) from exc
        finally:
            # A hung call is abandoned rather than awaited.
            executor.shutdown(wait=False, cancel_futures=True)

    def _log_retry(
        self,
        email_id: str,
        model: str,
        kind: str,
        attempt: int,
        delay: float,
        exc: Exception,
    ) -> None:
        logger.warning(
            "oracle_call_retry",
            email_id=email_id,
            model=model,
            kind=kind,
            attempt=attempt,
            delay=delay,
            error=str(exc),
        )
