"""Oracle backends.

A backend performs exactly one completion call and maps provider failures
onto the extraction error taxonomy:

* ``OracleRateLimitError`` for rate limiting (HTTP 429)
* ``ExtractionTransientError`` for timeouts, connection failures and 5xx
* ``OracleRequestError`` for anything retrying will not fix

Retries, backoff and tier escalation live in ``ExtractionClient``, not here.
"""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from typing import Any, Protocol

import structlog

from purchase_scanner.config import Settings
from purchase_scanner.exceptions import (
    ConfigurationError,
    ExtractionDecodeError,
    ExtractionTransientError,
    OracleRateLimitError,
    OracleRequestError,
)

logger = structlog.get_logger()


class OracleBackend(Protocol):
    """A text-completion service called with deterministic decoding."""

    name: str

    def complete(
        self,
        *,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        timeout: float,
    ) -> str: ...


class OllamaBackend:
    """Calls a local Ollama server via ``POST /api/generate``."""

    name = "ollama"

    def __init__(self, host: str) -> None:
        self.host = host.rstrip("/")
        logger.info("ollama_backend_initialized", host=self.host)

    def complete(
        self,
        *,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        timeout: float,
    ) -> str:
        payload = json.dumps(
            {
                "model": model,
                "system": system,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": 0, "num_predict": max_tokens},
            }
        ).encode("utf-8")
        req = urllib.request.Request(
            url=f"{self.host}/api/generate",
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise _map_status(exc.code, f"ollama returned HTTP {exc.code}: {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise ExtractionTransientError(f"ollama unreachable: {exc.reason}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise ExtractionTransientError(f"ollama timed out after {timeout}s") from exc

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ExtractionDecodeError(f"ollama returned a non-JSON envelope: {exc}") from exc

        if data.get("error"):
            raise OracleRequestError(f"ollama error: {data['error']}")

        return (data.get("response") or "").strip()


class AnthropicBackend:
    """Calls the Anthropic Messages API.

    The SDK's own retries are disabled so that ``ExtractionClient`` owns the
    whole retry and escalation schedule.
    """

    name = "anthropic"

    def __init__(self, api_key: str | None, client: Any | None = None) -> None:
        if client is None and not api_key:
            raise ConfigurationError("anthropic_api_key is required when llm_provider=anthropic")
        self._api_key = api_key
        self._client = client
        logger.info("anthropic_backend_initialized")

    def _get_client(self) -> Any:
        if self._client is None:
            # Imported lazily to keep import-time cost low and tests fast.
            import anthropic

            self._client = anthropic.Anthropic(api_key=self._api_key, max_retries=0)
        return self._client

    def complete(
        self,
        *,
        model: str,
        system: str,
        prompt: str,
        max_tokens: int,
        timeout: float,
    ) -> str:
        import anthropic

        client = self._get_client()
        try:
            response = client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=0,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
            )
        except anthropic.RateLimitError as exc:
            raise OracleRateLimitError(f"anthropic rate limited: {exc}") from exc
        except anthropic.APIConnectionError as exc:
            # Includes APITimeoutError.
            raise ExtractionTransientError(f"anthropic connection failed: {exc}") from exc
        except anthropic.APIStatusError as exc:
            raise _map_status(exc.status_code, f"anthropic returned HTTP {exc.status_code}: {exc}") from exc

        parts = [getattr(block, "text", "") for block in response.content if getattr(block, "type", "") == "text"]
        return "".join(parts).strip()


def _map_status(status: int, message: str) -> Exception:
    if status == 429:
        return OracleRateLimitError(message)
    if status == 408 or status >= 500:
        return ExtractionTransientError(message)
    return OracleRequestError(message)


def build_backend(settings: Settings) -> OracleBackend:
    """Create the backend selected by ``settings.llm_provider``."""

    if settings.llm_provider == "anthropic":
        return AnthropicBackend(settings.anthropic_api_key)
    return OllamaBackend(settings.ollama_host)
