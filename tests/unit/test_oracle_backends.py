"""Unit tests for oracle backends."""

from __future__ import annotations

import io
import json
import socket
import urllib.error
from types import SimpleNamespace
from typing import Any

import pytest

from purchase_scanner.exceptions import (
    ConfigurationError,
    ExtractionDecodeError,
    ExtractionTransientError,
    OracleRateLimitError,
    OracleRequestError,
)
from purchase_scanner.oracle import AnthropicBackend, OllamaBackend, build_backend
from purchase_scanner.oracle.backends import _map_status


class _FakeResponse:
    def __init__(self, body: str) -> None:
        self._body = body.encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


def _complete(backend: OllamaBackend) -> str:
    return backend.complete(model="m", system="sys", prompt="p", max_tokens=100, timeout=5.0)


class TestOllamaBackend:
    """Test suite for OllamaBackend."""

    def test_request_payload_and_response(self, monkeypatch: pytest.MonkeyPatch) -> None:
        captured: dict[str, Any] = {}

        def fake_urlopen(req, timeout):
            captured["url"] = req.full_url
            captured["payload"] = json.loads(req.data.decode("utf-8"))
            captured["timeout"] = timeout
            return _FakeResponse(json.dumps({"response": ' {"items": []} '}))

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

        result = _complete(OllamaBackend("http://test:11434/"))

        assert result == '{"items": []}'
        assert captured["url"] == "http://test:11434/api/generate"
        assert captured["timeout"] == 5.0
        assert captured["payload"]["system"] == "sys"
        assert captured["payload"]["format"] == "json"
        assert captured["payload"]["stream"] is False
        assert captured["payload"]["options"] == {"temperature": 0, "num_predict": 100}

    @pytest.mark.parametrize(
        ("code", "error"),
        [(429, OracleRateLimitError), (503, ExtractionTransientError), (400, OracleRequestError)],
    )
    def test_http_errors_mapped(self, monkeypatch: pytest.MonkeyPatch, code: int, error: type) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(req.full_url, code, "nope", None, io.BytesIO(b""))

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

        with pytest.raises(error):
            _complete(OllamaBackend("http://test:11434"))

    @pytest.mark.parametrize(
        "exc",
        [urllib.error.URLError("connection refused"), socket.timeout("timed out"), TimeoutError("slow")],
    )
    def test_network_failures_are_transient(self, monkeypatch: pytest.MonkeyPatch, exc: Exception) -> None:
        def fake_urlopen(req, timeout):
            raise exc

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

        with pytest.raises(ExtractionTransientError):
            _complete(OllamaBackend("http://test:11434"))

    def test_bad_envelope(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: _FakeResponse("<html>"))

        with pytest.raises(ExtractionDecodeError):
            _complete(OllamaBackend("http://test:11434"))

    def test_error_field(self, monkeypatch: pytest.MonkeyPatch) -> None:
        body = json.dumps({"error": "model 'm' not found"})
        monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: _FakeResponse(body))

        with pytest.raises(OracleRequestError):
            _complete(OllamaBackend("http://test:11434"))


class TestAnthropicBackend:
    """Test suite for AnthropicBackend with an injected client."""

    def test_text_blocks_joined(self) -> None:
        calls: list[dict[str, Any]] = []

        def create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text='{"items": '),
                    SimpleNamespace(type="text", text="[]}"),
                ]
            )

        client = SimpleNamespace(messages=SimpleNamespace(create=create))
        backend = AnthropicBackend(api_key=None, client=client)

        result = backend.complete(model="claude", system="sys", prompt="p", max_tokens=50, timeout=3.0)

        assert result == '{"items": []}'
        assert calls[0]["temperature"] == 0
        assert calls[0]["system"] == "sys"
        assert calls[0]["messages"] == [{"role": "user", "content": "p"}]

    def test_requires_key_or_client(self) -> None:
        with pytest.raises(ConfigurationError):
            AnthropicBackend(api_key=None)


@pytest.mark.parametrize(
    ("status", "error"),
    [(429, OracleRateLimitError), (408, ExtractionTransientError), (529, ExtractionTransientError), (401, OracleRequestError)],
)
def test_map_status(status: int, error: type) -> None:
    assert isinstance(_map_status(status, "x"), error)


def test_build_backend(mock_settings) -> None:
    backend = build_backend(mock_settings)

    assert isinstance(backend, OllamaBackend)
    assert backend.host == "http://test:11434"

    with pytest.raises(ConfigurationError):
        build_backend(mock_settings.model_copy(update={"llm_provider": "anthropic", "anthropic_api_key": None}))
