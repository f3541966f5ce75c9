"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest
import structlog

from purchase_scanner.models import ModelTier, RawEmail


class FakeBackend:
    """Oracle backend that replays a script of responses and exceptions."""

    name = "fake"

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.models: list[str] = []
        self.prompts: list[str] = []

    def complete(self, *, model: str, system: str, prompt: str, max_tokens: int, timeout: float) -> str:
        self.models.append(model)
        self.prompts.append(prompt)
        if not self.script:
            raise AssertionError("unexpected oracle call")
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by CLI tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def mock_settings():
    """Provide mock settings for testing."""
    from purchase_scanner.config import Settings

    return Settings(
        ollama_host="http://test:11434",
        ollama_fast_model="fast-model",
        ollama_strong_model="strong-model",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def rule_tables():
    from purchase_scanner.rules import load_rule_tables

    return load_rule_tables()


@pytest.fixture
def levi_order_html() -> str:
    """A clean single-item order confirmation from Levi's."""
    return """
    <html>
      <head><style>.x { color: red; }</style></head>
      <body>
        <table class="header">
          <tr><td><img src="https://www.levi.com/img/logo.png" alt="Levi's logo"></td></tr>
        </table>
        <p>Thank you for your order! We're getting it ready.</p>
        <table class="order-summary">
          <tr><td>Order Number: LS1234567</td><td>Order Date: March 15, 2024</td></tr>
        </table>
        <table class="items">
          <tr class="item-row">
            <td><img src="https://lsco.scene7.com/is/image/lsco/005010101-front.jpg"
                     alt="501 Original Fit Men's Jeans" width="120" height="150"></td>
            <td>Levi's&reg; 501&reg; Original Fit Men's Jeans</td>
            <td>Color: Medium Stonewash</td>
            <td>Size: 32x32</td>
            <td>Qty: 1</td>
            <td>$69.50</td>
          </tr>
        </table>
        <p>Subtotal: $69.50</p>
        <p>Order Total: $75.06</p>
        <p>Thanks for shopping with Levi's.</p>
      </body>
    </html>
    """


@pytest.fixture
def levi_email(levi_order_html: str) -> RawEmail:
    return RawEmail(
        id="msg-levi-1",
        subject="Your Levi's order #LS1234567 is confirmed",
        from_raw="Levi's <orders@email.levi.com>",
        body=levi_order_html,
        labels=("INBOX", "CATEGORY_UPDATES"),
    )


@pytest.fixture
def levi_jeans_item() -> dict[str, Any]:
    return {
        "name": "Levi's 501 Original Fit Jeans",
        "quantity": 1,
        "price": 69.50,
        "type": "jeans",
        "color": "Medium Stonewash",
        "brand": "Levi's",
        "imageUrl": "https://lsco.scene7.com/is/image/lsco/005010101-front.jpg",
    }


@pytest.fixture
def oracle_json() -> Callable[..., str]:
    """Build an oracle response body."""

    def build(items: list[dict[str, Any]], **order: Any) -> str:
        payload = {
            "items": items,
            "orderNumber": order.get("order_number"),
            "purchaseDate": order.get("purchase_date"),
            "store": order.get("store"),
            "total": order.get("total"),
        }
        return json.dumps(payload)

    return build


@pytest.fixture
def levi_oracle_response(oracle_json, levi_jeans_item) -> str:
    return oracle_json(
        [levi_jeans_item],
        order_number="LS1234567",
        purchase_date="2024-03-15",
        store="Levi's",
        total=75.06,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_client(sleeps):
    """Build an ExtractionClient driven by a scripted FakeBackend."""
    from purchase_scanner.oracle import ExtractionClient, RetryPolicy

    def build(*script: Any, policy: RetryPolicy | None = None, strong_policy: RetryPolicy | None = None):
        backend = FakeBackend(*script)
        client = ExtractionClient(
            backend,
            {ModelTier.FAST: "fast-model", ModelTier.STRONG: "strong-model"},
            policy=policy,
            strong_policy=strong_policy,
            timeout_seconds=5.0,
            sleep=sleeps.append,
        )
        return client, backend

    return build


@pytest.fixture
def make_extractor(make_client, rule_tables):
    """Build a PurchaseExtractor whose oracle replays ``script``."""
    from purchase_scanner.extraction import PurchaseExtractor
    from purchase_scanner.reduction import ContentReducer
    from purchase_scanner.verification import Verifier

    def build(*script: Any):
        client, backend = make_client(*script)
        extractor = PurchaseExtractor(ContentReducer(), client, Verifier(rule_tables), max_chars=12_000)
        return extractor, backend

    return build


@pytest.fixture
def fake_backend():
    """The FakeBackend class, for tests that build their own client."""
    return FakeBackend
