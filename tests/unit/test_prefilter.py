"""Unit tests for the receipt pre-filter."""

from __future__ import annotations

import pytest

from purchase_scanner.models import RawEmail
from purchase_scanner.scan import should_process_email


def _email(subject: str, body: str, sender: str = "Shop <orders@shop.example.com>", labels=("INBOX",)) -> RawEmail:
    return RawEmail(id="m1", subject=subject, from_raw=sender, body=body, labels=tuple(labels))


class TestSkipped:
    """Mail that never reaches the oracle."""

    def test_spam(self, levi_email, rule_tables) -> None:
        email = levi_email.model_copy(update={"labels": ("SPAM",)})

        decision = should_process_email(email, rule_tables)

        assert decision.process is False
        assert decision.reason == "label:SPAM"

    def test_non_clothing_sender(self, rule_tables) -> None:
        email = _email("Your receipt from Apple", "<p>Order ID: MKX1234567 $0.99</p>", sender="Apple <no_reply@email.apple.com>")

        decision = should_process_email(email, rule_tables)

        assert decision.process is False
        assert decision.reason == "non-clothing sender:apple"

    def test_abandoned_cart(self, rule_tables) -> None:
        email = _email("You left something in your cart", "<p>Still thinking it over? Linen Shirt $45.00</p>")

        decision = should_process_email(email, rule_tables)

        assert decision.process is False
        assert decision.reason.startswith("cart or wishlist:")

    def test_refund(self, rule_tables) -> None:
        email = _email("Your refund has been issued", "<p>We've refunded $45.00 to your card.</p>")

        decision = should_process_email(email, rule_tables)

        assert decision.process is False
        assert decision.reason == "return or refund:refund"

    def test_shipping_only(self, rule_tables) -> None:
        email = _email("Your order has shipped", "<p>Good news, tracking #1Z999 is ready.</p>")

        decision = should_process_email(email, rule_tables)

        assert decision.process is False
        assert decision.reason == "shipping-only:has shipped"

    def test_marketing(self, rule_tables) -> None:
        email = _email(
            "New arrivals just for you",
            "<p>Shop now and get 20% off everything. Unsubscribe</p>",
            labels=("CATEGORY_PROMOTIONS",),
        )

        decision = should_process_email(email, rule_tables)

        assert decision.process is False
        assert decision.reason == "marketing:CATEGORY_PROMOTIONS"

    def test_no_order_evidence(self, rule_tables) -> None:
        decision = should_process_email(_email("Hello", "Just checking in."), rule_tables)

        assert decision.process is False
        assert decision.reason == "no order evidence"


class TestProcessed:
    """Mail that looks like a receipt."""

    def test_clean_order(self, levi_email, rule_tables) -> None:
        decision = should_process_email(levi_email, rule_tables)

        assert decision.process is True
        assert decision.reason.startswith("order phrase:")

    def test_order_in_promotions_tab(self, levi_email, rule_tables) -> None:
        email = levi_email.model_copy(update={"labels": ("CATEGORY_PROMOTIONS",)})

        assert should_process_email(email, rule_tables).process is True

    @pytest.mark.parametrize("body", ["Linen Shirt Qty: 1 $45.00", "Linen Shirt, Size: M, 45.00 USD"])
    def test_priced_items_without_order_phrase(self, rule_tables, body: str) -> None:
        decision = should_process_email(_email("Thanks!", body), rule_tables)

        assert decision.process is True
        assert decision.reason.startswith("priced items:")


def test_uses_default_tables(levi_email) -> None:
    assert should_process_email(levi_email).process is True
