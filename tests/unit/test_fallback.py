"""Unit tests for the regex fallback parser."""

import pytest

from purchase_scanner.extraction.fallback import (
    FALLBACK_SOURCE,
    extract_order_number,
    extract_store,
    fallback_parse,
)


class TestExtractOrderNumber:
    """Test suite for order number extraction."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Order Number: LS1234567", "LS1234567"),
            ("Your order #112-3456789-0123456 has been placed", "112-3456789-0123456"),
            ("Confirmation no. W987654321", "W987654321"),
            ("Receipt #R2024001", "R2024001"),
        ],
    )
    def test_common_phrasings(self, text: str, expected: str) -> None:
        assert extract_order_number(text) == expected

    @pytest.mark.parametrize("text", ["Order CONFIRMED", "Order details below", "Order #12345", "", None])
    def test_rejects_words_and_short_numbers(self, text) -> None:
        assert extract_order_number(text) is None


class TestExtractStore:
    """Test suite for store name extraction."""

    def test_order_from_phrase(self) -> None:
        assert extract_store("Thank you for your order from Levi's.") == "Levi's"

    def test_known_retailer(self) -> None:
        assert extract_store("Your NORDSTROM receipt", ["Nordstrom", "Zara"]) == "Nordstrom"

    def test_known_retailer_needs_word_boundary(self) -> None:
        assert extract_store("Zarazen slippers", ["Zara"]) is None

    def test_nothing_found(self) -> None:
        assert extract_store("") is None
        assert extract_store("no store here") is None


def test_fallback_parse_recovers_metadata_without_items() -> None:
    purchase = fallback_parse(
        "Order #A1234567 confirmed",
        "Order date 2024-03-15 Total: $1,299.00",
        ["Zara"],
    )

    assert purchase.items == []
    assert purchase.order_number == "A1234567"
    assert str(purchase.purchase_date) == "2024-03-15"
    assert purchase.total == 1299.0
    assert purchase.store is None
    assert purchase.source == FALLBACK_SOURCE
