"""Unit tests for oracle prompt and response decoding."""

import pytest

from purchase_scanner.exceptions import ExtractionDecodeError
from purchase_scanner.oracle.decoding import decode_purchase_response, extract_json_object, strip_code_fences
from purchase_scanner.oracle.prompt import build_purchase_extraction_prompt


class TestDecoding:
    """Test suite for decoding raw model output."""

    def test_plain_json(self) -> None:
        purchase = decode_purchase_response('{"items": [{"name": "Linen Shirt"}], "orderNumber": "A123456"}')

        assert purchase.items[0].name == "Linen Shirt"
        assert purchase.order_number == "A123456"

    def test_code_fence_stripped(self) -> None:
        raw = '```json\n{"items": [], "store": "Gap"}\n```'

        assert strip_code_fences(raw) == '{"items": [], "store": "Gap"}'
        assert decode_purchase_response(raw).store == "Gap"

    def test_json_embedded_in_prose(self) -> None:
        raw = 'Here is the data: {"items": [], "total": "12.00"} Hope this helps.'

        assert extract_json_object(raw) == {"items": [], "total": "12.00"}

    @pytest.mark.parametrize("value", ["1e400", '"inf"', '"NaN"', "-2"])
    def test_out_of_range_quantity_dropped(self, value: str) -> None:
        purchase = decode_purchase_response('{"items": [{"name": "Slim Jeans", "quantity": %s}]}' % value)

        assert purchase.items[0].quantity is None

    def test_non_finite_price_dropped(self) -> None:
        purchase = decode_purchase_response('{"items": [{"name": "Slim Jeans", "price": 1e400}], "total": 1e400}')

        assert purchase.items[0].price is None
        assert purchase.total is None

    @pytest.mark.parametrize("raw", ["", "   ", "no json here", "[1, 2, 3]", "{broken json"])
    def test_undecodable(self, raw: str) -> None:
        with pytest.raises(ExtractionDecodeError):
            decode_purchase_response(raw)


def test_prompt_carries_email_and_contract() -> None:
    prompt = build_purchase_extraction_prompt(
        excerpt="Linen Shirt $45.00",
        subject="Your order",
        from_address="orders@shop.example.com",
        sender_domain="shop.example.com",
    )

    assert "Linen Shirt $45.00" in prompt
    assert "Your order" in prompt
    assert "shop.example.com" in prompt
    assert prompt.count("When uncertain, return an empty items list.") >= 2
