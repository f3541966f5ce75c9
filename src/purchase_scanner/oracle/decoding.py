"""Decode raw oracle responses into ``ParsedPurchase`` objects."""

from __future__ import annotations

import json
import re

from pydantic import ValidationError

from purchase_scanner.exceptions import ExtractionDecodeError
from purchase_scanner.models import ParsedPurchase

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.S)
_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE_RE = re.compile(r"\s*```\s*$")


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding markdown code fence, if any."""

    text = (raw or "").strip()
    if text.startswith("```"):
        text = _FENCE_OPEN_RE.sub("", text, count=1)
        text = _FENCE_CLOSE_RE.sub("", text, count=1)
    return text.strip()


def extract_json_object(raw: str) -> dict:
    """Extract the first JSON object from a raw model response."""

    text = strip_code_fences(raw)
    if not text:
        raise ExtractionDecodeError("empty model response")

    try:
        obj = json.loads(text)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    m = _JSON_OBJECT_RE.search(text)
    if not m:
        raise ExtractionDecodeError("model response did not contain a JSON object")

    try:
        obj = json.loads(m.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionDecodeError(f"model response is not valid JSON: {exc}") from exc

    if not isinstance(obj, dict):
        raise ExtractionDecodeError("extracted JSON was not an object")
    return obj


def decode_purchase_response(raw: str) -> ParsedPurchase:
    """Decode an oracle response.

    Raises:
        ExtractionDecodeError: If no JSON object can be recovered or it does
            not fit the purchase schema.
    """

    obj = extract_json_object(raw)
    try:
        return ParsedPurchase.model_validate(obj)
    except (ValidationError, OverflowError) as exc:
        raise ExtractionDecodeError(f"model response does not match purchase schema: {exc}") from exc
