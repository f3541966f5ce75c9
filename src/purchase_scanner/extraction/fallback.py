"""Deterministic regex extraction of order metadata.

Used when the oracle fails, and to pull an independent order number for the
order-identity check. It recovers store, order number, date and total from
common phrasing but never produces items.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from purchase_scanner.models import ParsedPurchase

FALLBACK_SOURCE = "regex-fallback"

_ORDER_PATTERNS = [
    re.compile(r"order\s*(?:#|number|no\.?|id)?\s*:?\s*#?\s*([A-Z0-9][A-Z0-9-]{5,29})", re.I),
    re.compile(r"confirmation\s*(?:#|number|no\.?)?\s*:?\s*#?\s*([A-Z0-9][A-Z0-9-]{5,29})", re.I),
    re.compile(r"receipt\s*(?:#|number|no\.?)?\s*:?\s*#?\s*([A-Z0-9][A-Z0-9-]{5,29})", re.I),
    re.compile(r"invoice\s*(?:#|number|no\.?)?\s*:?\s*#?\s*([A-Z0-9][A-Z0-9-]{5,29})", re.I),
]

_STORE_PATTERNS = [
    re.compile(r"order from ([A-Z][\w'&.]+(?:\s[A-Z][\w'&.]+)*)", re.I),
    re.compile(r"thanks? (?:you )?for shopping (?:at|with) ([A-Z][\w'&.]+(?:\s[A-Z][\w'&.]+)*)"),
    re.compile(r"\bfrom ([A-Z][a-z]+(?:\s[A-Z][a-z]+)*)"),
]

_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_TOTAL_RE = re.compile(r"\btotal\b\s*:?\s*(?:[A-Z]{3}\s*)?[$£€]?\s*([\d,]+(?:\.\d+)?)", re.I)

_STORE_STOP_WORDS = {"your", "our", "the", "us", "you", "this", "order"}


def extract_order_number(text: str | None) -> str | None:
    """Extract an order/confirmation number from text.

    Candidates must contain at least one digit so words such as
    ``CONFIRMED`` or ``DETAILS`` are never taken for an order number.
    """

    if not text:
        return None

    for pattern in _ORDER_PATTERNS:
        for match in pattern.finditer(text):
            candidate = match.group(1).strip("-")
            if len(candidate) >= 6 and any(ch.isdigit() for ch in candidate):
                return candidate
    return None


def extract_store(text: str, known_retailers: Sequence[str] = ()) -> str | None:
    """Extract a store name from common phrasing or a list of known retailers."""

    if not text:
        return None

    first = _STORE_PATTERNS[0].search(text)
    if first:
        return _clean_store(first.group(1))

    if known_retailers:
        alternation = "|".join(re.escape(r) for r in sorted(known_retailers, key=len, reverse=True))
        m = re.search(rf"(?<![\w])({alternation})(?![\w])", text, re.I)
        if m:
            for retailer in known_retailers:
                if retailer.lower() == m.group(1).lower():
                    return retailer

    for pattern in _STORE_PATTERNS[1:]:
        m = pattern.search(text)
        if m:
            store = _clean_store(m.group(1))
            if store:
                return store

    return None


def _clean_store(value: str) -> str | None:
    words = [w for w in value.strip(" .,").split() if w]
    while words and words[0].lower() in _STORE_STOP_WORDS:
        words.pop(0)
    return " ".join(words[:4]) or None


def fallback_parse(subject: str, body: str, known_retailers: Sequence[str] = ()) -> ParsedPurchase:
    """Recover order metadata with regular expressions. ``items`` is always empty."""

    combined = f"{subject or ''} {body or ''}"

    total = None
    m = _TOTAL_RE.search(combined)
    if m:
        total = m.group(1).replace(",", "")

    date_match = _DATE_RE.search(combined)

    return ParsedPurchase(
        items=[],
        order_number=extract_order_number(combined),
        purchase_date=date_match.group(1) if date_match else None,
        store=extract_store(combined, known_retailers),
        total=total,
        source=FALLBACK_SOURCE,
    )
