"""Source-text grounding for extracted items.

An item is grounded when the verifier can point at the text it came from.
The excerpt is normalized once into a ``GroundingDocument`` (tags stripped,
entities decoded, attribute text pulled out, apostrophes removed,
lowercased, subject prepended) and each item is checked against it.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass, field

from purchase_scanner.reduction.html import normalize_whitespace, regex_strip
from purchase_scanner.rules.canonical import canonical_tokens, compact, contains_phrase

_ATTR_TEXT_RE = re.compile(r"""\b(?:alt|title|aria-label|data-[\w-]+)\s*=\s*["']([^"']+)["']""", re.I)
_APOSTROPHES_RE = re.compile(r"['‘’`´]")
_LONG_NUMBER_RE = re.compile(r"^\d{5,}$")


def required_keyword_matches(keyword_count: int) -> int:
    """How many of an item's keywords must appear in the source.

    Five or more keywords need 40% (rounded up); three or four need two;
    one or two need a single match.
    """

    if keyword_count <= 0:
        return 0
    if keyword_count >= 5:
        return math.ceil(keyword_count * 0.4)
    if keyword_count >= 3:
        return 2
    return 1


def significant_keywords(name: str | None, stop_words: frozenset[str]) -> list[str]:
    """Canonical keywords of an item name.

    Drops words of two characters or fewer, stop words, and numbers longer
    than four digits (SKUs and order numbers rarely survive HTML intact).
    """

    keywords: list[str] = []
    for token in canonical_tokens(name):
        if len(token) <= 2 or token in stop_words or _LONG_NUMBER_RE.match(token):
            continue
        if token not in keywords:
            keywords.append(token)
    return keywords


def price_variants(price: float | None) -> list[str]:
    """Textual forms a price may take in an email (``69.5`` -> ``69.50``, ``69.5``)."""

    if price is None or price <= 0:
        return []
    variants = [f"{price:.2f}", f"{price:,.2f}"]
    trimmed = f"{price:.2f}".rstrip("0").rstrip(".")
    variants.append(trimmed)
    return list(dict.fromkeys(variants))


def _price_pattern(price: float | None) -> re.Pattern[str] | None:
    variants = price_variants(price)
    if not variants:
        return None
    alternation = "|".join(re.escape(v) for v in sorted(variants, key=len, reverse=True))
    return re.compile(rf"(?<![\d.,])(?:{alternation})(?!\.?\d)")


@dataclass(frozen=True)
class GroundingDocument:
    """Normalized source text an item claim is checked against."""

    text: str
    tokens: tuple[str, ...]
    token_set: frozenset[str] = field(repr=False)
    significant_tokens: tuple[str, ...] = field(repr=False)

    @classmethod
    def build(cls, excerpt_text: str, subject: str = "", stop_words: frozenset[str] = frozenset()) -> GroundingDocument:
        attribute_text = " ".join(_ATTR_TEXT_RE.findall(excerpt_text or ""))
        stripped = regex_strip(excerpt_text or "")
        combined = f"{subject or ''} {stripped} {attribute_text}"

        decomposed = unicodedata.normalize("NFKD", combined)
        folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
        text = normalize_whitespace(_APOSTROPHES_RE.sub("", folded).lower())

        tokens = tuple(canonical_tokens(text))
        significant = tuple(t for t in tokens if len(t) > 2 and t not in stop_words)
        return cls(text=text, tokens=tokens, token_set=frozenset(tokens), significant_tokens=significant)

    def has_phrase(self, phrase: Sequence[str]) -> bool:
        return contains_phrase(self.tokens, phrase)

    def has_brand(self, brand: str | None) -> bool:
        phrase = canonical_tokens(brand)
        if not phrase:
            return False
        return self.has_phrase(phrase) or compact(brand) in self.token_set

    def price_positions(self, price: float | None) -> list[int]:
        pattern = _price_pattern(price)
        if pattern is None:
            return []
        return [m.start() for m in pattern.finditer(self.text)]

    def has_price(self, price: float | None) -> bool:
        return bool(self.price_positions(price))

    def keyword_position(self, keyword: str) -> int:
        m = re.search(rf"(?<![a-z0-9]){re.escape(keyword)}", self.text)
        return m.start() if m else -1

    def window(self, position: int, before: int, after: int) -> str:
        return self.text[max(0, position - before) : position + after]


def price_near_keyword(
    doc: GroundingDocument,
    keywords: Sequence[str],
    price: float | None,
    *,
    before: int = 100,
    after: int = 300,
) -> bool | None:
    """Whether ``price`` appears near the first located keyword.

    Returns None when there is no price to confirm. When no keyword can be
    located, falls back to whether the price appears anywhere.
    """

    pattern = _price_pattern(price)
    if pattern is None:
        return None

    for keyword in keywords:
        pos = doc.keyword_position(keyword)
        if pos >= 0:
            return bool(pattern.search(doc.window(pos, before, after)))

    return bool(pattern.search(doc.text))


def brand_type_price_colocated(
    doc: GroundingDocument,
    brand: str | None,
    type_variants: Sequence[Sequence[str]],
    price: float | None,
    *,
    window: int = 600,
) -> bool:
    """Whether brand, type and price all appear within ``window`` chars of one price mention."""

    if not brand or not type_variants:
        return False

    brand_phrase = canonical_tokens(brand)
    brand_compact = compact(brand)
    if not brand_phrase:
        return False

    for pos in doc.price_positions(price):
        tokens = canonical_tokens(doc.window(pos, window, window))
        brand_found = contains_phrase(tokens, brand_phrase) or brand_compact in tokens
        if not brand_found:
            continue
        if any(contains_phrase(tokens, variant) for variant in type_variants):
            return True

    return False
