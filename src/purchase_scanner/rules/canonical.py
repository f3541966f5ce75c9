"""Canonical forms for brand names, item names and sender domains.

Every brand/domain/keyword comparison in the verifier goes through these
helpers so that ``Levi's``, ``LEVIS`` and ``levi`` all compare equal and
``email.levi.com`` reduces to the label ``levi``.

Rules:
    * lowercase, accents stripped (``Café`` -> ``cafe``)
    * apostrophes removed in place, so possessives fold (``levi's`` -> ``levis``)
    * ``&`` removed in place (``H&M`` -> ``hm``)
    * any other punctuation, hyphens included, splits words
    * a trailing ``s`` is dropped from words longer than three characters
      unless the word ends in ``ss`` (``jeans`` -> ``jean``, ``dress`` stays)

The compact form joins the canonical words with no separator, so multi-word
and hyphenated brands (``Under Armour``, ``Net-a-Porter``) compare against
single domain labels (``underarmour``, ``netaporter``).
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence

_APOSTROPHES_RE = re.compile(r"['‘’`´&]")
_NON_WORD_RE = re.compile(r"[^a-z0-9]+")


def stem(word: str) -> str:
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text or "")
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return ascii_only.lower()


def canonical_tokens(text: str | None) -> list[str]:
    """Split text into canonical (lowercased, stemmed) words."""

    if not text:
        return []
    folded = _APOSTROPHES_RE.sub("", _fold(text))
    return [stem(w) for w in _NON_WORD_RE.split(folded) if w]


def canonicalize(text: str | None) -> str:
    """Canonical words joined by single spaces."""

    return " ".join(canonical_tokens(text))


def compact(text: str | None) -> str:
    """Canonical words joined with no separator (``"Old Navy"`` -> ``"oldnavy"``)."""

    return "".join(canonical_tokens(text))


def contains_phrase(tokens: Sequence[str], phrase: Sequence[str]) -> bool:
    """Whether ``phrase`` appears as a contiguous run inside ``tokens``."""

    n = len(phrase)
    if n == 0 or n > len(tokens):
        return False
    if n == 1:
        return phrase[0] in tokens
    first = phrase[0]
    for i in range(len(tokens) - n + 1):
        if tokens[i] == first and tuple(tokens[i : i + n]) == tuple(phrase):
            return True
    return False


def find_phrase(tokens: Sequence[str], phrases: Iterable[Sequence[str]]) -> tuple[str, ...] | None:
    """Return the first phrase found in ``tokens``, if any."""

    for phrase in phrases:
        if contains_phrase(tokens, phrase):
            return tuple(phrase)
    return None


def domain_labels(
    domain: str | None,
    *,
    multi_part_suffixes: Iterable[str] = (),
    ignored_labels: Iterable[str] = (),
) -> list[str]:
    """Reduce a sender domain to the labels that can name a retailer.

    ``email.us.levi.com`` -> ``["levi"]``; ``shop.example.co.uk`` -> ``["example"]``.
    """

    if not domain:
        return []

    labels = [lbl for lbl in domain.strip().lower().strip(".").split(".") if lbl]
    if len(labels) < 2:
        return [compact(lbl) for lbl in labels if compact(lbl)]

    suffix2 = ".".join(labels[-2:])
    if len(labels) > 2 and suffix2 in set(multi_part_suffixes):
        labels = labels[:-2]
    else:
        labels = labels[:-1]

    ignored = set(ignored_labels)
    kept = [lbl for lbl in labels if lbl not in ignored]
    if not kept:
        # Never reduce a domain to nothing; keep the registrable label.
        kept = labels[-1:]

    return [c for c in (compact(lbl) for lbl in kept) if c]


def brand_matches_domain(
    brand: str | None,
    labels: Sequence[str],
    aliases: dict[str, Sequence[str]] | None = None,
) -> bool:
    """Whether a brand corresponds to one of the sender's domain labels.

    A label matches when the compact brand equals it or when one contains the
    other and the shorter side has at least four characters (``levi`` vs
    ``levistrauss``). ``aliases`` maps a domain label to the compact brands
    it is known to send for (``urbn`` -> ``anthropologie``).
    """

    brand_c = compact(brand)
    if not brand_c:
        return False

    for label in labels:
        for variant in {label, stem(label)}:
            if not variant:
                continue
            if variant == brand_c:
                return True
            if len(variant) >= 4 and variant in brand_c:
                return True
            if len(brand_c) >= 4 and brand_c in variant:
                return True
        if aliases and label in aliases:
            if brand_c in aliases[label]:
                return True

    return False
