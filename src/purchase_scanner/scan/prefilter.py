"""Cheap pre-filter deciding whether an email is worth sending to the oracle.

Only plain string and regex checks run here; the HTML is stripped with the
regex stripper rather than parsed. Phrases come from the ``prefilter`` group
of the rule tables.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from purchase_scanner.extraction.fallback import extract_order_number
from purchase_scanner.models import RawEmail
from purchase_scanner.reduction.html import regex_strip
from purchase_scanner.rules import RuleTables, load_rule_tables
from purchase_scanner.rules.canonical import domain_labels

_PRICE_RE = re.compile(r"(?:[$£€]\s?\d[\d,]*(?:\.\d{2})?|\b\d[\d,]*\.\d{2}\s?(?:USD|EUR|GBP)\b)", re.I)


@dataclass(frozen=True)
class PrefilterDecision:
    """Outcome of ``should_process_email``."""

    process: bool
    reason: str


def _any(text: str, phrases: tuple[str, ...]) -> str | None:
    for phrase in phrases:
        if phrase in text:
            return phrase
    return None


def should_process_email(email: RawEmail, tables: RuleTables | None = None) -> PrefilterDecision:
    """Decide whether ``email`` looks like a purchase receipt.

    Skips spam and trash, senders known to never sell clothing, abandoned
    cart and wishlist mail, returns and refunds, shipping-only notices and
    marketing mail without order evidence. Everything else must carry an
    order phrase, an order number, or priced line items.
    """

    tables = tables or load_rule_tables()
    phrases = tables.prefilter

    blocked = set(phrases.get("blocked_labels", ())) & set(email.labels)
    if blocked:
        return PrefilterDecision(False, f"label:{sorted(blocked)[0]}")

    labels = domain_labels(
        email.sender_domain,
        multi_part_suffixes=tables.multi_part_suffixes,
        ignored_labels=tables.mail_subdomain_labels,
    )
    for label in labels:
        if label in tables.non_clothing_senders:
            return PrefilterDecision(False, f"non-clothing sender:{label}")

    subject = (email.subject or "").lower()
    body = (regex_strip(email.body) if email.is_html else email.body or "").lower()
    text = f"{subject}\n{body}"

    order_phrase = _any(text, phrases.get("order_phrases", ()))
    order_number = extract_order_number(f"{email.subject}\n{body}")
    has_price = _PRICE_RE.search(text) is not None
    item_signal = _any(body, phrases.get("item_signals", ()))
    priced_items = has_price and item_signal is not None

    cart = _any(subject, phrases.get("cart_phrases", ()))
    if cart is None and order_number is None:
        cart = _any(body, phrases.get("cart_phrases", ()))
    if cart:
        return PrefilterDecision(False, f"cart or wishlist:{cart}")

    returned = _any(subject, phrases.get("return_phrases", ()))
    if returned is None and order_number is None and not priced_items:
        returned = _any(body, phrases.get("return_phrases", ()))
    if returned:
        return PrefilterDecision(False, f"return or refund:{returned}")

    shipping = _any(subject, phrases.get("shipping_phrases", ()))
    if shipping is None and not _any(subject, phrases.get("order_phrases", ())):
        shipping = _any(body, phrases.get("shipping_phrases", ()))
    if shipping and not priced_items:
        return PrefilterDecision(False, f"shipping-only:{shipping}")

    marketing_label = set(phrases.get("marketing_labels", ())) & set(email.labels)
    marketing = sorted(marketing_label)[0] if marketing_label else _any(body, phrases.get("marketing_phrases", ()))
    order_evidence = order_phrase is not None and (order_number is not None or priced_items)
    if marketing and not order_evidence:
        return PrefilterDecision(False, f"marketing:{marketing}")

    if order_phrase:
        return PrefilterDecision(True, f"order phrase:{order_phrase}")
    if order_number:
        return PrefilterDecision(True, f"order number:{order_number}")
    if priced_items:
        return PrefilterDecision(True, f"priced items:{item_signal}")

    return PrefilterDecision(False, "no order evidence")
