"""Single-email purchase extraction pipeline.

``parse_receipt`` runs reduce -> extract -> order-identity check -> verify
and always returns a ``ParsedPurchase``. Oracle failures of any kind fall
back to the regex parser, whose purchases never carry items.
"""

from __future__ import annotations

import re

import structlog

from purchase_scanner.config import Settings
from purchase_scanner.extraction.fallback import extract_order_number, fallback_parse
from purchase_scanner.models import (
    ParsedItem,
    ParsedPurchase,
    ProductImage,
    RawEmail,
    ReducedExcerpt,
    VerdictReason,
    VerificationVerdict,
)
from purchase_scanner.oracle import ExtractionClient, OracleBackend
from purchase_scanner.reduction import ContentReducer
from purchase_scanner.rules import load_rule_tables
from purchase_scanner.rules.canonical import canonical_tokens
from purchase_scanner.verification import Verifier
from purchase_scanner.verification.grounding import required_keyword_matches, significant_keywords

logger = structlog.get_logger()

_ORDER_KEY_RE = re.compile(r"[^A-Z0-9]")


def _order_key(value: str) -> str:
    return _ORDER_KEY_RE.sub("", value.upper())


def order_identity_conflict(claimed: str | None, subject: str, excerpt_text: str) -> str | None:
    """Return the independently found order number when it contradicts ``claimed``.

    No conflict is reported when the claimed number appears in the source
    text, when no independent number can be found, or when one number
    contains the other (``#A-1001`` vs ``A1001``).
    """

    if not claimed:
        return None

    claimed_key = _order_key(claimed)
    if not claimed_key:
        return None

    if claimed_key in _order_key(f"{subject} {excerpt_text}"):
        return None

    candidate = extract_order_number(subject) or extract_order_number(excerpt_text)
    if not candidate:
        return None

    candidate_key = _order_key(candidate)
    if candidate_key == claimed_key or candidate_key in claimed_key or claimed_key in candidate_key:
        return None

    return candidate


class PurchaseExtractor:
    """Turns one raw email into a verified ``ParsedPurchase``."""

    def __init__(
        self,
        reducer: ContentReducer,
        client: ExtractionClient,
        verifier: Verifier,
        *,
        max_chars: int | None = None,
    ) -> None:
        self.reducer = reducer
        self.client = client
        self.verifier = verifier
        self.max_chars = max_chars

    @classmethod
    def from_settings(cls, settings: Settings, backend: OracleBackend | None = None) -> PurchaseExtractor:
        return cls(
            ContentReducer.from_settings(settings),
            ExtractionClient.from_settings(settings, backend=backend),
            Verifier(load_rule_tables(settings.rule_tables_path)),
            max_chars=settings.excerpt_max_chars,
        )

    def parse_receipt(self, email: RawEmail) -> ParsedPurchase:
        """Extract the verified clothing purchase in ``email``.

        Args:
            email: The raw email.

        Returns:
            ParsedPurchase: Verified items (possibly none) plus order metadata.
        """

        excerpt = self.reducer.reduce(email, self.max_chars)

        try:
            purchase = self.client.extract_purchase(excerpt, email).purchase
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "oracle_extraction_failed_using_fallback",
                email_id=email.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            purchase = fallback_parse(email.subject, excerpt.text, self.verifier.tables.known_retailers)

        verdicts: list[VerificationVerdict] = []
        items = list(purchase.items)

        conflicting = order_identity_conflict(purchase.order_number, email.subject, excerpt.text)
        if conflicting is not None and items:
            logger.warning(
                "order_identity_mismatch",
                email_id=email.id,
                claimed=purchase.order_number,
                found=conflicting,
                dropped_items=len(items),
            )
            verdicts.extend(
                VerificationVerdict(
                    item_name=item.name,
                    accepted=False,
                    reason=VerdictReason.ORDER_MISMATCH,
                    evidence=f"oracle order {purchase.order_number!r} vs email order {conflicting!r}",
                )
                for item in items
            )
            items = []

        result = self.verifier.verify(items, purchase.store, email, excerpt)
        verdicts.extend(result.verdicts)

        accepted = [self._with_image(item, excerpt) for item in result.accepted_items]

        logger.info(
            "receipt_parsed",
            email_id=email.id,
            source=purchase.source,
            method=excerpt.extraction_method.value,
            claimed_items=len(purchase.items),
            accepted_items=len(accepted),
            order_number=purchase.order_number,
        )

        return purchase.model_copy(
            update={"items": accepted, "store": result.accepted_store, "verdicts": verdicts}
        )

    def _with_image(self, item: ParsedItem, excerpt: ReducedExcerpt) -> ParsedItem:
        """Keep only image URLs present in the email; otherwise match one by alt text."""

        known_urls = {image.url for image in excerpt.product_images}
        if item.image_url and (item.image_url in known_urls or item.image_url in excerpt.text):
            return item

        match = self._match_image(item, excerpt.product_images)
        return item.model_copy(update={"image_url": match.url if match else None})

    def _match_image(self, item: ParsedItem, images: list[ProductImage]) -> ProductImage | None:
        keywords = significant_keywords(item.name, self.verifier.tables.stop_words)
        if not keywords:
            return None
        required = required_keyword_matches(len(keywords))

        best: ProductImage | None = None
        best_hits = 0
        for image in images:
            tokens = set(canonical_tokens(f"{image.alt_text} {image.context_text}"))
            hits = sum(1 for k in keywords if k in tokens)
            if hits >= required and hits > best_hits:
                best, best_hits = image, hits
        return best
