"""Deterministic verification of oracle-extracted purchases.

The verifier is the gate between the oracle and the wardrobe store. It is a
pure function of its inputs and the rule tables: no network, no model calls.
Every item gets a ``VerificationVerdict``; only items that pass every rule
are returned.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

import structlog

from purchase_scanner.models import (
    ParsedItem,
    RawEmail,
    ReducedExcerpt,
    VerdictReason,
    VerificationVerdict,
)
from purchase_scanner.rules import RuleTables, load_rule_tables
from purchase_scanner.rules.canonical import (
    brand_matches_domain,
    canonical_tokens,
    compact,
    contains_phrase,
    domain_labels,
    find_phrase,
)
from purchase_scanner.verification.grounding import (
    GroundingDocument,
    brand_type_price_colocated,
    price_near_keyword,
    required_keyword_matches,
    significant_keywords,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class SenderProfile:
    """What the sending domain says about the retailer."""

    domain: str
    labels: tuple[str, ...]
    is_marketplace: bool
    is_generic: bool

    @property
    def identifies_retailer(self) -> bool:
        """True when the domain names one specific retailer."""
        return bool(self.labels) and not self.is_marketplace and not self.is_generic

    @classmethod
    def from_domain(cls, domain: str, tables: RuleTables) -> SenderProfile:
        labels = tuple(
            domain_labels(
                domain,
                multi_part_suffixes=tables.multi_part_suffixes,
                ignored_labels=tables.mail_subdomain_labels,
            )
        )
        return cls(
            domain=domain,
            labels=labels,
            is_marketplace=any(lbl in tables.marketplace_domains for lbl in labels),
            is_generic=any(lbl in tables.generic_sender_domains for lbl in labels),
        )


@dataclass(frozen=True)
class VerificationResult:
    """Accepted items and store plus the verdicts explaining them.

    Unpacks as ``items, store = result``.
    """

    accepted_items: list[ParsedItem]
    accepted_store: str | None
    verdicts: list[VerificationVerdict]
    store_verdict: VerificationVerdict | None = None

    def __iter__(self) -> Iterator[object]:
        return iter((self.accepted_items, self.accepted_store))


class Verifier:
    """Applies name, category, brand/sender and grounding rules to extracted items."""

    def __init__(self, tables: RuleTables | None = None, *, price_window: int = 600) -> None:
        self.tables = tables or load_rule_tables()
        self.price_window = price_window
        self._aliases = dict(self.tables.brand_domain_aliases)

    def verify(
        self,
        items: list[ParsedItem],
        store: str | None,
        email: RawEmail,
        excerpt: ReducedExcerpt | str,
    ) -> VerificationResult:
        """Verify a purchase claimed for ``email``.

        Args:
            items: Items as claimed by the oracle.
            store: Store name as claimed by the oracle.
            email: The source email (subject and sender are used).
            excerpt: The reduced excerpt the oracle saw, or its text.

        Returns:
            VerificationResult: Accepted items, accepted store and one verdict per item.
        """

        text = excerpt.text if isinstance(excerpt, ReducedExcerpt) else excerpt
        doc = GroundingDocument.build(text, email.subject, self.tables.stop_words)
        sender = SenderProfile.from_domain(email.sender_domain, self.tables)

        accepted: list[ParsedItem] = []
        verdicts: list[VerificationVerdict] = []
        for item in items:
            verdict = self.verify_item(item, doc, sender)
            verdicts.append(verdict)
            if verdict.accepted:
                accepted.append(item)
                logger.debug(
                    "item_accepted",
                    email_id=email.id,
                    item=item.name,
                    reason=verdict.reason.value,
                    price_confirmed=verdict.price_confirmed,
                )
            else:
                logger.info(
                    "item_rejected",
                    email_id=email.id,
                    item=item.name,
                    reason=verdict.reason.value,
                    evidence=verdict.evidence,
                )

        store_verdict = self.verify_store(store)
        accepted_store = store if store_verdict is not None and store_verdict.accepted else None
        if store_verdict is not None and not store_verdict.accepted:
            logger.info("store_rejected", email_id=email.id, store=store, evidence=store_verdict.evidence)

        return VerificationResult(
            accepted_items=accepted,
            accepted_store=accepted_store,
            verdicts=verdicts,
            store_verdict=store_verdict,
        )

    def verify_item(
        self,
        item: ParsedItem,
        doc: GroundingDocument,
        sender: SenderProfile,
    ) -> VerificationVerdict:
        """Run every rule against one item; the first failure decides the verdict."""

        for check in (self._check_name, self._check_whitelist, self._check_blocklist):
            rejection = check(item)
            if rejection is not None:
                return rejection

        rejection = self._check_brand_sender(item, sender)
        if rejection is not None:
            return rejection

        return self._check_grounding(item, doc, sender)

    def verify_store(self, store: str | None) -> VerificationVerdict | None:
        """Reject store names that look like restaurants or venues."""

        if not store:
            return None

        tokens = canonical_tokens(store)
        for family, phrases in self.tables.store_blocklist.items():
            hit = find_phrase(tokens, phrases)
            if hit is not None:
                return VerificationVerdict(
                    item_name=store,
                    accepted=False,
                    reason=VerdictReason.STORE_BLOCKED,
                    evidence=f"{family}: {' '.join(hit)}",
                )

        return VerificationVerdict(item_name=store, accepted=True, reason=VerdictReason.STORE_ACCEPTED)

    def _reject(self, item: ParsedItem, reason: VerdictReason, evidence: str) -> VerificationVerdict:
        return VerificationVerdict(item_name=item.name, accepted=False, reason=reason, evidence=evidence)

    def _check_name(self, item: ParsedItem) -> VerificationVerdict | None:
        name = item.name.strip()
        name_c = compact(name)
        if len(name_c) < 3:
            return self._reject(item, VerdictReason.NAME_EMPTY, f"name {name!r} too short")

        if self._is_brand_only(name, item.brand):
            return self._reject(item, VerdictReason.NAME_IS_BRAND, f"name {name!r} is only a brand")

        words = name.split()
        tokens = canonical_tokens(name)
        if len(words) <= 2 and any(t in self.tables.generic_name_words for t in tokens):
            return self._reject(item, VerdictReason.NAME_GENERIC, f"name {name!r} is brand plus a generic noun")

        for pattern in self.tables.placeholder_patterns:
            if pattern.fullmatch(name):
                return self._reject(item, VerdictReason.NAME_PLACEHOLDER, f"name {name!r} matches {pattern.pattern}")

        return None

    def _is_brand_only(self, name: str, brand: str | None) -> bool:
        # The whole name, minus a trailing "brand", must spell a brand.
        tokens = canonical_tokens(name)
        if len(tokens) > 1 and tokens[-1] == "brand":
            tokens = tokens[:-1]
        name_c = "".join(tokens)
        if not name_c:
            return False

        brands = set(self.tables.known_brands)
        if brand:
            brands.add(compact(brand))
        return name_c in brands

    def _check_whitelist(self, item: ParsedItem) -> VerificationVerdict | None:
        tokens = canonical_tokens(item.type)
        if not tokens:
            return self._reject(item, VerdictReason.TYPE_NOT_WEARABLE, "no type given")

        for phrases in self.tables.wearable_categories.values():
            if find_phrase(tokens, phrases) is not None:
                return None

        return self._reject(item, VerdictReason.TYPE_NOT_WEARABLE, f"type {item.type!r} is not a wearable category")

    def _check_blocklist(self, item: ParsedItem) -> VerificationVerdict | None:
        for field_name, value in (("name", item.name), ("type", item.type)):
            tokens = canonical_tokens(value)
            for family, phrases in self.tables.blocked_categories.items():
                hit = find_phrase(tokens, phrases)
                if hit is not None:
                    return self._reject(
                        item,
                        VerdictReason.BLOCKED_CATEGORY,
                        f"{field_name} matches {family}: {' '.join(hit)}",
                    )
        return None

    def _check_brand_sender(self, item: ParsedItem, sender: SenderProfile) -> VerificationVerdict | None:
        if not item.brand or not sender.identifies_retailer:
            return None

        if brand_matches_domain(item.brand, sender.labels, self._aliases):
            return None

        return self._reject(
            item,
            VerdictReason.BRAND_SENDER_MISMATCH,
            f"brand {item.brand!r} does not match sender {sender.domain!r}",
        )

    def _check_grounding(
        self,
        item: ParsedItem,
        doc: GroundingDocument,
        sender: SenderProfile,
    ) -> VerificationVerdict:
        keywords = significant_keywords(item.name, self.tables.stop_words)
        price_confirmed = price_near_keyword(doc, keywords, item.price)

        def accept(reason: VerdictReason, evidence: str) -> VerificationVerdict:
            return VerificationVerdict(
                item_name=item.name,
                accepted=True,
                reason=reason,
                evidence=evidence,
                price_confirmed=price_confirmed,
            )

        matched = [k for k in keywords if k in doc.token_set]
        required = required_keyword_matches(len(keywords))
        if keywords and len(matched) >= required:
            return accept(
                VerdictReason.GROUNDED_KEYWORDS,
                f"{len(matched)}/{len(keywords)} keywords found (required {required}): {', '.join(matched)}",
            )

        name_tokens = canonical_tokens(item.name)
        if len(name_tokens) >= 2 and doc.has_phrase(name_tokens):
            return accept(VerdictReason.GROUNDED_FULL_NAME, "full name found")
        if len(keywords) >= 3 and contains_phrase(doc.significant_tokens, keywords[:3]):
            return accept(VerdictReason.GROUNDED_FULL_NAME, f"leading words found: {' '.join(keywords[:3])}")

        type_variants = self.tables.type_variants(item.type)
        if brand_type_price_colocated(doc, item.brand, type_variants, item.price, window=self.price_window):
            return accept(
                VerdictReason.GROUNDED_BRAND_TYPE_PRICE,
                f"brand {item.brand!r}, type {item.type!r} and price {item.price} found together",
            )

        if (
            item.brand
            and sender.identifies_retailer
            and brand_matches_domain(item.brand, sender.labels, self._aliases)
            and any(doc.has_phrase(v) for v in type_variants)
        ):
            return accept(
                VerdictReason.GROUNDED_SENDER_TRUST,
                f"sender {sender.domain!r} matches brand {item.brand!r} and type {item.type!r} found",
            )

        return VerificationVerdict(
            item_name=item.name,
            accepted=False,
            reason=VerdictReason.UNGROUNDED,
            evidence=f"{len(matched)}/{len(keywords)} keywords found (required {required})",
            price_confirmed=price_confirmed,
        )
