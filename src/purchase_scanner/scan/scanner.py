"""Scan orchestration.

This module provides the scanner that walks one account's candidate emails
and persists the verified clothing purchases found in them.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog

from purchase_scanner.exceptions import AuthenticationError
from purchase_scanner.extraction import PurchaseExtractor
from purchase_scanner.models import MessageRef, OrderMetadata, ParsedItem, RawEmail, ScanResult
from purchase_scanner.rules import RuleTables, load_rule_tables
from purchase_scanner.rules.canonical import canonicalize
from purchase_scanner.scan.prefilter import should_process_email

logger = structlog.get_logger()


class EmailSource(Protocol):
    """Where candidate emails come from."""

    async def search_candidates(self, account: str, since: datetime) -> list[MessageRef]: ...

    async def fetch_content(self, account: str, ref: MessageRef) -> RawEmail: ...


class WardrobeStore(Protocol):
    """Where verified purchases are persisted."""

    def has_order(self, account: str, order_number: str) -> bool: ...

    def record_order(
        self, account: str, items: list[ParsedItem], order: OrderMetadata
    ) -> list[int | None]:
        """Store all items of one order atomically; None marks an already stored item."""
        ...


class PurchaseScanner:
    """Scans an account's mailbox for clothing purchases.

    Messages are processed one at a time. A failing message is logged and
    counted; only account-level authentication failures end the scan early.
    """

    def __init__(
        self,
        source: EmailSource,
        extractor: PurchaseExtractor,
        store: WardrobeStore,
        *,
        tables: RuleTables | None = None,
        default_days_back: int = 30,
    ) -> None:
        self.source = source
        self.extractor = extractor
        self.store = store
        self.tables = tables or load_rule_tables()
        self.default_days_back = default_days_back

    async def scan(
        self,
        account: str,
        days_back: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ScanResult:
        """Scan ``account`` for purchases received in the last ``days_back`` days.

        Args:
            account: Account identifier passed through to the source and store.
            days_back: Look-back window. Defaults to ``default_days_back``.
            cancel: Optional event; when set, the scan stops before the next message.

        Returns:
            ScanResult: Aggregate counts for the scan.

        Raises:
            AuthenticationError: If the email source rejects the account.
        """

        days = self.default_days_back if days_back is None else days_back
        since = datetime.now(timezone.utc) - timedelta(days=days)
        logger.info("scan_started", account=account, days_back=days)

        refs = await self.source.search_candidates(account, since)
        result = ScanResult()
        seen_names: dict[str, set[str]] = defaultdict(set)

        for ref in refs:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                logger.info("scan_cancelled", account=account, scanned=result.scanned, remaining=len(refs) - result.scanned)
                break

            result.scanned += 1
            try:
                await self._process_message(account, ref, result, seen_names)
            except AuthenticationError:
                raise
            except Exception as exc:  # noqa: BLE001
                result.failed += 1
                logger.error(
                    "scan_message_failed",
                    account=account,
                    message_id=ref.id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

        logger.info("scan_completed", account=account, **result.model_dump())
        return result

    async def _process_message(
        self,
        account: str,
        ref: MessageRef,
        result: ScanResult,
        seen_names: dict[str, set[str]],
    ) -> None:
        email = await self.source.fetch_content(account, ref)

        decision = should_process_email(email, self.tables)
        if not decision.process:
            result.skipped += 1
            logger.debug("email_skipped", message_id=email.id, reason=decision.reason)
            return

        purchase = await asyncio.to_thread(self.extractor.parse_receipt, email)
        if not purchase.items:
            logger.debug("no_clothing_items", message_id=email.id, order_number=purchase.order_number)
            return

        result.found += 1
        self._note_repeated_names(email.id, purchase.items, seen_names)

        if purchase.order_number and self.store.has_order(account, purchase.order_number):
            result.duplicates += 1
            logger.info("duplicate_order_skipped", message_id=email.id, order_number=purchase.order_number)
            return

        order = OrderMetadata.from_purchase(purchase, email.id, email.subject)
        row_ids = self.store.record_order(account, purchase.items, order)
        result.new += sum(1 for row_id in row_ids if row_id is not None)

    def _note_repeated_names(
        self,
        email_id: str,
        items: list[ParsedItem],
        seen_names: dict[str, set[str]],
    ) -> None:
        # The same item name across unrelated emails usually means the oracle
        # copied it from the prompt template or a previous answer.
        for item in items:
            key = canonicalize(item.name)
            if not key:
                continue
            others = seen_names[key] - {email_id}
            if others:
                logger.warning(
                    "repeated_item_name",
                    item_name=item.name,
                    message_id=email_id,
                    previous_message_ids=sorted(others),
                )
            seen_names[key].add(email_id)
