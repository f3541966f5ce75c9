"""Mailbox scanning: pre-filter and orchestration."""

from .prefilter import PrefilterDecision, should_process_email
from .scanner import EmailSource, PurchaseScanner, WardrobeStore

__all__ = [
    "EmailSource",
    "PrefilterDecision",
    "PurchaseScanner",
    "WardrobeStore",
    "should_process_email",
]
