"""Data models for Purchase Scanner.

This module contains Pydantic models for data validation and serialization.
"""

from pydantic import BaseModel, Field

from purchase_scanner.models.email import MessageRef, RawEmail
from purchase_scanner.models.purchase import (
    ExtractionAttempt,
    ExtractionMethod,
    ModelTier,
    OrderMetadata,
    ParsedItem,
    ParsedPurchase,
    ProductImage,
    ReducedExcerpt,
    VerdictReason,
    VerificationVerdict,
    parse_amount,
)


class ScanResult(BaseModel):
    """Aggregate counts reported at the end of a scan."""

    scanned: int = Field(default=0, description="Candidate messages examined")
    skipped: int = Field(default=0, description="Messages rejected by the pre-filter")
    found: int = Field(default=0, description="Messages yielding at least one verified item")
    new: int = Field(default=0, description="Items newly persisted")
    duplicates: int = Field(default=0, description="Messages whose order was already stored")
    failed: int = Field(default=0, description="Messages that raised while processing")
    cancelled: bool = Field(default=False, description="Whether the scan stopped early")


__all__ = [
    "ExtractionAttempt",
    "ExtractionMethod",
    "MessageRef",
    "ModelTier",
    "OrderMetadata",
    "ParsedItem",
    "ParsedPurchase",
    "ProductImage",
    "RawEmail",
    "ReducedExcerpt",
    "ScanResult",
    "VerdictReason",
    "VerificationVerdict",
    "parse_amount",
]
