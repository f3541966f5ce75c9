"""Single-email purchase extraction."""

from .extractor import PurchaseExtractor, order_identity_conflict
from .fallback import extract_order_number, fallback_parse

__all__ = ["PurchaseExtractor", "extract_order_number", "fallback_parse", "order_identity_conflict"]
