"""Persistence of verified purchases as wardrobe items.

This package stores purchased clothing items in a local SQLite database and
normalizes their type and style on the way in.
"""

from .normalize import estimate_vibe, normalize_clothing_type, placeholder_image_url
from .repository import PurchaseRepository, PurchaseStats, StoredPurchase

__all__ = [
    "PurchaseRepository",
    "PurchaseStats",
    "StoredPurchase",
    "estimate_vibe",
    "normalize_clothing_type",
    "placeholder_image_url",
]
