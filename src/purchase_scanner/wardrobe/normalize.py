"""Clothing type and vibe normalization for stored wardrobe items."""

from __future__ import annotations

from urllib.parse import quote

from purchase_scanner.rules import RuleTables, load_rule_tables

PLACEHOLDER_IMAGE_TEMPLATE = "https://via.placeholder.com/400x500/9ca3af/ffffff?text={label}"


def normalize_clothing_type(item_type: str | None, tables: RuleTables | None = None) -> str | None:
    """Map a clothing type onto its standard category (``jeans`` -> ``pants``).

    Unknown types are returned lowercased and trimmed; empty input gives None.
    """

    if not item_type or not item_type.strip():
        return None
    tables = tables or load_rule_tables()
    normalized = item_type.strip().lower()
    return tables.clothing_type_aliases.get(normalized, normalized)


def estimate_vibe(item_name: str | None, tables: RuleTables | None = None) -> str:
    """Guess a style vibe from substrings of the item name."""

    tables = tables or load_rule_tables()
    name = (item_name or "").lower()
    for vibe, keywords in tables.vibe_keywords:
        if any(keyword in name for keyword in keywords):
            return vibe
    return tables.default_vibe


def placeholder_image_url(item_type: str | None) -> str:
    return PLACEHOLDER_IMAGE_TEMPLATE.format(label=quote(item_type or "Item", safe=""))
