"""Gmail search query for candidate purchase emails."""

from __future__ import annotations

from datetime import datetime

ORDER_SUBJECTS = (
    "order confirmation",
    "order receipt",
    "order placed",
    "purchase confirmation",
    "thank you for your order",
    "your order",
    "shipment",
    "shipping confirmation",
    "has shipped",
)

CLOTHING_TERMS = (
    "clothing", "apparel", "fashion", "style", "wear",
    "shirt", "pants", "jeans", "dress", "shoes", "jacket", "coat",
    "sweater", "hoodie", "shorts", "skirt", "boots", "sneakers",
)

FASHION_RETAILERS = (
    "Nordstrom", "Banana Republic", "Gap", "Old Navy", "H&M", "Zara", "Uniqlo", "GU",
    "J.Crew", "Madewell", "Levi's", "Nike", "Adidas", "ASOS", "Everlane",
    "Urban Outfitters", "Anthropologie", "Free People", "Macy's", "Bloomingdale's",
    "Saks", "Neiman Marcus",
)


def build_purchase_query(since: datetime) -> str:
    """Order-like subjects that mention clothing or a fashion retailer, after ``since``."""

    subjects = " OR ".join(f'"{s}"' for s in ORDER_SUBJECTS)
    terms = " OR ".join([*CLOTHING_TERMS, *(f'"{r}"' for r in FASHION_RETAILERS)])
    return f"(subject:({subjects}) ({terms})) after:{int(since.timestamp())}"
