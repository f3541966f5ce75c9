"""Models for reduced excerpts, extracted purchases and verification verdicts."""

from __future__ import annotations

import math
import re
from datetime import date
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

_CURRENCY_SYMBOLS = ("$", "£", "€", "¥", "USD", "GBP", "EUR", "CAD", "AUD")


def parse_amount(value: Any) -> float | None:
    """Parse a money value such as ``69.5``, ``"$1,299.00"`` or ``"12,50 €"``."""

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            amount = float(value)
        except OverflowError:
            return None
        return amount if math.isfinite(amount) and amount >= 0 else None

    raw = str(value).strip()
    if not raw:
        return None

    for sym in _CURRENCY_SYMBOLS:
        raw = raw.replace(sym, "")

    # Decimal comma when no dot is present ("12,50").
    if re.fullmatch(r"\s*\d+,\d{2}\s*", raw):
        raw = raw.replace(",", ".")

    raw = raw.replace(",", "")

    m = re.search(r"\d+(?:\.\d+)?", raw)
    if not m:
        return None

    amount = float(m.group(0))
    return amount if math.isfinite(amount) else None


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    s = " ".join(str(value).split())
    if not s or s.lower() in {"null", "none"}:
        return None
    return s


class ExtractionMethod(str, Enum):
    """Which reduction strategy produced an excerpt."""

    STRUCTURED_DATA = "structured-data"
    SECTION_MATCH = "section-match"
    FULL_STRIP = "full-strip"


class ProductImage(BaseModel):
    """A candidate product image found in the email body."""

    url: str
    alt_text: str = ""
    context_text: str = ""


class ReducedExcerpt(BaseModel):
    """Bounded, signal-dense rendering of one email."""

    text: str = Field(description="Excerpt sent to the oracle and used for grounding")
    product_images: list[ProductImage] = Field(default_factory=list)
    extraction_method: ExtractionMethod
    reduction_ratio: float = Field(ge=0.0, description="len(text) / len(source text)")


class ModelTier(str, Enum):
    """Oracle model tiers."""

    FAST = "fast"
    STRONG = "strong"


class ExtractionAttempt(BaseModel):
    """One completed oracle call, kept only to drive escalation decisions."""

    model_tier: ModelTier
    model: str
    raw_response: str
    retries_used: int = 0


class ParsedItem(BaseModel):
    """A line item as claimed by the oracle."""

    name: str = ""
    quantity: int | None = None
    price: float | None = None
    type: str | None = None
    color: str | None = None
    brand: str | None = None
    image_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("image_url", "imageUrl"),
    )

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return _clean_text(value) or ""

    @field_validator("type", "color", "brand", "image_url", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> str | None:
        return _clean_text(value)

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> float | None:
        return parse_amount(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(str(value).strip())
            qty = int(number) if math.isfinite(number) else 0
        except (ValueError, OverflowError):
            return None
        return qty if qty > 0 else None


class VerdictReason(str, Enum):
    """Why the verifier accepted or rejected an item or store."""

    GROUNDED_KEYWORDS = "grounded-keywords"
    GROUNDED_FULL_NAME = "grounded-full-name"
    GROUNDED_BRAND_TYPE_PRICE = "grounded-brand-type-price"
    GROUNDED_SENDER_TRUST = "grounded-sender-trust"
    NAME_EMPTY = "name-empty"
    NAME_IS_BRAND = "name-is-brand"
    NAME_GENERIC = "name-generic"
    NAME_PLACEHOLDER = "name-placeholder"
    TYPE_NOT_WEARABLE = "type-not-wearable"
    BLOCKED_CATEGORY = "blocked-category"
    BRAND_SENDER_MISMATCH = "brand-sender-mismatch"
    UNGROUNDED = "ungrounded"
    ORDER_MISMATCH = "order-mismatch"
    STORE_ACCEPTED = "store-accepted"
    STORE_BLOCKED = "store-blocked"


class VerificationVerdict(BaseModel):
    """Diagnostic outcome for one item (or for the store name)."""

    item_name: str
    accepted: bool
    reason: VerdictReason
    evidence: str = ""
    price_confirmed: bool | None = None


class ParsedPurchase(BaseModel):
    """The output of the extraction core for one email."""

    items: list[ParsedItem] = Field(default_factory=list)
    order_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices("order_number", "orderNumber"),
    )
    purchase_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("purchase_date", "purchaseDate"),
    )
    store: str | None = None
    total: float | None = None
    source: str | None = Field(default=None, description="Producer of this purchase")
    verdicts: list[VerificationVerdict] = Field(default_factory=list, exclude=True)

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, (dict, ParsedItem))]

    @field_validator("order_number", "store", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> str | None:
        return _clean_text(value)

    @field_validator("total", mode="before")
    @classmethod
    def _coerce_total(cls, value: Any) -> float | None:
        return parse_amount(value)

    @field_validator("purchase_date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> date | None:
        if value is None or isinstance(value, date):
            return value
        s = str(value).strip()[:10]
        try:
            return date.fromisoformat(s)
        except ValueError:
            return None


class OrderMetadata(BaseModel):
    """Order-level context recorded beside every persisted item."""

    email_id: str
    email_subject: str = ""
    order_number: str | None = None
    purchase_date: date | None = None
    store: str | None = None
    total: float | None = None

    @classmethod
    def from_purchase(cls, purchase: ParsedPurchase, email_id: str, email_subject: str) -> OrderMetadata:
        return cls(
            email_id=email_id,
            email_subject=email_subject,
            order_number=purchase.order_number,
            purchase_date=purchase.purchase_date,
            store=purchase.store,
            total=purchase.total,
        )
