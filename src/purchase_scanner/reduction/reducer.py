"""Reduce raw order emails to a bounded, signal-dense excerpt.

Retailer emails are mostly layout tables, tracking pixels and marketing
blocks. The reducer keeps the parts that describe the order (embedded
schema.org metadata, order/item sections, priced table rows, descriptive
attribute text and product images) so the oracle sees the items without
the noise.

Reduction never raises. If the targeted heuristics produce too little text
for a large email, the whole body is tag-stripped instead; if HTML parsing
itself fails, a regex strip of the raw body is used.
"""

from __future__ import annotations

import json
import re
from typing import Any

import extruct
import structlog
from bs4 import BeautifulSoup, Tag

from purchase_scanner.config import Settings
from purchase_scanner.exceptions import ReductionError
from purchase_scanner.models import ExtractionMethod, ProductImage, RawEmail, ReducedExcerpt
from purchase_scanner.reduction.html import make_soup, normalize_whitespace, regex_strip

logger = structlog.get_logger()

_ORDER_LD_TYPES = {"order", "product", "orderitem", "invoice", "itemlist", "offer", "parceldelivery"}

_STRUCTURED_SYNTAXES = ["json-ld", "microdata", "rdfa"]

_SECTION_KEYWORD_RE = re.compile(r"order|item|product|receipt|price|qty|quantity|total", re.I)

_BLOCK_TAGS = ["div", "td", "th", "p", "li", "section", "article", "table", "tr", "h1", "h2", "h3", "h4"]

_PRICE_RE = re.compile(
    r"(?:[$£€]\s?\d[\d,]*(?:\.\d{1,2})?)|(?:\b\d[\d,]*\.\d{2}\s?(?:USD|GBP|EUR|CAD|AUD)?\b)",
    re.I,
)
_QTY_RE = re.compile(r"\b(?:qty|quantity)\b\s*[:.]?\s*\d+|\b\d+\s*[x×]\b|[x×]\s*\d+\b", re.I)

_IMAGE_EXCLUDE_RE = re.compile(
    r"logo|icon|banner|social|facebook|twitter|instagram|pinterest|youtube|tiktok|"
    r"pixel|tracking|beacon|spacer|open\.gif|transparent|button|btn|badge|arrow|"
    r"divider|header|footer|app-?store|google-?play|signature|rating",
    re.I,
)

_DESCRIPTIVE_ATTRS = ("alt", "title", "aria-label")

_SENTENCE_END_RE = re.compile(r"[.!?](?=\s)|\n")


class ContentReducer:
    """Shrinks a raw email into a ``ReducedExcerpt``.

    Args:
        max_chars: Default excerpt budget when ``reduce`` is called without one.
        floor_chars: Size floor below which a large email's excerpt is
            considered over-trimmed.
        min_ratio: Excerpt/source ratio below which the excerpt is considered
            over-trimmed.
        min_block_chars: Minimum text length for a keyword-matched block.
        max_images: Maximum number of product images kept.
    """

    def __init__(
        self,
        *,
        max_chars: int = 12_000,
        floor_chars: int = 8_000,
        min_ratio: float = 0.15,
        min_block_chars: int = 40,
        max_images: int = 20,
    ) -> None:
        self.max_chars = max_chars
        self.floor_chars = floor_chars
        self.min_ratio = min_ratio
        self.min_block_chars = min_block_chars
        self.max_images = max_images

    @classmethod
    def from_settings(cls, settings: Settings) -> ContentReducer:
        return cls(
            max_chars=settings.excerpt_max_chars,
            floor_chars=settings.reduction_floor_chars,
            min_ratio=settings.min_reduction_ratio,
        )

    def reduce(self, email: RawEmail, max_chars: int | None = None) -> ReducedExcerpt:
        """Reduce one email to at most ``max_chars`` characters.

        Args:
            email: The raw email.
            max_chars: Excerpt budget; defaults to the reducer's ``max_chars``.

        Returns:
            ReducedExcerpt: Never raises.
        """

        budget = self.max_chars if max_chars is None else max(0, max_chars)
        header = f"Subject: {email.subject}\nFrom: {email.from_raw}\n\n"

        try:
            if email.is_html:
                body, method, images, source_len = self._reduce_html(email.body)
            else:
                body = normalize_whitespace(email.body)
                method, images, source_len = ExtractionMethod.FULL_STRIP, [], len(body)
        except ReductionError as exc:
            logger.warning("reduction_failed", email_id=email.id, error=str(exc))
            body = regex_strip(email.body)
            method, images, source_len = ExtractionMethod.FULL_STRIP, [], len(body)

        text = truncate_at_sentence(header + body, budget)
        ratio = len(text) / source_len if source_len else 0.0

        logger.debug(
            "email_reduced",
            email_id=email.id,
            method=method.value,
            source_chars=source_len,
            excerpt_chars=len(text),
            images=len(images),
        )

        return ReducedExcerpt(
            text=text,
            product_images=images,
            extraction_method=method,
            reduction_ratio=ratio,
        )

    def _reduce_html(self, markup: str) -> tuple[str, ExtractionMethod, list[ProductImage], int]:
        try:
            soup = make_soup(markup)

            structured = self._structured_data(markup, soup)
            images = self._product_images(soup)
            attribute_texts = self._attribute_texts(soup)

            for element in soup(["script", "style", "head", "meta", "noscript", "title"]):
                element.decompose()

            source_text = normalize_whitespace(soup.get_text(separator=" "))
            sections = self._keyword_sections(soup)
            rows = self._price_rows(soup, already=" ".join(sections))
        except ReductionError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ReductionError(str(exc)) from exc

        parts: list[str] = []
        if structured:
            parts.append("Structured data:\n" + "\n".join(structured))
        if sections:
            parts.append("Order details:\n" + "\n".join(sections))
        if rows:
            parts.append("Line items:\n" + "\n".join(rows))
        if attribute_texts:
            parts.append("Image and link text:\n" + "; ".join(attribute_texts))

        image_block = _format_images(images)
        excerpt = "\n\n".join(parts)
        method = ExtractionMethod.STRUCTURED_DATA if structured else ExtractionMethod.SECTION_MATCH

        source_len = len(source_text)
        ratio = len(excerpt) / source_len if source_len else 1.0
        over_trimmed = source_len > self.floor_chars and (
            ratio < self.min_ratio or len(excerpt) < self.floor_chars
        )
        if not excerpt or over_trimmed:
            logger.debug(
                "reduction_fallback_full_strip",
                source_chars=source_len,
                excerpt_chars=len(excerpt),
                ratio=round(ratio, 3),
            )
            excerpt = source_text
            method = ExtractionMethod.FULL_STRIP

        if image_block:
            excerpt = f"{excerpt}\n\n{image_block}" if excerpt else image_block

        return excerpt, method, images, source_len

    def _structured_data(self, markup: str, soup: BeautifulSoup) -> list[str]:
        """Order, product and offer nodes from embedded schema.org metadata.

        extruct reads JSON-LD, microdata and RDFa in one pass. The plain
        JSON-LD scan below only runs when extruct yields nothing usable,
        e.g. when lxml rejects the document.
        """
        found: list[str] = []
        try:
            extracted = extruct.extract(markup, syntaxes=_STRUCTURED_SYNTAXES, uniform=True, errors="ignore")
        except Exception as exc:  # noqa: BLE001
            logger.debug("structured_data_extraction_failed", error=str(exc))
            extracted = {}
        for syntax in _STRUCTURED_SYNTAXES:
            for node in _order_nodes(extracted.get(syntax) or []):
                _append_unique(found, node)
        if found:
            return found

        for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.I)}):
            raw = script.string or script.get_text() or ""
            if not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            for node in _order_nodes(data):
                _append_unique(found, node)
        return found

    def _keyword_sections(self, soup: BeautifulSoup) -> list[str]:
        selected_ids: set[int] = set()
        texts: list[str] = []
        seen: set[str] = set()

        for el in soup.find_all(_BLOCK_TAGS):
            if any(id(parent) in selected_ids for parent in el.parents):
                continue

            attr_hint = " ".join(_attr_values(el.get("class"))) + " " + " ".join(_attr_values(el.get("id")))
            matched = bool(_SECTION_KEYWORD_RE.search(attr_hint))
            if not matched and el.find(_BLOCK_TAGS) is None:
                matched = bool(_SECTION_KEYWORD_RE.search(el.get_text(separator=" ")))
            if not matched:
                continue

            text = normalize_whitespace(el.get_text(separator=" "))
            if len(text) < self.min_block_chars or text in seen:
                continue

            selected_ids.add(id(el))
            seen.add(text)
            texts.append(text)

        return texts

    def _price_rows(self, soup: BeautifulSoup, already: str) -> list[str]:
        rows: list[str] = []
        for tr in soup.find_all("tr"):
            if tr.find("tr") is not None:
                continue
            text = normalize_whitespace(tr.get_text(separator=" "))
            if not text or text in already or text in rows:
                continue
            if _PRICE_RE.search(text) and _QTY_RE.search(text):
                rows.append(text)
        return rows

    def _attribute_texts(self, soup: BeautifulSoup) -> list[str]:
        texts: list[str] = []
        seen: set[str] = set()
        for el in soup.find_all(True):
            for attr, value in el.attrs.items():
                if attr not in _DESCRIPTIVE_ATTRS and not attr.startswith("data-"):
                    continue
                text = normalize_whitespace(" ".join(_attr_values(value)))
                if not _is_descriptive(text) or text.lower() in seen:
                    continue
                seen.add(text.lower())
                texts.append(text)
                if len(texts) >= 100:
                    return texts
        return texts

    def _product_images(self, soup: BeautifulSoup) -> list[ProductImage]:
        images: list[ProductImage] = []
        seen: set[str] = set()
        for img in soup.find_all("img"):
            src = str(img.get("src") or img.get("data-src") or "").strip()
            if not src.lower().startswith(("http://", "https://")) or src in seen:
                continue

            alt = normalize_whitespace(str(img.get("alt") or ""))
            hints = " ".join([src, " ".join(_attr_values(img.get("class"))), str(img.get("id") or "")])
            if _IMAGE_EXCLUDE_RE.search(hints) or _IMAGE_EXCLUDE_RE.search(alt):
                continue
            if _is_tiny(img):
                continue

            seen.add(src)
            images.append(ProductImage(url=src, alt_text=alt, context_text=_image_context(img)))
            if len(images) >= self.max_images:
                break
        return images


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars``, at a sentence end if one lies past 80% of the budget."""

    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    last = -1
    for m in _SENTENCE_END_RE.finditer(cut):
        last = m.end()
    if last >= int(max_chars * 0.8):
        return cut[:last].rstrip()
    return cut


def _order_nodes(data: Any) -> list[dict[str, Any]]:
    nodes: list[dict[str, Any]] = []
    stack = [data]
    while stack:
        node = stack.pop(0)
        if isinstance(node, list):
            stack.extend(node)
            continue
        if not isinstance(node, dict):
            continue
        types = node.get("@type")
        type_names = types if isinstance(types, list) else [types]
        if any(isinstance(t, str) and _type_name(t) in _ORDER_LD_TYPES for t in type_names):
            nodes.append(node)
            continue
        if "@graph" in node:
            stack.append(node["@graph"])
    return nodes


def _type_name(value: str) -> str:
    # RDFa keeps full vocabulary IRIs such as http://schema.org/Order
    return re.split(r"[/#:]", value.strip())[-1].lower()


def _append_unique(found: list[str], node: dict[str, Any]) -> None:
    text = json.dumps(node, separators=(",", ":"), ensure_ascii=False, default=str)
    if text not in found:
        found.append(text)


def _attr_values(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _is_descriptive(text: str) -> bool:
    if len(text) < 3 or len(text) > 200:
        return False
    lowered = text.lower()
    if lowered.startswith(("http://", "https://", "mailto:", "tel:", "#", "{", "[")):
        return False
    if sum(ch.isalpha() for ch in text) < 3:
        return False
    return not _IMAGE_EXCLUDE_RE.fullmatch(lowered)


def _dimension(value: Any) -> int | None:
    if value is None:
        return None
    m = re.match(r"\s*(\d+)", str(value))
    return int(m.group(1)) if m else None


def _is_tiny(img: Tag) -> bool:
    width = _dimension(img.get("width"))
    height = _dimension(img.get("height"))
    style = str(img.get("style") or "").replace(" ", "").lower()
    if width is None:
        m = re.search(r"(?:^|;)width:(\d+)px", style)
        width = int(m.group(1)) if m else None
    if height is None:
        m = re.search(r"(?:^|;)height:(\d+)px", style)
        height = int(m.group(1)) if m else None
    return (width is not None and width <= 50) or (height is not None and height <= 50)


def _image_context(img: Tag) -> str:
    container = img.find_parent(["td", "div", "li", "tr"])
    if container is None:
        return ""
    return normalize_whitespace(container.get_text(separator=" "))[:200]


def _format_images(images: list[ProductImage]) -> str:
    if not images:
        return ""
    lines = ["Product images:"]
    for image in images:
        label = image.alt_text or image.context_text[:80]
        lines.append(f"- {image.url}" + (f" ({label})" if label else ""))
    return "\n".join(lines)
