"""BeautifulSoup helpers shared by the reducer and the verifier."""

from __future__ import annotations

import html as html_lib
import re

from bs4 import BeautifulSoup

_TAG_RE = re.compile(r"<[^>]+>")
_STYLE_SCRIPT_RE = re.compile(r"<(script|style|head)[^>]*>.*?</\1>", re.S | re.I)
_WS_RE = re.compile(r"\s+")

_DROP_TAGS = ["script", "style", "head", "meta", "noscript", "title"]


def make_soup(markup: str) -> BeautifulSoup:
    """Parse HTML with lxml, falling back to the stdlib parser."""

    try:
        return BeautifulSoup(markup, "lxml")
    except Exception:  # noqa: BLE001
        return BeautifulSoup(markup, "html.parser")


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def html_to_text(markup: str) -> str:
    """Convert HTML to whitespace-normalized plain text."""

    if not markup:
        return ""

    soup = make_soup(markup)
    for element in soup(_DROP_TAGS):
        element.decompose()

    return normalize_whitespace(soup.get_text(separator=" "))


def regex_strip(markup: str) -> str:
    """Best-effort tag strip that cannot fail, for when parsing does."""

    text = _STYLE_SCRIPT_RE.sub(" ", markup or "")
    text = _TAG_RE.sub(" ", text)
    return normalize_whitespace(html_lib.unescape(text))
