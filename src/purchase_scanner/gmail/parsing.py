"""Helpers for parsing Gmail API messages into ``RawEmail``."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from purchase_scanner.models import RawEmail


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first.
            result.setdefault(name.lower(), value)
    return result


def decode_body_data(data: str) -> str:
    """Decode Gmail's base64url body data, tolerating missing padding."""

    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        return ""
    return raw.decode("utf-8", errors="replace")


def _walk_parts(part: dict[str, Any], html: list[str], plain: list[str]) -> None:
    mime = (part.get("mimeType") or "").lower()
    body = part.get("body") or {}
    data = body.get("data")
    # Attachments carry a filename; skip them even when they are text/*.
    if data and not part.get("filename"):
        if mime.startswith("text/html"):
            html.append(decode_body_data(data))
        elif mime.startswith("text/plain"):
            plain.append(decode_body_data(data))

    for child in part.get("parts") or []:
        _walk_parts(child, html, plain)


def extract_body(message: dict[str, Any]) -> str:
    """Best-effort body of a ``format=full`` message, preferring HTML parts."""

    html: list[str] = []
    plain: list[str] = []
    _walk_parts(message.get("payload") or {}, html, plain)

    if html:
        return "\n".join(html).strip()
    if plain:
        return "\n\n".join(plain).strip()
    return (message.get("snippet") or "").strip()


def _received_at(message: dict[str, Any], date_header: str | None) -> datetime | None:
    internal_date_raw = message.get("internalDate")
    try:
        if internal_date_raw is not None:
            return datetime.fromtimestamp(int(internal_date_raw) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        pass

    if not date_header:
        return None
    try:
        return parsedate_to_datetime(date_header)
    except (TypeError, ValueError, OverflowError):
        return None


def message_to_raw_email(message: dict[str, Any]) -> RawEmail:
    """Convert a Gmail API message (format=full) to RawEmail.

    Args:
        message: Gmail API message dict.

    Returns:
        RawEmail: Subject, sender, labels and the best available body.
    """

    hm = _header_map(message)

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []

    return RawEmail(
        id=str(message.get("id") or ""),
        subject=hm.get("subject") or "",
        from_raw=hm.get("from") or "",
        body=extract_body(message),
        labels=tuple(str(x) for x in label_ids if isinstance(x, str)),
        received_at=_received_at(message, hm.get("date")),
    )
