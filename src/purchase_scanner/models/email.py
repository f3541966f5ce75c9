"""Raw email models handed from the email source to the extraction core."""

from __future__ import annotations

from datetime import datetime
from email.utils import parseaddr

from pydantic import BaseModel, ConfigDict, Field


class MessageRef(BaseModel):
    """Pointer to a candidate message returned by an email search."""

    id: str = Field(description="Provider message ID")
    thread_id: str | None = Field(default=None, description="Provider thread ID")


class RawEmail(BaseModel):
    """An immutable email as fetched from the provider.

    ``body`` holds HTML when the message has an HTML part and plain text
    otherwise; the reducer sniffs which one it received.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Provider message ID")
    subject: str = Field(default="", description="Subject header")
    from_raw: str = Field(default="", description="Raw From header, display name included")
    body: str = Field(default="", description="HTML or plain-text body")
    labels: tuple[str, ...] = Field(default=(), description="Provider label IDs")
    received_at: datetime | None = Field(default=None, description="Message timestamp")

    @property
    def from_email(self) -> str:
        """Sender address, lowercased, or an empty string."""
        _, addr = parseaddr(self.from_raw or "")
        return addr.strip().lower()

    @property
    def sender_domain(self) -> str:
        """Domain part of the sender address (e.g. ``email.levi.com``)."""
        addr = self.from_email
        if "@" not in addr:
            return ""
        return addr.rsplit("@", 1)[1].strip(". >")

    @property
    def is_html(self) -> bool:
        head = self.body[:2000].lower()
        return "<html" in head or "<body" in head or "<div" in head or "<table" in head or "<p" in head
