"""Gmail integration package."""

from .client import GmailClient
from .parsing import message_to_raw_email
from .query import build_purchase_query

__all__ = ["GmailClient", "build_purchase_query", "message_to_raw_email"]
