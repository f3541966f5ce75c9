"""Purchase Scanner - verified clothing purchases from order emails.

This package reduces retailer confirmation emails to a compact excerpt, asks
an LLM to extract line items, and keeps only the items a deterministic
verifier can ground back in the email.
"""

__version__ = "0.1.0"

from purchase_scanner.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
