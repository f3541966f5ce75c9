"""Integration tests with the Gmail API.

These need a ``credentials.json`` and an existing token for the account in
``PURCHASE_SCANNER_TEST_ACCOUNT``; the first run opens a browser for consent.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from purchase_scanner.config import Settings
from purchase_scanner.gmail import GmailClient

ACCOUNT = os.environ.get("PURCHASE_SCANNER_TEST_ACCOUNT", "")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.environ.get("PURCHASE_SCANNER_RUN_INTEGRATION") != "1" or not ACCOUNT,
        reason="set PURCHASE_SCANNER_RUN_INTEGRATION=1 and PURCHASE_SCANNER_TEST_ACCOUNT",
    ),
]


@pytest.mark.asyncio
async def test_search_and_fetch_candidates() -> None:
    """Search the last 90 days and fetch the first candidate in full."""
    client = GmailClient(Settings(gmail_max_results=5))

    refs = await client.search_candidates(ACCOUNT, datetime.now(timezone.utc) - timedelta(days=90))

    assert len(refs) <= 5
    if refs:
        email = await client.fetch_content(ACCOUNT, refs[0])
        assert email.id == refs[0].id
        assert email.body
