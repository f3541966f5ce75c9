"""Gmail API client implementation.

This module provides the email source used by the scanner: one OAuth token
per account, a purchase search query and full-message retrieval.

Notes:
    The Google API client is synchronous. This project wraps those calls using
    `asyncio.to_thread` so the scanner can remain async.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn

import structlog

from purchase_scanner.config import Settings
from purchase_scanner.exceptions import AuthenticationError, ConfigurationError, GmailAPIError
from purchase_scanner.gmail.parsing import message_to_raw_email
from purchase_scanner.gmail.query import build_purchase_query
from purchase_scanner.models import MessageRef, RawEmail
from purchase_scanner.utils import http_status, retry_on_failure

logger = structlog.get_logger()

_TOKEN_NAME_RE = re.compile(r"[^A-Za-z0-9@._-]+")


class GmailClient:
    """Gmail API client for purchase scanning.

    Services are built lazily and cached per account.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from purchase_scanner.config import get_settings

        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        logger.info("gmail_client_initialized")

    def token_path(self, account: str) -> Path:
        """Token file for ``account`` under the configured token directory."""

        safe = _TOKEN_NAME_RE.sub("_", account).strip("._") or "default"
        return Path(self.settings.gmail_token_dir) / f"{safe}.json"

    async def authenticate(self, account: str) -> None:
        """Authenticate ``account`` with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the credentials file is missing.
            AuthenticationError: If authentication fails.
        """

        if account in self._services:
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = self.token_path(account)
        scope = self.settings.gmail_scope

        if not credentials_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {credentials_path}. "
                "See README.md -> Gmail API Setup."
            )

        logger.info(
            "gmail_authentication_started",
            account=account,
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            service = await asyncio.to_thread(
                self._build_service,
                credentials_path,
                token_path,
                scope,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", account=account, error=str(exc))
            raise AuthenticationError(str(exc)) from exc

        self._services[account] = service
        logger.info("gmail_authentication_completed", account=account)

    async def search_candidates(self, account: str, since: datetime) -> list[MessageRef]:
        """List candidate purchase emails received after ``since``.

        Raises:
            AuthenticationError: If the account cannot be authenticated.
            GmailAPIError: If the API request fails.
        """

        await self.authenticate(account)
        query = build_purchase_query(since)
        max_results = self.settings.gmail_max_results

        logger.info("searching_purchase_emails", account=account, max_results=max_results, query=query)

        try:
            messages = await asyncio.to_thread(
                self._list_messages_sync, self._services[account], max_results, query
            )
        except Exception as exc:  # noqa: BLE001
            self._raise_api_error("gmail_list_messages_failed", account, exc)

        refs = [
            MessageRef(id=str(m["id"]), thread_id=m.get("threadId"))
            for m in messages
            if m.get("id")
        ]
        logger.info("purchase_emails_found", account=account, count=len(refs))
        return refs

    async def fetch_content(self, account: str, ref: MessageRef) -> RawEmail:
        """Fetch the full message and convert it to ``RawEmail``.

        Raises:
            AuthenticationError: If the account's credentials were revoked.
            GmailAPIError: If the API request fails.
        """

        await self.authenticate(account)

        logger.debug("getting_message", account=account, message_id=ref.id)

        try:
            message = await asyncio.to_thread(self._get_message_sync, self._services[account], ref.id)
        except Exception as exc:  # noqa: BLE001
            self._raise_api_error("gmail_get_message_failed", account, exc, message_id=ref.id)

        return message_to_raw_email(message)

    def _raise_api_error(self, event: str, account: str, exc: Exception, **context: Any) -> NoReturn:
        status = http_status(exc)
        logger.error(event, account=account, status=status, error=str(exc), **context)
        if status in (401, 403):
            self._services.pop(account, None)
            raise AuthenticationError(str(exc)) from exc
        raise GmailAPIError(str(exc)) from exc

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            creds.refresh(Request())
            token_path.write_text(creds.to_json(), encoding="utf-8")

        if creds is None or not creds.valid:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        # cache_discovery=False prevents writing discovery docs to disk.
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    @retry_on_failure(max_retries=2, delay=1.0)
    def _list_messages_sync(self, service: Any, max_results: int, query: str) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []

        page_token: str | None = None
        while len(messages) < max_results:
            per_page = min(500, max_results - len(messages))
            request = (
                service.users()
                .messages()
                .list(userId="me", maxResults=per_page, q=query, pageToken=page_token)
            )
            response = request.execute()
            messages.extend(response.get("messages", []) or [])
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        return messages[:max_results]

    @retry_on_failure(max_retries=2, delay=1.0)
    def _get_message_sync(self, service: Any, message_id: str) -> dict[str, Any]:
        return service.users().messages().get(userId="me", id=message_id, format="full").execute()
