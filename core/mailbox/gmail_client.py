"""
Gmail-backed mailbox client.

`GmailTransport` is the thin synchronous API wrapper; `MailboxClient` adds the
candidate query, rate-limited batch fetching, body extraction and disposal.
"""
from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional, Sequence

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.errors import TransportError
from core.mailbox.body import extract_body, header_value
from core.mailbox.models import DisposePolicy, RawEmail

log = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
TOKEN_URI = "https://oauth2.googleapis.com/token"

TRANSPORT_EXCEPTIONS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError)

_DISPOSE_LABELS: Dict[DisposePolicy, List[str]] = {
    DisposePolicy.MARK_READ: ["UNREAD"],
    DisposePolicy.ARCHIVE: ["INBOX"],
    DisposePolicy.MARK_READ_AND_ARCHIVE: ["UNREAD", "INBOX"],
}


def load_credentials(
    *,
    token_path: str = "",
    client_id: str = "",
    client_secret: str = "",
    refresh_token: str = "",
) -> Credentials:
    """
    Build Gmail credentials from an authorized-user token file or a refresh token.

    The interactive OAuth consent flow lives outside this project.
    """
    if token_path and os.path.exists(token_path):
        return Credentials.from_authorized_user_file(token_path, SCOPES)
    if refresh_token and client_id and client_secret:
        return Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            token_uri=TOKEN_URI,
            scopes=SCOPES,
        )
    raise TransportError(
        "Gmail credentials not configured. Set GMAIL_TOKEN_PATH or "
        "GMAIL_CLIENT_ID, GMAIL_CLIENT_SECRET and GMAIL_REFRESH_TOKEN."
    )


class GmailTransport:
    """Synchronous Gmail REST calls; each thread gets its own service object."""

    def __init__(self, credentials: Credentials, *, timeout: float = 30.0, user_id: str = "me"):
        self._credentials = credentials
        self._timeout = timeout
        self._user_id = user_id
        self._local = threading.local()

    def _service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self._timeout))
            service = build("gmail", "v1", http=http, cache_discovery=False)
            self._local.service = service
        return service

    def list_message_ids(self, query: str, max_results: int) -> List[str]:
        ids: List[str] = []
        page_token: Optional[str] = None
        while len(ids) < max_results:
            response = (
                self._service()
                .users()
                .messages()
                .list(
                    userId=self._user_id,
                    q=query,
                    maxResults=min(500, max_results - len(ids)),
                    pageToken=page_token,
                )
                .execute()
            )
            ids.extend(m["id"] for m in response.get("messages", []) if m.get("id"))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return ids[:max_results]

    def get_message(self, message_id: str) -> Dict:
        return (
            self._service()
            .users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
            .execute()
        )

    def modify(self, message_id: str, remove_labels: Sequence[str]) -> None:
        (
            self._service()
            .users()
            .messages()
            .modify(
                userId=self._user_id,
                id=message_id,
                body={"removeLabelIds": list(remove_labels)},
            )
            .execute()
        )

    def delete(self, message_id: str) -> None:
        self._service().users().messages().delete(userId=self._user_id, id=message_id).execute()

    def profile_email(self) -> str:
        profile = self._service().users().getProfile(userId=self._user_id).execute()
        return profile.get("emailAddress") or ""


def _received_at(message: Dict, payload: Dict) -> datetime:
    internal = message.get("internalDate")
    if internal:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass
    date_header = header_value(payload, "Date")
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (TypeError, ValueError):
            pass
    return datetime.now(timezone.utc)


def parse_message(message: Dict) -> RawEmail:
    """Turn a `format=full` Gmail message into a RawEmail."""
    payload = message.get("payload") or {}
    return RawEmail(
        id=message.get("id") or "",
        subject=header_value(payload, "Subject"),
        sender=header_value(payload, "From"),
        body=extract_body(payload),
        received_at=_received_at(message, payload),
        thread_id=message.get("threadId"),
    )


class MailboxClient:
    def __init__(
        self,
        transport: GmailTransport,
        *,
        batch_size: int = 10,
        batch_delay: float = 0.2,
        fetch_timeout: float = 30.0,
        max_results: int = 100,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._transport = transport
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.fetch_timeout = fetch_timeout
        self.max_results = max_results

    @classmethod
    def from_settings(cls, settings) -> "MailboxClient":
        credentials = load_credentials(
            token_path=settings.gmail_token_path,
            client_id=settings.gmail_client_id,
            client_secret=settings.gmail_client_secret,
            refresh_token=settings.gmail_refresh_token,
        )
        transport = GmailTransport(credentials, timeout=settings.mail_fetch_timeout)
        return cls(
            transport,
            batch_size=settings.mail_batch_size,
            batch_delay=settings.mail_batch_delay,
            fetch_timeout=settings.mail_fetch_timeout,
            max_results=settings.mail_max_results,
        )

    @staticmethod
    def build_query(window_days: int) -> str:
        return f"is:unread newer_than:{int(window_days)}d"

    def list_candidates(self, window_days: int) -> List[str]:
        """Unread message ids received within `window_days`, newest first."""
        query = self.build_query(window_days)
        try:
            ids = self._transport.list_message_ids(query, self.max_results)
        except TRANSPORT_EXCEPTIONS as exc:
            raise TransportError(f"Failed to list messages: {exc}") from exc
        # Gmail may repeat an id across pages; keep first occurrence.
        return list(dict.fromkeys(ids))

    async def _fetch_one(self, message_id: str) -> Optional[RawEmail]:
        try:
            message = await asyncio.wait_for(
                asyncio.to_thread(self._transport.get_message, message_id),
                timeout=self.fetch_timeout,
            )
            return parse_message(message)
        except asyncio.TimeoutError:
            log.warning("Message fetch timed out", extra={"message_id": message_id})
        except Exception as exc:
            log.warning("Failed to fetch message", extra={"message_id": message_id, "error": str(exc)})
        return None

    async def fetch_details(self, message_ids: Sequence[str]) -> List[RawEmail]:
        """
        Fetch full messages in fixed-size batches with a pause between batches.

        A failed or timed-out fetch drops only that message.
        """
        ids = list(message_ids)
        emails: List[RawEmail] = []
        for start in range(0, len(ids), self.batch_size):
            batch = ids[start : start + self.batch_size]
            results = await asyncio.gather(*(self._fetch_one(mid) for mid in batch))
            emails.extend(e for e in results if e is not None)
            if start + self.batch_size < len(ids) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
        log.info("Fetched message details", extra={"requested": len(ids), "fetched": len(emails)})
        return emails

    def dispose(self, message_id: str, policy: DisposePolicy) -> bool:
        """
        Apply `policy` to a processed message. Returns True when the message
        left the inbox (archived or deleted).

        Failures are logged only; the ledger already prevents reprocessing.
        """
        if policy is DisposePolicy.NONE:
            return False
        try:
            if policy is DisposePolicy.DELETE:
                self._transport.delete(message_id)
            else:
                self._transport.modify(message_id, _DISPOSE_LABELS[policy])
        except TRANSPORT_EXCEPTIONS as exc:
            log.error(
                "Failed to dispose message",
                extra={"message_id": message_id, "policy": policy.value, "error": str(exc)},
            )
            return False
        log.info("Disposed message", extra={"message_id": message_id, "policy": policy.value})
        return policy.removes_from_inbox

    def test_connection(self) -> bool:
        try:
            address = self._transport.profile_email()
        except TRANSPORT_EXCEPTIONS as exc:
            log.error("Gmail connection failed", extra={"error": str(exc)})
            return False
        log.info("Gmail connection OK", extra={"address": address})
        return True


__all__ = [
    "SCOPES",
    "GmailTransport",
    "MailboxClient",
    "load_credentials",
    "parse_message",
]
