"""
Mailbox access: Gmail transport, batched fetching and body sanitization.
"""
from core.mailbox.body import extract_body, sanitize_text
from core.mailbox.gmail_client import GmailTransport, MailboxClient, load_credentials, parse_message
from core.mailbox.models import DisposePolicy, RawEmail

__all__ = [
    "extract_body",
    "sanitize_text",
    "GmailTransport",
    "MailboxClient",
    "load_credentials",
    "parse_message",
    "DisposePolicy",
    "RawEmail",
]
