"""
Text extraction from Gmail API message payloads.

A payload is the nested dict returned by `users.messages.get(format="full")`:
each node has a `mimeType`, an optional `body.data` (base64url) and optional
`parts`. Leaves of type text/plain and text/html are decoded and concatenated
in document order; the result is sanitized into a single line of plain text.
"""
from __future__ import annotations

import base64
import binascii
import html as html_mod
import logging
import re

from core.errors import ParseError

log = logging.getLogger(__name__)

TEXT_MIME_TYPES = ("text/plain", "text/html")
_MAX_SANITIZE_PASSES = 5

_BLOCK_RE = re.compile(r"<(style|script)[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def decode_part_data(data: str) -> str:
    """Decode a base64url body chunk; padding is optional in Gmail payloads."""
    if not isinstance(data, str):
        raise ParseError("body data is not a string")
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise ParseError(f"invalid base64 body: {exc}") from exc
    return raw.decode("utf-8", errors="replace")


def _collect_text(node, chunks: list[str], depth: int = 0) -> None:
    if not isinstance(node, dict):
        raise ParseError("payload node is not an object")
    if depth > 50:
        raise ParseError("payload nesting too deep")

    body = node.get("body") or {}
    data = body.get("data") if isinstance(body, dict) else None
    parts = node.get("parts")
    mime_type = (node.get("mimeType") or "").lower()

    if data and (not parts) and (mime_type in TEXT_MIME_TYPES or depth == 0):
        try:
            chunks.append(decode_part_data(data))
        except ParseError as exc:
            log.debug("Skipping undecodable part", extra={"mime_type": mime_type, "error": str(exc)})
        return

    if isinstance(parts, list):
        for part in parts:
            part_type = (part.get("mimeType") or "").lower() if isinstance(part, dict) else ""
            if part_type in TEXT_MIME_TYPES or (isinstance(part, dict) and part.get("parts")):
                _collect_text(part, chunks, depth + 1)


def _sanitize_once(text: str) -> str:
    text = _BLOCK_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = html_mod.unescape(text)
    text = text.replace("\xa0", " ")
    return _WS_RE.sub(" ", text).strip()


def sanitize_text(text: str | None) -> str:
    """
    Strip tags, decode entities and collapse whitespace.

    Applied until the text stops changing so that sanitize_text(sanitize_text(x))
    equals sanitize_text(x), even when decoded entities reveal new markup.
    """
    if not text:
        return ""
    current = text
    for _ in range(_MAX_SANITIZE_PASSES):
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned
    # Escaped markup nested deeper than the pass budget: drop markup characters.
    return _WS_RE.sub(" ", re.sub(r"[<>&]", " ", current)).strip()


def extract_body(payload) -> str:
    """
    Return the sanitized text of a message payload.

    Never raises: malformed structure or undecodable parts give an empty body.
    """
    chunks: list[str] = []
    try:
        _collect_text(payload, chunks)
    except ParseError as exc:
        log.warning("Unparseable message body", extra={"error": str(exc)})
        return ""
    return sanitize_text(" ".join(chunks))


def header_value(payload, name: str, default: str = "") -> str:
    if not isinstance(payload, dict):
        return default
    wanted = name.lower()
    for header in payload.get("headers") or []:
        if isinstance(header, dict) and (header.get("name") or "").lower() == wanted:
            return header.get("value") or default
    return default


__all__ = ["TEXT_MIME_TYPES", "decode_part_data", "extract_body", "header_value", "sanitize_text"]
