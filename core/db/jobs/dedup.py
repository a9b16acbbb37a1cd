"""
Dedup keys for extracted jobs.

Two candidates describe the same posting when their keys match. With the
"url" precedence a normalized, non-generic application URL identifies the
posting; otherwise (or always, with "fields") title + company + source do.
"""
from __future__ import annotations

import hashlib
import re
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = {
    "trk",
    "trkemail",
    "trackingid",
    "refid",
    "lipi",
    "midtoken",
    "midsig",
    "eid",
    "otptoken",
    "ssid",
    "fbclid",
    "gclid",
}

_WS_RE = re.compile(r"\s+")


def _field(candidate: Any, name: str) -> Any:
    if isinstance(candidate, dict):
        return candidate.get(name)
    return getattr(candidate, name, None)


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def normalize_url(url: Optional[str]) -> Optional[str]:
    """
    Canonical form of an application URL, or None when the URL is generic.

    Scheme and host are lowercased; fragment, tracking parameters and
    trailing slashes are dropped; remaining parameters are sorted.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.netloc:
        return None
    path = parts.path.rstrip("/")
    if not path:
        return None
    query = sorted(
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking_param(k)
    )
    return urlunsplit((scheme, parts.netloc.lower(), path, urlencode(query), ""))


def is_generic_url(url: Optional[str]) -> bool:
    return normalize_url(url) is None


def _norm_text(value: Any) -> str:
    return _WS_RE.sub(" ", str(value or "")).strip().lower()


def _digest(kind: str, canonical: str) -> str:
    return f"{kind}:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_dedup_key(candidate: Any, precedence: str = "url") -> str:
    if precedence not in ("url", "fields"):
        raise ValueError(f"Unknown dedup precedence {precedence!r}")

    if precedence == "url":
        url = normalize_url(_field(candidate, "apply_url"))
        if url:
            return _digest("url", url)

    canonical = "|".join(
        _norm_text(_field(candidate, name)) for name in ("title", "company", "source")
    )
    return _digest("fields", canonical)


__all__ = [
    "TRACKING_PARAMS",
    "compute_dedup_key",
    "is_generic_url",
    "normalize_url",
]
