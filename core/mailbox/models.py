"""
Mailbox-side value types.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class RawEmail:
    id: str
    subject: str
    sender: str
    body: str
    received_at: datetime
    thread_id: Optional[str] = None


class DisposePolicy(str, Enum):
    """What happens to a message once the pipeline is done with it."""

    NONE = "none"
    MARK_READ = "mark_read"
    ARCHIVE = "archive"
    MARK_READ_AND_ARCHIVE = "mark_read_and_archive"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: str) -> "DisposePolicy":
        normalized = (value or "").strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(
            f"Unknown dispose policy {value!r}; expected one of "
            + ", ".join(p.value for p in cls)
        )

    @property
    def removes_from_inbox(self) -> bool:
        return self in (
            DisposePolicy.ARCHIVE,
            DisposePolicy.MARK_READ_AND_ARCHIVE,
            DisposePolicy.DELETE,
        )


__all__ = ["RawEmail", "DisposePolicy"]
