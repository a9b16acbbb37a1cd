"""
Error taxonomy shared by the stores, the mailbox client and the worker.
"""
from __future__ import annotations


class JobDigestError(Exception):
    """Base class for every domain error raised by this project."""


class TransportError(JobDigestError):
    """The mailbox (or its auth) could not be reached."""


class ParseError(JobDigestError):
    """A message body could not be decoded."""


class ExtractionError(JobDigestError):
    """The job extractor failed or timed out."""


class DuplicateRecordError(JobDigestError):
    """A ledger record already exists for this message id."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} is already recorded as processed")
        self.message_id = message_id


class NotFoundError(JobDigestError):
    """A referenced row does not exist."""


class StageNotFoundError(NotFoundError):
    pass


class StageInUseError(JobDigestError):
    def __init__(self, stage_id: int, in_use: int):
        super().__init__(f"Stage {stage_id} is used by {in_use} tracked job(s)")
        self.stage_id = stage_id
        self.in_use = in_use


class StageNotVisibleError(JobDigestError):
    def __init__(self, stage_id: int, user_id: int | None):
        super().__init__(f"Stage {stage_id} is not visible to user {user_id}")
        self.stage_id = stage_id
        self.user_id = user_id


class StageReadOnlyError(StageNotVisibleError):
    """System stages cannot be renamed, recoloured or deleted by a user."""

    def __init__(self, stage_id: int, user_id: int | None):
        super().__init__(stage_id, user_id)
        self.args = (f"Stage {stage_id} is a system stage and cannot be modified",)


class StageConflictError(JobDigestError):
    """Stage name or sort order collides with another visible stage."""


class ReorderTransactionError(JobDigestError):
    """A reorder request could not be applied; nothing was changed."""


class NotificationError(JobDigestError):
    """A notification could not be delivered. The message never carries credentials."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "JobDigestError",
    "TransportError",
    "ParseError",
    "ExtractionError",
    "DuplicateRecordError",
    "NotFoundError",
    "StageNotFoundError",
    "StageInUseError",
    "StageNotVisibleError",
    "StageReadOnlyError",
    "StageConflictError",
    "ReorderTransactionError",
    "NotificationError",
]