"""
Validation of raw extractor output into JobCandidate models.

The extractor is a black box that returns "a list of dicts"; nothing about
the shape is trusted until it passes through `coerce_candidates`.
"""
from __future__ import annotations

import logging
import math
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

log = logging.getLogger(__name__)

SENDER_SOURCES = (
    ("linkedin", "LinkedIn"),
    ("jobstreet", "JobStreet"),
    ("indeed", "Indeed"),
    ("glassdoor", "Glassdoor"),
)

_TRUE_STRINGS = {"true", "yes", "y", "1", "remote"}


def source_from_sender(sender: Optional[str]) -> Optional[str]:
    """Map a From header to a job-board label, or None when unrecognized."""
    lowered = (sender or "").lower()
    for needle, label in SENDER_SOURCES:
        if needle in lowered:
            return label
    return None


def _clean_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class JobCandidate(BaseModel):
    """One job posting proposed by the extractor, not yet deduplicated."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str
    company: str
    location: Optional[str] = None
    is_remote: bool = Field(default=False, validation_alias=AliasChoices("is_remote", "isRemote"))
    description: Optional[str] = None
    apply_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("apply_url", "applyUrl", "url"))
    salary: Optional[str] = None
    posted_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("posted_date", "postedDate"))
    source: Optional[str] = None
    relevance_score: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("relevance_score", "relevanceScore")
    )

    @field_validator(
        "title",
        "company",
        "location",
        "description",
        "apply_url",
        "salary",
        "posted_date",
        "source",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value):
        return _clean_str(value)

    @field_validator("is_remote", mode="before")
    @classmethod
    def _coerce_remote(cls, value):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        if isinstance(value, (int, float)):
            return bool(value)
        return False

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _clamp_score(cls, value):
        if value is None or isinstance(value, bool):
            return None
        try:
            score = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(score):
            return None
        return min(1.0, max(0.0, score))


def _unwrap(raw: Any) -> List[Any]:
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in ("jobs", "job_listings", "results"):
            if isinstance(raw.get(key), list):
                return raw[key]
    if raw is not None:
        log.warning("Extractor output is not a list", extra={"type": type(raw).__name__})
    return []


def coerce_candidates(raw: Any, sender: Optional[str] = None) -> List[JobCandidate]:
    """
    Validate extractor output. Items missing a title or company are dropped
    with a warning; the rest are normalized (blank strings become None,
    scores clamped to [0, 1], source inferred from the sender when absent).
    """
    fallback_source = source_from_sender(sender)
    candidates: List[JobCandidate] = []

    for index, item in enumerate(_unwrap(raw)):
        if not isinstance(item, dict):
            log.warning("Dropping non-object candidate", extra={"index": index})
            continue
        try:
            candidate = JobCandidate.model_validate(item)
        except ValidationError as exc:
            log.warning(
                "Dropping invalid candidate",
                extra={"index": index, "errors": exc.error_count(), "title": item.get("title")},
            )
            continue
        if candidate.source is None and fallback_source:
            candidate = candidate.model_copy(update={"source": fallback_source})
        candidates.append(candidate)

    return candidates


__all__ = ["SENDER_SOURCES", "JobCandidate", "coerce_candidates", "source_from_sender"]
