"""
Job extractor backed by the OpenAI chat-completions API.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, List

from openai import OpenAI, OpenAIError

from core.errors import ExtractionError

log = logging.getLogger(__name__)

MAX_BODY_CHARS = 12000

SYSTEM_PROMPT = (
    "You are an expert at extracting structured job data from emails. "
    "Return only a valid JSON array."
)

USER_PROMPT = """
Extract job listings from this email. It comes from a job platform such as
LinkedIn, JobStreet, Indeed or Glassdoor.

Email From: {sender}
Email Subject: {subject}
Email Content:
{body}

Return a JSON array of objects with this structure:
[
  {{
    "title": "Job Title",
    "company": "Company Name",
    "location": "Location",
    "isRemote": true,
    "description": "Short job description",
    "applyUrl": "https://...",
    "salary": "Salary range or null",
    "postedDate": "YYYY-MM-DD or null",
    "source": "platform name",
    "relevanceScore": 0.0
  }}
]

Rules:
- Extract every job listing in the email.
- Set isRemote to true when the location mentions remote, work from home or WFH.
- Use null for anything that is not mentioned.
- relevanceScore is your 0-1 estimate of how strong a match the posting is for a software engineer.
- Return [] when the email contains no jobs.
"""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_json_array(content: str) -> List[Any]:
    """Parse model output, tolerating markdown code fences and a wrapping object."""
    cleaned = _FENCE_RE.sub("", content or "").strip()
    if not cleaned:
        return []
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Extractor returned invalid JSON: {exc}") from exc
    if isinstance(data, dict):
        for key in ("jobs", "job_listings", "results"):
            if isinstance(data.get(key), list):
                return data[key]
        raise ExtractionError("Extractor returned an object without a job list")
    if not isinstance(data, list):
        raise ExtractionError(f"Extractor returned {type(data).__name__}, expected a list")
    return data


class OpenAIJobExtractor:
    def __init__(self, api_key: str, *, model: str = "gpt-4o-mini", timeout: float = 60.0, client=None):
        if client is None:
            if not api_key:
                raise ExtractionError("OPENAI_API_KEY is not set")
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=2)
        self._client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings) -> "OpenAIJobExtractor":
        return cls(
            settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.extractor_timeout,
        )

    def extract(self, *, sender: str, subject: str, body: str) -> List[Any]:
        """Return the raw candidate list for one email. Any failure raises ExtractionError."""
        prompt = USER_PROMPT.format(sender=sender, subject=subject, body=(body or "")[:MAX_BODY_CHARS])
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
            )
            content = response.choices[0].message.content or "[]"
        except OpenAIError as exc:
            raise ExtractionError(f"OpenAI request failed: {exc}") from exc
        except (IndexError, AttributeError) as exc:
            raise ExtractionError(f"Unexpected OpenAI response shape: {exc}") from exc

        items = parse_json_array(content)
        log.info("Extracted candidates", extra={"subject": subject, "count": len(items)})
        return items


__all__ = ["MAX_BODY_CHARS", "OpenAIJobExtractor", "parse_json_array"]
