"""
Telegram notifications for newly found jobs and the daily summary.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

import requests

from core.database import get_notifiable_users
from core.errors import NotificationError
from core.retry import retry

log = logging.getLogger("worker")

API_BASE = "https://api.telegram.org"
MAX_MESSAGE_CHARS = 4000


def format_job(index: int, job: Dict) -> str:
    lines = [f"{index}. {job.get('title')} at {job.get('company')}"]
    details = [job.get("location") or "", "Remote" if job.get("is_remote") else ""]
    detail = " | ".join(d for d in details if d)
    if detail:
        lines.append(detail)
    score = job.get("relevance_score")
    if score is not None:
        lines.append(f"Match: {round(float(score) * 100)}%")
    if job.get("apply_url"):
        lines.append(job["apply_url"])
    return "\n".join(lines)


def _chunk(header: str, blocks: Iterable[str]) -> List[str]:
    """Pack blocks into messages under Telegram's size limit."""
    messages: List[str] = []
    current = header
    for block in blocks:
        if len(current) + len(block) > MAX_MESSAGE_CHARS and current != header:
            messages.append(current.rstrip())
            current = ""
        current += block
    if current.strip():
        messages.append(current.rstrip())
    return messages


def build_messages(jobs: List[Dict]) -> List[str]:
    """Split the job list into messages under Telegram's size limit."""
    header = f"{len(jobs)} new job(s) found\n"
    return _chunk(header, (format_job(idx, job) + "\n\n" for idx, job in enumerate(jobs, start=1)))


def build_summary_messages(summary: Dict, day: str) -> List[str]:
    """Daily digest: counts, top sources, then remote and on-site matches by score."""
    lines = [
        f"Daily summary for {day}",
        f"Jobs found: {summary.get('jobs', 0)}",
        f"Relevant jobs: {summary.get('relevant', 0)}",
        f"Emails processed: {summary.get('emails', 0)}",
    ]
    sources = summary.get("top_sources") or []
    if sources:
        lines.append("Top sources:")
        lines.extend(f"- {s['source']}: {s['count']}" for s in sources)
    header = "\n".join(lines) + "\n\n"

    jobs = [j for j in summary.get("relevant_jobs") or [] if j.get("apply_url")]
    if not jobs:
        return _chunk(header + "No relevant opportunities today.", [])

    def by_score(job: Dict) -> float:
        return -(job.get("relevance_score") or 0)

    remote = sorted((j for j in jobs if j.get("is_remote")), key=by_score)
    onsite = sorted((j for j in jobs if not j.get("is_remote")), key=by_score)

    blocks: List[str] = []
    index = 1
    for title, group in (("Remote", remote), ("On-site", onsite)):
        if not group:
            continue
        blocks.append(f"{title} ({len(group)}):\n")
        for job in group:
            blocks.append(format_job(index, job) + "\n\n")
            index += 1
    return _chunk(header, blocks)


def _describe(response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("description"):
        return str(body["description"])
    return getattr(response, "reason", "") or "request rejected"


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        *,
        recipients: Optional[Callable[[], Iterable[Dict]]] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.bot_token = bot_token
        self.timeout = timeout
        self._session = session or requests.Session()
        self._recipients = recipients or get_notifiable_users
        if not bot_token:
            log.warning("TELEGRAM_BOT_TOKEN not set; notifications disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)

    @retry(attempts=3, retry_on=(requests.ConnectionError, requests.Timeout))
    def _post(self, method: str, payload: Dict):
        return self._session.post(f"{API_BASE}/bot{self.bot_token}/{method}", json=payload, timeout=self.timeout)

    def send_message(self, chat_id: str, text: str) -> None:
        """
        Send one message. Raises NotificationError.

        Request errors embed the bot URL (and so the token) in their text, so
        only the error type and Telegram's own description are passed on.
        """
        try:
            response = self._post(
                "sendMessage",
                {"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
            )
        except requests.RequestException as exc:
            raise NotificationError(f"Telegram request failed ({type(exc).__name__})") from None
        if response.status_code >= 400:
            raise NotificationError(
                f"Telegram returned {response.status_code}: {_describe(response)}",
                status_code=response.status_code,
            )

    def _broadcast(self, messages: List[str]) -> int:
        users = list(self._recipients())
        if not users:
            log.info("No users with a Telegram chat; skipping notification")
            return 0

        reached = 0
        last_error: Optional[NotificationError] = None
        for user in users:
            chat_id = user.get("telegram_chat_id")
            try:
                for text in messages:
                    self.send_message(chat_id, text)
                reached += 1
            except NotificationError as exc:
                last_error = exc
                log.error(
                    "Telegram send failed",
                    extra={"user_id": user.get("id"), "status": exc.status_code, "error": str(exc)},
                )

        if reached == 0 and last_error is not None:
            raise last_error
        return reached

    def notify(self, jobs: List[Dict]) -> int:
        """
        Send the jobs to every notifiable user. Returns the number of users reached.

        Raises only when no recipient could be reached, so the caller keeps
        the jobs pending for a later attempt. Once any user is reached the
        jobs count as delivered; users whose send failed miss that batch.
        """
        if not self.enabled or not jobs:
            return 0

        reached = self._broadcast(build_messages(jobs))
        if reached:
            log.info("Telegram notifications sent", extra={"users": reached, "jobs": len(jobs)})
        return reached

    def send_summary(self, summary: Dict, day: str) -> int:
        """Send the daily digest to every notifiable user. Returns the number reached."""
        if not self.enabled:
            return 0
        reached = self._broadcast(build_summary_messages(summary, day))
        log.info("Daily summary sent", extra={"users": reached, "relevant": summary.get("relevant", 0)})
        return reached


__all__ = ["TelegramNotifier", "build_messages", "build_summary_messages", "format_job"]
