"""
Pipeline orchestrator: mailbox -> extractor -> ledger/job store -> dispose -> notify.

Only one run executes at a time. Within a process the periodic loop and
manual triggers share one Pipeline and its asyncio lock; across processes
(the API and the worker) a Postgres advisory lock decides which run goes.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from core.config import Settings
from core.errors import DuplicateRecordError, TransportError
from core.extraction import JobCandidate, OpenAIJobExtractor, coerce_candidates
from core.mailbox import MailboxClient, RawEmail
from worker.telegram import TelegramNotifier

log = logging.getLogger("worker")


class RunState(str, Enum):
    NOT_RUNNING = "not_running"
    RUNNING = "running"


class Step(str, Enum):
    IDLE = "idle"
    LISTING = "listing"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    DISPOSING = "disposing"


@dataclass
class RunResult:
    success: bool = True
    skipped: bool = False
    emails_seen: int = 0
    emails_processed: int = 0
    jobs_inserted: int = 0
    jobs_discarded: int = 0
    jobs_notified: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


class Pipeline:
    def __init__(self, mailbox, extractor, *, settings: Optional[Settings] = None, store=None, notifier=None):
        if store is None:
            import core.database as store
        self.mailbox = mailbox
        self.extractor = extractor
        self.settings = settings or Settings()
        self.store = store
        self.notifier = notifier
        self.state = Step.IDLE
        self.last_result: Optional[RunResult] = None
        self._lock = asyncio.Lock()

    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def run_state(self) -> RunState:
        return RunState.RUNNING if self.is_running() else RunState.NOT_RUNNING

    @staticmethod
    def _skipped() -> RunResult:
        return RunResult(success=False, skipped=True, error="Pipeline is already running")

    async def run(self) -> RunResult:
        """Run one full cycle, or return a skipped result if one is already in flight."""
        if self._lock.locked():
            log.info("Pipeline already running; trigger skipped", extra={"step": self.state.value})
            return self._skipped()

        async with self._lock:
            try:
                handle = await asyncio.to_thread(self.store.try_acquire_run_lock)
            except Exception as exc:
                log.exception("Could not take the pipeline run lock", extra={"error": str(exc)})
                result = RunResult(success=False, error=f"Run lock unavailable: {exc}")
                self.last_result = result
                return result
            if handle is None:
                log.info("Pipeline running in another process; trigger skipped")
                return self._skipped()

            result = RunResult()
            try:
                await self._run(result)
            except TransportError as exc:
                result.success = False
                result.error = str(exc)
                log.error("Mailbox unavailable; run aborted", extra={"error": str(exc)})
            except Exception as exc:
                result.success = False
                result.error = str(exc)
                log.exception("Pipeline run failed", extra={"error": str(exc)})
            finally:
                self.state = Step.IDLE
                await self._release(handle)
            self.last_result = result

        log.info("Pipeline run finished", extra=result.to_dict())
        return result

    async def _release(self, handle) -> None:
        try:
            await asyncio.to_thread(self.store.release_run_lock, handle)
        except Exception as exc:
            # The lock dies with its connection, so the next run can still start.
            log.exception("Failed to release the pipeline run lock", extra={"error": str(exc)})

    async def _run(self, result: RunResult) -> None:
        s = self.settings

        self.state = Step.LISTING
        ids = await asyncio.to_thread(self.mailbox.list_candidates, s.mail_window_days)
        result.emails_seen = len(ids)
        fresh = await asyncio.to_thread(self.store.filter_unprocessed, ids)
        log.info("Listed messages", extra={"candidates": len(ids), "unprocessed": len(fresh)})
        if not fresh:
            return

        self.state = Step.FETCHING
        emails = await self.mailbox.fetch_details(fresh)

        inserted_jobs: List[Dict] = []
        for email in emails:
            inserted_jobs.extend(await self._process_email(email, result))

        await self._notify(inserted_jobs, result)

    async def _extract(self, email: RawEmail) -> List[JobCandidate]:
        if not email.body:
            log.info("Empty body; nothing to extract", extra={"message_id": email.id})
            return []
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(
                    self.extractor.extract,
                    sender=email.sender,
                    subject=email.subject,
                    body=email.body,
                ),
                timeout=self.settings.extractor_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Extractor timed out", extra={"message_id": email.id})
            return []
        except Exception as exc:
            log.warning("Extraction failed", extra={"message_id": email.id, "error": str(exc)})
            return []
        return coerce_candidates(raw, email.sender)

    async def _process_email(self, email: RawEmail, result: RunResult) -> List[Dict]:
        """Extract, persist and dispose one message. Returns the jobs it inserted."""
        s = self.settings

        self.state = Step.EXTRACTING
        candidates = await self._extract(email)

        self.state = Step.PERSISTING
        inserted: List[Dict] = []
        try:
            if candidates:
                inserted = await asyncio.to_thread(
                    self.store.deduplicate_and_insert, candidates, email.id, s.dedup_precedence
                )
            result.jobs_inserted += len(inserted)
            result.jobs_discarded += len(candidates) - len(inserted)
            try:
                await asyncio.to_thread(
                    self.store.record_processed, email.id, email.sender, len(candidates), email.subject
                )
            except DuplicateRecordError:
                log.info("Message already recorded by another run", extra={"message_id": email.id})
        except Exception as exc:
            log.exception("Failed to persist message", extra={"message_id": email.id, "error": str(exc)})
            return inserted

        result.emails_processed += 1

        self.state = Step.DISPOSING
        policy = s.dispose_policy if candidates else s.empty_policy
        try:
            removed = await asyncio.to_thread(self.mailbox.dispose, email.id, policy)
        except Exception as exc:
            log.exception("Failed to dispose message", extra={"message_id": email.id, "error": str(exc)})
            removed = False
        if removed:
            try:
                await asyncio.to_thread(self.store.mark_deleted, email.id)
            except Exception as exc:
                log.exception("Failed to flag message as removed", extra={"message_id": email.id, "error": str(exc)})

        log.info(
            "Processed message",
            extra={
                "message_id": email.id,
                "candidates": len(candidates),
                "inserted": len(inserted),
                "policy": policy.value,
            },
        )
        return inserted

    async def _notify(self, jobs: List[Dict], result: RunResult) -> None:
        threshold = self.settings.min_relevance_score
        relevant = [j for j in jobs if j.get("relevance_score") is not None and j["relevance_score"] >= threshold]
        if not relevant:
            return
        relevant.sort(key=lambda j: j["relevance_score"], reverse=True)

        if self.notifier is None or not getattr(self.notifier, "enabled", True):
            log.info("Notifier disabled; relevant jobs left pending", extra={"jobs": len(relevant)})
            return

        try:
            await asyncio.to_thread(self.notifier.notify, relevant)
        except Exception as exc:
            log.exception("Notification failed; jobs left pending", extra={"error": str(exc)})
            return

        result.jobs_notified = len(relevant)
        try:
            await asyncio.to_thread(self.store.mark_processed, [j["id"] for j in relevant])
        except Exception as exc:
            log.exception(
                "Failed to mark notified jobs; they may be sent again",
                extra={"jobs": len(relevant), "error": str(exc)},
            )

    async def notify_pending(self, limit: int = 100) -> int:
        """Send relevant jobs that earlier runs could not deliver."""
        pending = await asyncio.to_thread(
            self.store.get_unnotified_jobs, self.settings.min_relevance_score, limit
        )
        result = RunResult()
        await self._notify(pending, result)
        return result.jobs_notified

    async def send_summary(self, hours: int = 24) -> int:
        """Send the digest of jobs found in the last `hours`. Returns the users reached."""
        if self.notifier is None or not getattr(self.notifier, "enabled", True):
            log.info("Notifier disabled; daily summary not sent")
            return 0

        now = datetime.now(timezone.utc)
        since = (now - timedelta(hours=hours)).replace(tzinfo=None).isoformat(timespec="seconds")
        summary = await asyncio.to_thread(self.store.get_summary, since, self.settings.min_relevance_score)
        stats = await asyncio.to_thread(self.store.get_processed_stats, since)
        summary["emails"] = stats["emails"]
        return await asyncio.to_thread(self.notifier.send_summary, summary, now.date().isoformat())


def build_pipeline(settings: Settings) -> Pipeline:
    """Wire the Gmail client, OpenAI extractor and Telegram notifier together."""
    return Pipeline(
        MailboxClient.from_settings(settings),
        OpenAIJobExtractor.from_settings(settings),
        settings=settings,
        notifier=TelegramNotifier(settings.telegram_bot_token),
    )


__all__ = ["Pipeline", "RunResult", "RunState", "Step", "build_pipeline"]
