import asyncio
from datetime import datetime, timedelta, timezone

from core.config import Settings
from core.db.jobs.dedup import compute_dedup_key
from core.errors import DuplicateRecordError, ExtractionError, TransportError
from core.mailbox import DisposePolicy, RawEmail
from worker.pipeline import Pipeline, RunState, Step


def _email(message_id, body="Job alert body", sender="LinkedIn <jobs@linkedin.com>", subject="New jobs"):
    return RawEmail(
        id=message_id,
        subject=subject,
        sender=sender,
        body=body,
        received_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeMailbox:
    def __init__(self, emails, list_error=None, dispose_errors=()):
        self.emails = {e.id: e for e in emails}
        self.list_error = list_error
        self.dispose_errors = set(dispose_errors)
        self.fetched = []
        self.disposed = []
        self.gate = None

    def list_candidates(self, window_days):
        if self.list_error:
            raise self.list_error
        return list(self.emails)

    async def fetch_details(self, ids):
        if self.gate is not None:
            await self.gate.wait()
        self.fetched.append(list(ids))
        return [self.emails[i] for i in ids]

    def dispose(self, message_id, policy):
        if message_id in self.dispose_errors:
            raise ValueError(f"cannot modify {message_id}")
        self.disposed.append((message_id, policy))
        return policy.removes_from_inbox


class FakeExtractor:
    def __init__(self, by_message=None, errors=None):
        self.by_message = by_message or {}
        self.errors = errors or {}
        self.calls = []

    def extract(self, *, sender, subject, body):
        self.calls.append(subject)
        if subject in self.errors:
            raise self.errors[subject]
        return self.by_message.get(subject, [])


class SharedRunLock:
    """Stands in for the database advisory lock that every process shares."""

    def __init__(self):
        self.holder = None
        self.released = 0

    def acquire(self, owner):
        if self.holder is not None:
            return None
        self.holder = owner
        return owner

    def release(self, owner):
        assert self.holder is owner
        self.holder = None
        self.released += 1


class FakeStore:
    """In-memory ledger and job store."""

    def __init__(self, fail_record=False, run_lock=None, fail_mark=False):
        self.processed = {}
        self.jobs = {}
        self.deleted = set()
        self.marked = []
        self.fail_record = fail_record
        self.fail_mark = fail_mark
        self.run_lock = run_lock or SharedRunLock()

    def try_acquire_run_lock(self):
        return self.run_lock.acquire(object())

    def release_run_lock(self, handle):
        self.run_lock.release(handle)

    def filter_unprocessed(self, ids):
        return [i for i in ids if i not in self.processed]

    def record_processed(self, message_id, sender, candidate_count, subject=""):
        if self.fail_record:
            raise RuntimeError("database is down")
        if message_id in self.processed:
            raise DuplicateRecordError(message_id)
        self.processed[message_id] = candidate_count

    def mark_deleted(self, message_id):
        self.deleted.add(message_id)

    def deduplicate_and_insert(self, candidates, email_message_id=None, precedence="url"):
        inserted = []
        for c in candidates:
            key = compute_dedup_key(c, precedence)
            if key in self.jobs:
                continue
            row = dict(c.model_dump(), id=len(self.jobs) + 1, email_message_id=email_message_id)
            self.jobs[key] = row
            inserted.append(row)
        return inserted

    def mark_processed(self, ids):
        if self.fail_mark:
            raise RuntimeError("database is down")
        self.marked.extend(ids)

    def get_unnotified_jobs(self, min_relevance, limit):
        return [
            j for j in self.jobs.values()
            if j["id"] not in self.marked and (j["relevance_score"] or 0) >= min_relevance
        ][:limit]

    def get_summary(self, since, min_relevance=0.6, limit=20):
        self.summary_since = since
        relevant = [j for j in self.jobs.values() if (j["relevance_score"] or 0) >= min_relevance]
        return {"jobs": len(self.jobs), "relevant": len(relevant), "top_sources": [], "relevant_jobs": relevant}

    def get_processed_stats(self, since=None):
        return {"emails": len(self.processed)}


class FakeNotifier:
    def __init__(self, enabled=True, error=None):
        self.enabled = enabled
        self.error = error
        self.sent = []
        self.summaries = []

    def notify(self, jobs):
        if self.error:
            raise self.error
        self.sent.append(jobs)
        return 1

    def send_summary(self, summary, day):
        self.summaries.append((summary, day))
        return 2


def _pipeline(mailbox, extractor, store=None, notifier=None, **settings):
    return Pipeline(
        mailbox,
        extractor,
        settings=Settings(mail_batch_delay=0, **settings),
        store=store or FakeStore(),
        notifier=notifier,
    )


def test_end_to_end_two_messages_then_idempotent_rerun():
    mailbox = FakeMailbox([_email("M1", subject="3 new jobs"), _email("M2", subject="Newsletter")])
    extractor = FakeExtractor(
        {"3 new jobs": [{"title": "Backend Engineer", "company": "Acme", "applyUrl": "https://acme.io/jobs/1"}]}
    )
    store = FakeStore()
    pipeline = _pipeline(mailbox, extractor, store)

    result = asyncio.run(pipeline.run())

    assert result.success is True
    assert result.emails_seen == 2
    assert result.emails_processed == 2
    assert result.jobs_inserted == 1
    assert len(store.jobs) == 1
    assert store.processed == {"M1": 1, "M2": 0}
    assert mailbox.disposed == [
        ("M1", DisposePolicy.MARK_READ_AND_ARCHIVE),
        ("M2", DisposePolicy.MARK_READ),
    ]
    assert store.deleted == {"M1"}

    again = asyncio.run(pipeline.run())

    assert again.success is True
    assert again.emails_processed == 0
    assert extractor.calls == ["3 new jobs", "Newsletter"]
    assert len(mailbox.fetched) == 1
    assert len(store.jobs) == 1


def test_duplicate_job_across_messages_is_discarded():
    job = {"title": "Engineer", "company": "Acme", "applyUrl": "https://acme.io/jobs/7?utm_source=mail"}
    mailbox = FakeMailbox([_email("A", subject="one"), _email("B", subject="two")])
    extractor = FakeExtractor({"one": [job], "two": [dict(job, applyUrl="https://acme.io/jobs/7/")]})
    store = FakeStore()

    result = asyncio.run(_pipeline(mailbox, extractor, store).run())

    assert result.jobs_inserted == 1
    assert result.jobs_discarded == 1
    assert len(store.jobs) == 1


def test_extraction_failure_still_records_message():
    mailbox = FakeMailbox([_email("M1", subject="broken")])
    extractor = FakeExtractor(errors={"broken": ExtractionError("model returned prose")})
    store = FakeStore()

    result = asyncio.run(_pipeline(mailbox, extractor, store).run())

    assert result.success is True
    assert store.processed == {"M1": 0}
    assert mailbox.disposed == [("M1", DisposePolicy.MARK_READ)]
    assert store.deleted == set()


def test_empty_body_skips_extractor():
    mailbox = FakeMailbox([_email("M1", body="")])
    extractor = FakeExtractor()
    store = FakeStore()

    asyncio.run(_pipeline(mailbox, extractor, store).run())

    assert extractor.calls == []
    assert store.processed == {"M1": 0}


def test_invalid_candidates_are_dropped_before_persisting():
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    extractor = FakeExtractor({"jobs": [{"title": "No company"}, {"title": "T", "company": "C"}]})
    store = FakeStore()

    result = asyncio.run(_pipeline(mailbox, extractor, store).run())

    assert result.jobs_inserted == 1
    assert store.processed == {"M1": 1}


def test_persistence_failure_leaves_message_unrecorded_and_in_inbox():
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    extractor = FakeExtractor({"jobs": [{"title": "T", "company": "C"}]})
    store = FakeStore(fail_record=True)

    result = asyncio.run(_pipeline(mailbox, extractor, store).run())

    assert result.success is True
    assert result.emails_processed == 0
    assert mailbox.disposed == []


def test_transport_error_aborts_run():
    mailbox = FakeMailbox([], list_error=TransportError("Failed to list messages: 503"))
    pipeline = _pipeline(mailbox, FakeExtractor())

    result = asyncio.run(pipeline.run())

    assert result.success is False
    assert "503" in result.error
    assert pipeline.state is Step.IDLE
    assert pipeline.last_result is result


def test_second_trigger_while_running_is_skipped():
    mailbox = FakeMailbox([_email("M1")])
    pipeline = _pipeline(mailbox, FakeExtractor())

    async def scenario():
        mailbox.gate = asyncio.Event()
        first = asyncio.create_task(pipeline.run())
        for _ in range(200):
            if pipeline.is_running():
                break
            await asyncio.sleep(0.01)
        assert pipeline.run_state is RunState.RUNNING

        second = await pipeline.run()

        mailbox.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second.skipped is True
    assert second.success is False
    assert first.success is True
    assert first.emails_processed == 1
    assert len(mailbox.fetched) == 1
    assert pipeline.is_running() is False
    assert pipeline.run_state is RunState.NOT_RUNNING


def test_relevant_jobs_notified_in_score_order():
    jobs = [
        {"title": "Low", "company": "C", "relevanceScore": 0.2},
        {"title": "High", "company": "C", "relevanceScore": 0.95},
        {"title": "Mid", "company": "C", "relevanceScore": 0.7},
        {"title": "Unscored", "company": "C"},
    ]
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    store = FakeStore()
    notifier = FakeNotifier()

    result = asyncio.run(
        _pipeline(mailbox, FakeExtractor({"jobs": jobs}), store, notifier, min_relevance_score=0.6).run()
    )

    [sent] = notifier.sent
    assert [j["title"] for j in sent] == ["High", "Mid"]
    assert sorted(store.marked) == sorted(j["id"] for j in sent)
    assert result.jobs_notified == 2


def test_notification_failure_leaves_jobs_pending():
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    store = FakeStore()
    notifier = FakeNotifier(error=ConnectionError("telegram down"))
    extractor = FakeExtractor({"jobs": [{"title": "T", "company": "C", "relevanceScore": 0.9}]})
    pipeline = _pipeline(mailbox, extractor, store, notifier)

    result = asyncio.run(pipeline.run())

    assert result.success is True
    assert result.jobs_notified == 0
    assert store.marked == []

    notifier.error = None
    assert asyncio.run(pipeline.notify_pending()) == 1
    assert len(store.marked) == 1


def test_disabled_notifier_sends_nothing():
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    store = FakeStore()
    notifier = FakeNotifier(enabled=False)
    extractor = FakeExtractor({"jobs": [{"title": "T", "company": "C", "relevanceScore": 0.9}]})

    result = asyncio.run(_pipeline(mailbox, extractor, store, notifier).run())

    assert notifier.sent == []
    assert result.jobs_notified == 0
    assert store.marked == []


def test_pipelines_sharing_a_database_never_overlap():
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    extractor = FakeExtractor({"jobs": [{"title": "T", "company": "C"}]})
    store = FakeStore()
    api_side = _pipeline(mailbox, extractor, store)
    worker_side = _pipeline(mailbox, extractor, store)

    async def scenario():
        mailbox.gate = asyncio.Event()
        first = asyncio.create_task(api_side.run())
        for _ in range(200):
            if store.run_lock.holder is not None:
                break
            await asyncio.sleep(0.01)

        second = await asyncio.gather(worker_side.run(), worker_side.run())

        mailbox.gate.set()
        return await first, second

    first, (second, third) = asyncio.run(scenario())

    assert first.success is True
    assert first.emails_processed == 1
    assert second.skipped is True
    assert third.skipped is True
    assert extractor.calls == ["jobs"]
    assert store.run_lock.holder is None
    assert store.run_lock.released == 1
    assert worker_side.last_result is None

    later = asyncio.run(worker_side.run())
    assert later.skipped is False
    assert later.emails_processed == 0
    assert extractor.calls == ["jobs"]


def test_run_lock_unavailable_fails_run():
    store = FakeStore()

    def broken():
        raise RuntimeError("connection refused")

    store.try_acquire_run_lock = broken
    mailbox = FakeMailbox([_email("M1")])
    pipeline = _pipeline(mailbox, FakeExtractor(), store)

    result = asyncio.run(pipeline.run())

    assert result.success is False
    assert result.skipped is False
    assert "connection refused" in result.error
    assert mailbox.fetched == []
    assert pipeline.is_running() is False


def test_dispose_failure_does_not_stop_other_messages():
    mailbox = FakeMailbox([_email("M1", subject="one"), _email("M2", subject="two")], dispose_errors={"M1"})
    extractor = FakeExtractor(
        {"one": [{"title": "A", "company": "C"}], "two": [{"title": "B", "company": "C"}]}
    )
    store = FakeStore()

    result = asyncio.run(_pipeline(mailbox, extractor, store).run())

    assert result.success is True
    assert result.emails_processed == 2
    assert result.jobs_inserted == 2
    assert store.processed == {"M1": 1, "M2": 1}
    assert mailbox.disposed == [("M2", DisposePolicy.MARK_READ_AND_ARCHIVE)]
    assert store.deleted == {"M2"}
    assert store.run_lock.holder is None


def test_mark_processed_failure_keeps_run_successful():
    mailbox = FakeMailbox([_email("M1", subject="jobs")])
    store = FakeStore(fail_mark=True)
    notifier = FakeNotifier()
    extractor = FakeExtractor({"jobs": [{"title": "T", "company": "C", "relevanceScore": 0.9}]})

    result = asyncio.run(_pipeline(mailbox, extractor, store, notifier).run())

    assert result.success is True
    assert result.jobs_notified == 1
    assert len(notifier.sent) == 1
    assert store.marked == []


def test_send_summary_covers_last_day():
    store = FakeStore()
    store.processed = {"M1": 1, "M2": 0}
    notifier = FakeNotifier()
    pipeline = _pipeline(FakeMailbox([]), FakeExtractor(), store, notifier)

    assert asyncio.run(pipeline.send_summary()) == 2

    [(summary, day)] = notifier.summaries
    assert summary["emails"] == 2
    since = datetime.fromisoformat(store.summary_since)
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    assert timedelta(hours=23, minutes=59) < now - since < timedelta(hours=24, minutes=1)
    assert day == datetime.now(timezone.utc).date().isoformat()


def test_send_summary_skipped_when_notifier_disabled():
    notifier = FakeNotifier(enabled=False)
    pipeline = _pipeline(FakeMailbox([]), FakeExtractor(), FakeStore(), notifier)

    assert asyncio.run(pipeline.send_summary()) == 0
    assert notifier.summaries == []
