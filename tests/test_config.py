import pytest

from core.config import Settings
from core.mailbox import DisposePolicy

ENV_VARS = [
    "MAIL_WINDOW_DAYS",
    "MAIL_BATCH_SIZE",
    "DISPOSE_POLICY",
    "EMPTY_POLICY",
    "DEDUP_PRECEDENCE",
    "MIN_RELEVANCE_SCORE",
    "JOB_RETENTION_DAYS",
]


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()
    assert settings.mail_window_days == 3
    assert settings.mail_batch_size == 10
    assert settings.dispose_policy is DisposePolicy.MARK_READ_AND_ARCHIVE
    assert settings.empty_policy is DisposePolicy.MARK_READ
    assert settings.dedup_precedence == "url"
    assert settings.job_retention_days == 3


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("MAIL_WINDOW_DAYS", "7")
    monkeypatch.setenv("DISPOSE_POLICY", "Delete")
    monkeypatch.setenv("EMPTY_POLICY", "mark-read")
    monkeypatch.setenv("DEDUP_PRECEDENCE", "FIELDS")
    monkeypatch.setenv("MIN_RELEVANCE_SCORE", "0.75")

    settings = Settings.from_env()

    assert settings.mail_window_days == 7
    assert settings.dispose_policy is DisposePolicy.DELETE
    assert settings.empty_policy is DisposePolicy.MARK_READ
    assert settings.dedup_precedence == "fields"
    assert settings.min_relevance_score == 0.75


@pytest.mark.parametrize(
    "name, value",
    [
        ("MAIL_WINDOW_DAYS", "soon"),
        ("MAIL_WINDOW_DAYS", "-1"),
        ("MAIL_BATCH_SIZE", "0"),
        ("DISPOSE_POLICY", "shred"),
        ("DEDUP_PRECEDENCE", "title"),
        ("MIN_RELEVANCE_SCORE", "1.5"),
        ("JOB_RETENTION_DAYS", "0"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Settings.from_env()


def test_removes_from_inbox():
    assert DisposePolicy.ARCHIVE.removes_from_inbox
    assert DisposePolicy.DELETE.removes_from_inbox
    assert not DisposePolicy.MARK_READ.removes_from_inbox
    assert not DisposePolicy.NONE.removes_from_inbox
