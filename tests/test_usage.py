"""
Tests for usage recording and aggregation.
Run with: pytest tests/test_usage.py
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from voicebridge.errors import RecordingFailure
from voicebridge.providers.base import UsageSummary
from voicebridge.storage.models import UsageRecord
from voicebridge.usage import UsageRecorder, UsageTracker


@pytest.fixture
def recorder(store):
    return UsageRecorder(store)


@pytest.fixture
def tracker(store):
    return UsageTracker(store)


# ---------------------------------------------------------------------------
# UsageRecorder
# ---------------------------------------------------------------------------

def test_record_writes_one_row(recorder, store):
    assert recorder.record("u1", "m1", 5, 2, 7) is True
    rows = store.get_usage()
    assert len(rows) == 1
    assert (rows[0]["prompt_tokens"], rows[0]["completion_tokens"], rows[0]["total_tokens"]) == (5, 2, 7)


def test_record_computes_missing_total(recorder, store):
    recorder.record("u1", "m1", 5, 2)
    assert store.get_usage()[0]["total_tokens"] == 7


def test_record_zero_fills_missing_counts(recorder, store):
    recorder.record("u1", "m1")
    row = store.get_usage()[0]
    assert (row["prompt_tokens"], row["completion_tokens"], row["total_tokens"]) == (0, 0, 0)


def test_record_accepts_string_counts(recorder, store):
    recorder.record("u1", "m1", "3", None, "")
    row = store.get_usage()[0]
    assert row["prompt_tokens"] == 3
    assert row["total_tokens"] == 3


def test_record_summary(recorder, store):
    recorder.record_summary("u1", "m1", UsageSummary(4, 4, 8))
    recorder.record_summary("u1", "m1", None)
    assert store.usage_totals(user_id="u1") == {
        "requests": 2, "prompt_tokens": 4, "completion_tokens": 4, "total_tokens": 8,
    }


def test_record_failure_is_swallowed_and_logged(caplog):
    """A broken ledger must not take the request down with it."""
    broken = MagicMock()
    broken.insert_usage.side_effect = RecordingFailure("disk full")

    with caplog.at_level("ERROR", logger="voicebridge.usage"):
        assert UsageRecorder(broken).record("u1", "m1", 1, 1) is False

    broken.insert_usage.assert_called_once()
    assert "disk full" in caplog.text


def test_sqlite_error_surfaces_as_recording_failure(store, caplog):
    with store._connect() as conn:
        conn.execute("DROP TABLE usage")

    with pytest.raises(RecordingFailure):
        store.insert_usage(UsageRecord(user_id="u1", model_id="m1"))

    with caplog.at_level("ERROR", logger="voicebridge.usage"):
        assert UsageRecorder(store).record("u1", "m1", 1, 1) is False
    assert "usage insert failed" in caplog.text


# ---------------------------------------------------------------------------
# UsageTracker
# ---------------------------------------------------------------------------

def test_stats_empty(tracker):
    stats = tracker.get_stats()
    assert stats["requests"] == 0
    assert stats["total_tokens"] == 0
    assert stats["by_model"] == {}
    assert stats["by_user"] == []


def test_stats_breakdowns(recorder, tracker):
    recorder.record("u1", "gpt", 10, 5)
    recorder.record("u1", "claude", 1, 1)
    recorder.record("u2", "gpt", 2, 2)

    stats = tracker.get_stats(days=7)

    assert stats["days_queried"] == 7
    assert stats["requests"] == 3
    assert stats["prompt_tokens"] == 13
    assert stats["completion_tokens"] == 8
    assert stats["total_tokens"] == 21
    assert stats["by_model"] == {
        "gpt": {"total_tokens": 19, "requests": 2},
        "claude": {"total_tokens": 2, "requests": 1},
    }
    assert sum(stats["by_day"].values()) == 21
    assert stats["by_user"][0] == {"user_id": "u1", "total_tokens": 17, "requests": 2}


def test_stats_for_one_user(recorder, tracker):
    recorder.record("u1", "gpt", 10, 5)
    recorder.record("u2", "gpt", 2, 2)

    stats = tracker.get_stats(user_id="u2")
    assert stats["requests"] == 1
    assert stats["total_tokens"] == 4
    assert [row["user_id"] for row in stats["by_user"]] == ["u2"]


def test_get_total(recorder, tracker):
    recorder.record("u1", "gpt", 10, 5)
    recorder.record("u2", "gpt", 2, 2)
    assert tracker.get_total() == 19
    assert tracker.get_total(user_id="u1") == 15


def test_stats_window_excludes_rows_just_past_the_cutoff(recorder, tracker, store):
    stale = datetime.now(timezone.utc) - timedelta(days=7, minutes=1)
    store.insert_usage(UsageRecord(user_id="u1", model_id="gpt", total_tokens=100, created_at=stale.isoformat()))
    recorder.record("u1", "gpt", 2, 3)

    stats = tracker.get_stats(days=7)

    assert stats["requests"] == 1
    assert stats["total_tokens"] == 5
