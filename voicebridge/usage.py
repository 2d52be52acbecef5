"""
Usage tracking — know what each user is consuming.

UsageRecorder appends one ledger row per proxied request. Recording is
best-effort: a storage failure is logged and the caller carries on, because
the client already has (or is receiving) its answer.

UsageTracker aggregates the ledger via SQL for the `usage` CLI command and
the /api/v1/usage endpoint.
"""

from __future__ import annotations

import logging

from voicebridge.errors import RecordingFailure
from voicebridge.providers.base import UsageSummary
from voicebridge.storage.models import UsageRecord
from voicebridge.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Persists token usage for completed requests."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    def record(self, user_id: str, model_id: str, prompt=None, completion=None, total=None) -> bool:
        """
        Append one UsageRecord. Missing counts are 0 and a missing total is
        prompt + completion. Returns True when written.
        A failed ledger write (RecordingFailure) is logged and False is returned.
        """
        usage = UsageSummary.from_counts(prompt, completion, total)
        record = UsageRecord(
            user_id=user_id,
            model_id=model_id,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )
        try:
            self.store.insert_usage(record)
        except RecordingFailure as e:
            logger.error("Failed to record usage for user=%s model=%s: %s", user_id, model_id, e.detail)
            return False
        return True

    def record_summary(self, user_id: str, model_id: str, usage: UsageSummary | None) -> bool:
        usage = usage or UsageSummary()
        return self.record(
            user_id, model_id, usage.prompt_tokens, usage.completion_tokens, usage.total_tokens,
        )


class UsageTracker:
    """Query and aggregate token usage from the ledger."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    def get_stats(self, days: int = 30, user_id: str | None = None) -> dict:
        """
        Get usage stats for a given period.

        Returns:
            {
                "total_tokens": 12345,
                "requests": 42,
                "by_model": {"gpt-4o": {"total_tokens": 900, "requests": 3}, ...},
                "by_day": {"2026-10-18": 500, ...},
                "by_user": [{"user_id": "...", "total_tokens": 100, "requests": 5}, ...]
            }
        """
        where = "WHERE created_at > strftime('%Y-%m-%dT%H:%M:%S', 'now', ?)"
        params: list = [f"-{days} days"]
        if user_id:
            where += " AND created_by = ?"
            params.append(user_id)

        with self.store._connect() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) as n, COALESCE(SUM(prompt_tokens), 0) as prompt, "
                "COALESCE(SUM(completion_tokens), 0) as completion, "
                f"COALESCE(SUM(total_tokens), 0) as total FROM usage {where}",
                params,
            ).fetchone()

            model_rows = conn.execute(
                "SELECT model_id, COUNT(*) as n, COALESCE(SUM(total_tokens), 0) as total "
                f"FROM usage {where} GROUP BY model_id ORDER BY total DESC",
                params,
            ).fetchall()
            by_model = {
                row["model_id"]: {"total_tokens": row["total"], "requests": row["n"]}
                for row in model_rows
            }

            day_rows = conn.execute(
                "SELECT substr(created_at, 1, 10) as day, COALESCE(SUM(total_tokens), 0) as total "
                f"FROM usage {where} GROUP BY day ORDER BY day DESC",
                params,
            ).fetchall()
            by_day = {row["day"]: row["total"] for row in day_rows}

            user_rows = conn.execute(
                "SELECT created_by, COUNT(*) as n, COALESCE(SUM(total_tokens), 0) as total "
                f"FROM usage {where} GROUP BY created_by ORDER BY total DESC LIMIT 20",
                params,
            ).fetchall()
            by_user = [
                {"user_id": row["created_by"], "total_tokens": row["total"], "requests": row["n"]}
                for row in user_rows
            ]

        return {
            "days_queried": days,
            "requests": totals["n"],
            "prompt_tokens": totals["prompt"],
            "completion_tokens": totals["completion"],
            "total_tokens": totals["total"],
            "by_model": by_model,
            "by_day": by_day,
            "by_user": by_user,
        }

    def get_total(self, user_id: str | None = None) -> int:
        """All-time total tokens, optionally for one user."""
        return self.store.usage_totals(user_id=user_id)["total_tokens"]
