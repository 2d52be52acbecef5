"""
Data models for the usage ledger.
These define the shape of data the proxy writes after each completion.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


@dataclass
class UsageRecord:
    """Token consumption for one proxied request. Append-only."""
    user_id: str = ""
    model_id: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def created_by(self) -> str:
        return self.user_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_by": self.created_by,
            "model_id": self.model_id,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "created_at": self.created_at,
        }
