"""
Caller-side request shapes and the message normalizer.

The dashboard sends the whole conversation on every call, unordered and with
a timestamp per message:

    {"model": {"id": "...", "variant": "gpt-4o"},
     "messages": [{"role": "user", "content": " Hi ", "ts": 2}, ...],
     "user_id": "..."}

normalize_messages() turns that into the (instruction, turns) pair every
provider adapter consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from voicebridge.errors import ValidationFailure

ROLES = ("system", "user", "assistant")


@dataclass
class ModelDescriptor:
    """Which model to call. `variant` goes on the wire, `id` goes on the usage ledger."""
    id: str
    variant: str

    @classmethod
    def from_dict(cls, raw: Any) -> "ModelDescriptor":
        if not isinstance(raw, dict):
            raise ValidationFailure("model must be an object")
        model_id = raw.get("id")
        variant = raw.get("variant")
        if not model_id or not variant or not isinstance(variant, str):
            raise ValidationFailure("model.id and model.variant are required")
        return cls(id=str(model_id), variant=variant)


@dataclass
class ChatMessage:
    """One message as sent by the caller."""
    role: str
    content: str
    ts: Any = 0

    @classmethod
    def from_dict(cls, raw: Any) -> "ChatMessage":
        if not isinstance(raw, dict):
            raise ValidationFailure("message must be an object")
        role = raw.get("role")
        content = raw.get("content")
        if role not in ROLES:
            raise ValidationFailure(f"unknown role {role!r}")
        if not isinstance(content, str):
            raise ValidationFailure("message content must be a string")
        ts = raw.get("ts")
        return cls(role=role, content=content, ts=0 if ts is None else ts)


@dataclass
class ChatRequest:
    """A validated chat-completion request body."""
    model: ModelDescriptor
    messages: list[ChatMessage]
    user_id: str
    extras: dict = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any) -> "ChatRequest":
        if not isinstance(body, dict):
            raise ValidationFailure("body must be a JSON object")
        missing = [k for k in ("model", "messages", "user_id") if body.get(k) in (None, "")]
        if missing:
            raise ValidationFailure(f"missing fields: {', '.join(missing)}")
        if not isinstance(body["messages"], list):
            raise ValidationFailure("messages must be a list")

        extras = {k: v for k, v in body.items() if k not in ("model", "messages", "user_id")}
        return cls(
            model=ModelDescriptor.from_dict(body["model"]),
            messages=[ChatMessage.from_dict(m) for m in body["messages"]],
            user_id=str(body["user_id"]),
            extras=extras,
        )


def _ts_key(ts: Any) -> tuple:
    # Numbers sort before strings so a mixed list never raises.
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return (0, ts, "")
    return (1, 0, str(ts))


def normalize_messages(
    messages: list[ChatMessage],
    prefer: str = "first",
) -> tuple[str, list[dict]]:
    """
    Order messages by timestamp and split off the system instruction.

    Returns (instruction, turns):
      instruction  content of the first system message ("" if none). With
                   prefer="last" the latest system message wins instead.
      turns        non-system messages as {role, content}, ascending by ts,
                   content stripped. System messages never appear here.

    The sort is stable, so equal timestamps keep their input order.
    """
    if prefer not in ("first", "last"):
        raise ValueError(f"prefer must be 'first' or 'last', got {prefer!r}")

    instruction: str | None = None
    turns: list[dict] = []

    for msg in sorted(messages, key=lambda m: _ts_key(m.ts)):
        if msg.role == "system":
            if instruction is None or prefer == "last":
                instruction = msg.content.strip()
            continue
        turns.append({"role": msg.role, "content": msg.content.strip()})

    return instruction or "", turns
