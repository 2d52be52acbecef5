"""
Shared shape for providers that speak the OpenAI chat-completions format.

OpenAI, Fireworks and Together all accept
    POST {url}/chat/completions  {"model", "messages": [{role, content}], ...}
and stream `data: {"choices": [{"delta": {"content": ...}}]}` lines. They
differ only in sampling parameters and where usage shows up in the stream,
which the subclasses pin down.
"""

from __future__ import annotations

import logging

from voicebridge.providers.base import BaseProvider, CompletionResult, UsageSummary, _UsageCounter

logger = logging.getLogger(__name__)

# finish_reason values that mean the provider refused to continue
BLOCKED_FINISH_REASONS = ("content_filter",)


class OpenAICompatibleProvider(BaseProvider):
    """
    Generic provider for OpenAI-compatible endpoints.

    The system instruction is put back at the head of the message list as a
    `system` message, which is how these APIs take it.
    """

    def endpoint(self, variant: str, stream: bool) -> str:
        return f"{self.url}/chat/completions"

    def headers(self) -> dict:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @staticmethod
    def build_messages(instruction: str, turns: list[dict]) -> list[dict]:
        messages = [{"role": "system", "content": instruction}] if instruction else []
        messages.extend({"role": t["role"], "content": t["content"]} for t in turns)
        return messages

    def sampling(self, stream: bool) -> dict:
        """Provider-specific sampling parameters for the request body."""
        return {
            "temperature": self.options.get("temperature"),
            "top_p": self.options.get("top_p"),
            "max_tokens": self.options.get("max_tokens"),
        }

    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        body = {
            "model": variant,
            "messages": self.build_messages(instruction, turns),
            **{k: v for k, v in self.sampling(stream).items() if v is not None},
        }
        if stream:
            body["stream"] = True
        return body

    @staticmethod
    def _usage_from(data: dict) -> UsageSummary:
        usage = data.get("usage") or {}
        return UsageSummary.from_counts(
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        )

    def parse_response(self, data: dict) -> CompletionResult:
        usage = self._usage_from(data)
        if data.get("error"):
            raise self._fail(f"Provider error: {data['error']}", usage=usage)

        choices = data.get("choices") or []
        if not choices:
            raise self._fail("No choices in response", usage=usage)

        choice = choices[0] or {}
        if choice.get("finish_reason") in BLOCKED_FINISH_REASONS:
            raise self._fail("Completion blocked by content filter", usage=usage)

        content = (choice.get("message") or {}).get("content") or choice.get("text")
        if not content:
            raise self._fail("Empty completion", usage=usage)
        return CompletionResult(text=content, usage=usage)

    def parse_stream_event(self, event: dict, usage: _UsageCounter) -> str | None:
        if event.get("error"):
            raise self._fail(f"Provider error mid-stream: {event['error']}")

        reported = event.get("usage")
        if reported:
            usage.update(
                prompt=reported.get("prompt_tokens"),
                completion=reported.get("completion_tokens"),
                total=reported.get("total_tokens"),
            )

        choices = event.get("choices") or []
        if not choices:
            return None

        choice = choices[0] or {}
        if choice.get("finish_reason") in BLOCKED_FINISH_REASONS:
            raise self._fail("Stream blocked by content filter")

        delta = choice.get("delta") or {}
        return delta.get("content") or choice.get("text") or None
