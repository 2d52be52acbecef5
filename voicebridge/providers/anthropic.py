"""
Anthropic provider (Messages API).

The instruction goes in the top-level `system` field and every turn's
content is a list of text blocks. The stream is a sequence of typed events:
input tokens arrive on `message_start`, output tokens on `message_delta`,
text on `content_block_delta`. Anthropic never reports a total, so it is
computed.
"""

from __future__ import annotations

from voicebridge.providers.base import BaseProvider, CompletionResult, UsageSummary, _UsageCounter


class AnthropicProvider(BaseProvider):
    """Provider for api.anthropic.com."""

    DEFAULTS = {
        "temperature": 0.7,
        "max_tokens": 2600,
        "api_version": "2023-06-01",
    }

    def endpoint(self, variant: str, stream: bool) -> str:
        return f"{self.url}/v1/messages"

    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": str(self.options["api_version"]),
        }

    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        body = {
            "model": variant,
            "max_tokens": self.options["max_tokens"],
            "temperature": self.options["temperature"],
            "messages": [
                {"role": t["role"], "content": [{"type": "text", "text": t["content"]}]}
                for t in turns
            ],
        }
        if instruction:
            body["system"] = instruction
        if stream:
            body["stream"] = True
        return body

    def parse_response(self, data: dict) -> CompletionResult:
        reported = data.get("usage") or {}
        usage = UsageSummary.from_counts(reported.get("input_tokens"), reported.get("output_tokens"))
        if data.get("type") == "error" or data.get("error"):
            raise self._fail(f"Provider error: {data.get('error')}", usage=usage)
        if data.get("stop_reason") == "refusal":
            raise self._fail("Completion refused", usage=usage)

        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type", "text") == "text"
        )
        if not text:
            raise self._fail("Empty completion", usage=usage)
        return CompletionResult(text=text, usage=usage)

    def parse_stream_event(self, event: dict, usage: _UsageCounter) -> str | None:
        kind = event.get("type", "")

        if kind == "error":
            raise self._fail(f"Provider error mid-stream: {event.get('error')}")

        if kind == "message_start":
            reported = (event.get("message") or {}).get("usage") or {}
            usage.update(prompt=reported.get("input_tokens"), completion=reported.get("output_tokens"))
            return None

        if kind == "message_delta":
            reported = event.get("usage") or {}
            usage.update(completion=reported.get("output_tokens"))
            if (event.get("delta") or {}).get("stop_reason") == "refusal":
                raise self._fail("Stream refused")
            return None

        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text") or None

        return None
