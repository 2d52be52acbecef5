"""
Google Gemini provider (Generative Language REST API).

Differences from the OpenAI shape:
  - prior assistant turns are tagged "model"
  - the instruction travels as `systemInstruction`, not as a message
  - safety filters are set per harm category; a block shows up either as
    `promptFeedback.blockReason` or as a candidate finishing with SAFETY
  - usage (`usageMetadata`) rides along on every stream chunk and is
    cumulative, so the last one seen wins
  - a buffered call needs a user turn last: it is the active prompt and
    everything before it is chat history
"""

from __future__ import annotations

from voicebridge.providers.base import BaseProvider, CompletionResult, UsageSummary, _UsageCounter

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

BLOCKED_FINISH_REASONS = ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "RECITATION")


class GoogleProvider(BaseProvider):
    """Provider for generativelanguage.googleapis.com."""

    DEFAULTS = {
        "temperature": 0.7,
        "top_p": 0.95,
        "top_k": 50,
        "max_tokens": 8192,
        "safety_threshold": "BLOCK_LOW_AND_ABOVE",
        "json_response": True,
    }

    def endpoint(self, variant: str, stream: bool) -> str:
        if stream:
            return f"{self.url}/models/{variant}:streamGenerateContent?alt=sse"
        return f"{self.url}/models/{variant}:generateContent"

    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    @staticmethod
    def to_contents(turns: list[dict]) -> list[dict]:
        return [
            {
                "role": "model" if t["role"] == "assistant" else t["role"],
                "parts": [{"text": t["content"]}],
            }
            for t in turns
        ]

    def safety_settings(self) -> list[dict]:
        threshold = self.options["safety_threshold"]
        return [{"category": c, "threshold": threshold} for c in HARM_CATEGORIES]

    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        contents = self.to_contents(turns)
        if not stream:
            prompt = contents[-1] if contents else None
            if not prompt or prompt["role"] != "user" or not prompt["parts"][0]["text"]:
                raise self._fail("Last turn must be a non-empty user message")

        generation = {
            "temperature": self.options["temperature"],
            "topP": self.options["top_p"],
            "maxOutputTokens": self.options["max_tokens"],
        }
        if stream and self.options.get("top_k"):
            generation["topK"] = self.options["top_k"]
        if not stream and self.options.get("json_response"):
            generation["responseMimeType"] = "application/json"

        body = {
            "contents": contents,
            "safetySettings": self.safety_settings(),
            "generationConfig": generation,
        }
        if instruction:
            body["systemInstruction"] = {"parts": [{"text": instruction}]}
        return body

    @staticmethod
    def _usage_fields(data: dict) -> tuple:
        meta = data.get("usageMetadata") or {}
        return (
            meta.get("promptTokenCount"),
            meta.get("candidatesTokenCount"),
            meta.get("totalTokenCount"),
        )

    def _check_blocked(self, data: dict, usage: UsageSummary | None = None):
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise self._fail(f"Prompt blocked: {feedback['blockReason']}", usage=usage)
        for candidate in data.get("candidates") or []:
            if candidate.get("finishReason") in BLOCKED_FINISH_REASONS:
                raise self._fail(f"Candidate blocked: {candidate['finishReason']}", usage=usage)

    @staticmethod
    def _text_of(data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)

    def parse_response(self, data: dict) -> CompletionResult:
        usage = UsageSummary.from_counts(*self._usage_fields(data))
        if data.get("error"):
            raise self._fail(f"Provider error: {data['error']}", usage=usage)
        self._check_blocked(data, usage)

        text = self._text_of(data)
        if not text:
            raise self._fail("Empty completion", usage=usage)
        return CompletionResult(text=text, usage=usage)

    def parse_stream_event(self, event: dict, usage: _UsageCounter) -> str | None:
        if event.get("error"):
            raise self._fail(f"Provider error mid-stream: {event['error']}")
        prompt, completion, total = self._usage_fields(event)
        usage.update(prompt=prompt, completion=completion, total=total)
        self._check_blocked(event, usage.summary())
        return self._text_of(event) or None
