"""
Together provider.

Streaming and buffered calls use different sampling: the buffered path is
tuned for short JSON answers (lower top_p, fewer max tokens).
"""

from __future__ import annotations

from voicebridge.providers.openai_compat import OpenAICompatibleProvider


class TogetherProvider(OpenAICompatibleProvider):
    """Provider for api.together.xyz."""

    DEFAULTS = {
        "temperature": 0.7,
        "top_p": 0.95,
        "top_k": 50,
        "max_tokens": 4096,
        "repetition_penalty": 1,
        "stop": ["<|eot_id|>"],
        "complete_top_p": 0.5,
        "complete_max_tokens": 2048,
        "json_response": True,
    }

    def sampling(self, stream: bool) -> dict:
        params = super().sampling(stream)
        params["top_k"] = self.options.get("top_k")
        params["repetition_penalty"] = self.options.get("repetition_penalty")
        if stream:
            params["stop"] = self.options.get("stop")
        else:
            params["top_p"] = self.options.get("complete_top_p")
            params["max_tokens"] = self.options.get("complete_max_tokens")
        return params

    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        body = super().build_request(variant, instruction, turns, stream)
        if not stream and self.options.get("json_response"):
            body["response_format"] = {"type": "json_object"}
        return body
