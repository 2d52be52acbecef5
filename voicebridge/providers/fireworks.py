"""
Fireworks provider.

OpenAI-shaped, but its stream is consumed as raw `data: ` lines with no SDK
in between. Lines that arrive split across network reads fail to decode and
are skipped by the shared SSE parser rather than ending the stream.
"""

from __future__ import annotations

from voicebridge.providers.openai_compat import OpenAICompatibleProvider


class FireworksProvider(OpenAICompatibleProvider):
    """Provider for api.fireworks.ai."""

    DEFAULTS = {
        "temperature": 0.7,
        "top_p": 0.95,
        "top_k": 50,
        "max_tokens": 2048,
        "presence_penalty": 0,
        "frequency_penalty": 0,
    }

    def sampling(self, stream: bool) -> dict:
        params = super().sampling(stream)
        params["top_k"] = self.options.get("top_k")
        params["presence_penalty"] = self.options.get("presence_penalty")
        params["frequency_penalty"] = self.options.get("frequency_penalty")
        return params

    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        body = super().build_request(variant, instruction, turns, stream)
        body["response_format"] = {"type": "text"}
        return body
