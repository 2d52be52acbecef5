"""
OpenAI provider.

Streams with `stream_options.include_usage`, so usage arrives on a final
chunk whose `choices` list is empty. Buffered calls ask for a JSON object
response, which is what the dashboard's structured prompts expect.
"""

from __future__ import annotations

from voicebridge.providers.openai_compat import OpenAICompatibleProvider


class OpenAIProvider(OpenAICompatibleProvider):
    """Provider for api.openai.com."""

    DEFAULTS = {
        "temperature": 0.7,
        "top_p": 0.95,
        "max_tokens": 2048,
        "frequency_penalty": 0,
        "presence_penalty": 0,
        "json_response": True,
    }

    def sampling(self, stream: bool) -> dict:
        params = super().sampling(stream)
        params["frequency_penalty"] = self.options.get("frequency_penalty")
        params["presence_penalty"] = self.options.get("presence_penalty")
        return params

    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        body = super().build_request(variant, instruction, turns, stream)
        if stream:
            body["stream_options"] = {"include_usage": True}
        elif self.options.get("json_response"):
            body["response_format"] = {"type": "json_object"}
        return body
