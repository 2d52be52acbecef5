"""
LLM provider adapters for VoiceBridge.
One adapter per hosted provider, all behind the same BaseProvider interface.
"""
from voicebridge.providers.base import (
    BaseProvider,
    CompletionResult,
    StreamEvent,
    TextFragment,
    UsageSummary,
)
from voicebridge.providers.anthropic import AnthropicProvider
from voicebridge.providers.fireworks import FireworksProvider
from voicebridge.providers.google import GoogleProvider
from voicebridge.providers.openai import OpenAIProvider
from voicebridge.providers.registry import PROVIDERS, ProviderRegistry
from voicebridge.providers.together import TogetherProvider

__all__ = [
    "BaseProvider",
    "CompletionResult",
    "StreamEvent",
    "TextFragment",
    "UsageSummary",
    "AnthropicProvider",
    "FireworksProvider",
    "GoogleProvider",
    "OpenAIProvider",
    "TogetherProvider",
    "PROVIDERS",
    "ProviderRegistry",
]
