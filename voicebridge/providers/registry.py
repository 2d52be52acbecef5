"""
Provider registry — builds one adapter per configured provider at startup.

Adapters are looked up by name from the route (`/api/v1/chat/{provider}`).
There is no fallback between providers: the caller picks the provider and
a failure is final for that request.
"""

from __future__ import annotations

import logging

import httpx

from voicebridge.providers.anthropic import AnthropicProvider
from voicebridge.providers.base import BaseProvider
from voicebridge.providers.fireworks import FireworksProvider
from voicebridge.providers.google import GoogleProvider
from voicebridge.providers.openai import OpenAIProvider
from voicebridge.providers.together import TogetherProvider

logger = logging.getLogger(__name__)

# Provider name → adapter class
PROVIDERS: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "google": GoogleProvider,
    "anthropic": AnthropicProvider,
    "fireworks": FireworksProvider,
    "together": TogetherProvider,
}


class ProviderRegistry:
    """Holds the shared, stateless provider adapters."""

    def __init__(self, providers: list[BaseProvider] | None = None):
        self._providers: dict[str, BaseProvider] = {}
        for provider in providers or []:
            self.register(provider)

    @classmethod
    def from_config(
        cls,
        providers_cfg: dict,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ProviderRegistry":
        """Instantiate adapters from the `providers:` config section."""
        registry = cls()
        for name, cfg in (providers_cfg or {}).items():
            provider = cls._create_provider(name, cfg or {}, transport)
            if provider:
                registry.register(provider)

        logger.info("Providers configured: %s", ", ".join(registry.names()) or "none")
        return registry

    @staticmethod
    def _create_provider(
        name: str,
        cfg: dict,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> BaseProvider | None:
        """Instantiate one adapter from its config block."""
        kind = cfg.get("provider", name)
        provider_cls = PROVIDERS.get(kind)
        if not provider_cls:
            logger.warning("Unknown provider '%s', skipping", kind)
            return None

        url = cfg.get("url", "")
        if not url:
            logger.warning("Provider '%s' has no url, skipping", name)
            return None

        if not cfg.get("api_key"):
            logger.warning("Provider '%s' has no API key, skipping", name)
            return None

        options = {k: v for k, v in cfg.items() if k not in ("provider", "url", "api_key", "timeout")}
        return provider_cls(
            name=name,
            url=url,
            api_key=cfg["api_key"],
            timeout=cfg.get("timeout", 120),
            transport=transport,
            **options,
        )

    def register(self, provider: BaseProvider):
        self._providers[provider.name] = provider

    def get(self, name: str) -> BaseProvider | None:
        """Get a provider by name."""
        return self._providers.get(name)

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)
