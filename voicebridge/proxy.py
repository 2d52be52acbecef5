"""
Chat proxy — the pipeline behind every /api/v1/chat/{provider} route.

    request → normalize → provider adapter → (relay) → usage ledger

Callers are expected to have passed the Dispatcher gate already. No retries
and no fallback between providers: a failure is final for that request.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from voicebridge.errors import ProviderFailure, UnknownProvider, ValidationFailure
from voicebridge.messages import ChatRequest, normalize_messages
from voicebridge.providers.base import BaseProvider
from voicebridge.providers.registry import ProviderRegistry
from voicebridge.relay import StreamRelay
from voicebridge.usage import UsageRecorder

logger = logging.getLogger(__name__)


class ChatProxy:
    def __init__(
        self,
        registry: ProviderRegistry,
        recorder: UsageRecorder | None = None,
        done_marker: str = "",
        system_prefer: str = "first",
    ):
        self.registry = registry
        self.recorder = recorder
        self.done_marker = done_marker
        self.system_prefer = system_prefer

    def _resolve(self, provider_name: str) -> BaseProvider:
        provider = self.registry.get(provider_name)
        if provider is None:
            raise UnknownProvider(f"provider {provider_name!r} not configured")
        return provider

    def _prepare(self, provider_name: str, request: ChatRequest) -> tuple[BaseProvider, str, list[dict]]:
        provider = self._resolve(provider_name)
        instruction, turns = normalize_messages(request.messages, prefer=self.system_prefer)
        if not turns:
            raise ValidationFailure("no user or assistant messages")
        return provider, instruction, turns

    def _record(self, request: ChatRequest, usage) -> None:
        if self.recorder is None:
            return
        self.recorder.record_summary(request.user_id, request.model.id, usage)

    async def complete(self, provider_name: str, request: ChatRequest) -> str:
        """Buffered completion. Returns the generated text."""
        provider, instruction, turns = self._prepare(provider_name, request)
        try:
            result = await provider.complete(request.model.variant, instruction, turns)
        except ProviderFailure as e:
            # The call reached the provider; keep whatever it counted.
            if e.usage is not None:
                self._record(request, e.usage)
            raise
        self._record(request, result.usage)
        return result.text

    def stream(self, provider_name: str, request: ChatRequest) -> AsyncIterator[str]:
        """
        Streaming completion. Validation happens here, before the returned
        iterator produces anything, so a bad request never opens a stream.
        """
        provider, instruction, turns = self._prepare(provider_name, request)
        relay = StreamRelay(
            provider.stream(request.model.variant, instruction, turns),
            on_usage=lambda usage: self._record(request, usage),
            done_marker=self.done_marker,
        )
        logger.debug("Streaming '%s' via '%s' for user=%s", request.model.variant, provider.name, request.user_id)
        return relay.relay()
