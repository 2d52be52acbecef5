"""
Stream relay — forwards provider fragments to the caller as they arrive.

The relay pulls from an adapter's event stream one item at a time, so it
never runs ahead of the caller: if the caller stops reading, the relay stops
pulling. When the caller goes away the response generator is closed, which
closes the adapter stream and releases its HTTP connection.

Usage is reported once per relay through `on_usage`, after the stream has
started. A partial stream reports whatever the provider had counted so far.
"""

from __future__ import annotations

import enum
import logging
from typing import AsyncIterator, Callable

from voicebridge.errors import ProviderFailure
from voicebridge.providers.base import StreamEvent, UsageSummary

logger = logging.getLogger(__name__)


class RelayState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    CLOSED = "closed"


class StreamRelay:
    """Relays one adapter stream to one caller."""

    def __init__(
        self,
        source: AsyncIterator[StreamEvent],
        on_usage: Callable[[UsageSummary], object] | None = None,
        done_marker: str = "",
    ):
        self.source = source
        self.on_usage = on_usage
        self.done_marker = done_marker
        self.state = RelayState.IDLE
        self.usage: UsageSummary | None = None
        self._reported = False

    async def relay(self) -> AsyncIterator[str]:
        """Yield text fragments in arrival order until the stream closes."""
        if self.state is RelayState.CLOSED:
            return

        clean = False
        failed_usage = None
        try:
            async for event in self.source:
                self.state = RelayState.STREAMING
                if isinstance(event, UsageSummary):
                    self.usage = event
                    continue
                if event.text:
                    yield event.text
            clean = True
        except ProviderFailure as e:
            # Fragments already sent stand; the stream just ends.
            logger.warning("Stream from '%s' ended early: %s", e.provider or "provider", e.detail)
            failed_usage = e.usage
        finally:
            started = self.state is RelayState.STREAMING or failed_usage is not None
            self.state = RelayState.CLOSED
            await self._close_source()
            if started:
                self._report(self.usage or failed_usage or UsageSummary())

        if clean and self.done_marker:
            yield self.done_marker

    async def _close_source(self):
        aclose = getattr(self.source, "aclose", None)
        if aclose is not None:
            await aclose()

    def _report(self, usage: UsageSummary):
        if self._reported or self.on_usage is None:
            return
        self._reported = True
        self.on_usage(usage)
