"""
Base provider abstraction.
All providers implement this interface so the chat pipeline can treat them
uniformly: a canonical (instruction, turns) pair goes in, text and exactly
one usage summary come out.
"""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Union

import httpx

from voicebridge.errors import ProviderFailure
from voicebridge.providers.sse import iter_sse_payloads

logger = logging.getLogger(__name__)


def _as_count(value) -> int:
    """Token counts arrive as int, str, None or not at all. Anything unusable is 0."""
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


@dataclass
class TextFragment:
    """One incremental slice of generated text."""
    text: str


@dataclass
class UsageSummary:
    """Token accounting for one request."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt=None, completion=None, total=None) -> "UsageSummary":
        """
        Build from whatever the provider reported. Missing counts become 0;
        a missing or zero total is computed as prompt + completion.
        """
        p = _as_count(prompt)
        c = _as_count(completion)
        t = _as_count(total) or p + c
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=t)


StreamEvent = Union[TextFragment, UsageSummary]


@dataclass
class CompletionResult:
    """Standardized non-streaming result from any provider."""
    text: str
    usage: UsageSummary = field(default_factory=UsageSummary)
    provider: str = ""
    latency_ms: float = 0.0


@dataclass
class _UsageCounter:
    """Collects usage fields as they trickle in over a stream."""
    prompt: object = None
    completion: object = None
    total: object = None

    def update(self, prompt=None, completion=None, total=None):
        if prompt is not None:
            self.prompt = prompt
        if completion is not None:
            self.completion = completion
        if total is not None:
            self.total = total

    def summary(self) -> UsageSummary:
        return UsageSummary.from_counts(self.prompt, self.completion, self.total)

    def partial(self) -> UsageSummary | None:
        """Counts seen so far, or None if the provider reported nothing yet."""
        if self.prompt is None and self.completion is None and self.total is None:
            return None
        return self.summary()


class BaseProvider(abc.ABC):
    """
    Abstract base for LLM providers.

    Subclasses supply the wire translation (endpoint, headers, request body,
    response and stream-event parsing). Transport, timeouts and failure
    mapping live here. Instances hold only configuration and are shared
    across requests.
    """

    DEFAULTS: dict = {}

    def __init__(
        self,
        name: str,
        url: str,
        api_key: str = "",
        timeout: int = 120,
        transport: httpx.AsyncBaseTransport | None = None,
        **options,
    ):
        self.name = name
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.options = {**self.DEFAULTS, **{k: v for k, v in options.items() if v is not None}}

    # ------------------------------------------------------------------
    # Wire translation, provider specific
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def endpoint(self, variant: str, stream: bool) -> str:
        """Full URL for a completion call."""
        ...

    @abc.abstractmethod
    def headers(self) -> dict:
        """Request headers, including auth."""
        ...

    @abc.abstractmethod
    def build_request(self, variant: str, instruction: str, turns: list[dict], stream: bool) -> dict:
        """Translate canonical messages into the provider's request body."""
        ...

    @abc.abstractmethod
    def parse_response(self, data: dict) -> CompletionResult:
        """Map a non-streaming response body onto a CompletionResult."""
        ...

    @abc.abstractmethod
    def parse_stream_event(self, event: dict, usage: _UsageCounter) -> str | None:
        """
        Handle one decoded stream payload. Returns text to relay (or None)
        and records any usage fields on `usage`. Raises ProviderFailure when
        the payload reports an error or a safety block.
        """
        ...

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _fail(self, detail: str, status: int | None = None, usage: UsageSummary | None = None):
        logger.warning("Provider '%s' failed: %s", self.name, detail)
        return ProviderFailure(detail, provider=self.name, status=status, usage=usage)

    async def complete(self, variant: str, instruction: str, turns: list[dict]) -> CompletionResult:
        """Issue a buffered completion call."""
        if not self.api_key:
            raise self._fail("No API key configured")

        body = self.build_request(variant, instruction, turns, stream=False)
        t0 = time.monotonic()
        try:
            async with self._client() as client:
                resp = await client.post(self.endpoint(variant, stream=False), headers=self.headers(), json=body)
        except httpx.TimeoutException as e:
            raise self._fail(f"Timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise self._fail(str(e) or type(e).__name__) from e

        latency = (time.monotonic() - t0) * 1000
        if resp.status_code >= 400:
            raise self._fail(f"HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise self._fail("Malformed JSON response") from e
        if not isinstance(data, dict):
            raise self._fail("Unexpected response shape")

        try:
            result = self.parse_response(data)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            raise self._fail(f"Malformed response payload: {e}") from e
        result.provider = self.name
        result.latency_ms = latency
        logger.info("Provider '%s' completed '%s' in %.0fms", self.name, variant, latency)
        return result

    async def stream(self, variant: str, instruction: str, turns: list[dict]) -> AsyncIterator[StreamEvent]:
        """
        Issue a streaming call. Yields TextFragments in generation order,
        then exactly one UsageSummary.

        Closing this generator early exits the underlying httpx stream and
        releases the connection.
        """
        if not self.api_key:
            raise self._fail("No API key configured")

        body = self.build_request(variant, instruction, turns, stream=True)
        usage = _UsageCounter()
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    self.endpoint(variant, stream=True),
                    headers=self.headers(),
                    json=body,
                ) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread()).decode("utf-8", "replace")[:200]
                        raise self._fail(f"HTTP {resp.status_code}: {detail}", status=resp.status_code)
                    async for event in iter_sse_payloads(resp.aiter_lines()):
                        try:
                            text = self.parse_stream_event(event, usage)
                        except ProviderFailure as e:
                            if e.usage is None:
                                e.usage = usage.partial()
                            raise
                        except (AttributeError, TypeError, KeyError, IndexError) as e:
                            raise self._fail(f"Malformed stream payload: {e}", usage=usage.partial()) from e
                        if text:
                            yield TextFragment(text)
        except httpx.TimeoutException as e:
            raise self._fail(f"Stream timed out after {self.timeout}s", usage=usage.partial()) from e
        except httpx.HTTPError as e:
            raise self._fail(str(e) or type(e).__name__, usage=usage.partial()) from e

        yield usage.summary()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
