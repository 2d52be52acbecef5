"""
Tests for the chat proxy pipeline: normalize → provider → relay → ledger.
Run with: pytest tests/test_proxy.py
"""

import httpx
import pytest

from voicebridge.errors import ProviderFailure, UnknownProvider, ValidationFailure
from voicebridge.messages import ChatRequest
from voicebridge.providers import AnthropicProvider, OpenAIProvider
from voicebridge.providers.base import TextFragment, UsageSummary
from voicebridge.providers.registry import ProviderRegistry
from voicebridge.proxy import ChatProxy
from voicebridge.usage import UsageRecorder


@pytest.fixture
def proxy(store, stub_provider):
    return ChatProxy(ProviderRegistry([stub_provider]), recorder=UsageRecorder(store))


async def collect(iterator):
    return [text async for text in iterator]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_relays_text_and_records_once(proxy, store, stub_provider, chat_body):
    request = ChatRequest.from_body(chat_body())

    out = await collect(proxy.stream("stub", request))

    assert "".join(out) == "Hello"
    rows = store.get_usage()
    assert len(rows) == 1
    assert rows[0]["created_by"] == "user-1"
    assert rows[0]["model_id"] == "model-1"
    assert rows[0]["total_tokens"] == 7


@pytest.mark.asyncio
async def test_stream_sends_normalized_conversation(proxy, stub_provider, chat_body):
    await collect(proxy.stream("stub", ChatRequest.from_body(chat_body())))

    variant, instruction, turns = stub_provider.last_args
    assert variant == "stub-large"
    assert instruction == "Be brief."
    assert turns == [{"role": "user", "content": "Hi there"}]


def test_stream_with_only_system_messages_is_rejected_before_upstream(proxy, store, stub_provider, chat_body):
    request = ChatRequest.from_body(chat_body([{"role": "system", "content": "rules", "ts": 0}]))

    with pytest.raises(ValidationFailure):
        proxy.stream("stub", request)

    assert stub_provider.calls == 0
    assert store.get_usage() == []


def test_stream_unknown_provider(proxy, chat_body):
    with pytest.raises(UnknownProvider):
        proxy.stream("nope", ChatRequest.from_body(chat_body()))


@pytest.mark.asyncio
async def test_stream_done_marker_appended(store, stub_provider, chat_body):
    proxy = ChatProxy(ProviderRegistry([stub_provider]), UsageRecorder(store), done_marker="[END]")
    out = await collect(proxy.stream("stub", ChatRequest.from_body(chat_body())))
    assert out == ["Hel", "lo", "[END]"]


@pytest.mark.asyncio
async def test_stream_failure_mid_way_records_partial_usage(store, chat_body):
    class Failing:
        name = "failing"

        async def stream(self, variant, instruction, turns):
            yield TextFragment("par")
            raise ProviderFailure("reset", provider="failing", usage=UsageSummary.from_counts(4, 1))

    proxy = ChatProxy(ProviderRegistry([Failing()]), UsageRecorder(store))
    out = await collect(proxy.stream("failing", ChatRequest.from_body(chat_body())))

    assert out == ["par"]
    rows = store.get_usage()
    assert len(rows) == 1
    assert rows[0]["total_tokens"] == 5


# ---------------------------------------------------------------------------
# Buffered
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_complete_returns_text_and_records_once(proxy, store, stub_provider, chat_body):
    text = await proxy.complete("stub", ChatRequest.from_body(chat_body()))

    assert text == "Hello"
    assert stub_provider.calls == 1
    totals = store.usage_totals(user_id="user-1")
    assert totals["requests"] == 1
    assert totals["prompt_tokens"] == 5
    assert totals["completion_tokens"] == 2
    assert totals["total_tokens"] == 7


@pytest.mark.asyncio
async def test_complete_empty_conversation(proxy, store, stub_provider, chat_body):
    with pytest.raises(ValidationFailure):
        await proxy.complete("stub", ChatRequest.from_body(chat_body([])))
    assert stub_provider.calls == 0
    assert store.get_usage() == []


@pytest.mark.asyncio
async def test_complete_unknown_provider(proxy, chat_body):
    with pytest.raises(UnknownProvider):
        await proxy.complete("nope", ChatRequest.from_body(chat_body()))


@pytest.mark.asyncio
async def test_complete_failure_without_usage_records_nothing(store, chat_body):
    class Failing:
        name = "failing"

        async def complete(self, variant, instruction, turns):
            raise ProviderFailure("HTTP 500", provider="failing", status=500)

    proxy = ChatProxy(ProviderRegistry([Failing()]), UsageRecorder(store))
    with pytest.raises(ProviderFailure):
        await proxy.complete("failing", ChatRequest.from_body(chat_body()))
    assert store.get_usage() == []


@pytest.mark.asyncio
async def test_complete_failure_with_usage_is_recorded(store, chat_body):
    class Failing:
        name = "failing"

        async def complete(self, variant, instruction, turns):
            raise ProviderFailure("blocked", provider="failing", usage=UsageSummary.from_counts(9, 0))

    proxy = ChatProxy(ProviderRegistry([Failing()]), UsageRecorder(store))
    with pytest.raises(ProviderFailure):
        await proxy.complete("failing", ChatRequest.from_body(chat_body()))
    assert store.usage_totals()["total_tokens"] == 9


@pytest.mark.asyncio
async def test_proxy_without_recorder(stub_provider, chat_body):
    proxy = ChatProxy(ProviderRegistry([stub_provider]))
    assert await proxy.complete("stub", ChatRequest.from_body(chat_body())) == "Hello"


@pytest.mark.asyncio
async def test_same_request_streams_same_text(proxy, chat_body):
    request = ChatRequest.from_body(chat_body())

    first = "".join(await collect(proxy.stream("stub", request)))
    second = "".join(await collect(proxy.stream("stub", request)))

    assert first == second == "Hello"


# ---------------------------------------------------------------------------
# Real adapters failing mid-stream
# ---------------------------------------------------------------------------

def _provider_with_body(provider_cls, name, body: bytes):
    return provider_cls(
        name=name, url="https://upstream.test", api_key="k",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)),
    )


@pytest.mark.asyncio
async def test_anthropic_error_event_records_counted_prompt_tokens(store, chat_body):
    body = (
        'data: {"type": "message_start", "message": {"usage": {"input_tokens": 10}}}\n\n'
        'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}}\n\n'
        'data: {"type": "error", "error": {"type": "overloaded_error"}}\n\n'
    ).encode()
    provider = _provider_with_body(AnthropicProvider, "anthropic", body)
    proxy = ChatProxy(ProviderRegistry([provider]), UsageRecorder(store))

    out = await collect(proxy.stream("anthropic", ChatRequest.from_body(chat_body())))

    assert out == ["Hi"]
    rows = store.get_usage()
    assert len(rows) == 1
    assert (rows[0]["prompt_tokens"], rows[0]["completion_tokens"], rows[0]["total_tokens"]) == (10, 0, 10)


@pytest.mark.asyncio
async def test_wrong_shaped_chunk_ends_stream_instead_of_escaping(store, chat_body):
    body = (
        'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\n'
        'data: {"choices": ["oops"]}\n\n'
        "data: [DONE]\n\n"
    ).encode()
    provider = _provider_with_body(OpenAIProvider, "openai", body)
    proxy = ChatProxy(ProviderRegistry([provider]), UsageRecorder(store), done_marker="[END]")

    out = await collect(proxy.stream("openai", ChatRequest.from_body(chat_body())))

    assert out == ["Hi"]
    assert len(store.get_usage()) == 1
