"""
Embeddings client — document and query vectors for agent knowledge bases.

Talks to an OpenAI-shaped /embeddings endpoint (Together by default).
Document texts are sent in fixed-size batches and the returned `data`
objects are concatenated in order.
"""

from __future__ import annotations

import logging

import httpx

from voicebridge.errors import IntegrationError

logger = logging.getLogger(__name__)


class EmbeddingsClient:
    def __init__(
        self,
        url: str,
        api_key: str = "",
        model: str = "WhereIsAI/UAE-Large-V1",
        batch_size: int = 100,
        timeout: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.batch_size = max(int(batch_size), 1)
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "EmbeddingsClient":
        return cls(
            url=cfg.get("url", "https://api.together.xyz/v1"),
            api_key=cfg.get("api_key", ""),
            model=cfg.get("model", "WhereIsAI/UAE-Large-V1"),
            batch_size=cfg.get("batch_size", 100),
            timeout=cfg.get("timeout", 60),
            transport=transport,
        )

    def _fail(self, detail: str, message: str = "Embeddings failed") -> IntegrationError:
        logger.warning("Embeddings call failed: %s", detail)
        return IntegrationError(detail, public_message=message)

    async def _embed(self, client: httpx.AsyncClient, payload) -> list[dict]:
        try:
            resp = await client.post(
                f"{self.url}/embeddings",
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={"model": self.model, "input": payload},
            )
            resp.raise_for_status()
            data = resp.json().get("data") or []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise self._fail(str(e) or type(e).__name__) from e
        if not data:
            raise self._fail("empty embeddings response")
        return data

    async def embed_documents(self, texts: list[str]) -> list[dict]:
        """Embed many texts, batch_size at a time. Returns the provider's data objects."""
        if not self.api_key:
            raise self._fail("no API key configured")
        embeddings: list[dict] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for i in range(0, len(texts), self.batch_size):
                embeddings.extend(await self._embed(client, texts[i:i + self.batch_size]))
        if not embeddings:
            raise self._fail("no texts embedded")
        logger.info("Embedded %d document texts", len(embeddings))
        return embeddings

    async def embed_query(self, query: str) -> list[dict]:
        if not self.api_key:
            raise self._fail("no API key configured", message="Embedding failed")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                return await self._embed(client, query)
            except IntegrationError as e:
                raise IntegrationError(e.detail, public_message="Embedding failed") from e
