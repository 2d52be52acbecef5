"""
Product analytics via Mixpanel's ingestion API.

track() sends an event; certain events also bump a per-user counter on the
people profile (mapping in config `analytics.counters`).
"""

from __future__ import annotations

import json
import logging
import time

import httpx

from voicebridge.errors import IntegrationError

logger = logging.getLogger(__name__)

MIXPANEL_ERROR = "Mixpanel error"

DEFAULT_COUNTERS = {
    "Document Created": "documents_created",
    "File Created": "files_created",
}


class AnalyticsClient:
    def __init__(
        self,
        url: str = "https://api.mixpanel.com",
        token: str = "",
        counters: dict | None = None,
        timeout: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.token = token
        self.counters = DEFAULT_COUNTERS if counters is None else counters
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "AnalyticsClient":
        return cls(
            url=cfg.get("url", "https://api.mixpanel.com"),
            token=cfg.get("token", ""),
            counters=cfg.get("counters"),
            timeout=cfg.get("timeout", 10),
            transport=transport,
        )

    async def _post(self, path: str, payload: list[dict]) -> None:
        if not self.token:
            raise IntegrationError("no Mixpanel token configured", public_message=MIXPANEL_ERROR)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    f"{self.url}{path}",
                    data={"data": json.dumps(payload)},
                    headers={"Accept": "text/plain"},
                )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Mixpanel %s failed: %s", path, e)
            raise IntegrationError(str(e), public_message=MIXPANEL_ERROR) from e
        # Mixpanel answers 200 with body "0" when it rejects the payload.
        if resp.text.strip() == "0":
            raise IntegrationError(f"Mixpanel rejected {path} payload", public_message=MIXPANEL_ERROR)

    async def track(self, event_name: str, properties: dict | None = None) -> None:
        props = {"token": self.token, "time": int(time.time()), **(properties or {})}
        await self._post("/track", [{"event": event_name, "properties": props}])

    async def increment(self, user_id: str, counter: str, by: int = 1) -> None:
        await self._post("/engage", [{
            "$token": self.token,
            "$distinct_id": user_id,
            "$add": {counter: by},
        }])

    async def track_user_event(self, user_id: str, event_name: str, properties: dict | None = None) -> None:
        """Track an event and bump the matching profile counter, if any."""
        await self.track(event_name, properties)
        counter = self.counters.get(event_name)
        if counter:
            await self.increment(user_id, counter)
