"""
Calendar and EHR integrations — OAuth code exchange and calendar sync.

Each integration (Google, Epic, DrChrono, athenahealth, Calendly) has a
token endpoint in config `integrations:`. Exchanged tokens are kept in the
`integrations` collection; connected calendars keep their own access and
refresh tokens on the `calendars` document.

sync_calendars() is the polling job: for every calendar in a workspace it
pulls upcoming events and upserts them into `appointments`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from voicebridge.errors import IntegrationError
from voicebridge.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

OAUTH_PROVIDERS = ("google", "epic", "drchrono", "athena", "calendly")


class OAuthClient:
    """Authorization-code exchange and refresh against configured token endpoints."""

    def __init__(self, providers_cfg: dict, timeout: int = 30,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.providers = providers_cfg or {}
        self.timeout = timeout
        self.transport = transport

    def _provider_cfg(self, provider: str) -> dict:
        cfg = self.providers.get(provider)
        if provider not in OAUTH_PROVIDERS or not cfg or not cfg.get("token_url"):
            raise IntegrationError(f"integration {provider!r} not configured",
                                   public_message="Unknown integration")
        return cfg

    async def _token_request(self, provider: str, form: dict) -> dict:
        cfg = self._provider_cfg(provider)
        form = {**form, "client_id": cfg.get("client_id", ""), "client_secret": cfg.get("client_secret", "")}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(cfg["token_url"], data=form, headers={"Accept": "application/json"})
            resp.raise_for_status()
            tokens = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("OAuth %s for %s failed: %s", form.get("grant_type"), provider, e)
            raise IntegrationError(str(e), public_message="OAuth error") from e
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise IntegrationError(f"{provider} returned no access token", public_message="OAuth error")
        return tokens

    async def exchange_code(self, provider: str, code: str, redirect_uri: str) -> dict:
        tokens = await self._token_request(provider, {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })
        logger.info("Exchanged OAuth code for %s", provider)
        return tokens

    async def refresh(self, provider: str, refresh_token: str) -> dict:
        if not refresh_token:
            raise IntegrationError(f"no refresh token for {provider}", public_message="OAuth error")
        tokens = await self._token_request(provider, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        # Most providers only return a new refresh token when rotating it.
        tokens.setdefault("refresh_token", refresh_token)
        return tokens


def save_integration(store: SQLiteStore, workspace_id: str, provider: str, tokens: dict) -> str:
    """Store (or replace) a workspace's tokens for one provider."""
    return store.upsert("integrations", {
        "id": f"{workspace_id}:{provider}",
        "workspaceId": workspace_id,
        "provider": provider,
        "accessToken": tokens.get("access_token", ""),
        "refreshToken": tokens.get("refresh_token", ""),
        "expiresIn": tokens.get("expires_in"),
        "scope": tokens.get("scope", ""),
        "connectedAt": datetime.now(timezone.utc).isoformat(),
    })


class CalendarClient:
    """Reads events from a connected Google calendar."""

    def __init__(
        self,
        oauth: OAuthClient,
        events_url: str = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events",
        store: SQLiteStore | None = None,
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.oauth = oauth
        self.events_url = events_url
        self.store = store
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, integrations_cfg: dict, store: SQLiteStore | None = None,
                    transport: httpx.AsyncBaseTransport | None = None) -> "CalendarClient":
        google_cfg = (integrations_cfg or {}).get("google") or {}
        kwargs = {"events_url": google_cfg["events_url"]} if google_cfg.get("events_url") else {}
        return cls(OAuthClient(integrations_cfg, transport=transport), store=store,
                   transport=transport, **kwargs)

    async def _get_events(self, calendar: dict, params: dict) -> httpx.Response:
        url = self.events_url.format(calendar_id=calendar.get("calendarId") or "primary")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {calendar.get('accessToken', '')}"},
            )

    async def _refresh_token(self, calendar: dict) -> None:
        tokens = await self.oauth.refresh(calendar.get("provider", "google"), calendar.get("refreshToken", ""))
        calendar["accessToken"] = tokens["access_token"]
        calendar["refreshToken"] = tokens["refresh_token"]
        if self.store is not None and calendar.get("id"):
            self.store.update("calendars", calendar["id"], {
                "accessToken": calendar["accessToken"],
                "refreshToken": calendar["refreshToken"],
            })
        logger.info("Refreshed access token for calendar %s", calendar.get("id"))

    async def list_events(self, calendar: dict, time_min: str | None = None) -> list[dict]:
        """
        Upcoming events for one calendar document. On a 401 the access token
        is refreshed and the request retried once.
        """
        params = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeMin": time_min or datetime.now(timezone.utc).isoformat(),
        }
        try:
            resp = await self._get_events(calendar, params)
            if resp.status_code == 401:
                await self._refresh_token(calendar)
                resp = await self._get_events(calendar, params)
            resp.raise_for_status()
            return resp.json().get("items") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Listing events for calendar %s failed: %s", calendar.get("id"), e)
            raise IntegrationError(str(e), public_message="Calendar error") from e


def _appointment_from_event(event: dict, calendar: dict) -> dict:
    start = event.get("start") or {}
    end = event.get("end") or {}
    return {
        "id": event["id"],
        "workspaceId": calendar.get("workspaceId", ""),
        "calendarId": calendar.get("id"),
        "summary": event.get("summary", ""),
        "description": event.get("description", ""),
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
        "status": event.get("status", ""),
        "attendees": [a.get("email") for a in event.get("attendees") or [] if a.get("email")],
        "updated": event.get("updated"),
    }


async def sync_calendars(store: SQLiteStore, client: CalendarClient, workspace_id: str) -> int:
    """
    Poll every Google calendar in the workspace and upsert its events into
    `appointments`. A failing calendar is logged and skipped. Returns the
    number of appointments written.
    """
    written = 0
    for calendar in store.query("calendars", {"workspaceId": workspace_id}):
        if calendar.get("provider", "google") != "google":
            logger.debug("Skipping %s calendar %s", calendar.get("provider"), calendar.get("id"))
            continue
        try:
            events = await client.list_events(calendar)
        except IntegrationError as e:
            logger.error("Calendar %s sync failed: %s", calendar.get("id"), e.detail)
            continue
        for event in events:
            if not event.get("id"):
                continue
            store.upsert("appointments", _appointment_from_event(event, calendar))
            written += 1
    logger.info("Synced %d appointments for workspace %s", written, workspace_id)
    return written
