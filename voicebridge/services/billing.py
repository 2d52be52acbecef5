"""
Billing — Stripe customers, checkout, portal and subscription webhooks.

Calls the Stripe REST API directly with httpx (form-encoded bodies, bearer
secret key). Webhook payloads are verified with Stripe's `t=...,v1=...`
HMAC-SHA256 signature scheme before being applied to the `users` collection.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone

import httpx

from voicebridge.errors import IntegrationError
from voicebridge.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.trial_will_end",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
    "entitlements.active_entitlement_summary.updated",
})

STRIPE_ERROR = "Stripe error"


class WebhookSignatureError(IntegrationError):
    def __init__(self, detail: str = ""):
        super().__init__(detail, public_message="Webhook signature verification failed")


class StripeClient:
    def __init__(
        self,
        url: str = "https://api.stripe.com/v1",
        api_key: str = "",
        redirect_url: str = "",
        portal_return_url: str = "",
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.redirect_url = (redirect_url or "").rstrip("/")
        self.portal_return_url = portal_return_url
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "StripeClient":
        return cls(
            url=cfg.get("url", "https://api.stripe.com/v1"),
            api_key=cfg.get("api_key", ""),
            redirect_url=cfg.get("redirect_url", ""),
            portal_return_url=cfg.get("portal_return_url", ""),
            timeout=cfg.get("timeout", 30),
            transport=transport,
        )

    async def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        if not self.api_key:
            raise IntegrationError("no Stripe key configured", public_message=STRIPE_ERROR)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(
                    method,
                    f"{self.url}{path}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data=data,
                )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Stripe %s %s failed: HTTP %d", method, path, e.response.status_code)
            raise IntegrationError(str(e), public_message=STRIPE_ERROR,
                                   status=e.response.status_code) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Stripe %s %s failed: %s", method, path, e)
            raise IntegrationError(str(e), public_message=STRIPE_ERROR) from e

    async def create_customer(self, email: str, user_id: str = "") -> dict:
        data = {"email": email}
        if user_id:
            data["metadata[user_id]"] = user_id
        customer = await self._request("POST", "/customers", data)
        logger.info("Created Stripe customer %s", customer.get("id"))
        return customer

    async def create_checkout_session(self, price_id: str, customer_id: str) -> str:
        """Subscription checkout for one price. Returns the hosted page URL."""
        session = await self._request("POST", "/checkout/sessions", {
            "mode": "subscription",
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "success_url": f"{self.redirect_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.redirect_url}/canceled",
            "customer": customer_id,
        })
        return session.get("url", "")

    async def create_portal_session(self, customer_id: str) -> str:
        session = await self._request("POST", "/billing_portal/sessions", {
            "customer": customer_id,
            "return_url": self.portal_return_url,
        })
        return session.get("url", "")

    async def get_subscription(self, subscription_id: str) -> dict:
        return await self._request("GET", f"/subscriptions/{subscription_id}")


def verify_webhook(payload: bytes, signature_header: str | None, secret: str,
                   tolerance: int = 300, now: float | None = None) -> dict:
    """
    Check a Stripe-Signature header against the raw body and return the
    decoded event. With no secret configured the body is trusted as-is.
    """
    if secret:
        if not signature_header:
            raise WebhookSignatureError("missing Stripe-Signature header")
        timestamp = None
        signatures = []
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)
        if not timestamp or not signatures:
            raise WebhookSignatureError("malformed Stripe-Signature header")
        try:
            ts = int(timestamp)
        except ValueError as e:
            raise WebhookSignatureError("bad signature timestamp") from e

        signed = timestamp.encode() + b"." + payload
        expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        if not any(hmac.compare_digest(expected.encode(), sig.encode()) for sig in signatures):
            raise WebhookSignatureError("no matching v1 signature")
        current = time.time() if now is None else now
        if tolerance and abs(current - ts) > tolerance:
            raise WebhookSignatureError("timestamp outside tolerance")

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError("webhook body is not JSON") from e
    if not isinstance(event, dict):
        raise WebhookSignatureError("webhook body is not an object")
    return event


def _iso_from_epoch(value) -> str | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Ignoring unreadable period timestamp %r", value)
        return None


def handle_webhook_event(store: SQLiteStore, event: dict) -> int:
    """
    Apply a subscription event to the matching user. Returns the number of
    users updated. Unhandled event types and incomplete subscriptions are
    acknowledged and ignored.
    """
    event_type = event.get("type", "")
    if event_type not in SUBSCRIPTION_EVENTS:
        logger.info("Unhandled Stripe event type %s", event_type)
        return 0

    subscription = (event.get("data") or {}).get("object") or {}
    plan = subscription.get("plan") or {}
    logger.info("%s status=%s", event_type, subscription.get("status"))
    if not (subscription.get("id") and subscription.get("customer")
            and subscription.get("status") and plan.get("id")):
        return 0

    updated = store.update_where(
        "users",
        {"stripe_customer_id": subscription["customer"]},
        {
            "stripe_subscription_id": subscription["id"],
            "stripe_plan_id": plan["id"],
            "stripe_status": subscription["status"],
            "stripe_current_period_start": _iso_from_epoch(subscription.get("current_period_start")),
            "stripe_current_period_end": _iso_from_epoch(subscription.get("current_period_end")),
        },
    )
    if not updated:
        logger.warning("No user for Stripe customer %s", subscription["customer"])
    return updated
