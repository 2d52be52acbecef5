"""
FastAPI application — the VoiceBridge entry point.

Serves the chat-completion proxy for the outreach dashboard:
  - /api/v1/chat/{provider}          buffered completion (JSON string)
  - /api/v1/chat/{provider}/stream   incremental text/plain stream
plus embeddings, billing, email, analytics and calendar integration
endpoints. Every caller-facing route goes through the same gate:
origin allow-list, then bearer token, then body fields.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from voicebridge import __version__
from voicebridge.config import get_config, section, server_address, sqlite_path
from voicebridge.dispatcher import Dispatcher
from voicebridge.embeddings import EmbeddingsClient
from voicebridge.errors import (
    AuthorizationFailure,
    OriginRejected,
    UnknownProvider,
    ValidationFailure,
    VoiceBridgeError,
)
from voicebridge.providers.registry import ProviderRegistry
from voicebridge.proxy import ChatProxy
from voicebridge.services.analytics import AnalyticsClient
from voicebridge.services.billing import StripeClient, handle_webhook_event, verify_webhook
from voicebridge.services.calendars import CalendarClient, OAuthClient, save_integration, sync_calendars
from voicebridge.services.mailer import EmailClient
from voicebridge.storage.sqlite_store import SQLiteStore
from voicebridge.usage import UsageRecorder, UsageTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
sqlite_store: SQLiteStore | None = None
dispatcher: Dispatcher | None = None
provider_registry: ProviderRegistry | None = None
chat_proxy: ChatProxy | None = None
usage_tracker: UsageTracker | None = None
embeddings_client: EmbeddingsClient | None = None
stripe_client: StripeClient | None = None
email_client: EmailClient | None = None
analytics_client: AnalyticsClient | None = None
oauth_client: OAuthClient | None = None
calendar_client: CalendarClient | None = None
webhook_secret: str = ""


def _setup_logging(cfg: dict):
    log_cfg = section(cfg, "logging")
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def init_app(cfg: dict, transport: httpx.AsyncBaseTransport | None = None):
    """Build every component from config and publish them as module globals."""
    global sqlite_store, dispatcher, provider_registry, chat_proxy, usage_tracker
    global embeddings_client, stripe_client, email_client, analytics_client
    global oauth_client, calendar_client, webhook_secret

    auth_cfg = section(cfg, "auth")
    billing_cfg = section(cfg, "billing")

    sqlite_store = SQLiteStore(sqlite_path(cfg))
    dispatcher = Dispatcher(auth_cfg.get("api_key", ""), auth_cfg.get("allowed_origins") or [])
    provider_registry = ProviderRegistry.from_config(section(cfg, "providers"), transport=transport)
    chat_proxy = ChatProxy(
        provider_registry,
        recorder=UsageRecorder(sqlite_store),
        done_marker=section(cfg, "stream").get("done_marker") or "",
    )
    usage_tracker = UsageTracker(sqlite_store)

    embeddings_client = EmbeddingsClient.from_config(section(cfg, "embeddings"), transport=transport)
    stripe_client = StripeClient.from_config(billing_cfg, transport=transport)
    webhook_secret = billing_cfg.get("webhook_secret", "")
    email_client = EmailClient.from_config(section(cfg, "email"), transport=transport)
    analytics_client = AnalyticsClient.from_config(section(cfg, "analytics"), transport=transport)

    calendar_client = CalendarClient.from_config(section(cfg, "integrations"), store=sqlite_store,
                                                 transport=transport)
    oauth_client = calendar_client.oauth

    if not dispatcher.api_key:
        logger.warning("auth.api_key is empty, every request will be rejected")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    cfg = get_config()
    _setup_logging(cfg)
    init_app(cfg)

    logger.info("VoiceBridge started, listening on %s:%s", *server_address(cfg))
    logger.info("Storage: SQLite=%s", sqlite_store.db_path)
    logger.info("Providers: %s", ", ".join(provider_registry.names()) or "none")
    logger.info("Allowed origins: %s", ", ".join(sorted(dispatcher.allowed_origins)) or "none")
    logger.info("Stream done marker: %s", "enabled" if chat_proxy.done_marker else "disabled")

    yield

    logger.info("VoiceBridge shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="VoiceBridge",
    description="Chat-completion proxy and integrations for the outreach dashboard.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(VoiceBridgeError)
async def voicebridge_error_handler(request: Request, exc: VoiceBridgeError):
    logger.info("%s %s → %d %s: %s", request.method, request.url.path,
                exc.status_code, type(exc).__name__, exc.detail)
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


@app.middleware("http")
async def cors_headers(request: Request, call_next):
    """Answer CORS preflights and echo allowed browser origins."""
    origin = request.headers.get("origin")
    allowed = bool(origin) and dispatcher is not None and origin in dispatcher.allowed_origins

    if request.method == "OPTIONS" and origin:
        if not allowed:
            return JSONResponse(OriginRejected().to_body(), status_code=OriginRejected.status_code)
        response = Response(status_code=204)
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
    else:
        response = await call_next(request)

    if allowed:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
    return response


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationFailure("body is not valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationFailure("body must be a JSON object")
    return body


async def _admit(request: Request, *fields: str) -> dict:
    """Origin, authorization, then required fields."""
    dispatcher.admit(request.headers.get("origin"), request.headers.get("authorization"))
    body = await _json_body(request)
    return dispatcher.require(body, *fields)


# ---------------------------------------------------------------------------
# Chat completions
# ---------------------------------------------------------------------------

@app.post("/api/v1/chat/{provider}")
async def chat_completion(provider: str, request: Request):
    """Buffered completion. 200 with the generated text as a JSON string."""
    body = await _admit(request)
    chat_request = dispatcher.parse_chat_request(body)
    text = await chat_proxy.complete(provider, chat_request)
    return JSONResponse(text)


@app.post("/api/v1/chat/{provider}/stream")
async def chat_completion_stream(provider: str, request: Request):
    """
    Streaming completion. Text fragments are written as they arrive.
    Failures before the stream opens close the response with no body;
    failures after that just end the stream.
    """
    try:
        body = await _admit(request)
        chat_request = dispatcher.parse_chat_request(body)
        fragments = chat_proxy.stream(provider, chat_request)
    except OriginRejected as e:
        logger.info("Stream to %s rejected: %s", provider, e.detail)
        return Response(status_code=403)
    except AuthorizationFailure as e:
        logger.info("Stream to %s rejected: %s", provider, e.detail)
        return Response(status_code=401)
    except ValidationFailure as e:
        logger.info("Stream to %s invalid: %s", provider, e.detail)
        return Response(status_code=400)
    except UnknownProvider as e:
        logger.info("Stream to %s: %s", provider, e.detail)
        return Response(status_code=404)

    return StreamingResponse(
        fragments,
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

@app.post("/api/v1/embeddings/documents")
async def embed_documents(request: Request):
    body = await _admit(request, "texts")
    texts = body["texts"]
    if not isinstance(texts, list):
        raise ValidationFailure("texts must be a list")
    contents = [t.get("content", "") if isinstance(t, dict) else str(t) for t in texts]
    return JSONResponse(await embeddings_client.embed_documents(contents))


@app.post("/api/v1/embeddings/query")
async def embed_query(request: Request):
    body = await _admit(request, "query")
    return JSONResponse(await embeddings_client.embed_query(str(body["query"])))


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

@app.post("/api/v1/billing/customers")
async def billing_create_customer(request: Request):
    body = await _admit(request, "customer_email")
    customer = await stripe_client.create_customer(body["customer_email"], str(body.get("user_id") or ""))
    return JSONResponse(customer)


@app.post("/api/v1/billing/checkout")
async def billing_checkout(request: Request):
    body = await _admit(request, "price_id", "stripe_customer_id")
    url = await stripe_client.create_checkout_session(body["price_id"], body["stripe_customer_id"])
    return JSONResponse({"url": url})


@app.post("/api/v1/billing/portal")
async def billing_portal(request: Request):
    body = await _admit(request, "stripe_customer_id")
    url = await stripe_client.create_portal_session(body["stripe_customer_id"])
    return JSONResponse({"url": url})


@app.post("/api/v1/billing/subscription")
async def billing_subscription(request: Request):
    body = await _admit(request, "subscription_id")
    subscription = await stripe_client.get_subscription(body["subscription_id"])
    return JSONResponse({"subscription": subscription})


@app.post("/api/v1/billing/webhook")
async def billing_webhook(request: Request):
    """Stripe calls this directly; it is authenticated by signature, not bearer token."""
    payload = await request.body()
    event = verify_webhook(payload, request.headers.get("stripe-signature"), webhook_secret)
    updated = handle_webhook_event(sqlite_store, event)
    return JSONResponse({"received": True, "updated": updated})


# ---------------------------------------------------------------------------
# Email and analytics
# ---------------------------------------------------------------------------

@app.post("/api/v1/email/welcome")
async def email_welcome(request: Request):
    body = await _admit(request, "email", "to_name")
    await email_client.send_template(body["email"], "WelcomeEmail", {"to_name": body["to_name"]})
    return JSONResponse({"sent": True})


@app.post("/api/v1/analytics/track")
async def analytics_track(request: Request):
    body = await _admit(request, "user_id", "event_name", "event")
    properties = body["event"] if isinstance(body["event"], dict) else {"value": body["event"]}
    await analytics_client.track_user_event(str(body["user_id"]), body["event_name"], properties)
    return JSONResponse({"tracked": True})


# ---------------------------------------------------------------------------
# Calendar and EHR integrations
# ---------------------------------------------------------------------------

@app.post("/api/v1/integrations/{provider}/exchange")
async def integration_exchange(provider: str, request: Request):
    body = await _admit(request, "code", "redirect_uri", "workspace_id")
    tokens = await oauth_client.exchange_code(provider, body["code"], body["redirect_uri"])
    integration_id = save_integration(sqlite_store, str(body["workspace_id"]), provider, tokens)
    return JSONResponse({"id": integration_id, "provider": provider, "connected": True})


@app.post("/api/v1/calendars/sync")
async def calendars_sync(request: Request):
    body = await _admit(request, "workspace_id")
    written = await sync_calendars(sqlite_store, calendar_client, str(body["workspace_id"]))
    return JSONResponse({"synced": written})


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------

@app.get("/api/v1/health")
async def health():
    """Health check."""
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "providers": len(provider_registry) if provider_registry else 0,
    })


@app.get("/api/v1/providers")
async def list_providers():
    """Configured provider names, as accepted in /api/v1/chat/{provider}."""
    return JSONResponse({"providers": provider_registry.names() if provider_registry else []})


@app.get("/api/v1/usage")
async def api_usage(request: Request, days: int = 30, user_id: str | None = None):
    """
    Token usage stats.
    Query params: ?days=30&user_id=... (both optional)
    Returns totals plus by_model, by_day and by_user breakdowns.
    """
    dispatcher.admit(request.headers.get("origin"), request.headers.get("authorization"))
    stats = usage_tracker.get_stats(days=days, user_id=user_id)
    stats["timestamp"] = datetime.now(timezone.utc).isoformat()
    return JSONResponse(stats)
