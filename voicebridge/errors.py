"""
Failure taxonomy shared by every endpoint.

Each error carries the fixed message the caller sees and the HTTP status it
maps to. Detail goes to the log, never to the response body.
"""

from __future__ import annotations


class VoiceBridgeError(Exception):
    """Base for all request-terminating failures."""

    public_message = "Request failed"
    status_code = 400

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(detail or self.public_message)

    def to_body(self) -> dict:
        return {"error": self.public_message}


class AuthorizationFailure(VoiceBridgeError):
    """Missing or mismatched bearer token."""

    public_message = "Authorization failed"


class OriginRejected(VoiceBridgeError):
    """Browser origin not in the allow-list."""

    public_message = "Not allowed by CORS"
    status_code = 403


class ValidationFailure(VoiceBridgeError):
    """Required fields missing or the normalized conversation is empty."""

    public_message = "Missing parameters"


class UnknownProvider(VoiceBridgeError):
    """Route names a provider that is not configured."""

    public_message = "Unknown provider"
    status_code = 404


class ProviderFailure(VoiceBridgeError):
    """Network error, non-2xx, malformed body or safety block from an LLM provider."""

    public_message = "Chat completion failed"

    def __init__(self, detail: str = "", provider: str = "", status: int | None = None,
                 usage=None):
        self.provider = provider
        self.upstream_status = status
        # Usage the provider reported before failing, if any.
        self.usage = usage
        super().__init__(detail)


class RecordingFailure(VoiceBridgeError):
    """Usage ledger write failed. Logged only, never surfaced."""

    public_message = "Usage recording failed"
    status_code = 500


class IntegrationError(VoiceBridgeError):
    """A billing, email, analytics or OAuth vendor call failed."""

    def __init__(self, detail: str = "", public_message: str = "Integration error",
                 status: int | None = None):
        self.public_message = public_message
        self.upstream_status = status
        super().__init__(detail)
