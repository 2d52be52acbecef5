"""
Request gate shared by every endpoint.

Checks run in a fixed order: browser origin, then bearer token, then body
fields. Each check either passes or raises; nothing is written anywhere.
"""

from __future__ import annotations

import hmac
from typing import Any

from voicebridge.errors import AuthorizationFailure, OriginRejected, ValidationFailure
from voicebridge.messages import ChatRequest


class Dispatcher:
    def __init__(self, api_key: str = "", allowed_origins: list[str] | None = None):
        self.api_key = api_key or ""
        self.allowed_origins = set(allowed_origins or [])

    def check_origin(self, origin: str | None) -> None:
        """No Origin header means a non-browser caller, which is always allowed."""
        if not origin:
            return
        if origin not in self.allowed_origins:
            raise OriginRejected(f"origin {origin!r} not allowed")

    def check_authorization(self, header: str | None) -> None:
        if not self.api_key:
            raise AuthorizationFailure("no API key configured")
        expected = f"Bearer {self.api_key}"
        if not header or not hmac.compare_digest(header.encode(), expected.encode()):
            raise AuthorizationFailure("bearer token mismatch")

    def parse_chat_request(self, body: Any) -> ChatRequest:
        return ChatRequest.from_body(body)

    @staticmethod
    def require(body: Any, *fields: str) -> dict:
        """Check that each field is present and non-empty. Returns the body."""
        if not isinstance(body, dict):
            raise ValidationFailure("body must be a JSON object")
        missing = [f for f in fields if body.get(f) in (None, "", [], {})]
        if missing:
            raise ValidationFailure(f"missing fields: {', '.join(missing)}")
        return body

    def admit(self, origin: str | None, authorization: str | None) -> None:
        """Origin then authorization, as every route does before reading the body."""
        self.check_origin(origin)
        self.check_authorization(authorization)
