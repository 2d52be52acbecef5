"""
Transactional email via SendGrid dynamic templates.
"""

from __future__ import annotations

import logging
from email.utils import parseaddr

import httpx

from voicebridge.errors import IntegrationError

logger = logging.getLogger(__name__)

SENDGRID_ERROR = "SendGrid error"


class EmailClient:
    def __init__(
        self,
        url: str = "https://api.sendgrid.com/v3",
        api_key: str = "",
        sender: str = "",
        reply_to: str = "",
        templates: dict | None = None,
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.sender = sender
        self.reply_to = reply_to
        self.templates = templates or {}
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "EmailClient":
        return cls(
            url=cfg.get("url", "https://api.sendgrid.com/v3"),
            api_key=cfg.get("api_key", ""),
            sender=cfg.get("from", ""),
            reply_to=cfg.get("reply_to", ""),
            templates=cfg.get("templates") or {},
            timeout=cfg.get("timeout", 30),
            transport=transport,
        )

    def build_message(self, to: str, template: str, data: dict) -> dict:
        template_id = self.templates.get(template)
        if not template_id:
            raise IntegrationError(f"unknown email template {template!r}", public_message=SENDGRID_ERROR)
        name, address = parseaddr(self.sender)
        sender = {"email": address}
        if name:
            sender["name"] = name
        message = {
            "personalizations": [{"to": [{"email": to}], "dynamic_template_data": data}],
            "from": sender,
            "template_id": template_id,
        }
        if self.reply_to:
            message["reply_to"] = {"email": self.reply_to}
        return message

    async def send_template(self, to: str, template: str, data: dict) -> None:
        if not self.api_key:
            raise IntegrationError("no SendGrid key configured", public_message=SENDGRID_ERROR)
        message = self.build_message(to, template, data)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    f"{self.url}/mail/send",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=message,
                )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("SendGrid send of %s failed: %s", template, e)
            raise IntegrationError(str(e), public_message=SENDGRID_ERROR) from e
        logger.info("Sent %s email", template)
