"""
WhatsApp Channel Adapter — WhatsApp Business Cloud API integration.

Provides:
- Webhook verification (hub.verify_token challenge)
- Outbound: text messages and document messages (report PDFs by link)
- Inbound: text and interactive replies turned into InboundEvents
- Phone number normalization

Without an access token the adapter runs in mock mode: sends are logged
and acknowledged with a fake message id.
"""
from __future__ import annotations

import re
import uuid
import structlog
from typing import Any, Optional

import httpx

from channels.base import MessagingTransport, SendThrottle, TransportError
from models.schemas import Action, EventKind, InboundEvent, OutboundMessage

logger = structlog.get_logger()

GRAPH_API_URL = "https://graph.facebook.com"

# Interactive reply ids that map straight onto engine actions
_ACTION_IDS = {a.value: a for a in Action}


class WhatsAppAdapter(MessagingTransport):
    """WhatsApp Business Cloud API adapter."""

    name = "whatsapp"

    def __init__(self, transport: httpx.AsyncBaseTransport = None):
        super().__init__()
        self._phone_number_id: str = ""
        self._access_token: str = ""
        self._verify_token: str = ""
        self._api_version: str = "v18.0"
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def initialize(self, config: dict[str, Any]) -> None:
        self._phone_number_id = config.get("phone_number_id", "")
        self._access_token = config.get("access_token", "")
        self._verify_token = config.get("verify_token", "")
        self._api_version = config.get("api_version", "v18.0") or "v18.0"
        rate = float(config.get("rate_per_second", 80) or 0)
        if rate > 0:
            self._throttle = SendThrottle(rate=rate, burst=int(config.get("burst", 100)))
        self.send_attempts = int(config.get("send_attempts", self.send_attempts))
        self._initialized = True
        if not self.is_live:
            logger.warning("whatsapp_mock_mode", reason="no access token or phone number id")

    @property
    def is_live(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=GRAPH_API_URL,
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=15.0,
                transport=self._transport,
            )
        return self.client

    # ── Phone normalization ───────────────────────────────────

    @staticmethod
    def normalize_phone(phone: str) -> str:
        """Digits only: strips +, spaces, dashes and a WhatsApp JID suffix."""
        return re.sub(r"[^\d]", "", phone.split("@")[0])

    # ── Webhook verification ──────────────────────────────────

    def verify_webhook(self, params: dict[str, Any]) -> Optional[str]:
        """
        Verify the WhatsApp webhook subscription.
        Returns the challenge string on success, None on failure.
        """
        mode = params.get("hub.mode", "")
        token = params.get("hub.verify_token", "")
        challenge = params.get("hub.challenge", "")

        if mode == "subscribe" and self._verify_token and token == self._verify_token:
            return challenge
        return None

    # ── Send ──────────────────────────────────────────────────

    @staticmethod
    def build_payload(phone: str, message: OutboundMessage) -> dict[str, Any]:
        if message.has_media:
            document: dict[str, Any] = {"link": message.media_url}
            if message.text:
                document["caption"] = message.text
            if message.filename:
                document["filename"] = message.filename
            return {
                "messaging_product": "whatsapp",
                "to": phone,
                "type": "document",
                "document": document,
            }
        return {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": "text",
            "text": {"body": message.text},
        }

    async def _deliver(self, to: str, message: OutboundMessage) -> dict[str, Any]:
        phone = self.normalize_phone(to)
        if not phone:
            raise TransportError("No WhatsApp number", self.name)
        payload = self.build_payload(phone, message)

        if not self.is_live:
            msg_id = f"wamid.{uuid.uuid4().hex[:20]}"
            logger.info("whatsapp_message_sent", to=phone, type=payload["type"],
                        msg_id=msg_id, mock=True)
            return {"status": "mock_sent", "channel_message_id": msg_id}

        client = await self._get_client()
        url = f"/{self._api_version}/{self._phone_number_id}/messages"
        try:
            response = await client.post(url, json=payload)
        except httpx.TransportError as e:
            raise TransportError(f"WhatsApp API unreachable: {e}", self.name, retryable=True)

        if response.status_code >= 500 or response.status_code == 429:
            raise TransportError(f"WhatsApp API returned {response.status_code}",
                                 self.name, retryable=True, status_code=response.status_code)
        if response.status_code >= 400:
            logger.error("whatsapp_send_rejected", to=phone, status=response.status_code,
                         body=response.text[:500])
            raise TransportError(f"WhatsApp API rejected message ({response.status_code})",
                                 self.name, status_code=response.status_code)

        data = response.json()
        msg_id = (data.get("messages") or [{}])[0].get("id", "")
        logger.info("whatsapp_message_sent", to=phone, type=payload["type"], msg_id=msg_id)
        return {"status": "sent", "channel_message_id": msg_id}

    # ── Inbound parsing ───────────────────────────────────────

    def _parse_inbound(self, raw_payload: dict[str, Any]) -> list[InboundEvent]:
        """Parse a WhatsApp Cloud API webhook payload into events."""
        events = []
        for entry in raw_payload.get("entry", []) or []:
            for change in entry.get("changes", []) or []:
                value = change.get("value", {}) or {}
                names = {
                    c.get("wa_id", ""): c.get("profile", {}).get("name", "")
                    for c in value.get("contacts", []) or []
                }
                # Status updates (delivered/read) carry no "messages"
                for msg in value.get("messages", []) or []:
                    event = self._message_to_event(msg, names)
                    if event is not None:
                        events.append(event)
        return events

    def _message_to_event(self, msg: dict[str, Any], names: dict[str, str]) -> Optional[InboundEvent]:
        sender = msg.get("from", "")
        if not sender:
            return None
        base = {
            "user_id": self.normalize_phone(sender),
            "event_id": msg.get("id", ""),
            "sender_name": names.get(sender, ""),
        }
        msg_type = msg.get("type", "text")

        if msg_type == "text":
            return InboundEvent(body=msg.get("text", {}).get("body", ""), **base)

        if msg_type in ("interactive", "button"):
            interactive = msg.get("interactive", {})
            reply = (interactive.get("button_reply") or interactive.get("list_reply")
                     or msg.get("button") or {})
            reply_id = reply.get("id") or reply.get("payload") or ""
            if reply_id in _ACTION_IDS:
                return InboundEvent(kind=EventKind.ACTION, action=_ACTION_IDS[reply_id], **base)
            return InboundEvent(body=reply.get("title") or reply.get("text") or "", **base)

        logger.info("whatsapp_unsupported_message", type=msg_type, sender=sender)
        return InboundEvent(body="", **base)

    async def shutdown(self) -> None:
        if self.client:
            await self.client.aclose()
