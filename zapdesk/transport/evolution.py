"""
Evolution API transport.

Sends and edits WhatsApp messages through an Evolution API instance (a
Baileys-based WhatsApp gateway) and parses the gateway's webhook events into
the console's normalized events.
"""

import mimetypes
from typing import Any, Dict, List, Optional, Union

import httpx

from zapdesk.errors import CollaboratorUnavailableError
from zapdesk.models import DeliveryStatus, FileAttachment
from zapdesk.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    InboundEvent,
    QuotedMessage,
    StatusReceipt,
)
from zapdesk.repositories.directory_repo import is_person_jid
from zapdesk.utils.config_loader import config
from zapdesk.utils.logger import logger
from zapdesk.utils.retry import retry_on_connection_error


WebhookEvent = Union[InboundEvent, StatusReceipt, ConnectionUpdate]

_MEDIA_KINDS = {
    "imageMessage": "image",
    "videoMessage": "video",
    "audioMessage": "audio",
    "documentMessage": "document",
    "documentWithCaptionMessage": "document",
    "stickerMessage": "image",
}

_ACK_STATUSES = {
    "SERVER_ACK": DeliveryStatus.SENT,
    "DELIVERY_ACK": DeliveryStatus.DELIVERED,
    "READ": DeliveryStatus.READ,
    "PLAYED": DeliveryStatus.READ,
    2: DeliveryStatus.SENT,
    3: DeliveryStatus.DELIVERED,
    4: DeliveryStatus.READ,
    5: DeliveryStatus.READ,
}

_CONNECTION_STATES = {
    "open": ConnectionState.CONNECTED,
    "connecting": ConnectionState.LOADING,
    "close": ConnectionState.DISCONNECTED,
}


def _mask_token(token: str) -> str:
    if not token or len(token) < 12:
        return "***masked***"
    return f"{token[:8]}...{token[-4:]}"


def _media_type(mime_type: str) -> str:
    kind = mime_type.split("/")[0]
    return kind if kind in ("image", "video", "audio") else "document"


class EvolutionTransport:
    """Async Evolution API client implementing the Transport contract."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.instance = instance
        self.state = ConnectionState.LOADING
        self.qr_code: Optional[str] = None
        self.own_jid: Optional[str] = None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
        )
        logger.info(f"Evolution transport for instance {instance} at {self.base_url} (key {_mask_token(api_key)})")

    @classmethod
    def from_config(cls) -> Optional["EvolutionTransport"]:
        """Build from config, or None when no gateway URL is configured."""
        base_url = config.get("transport.evolution.base_url") or ""
        if not base_url or base_url.startswith("${"):
            return None
        return cls(
            base_url=base_url,
            api_key=config.get("transport.evolution.api_key", ""),
            instance=config.get("transport.evolution.instance", "zapdesk"),
            timeout=config.get_float("transport.evolution.timeout_seconds", 30.0),
        )

    @retry_on_connection_error(max_attempts=3)
    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self.client.request(method, f"{path}/{self.instance}", json=payload)
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            return await self._request(method, path, payload)
        except httpx.HTTPError as e:
            raise CollaboratorUnavailableError(f"Evolution API {path} failed: {e}") from e

    async def send(self, user_id: str, text: Optional[str], files: List[FileAttachment]) -> Optional[str]:
        """
        Send text and/or media to a user.

        The first file carries the text as its caption. Returns the gateway id
        of the last message sent.
        """
        number = user_id.split("@")[0]
        data: Dict[str, Any] = {}

        if files:
            for index, attachment in enumerate(files):
                data = await self._call("POST", "/message/sendMedia", {
                    "number": number,
                    "mediatype": _media_type(attachment.mime_type),
                    "mimetype": attachment.mime_type,
                    "media": attachment.data,
                    "fileName": attachment.name,
                    "caption": text if index == 0 and text else "",
                })
        elif text:
            data = await self._call("POST", "/message/sendText", {"number": number, "text": text})
        else:
            logger.warning(f"Skipping empty outbound message to {user_id}")
            return None

        return (data.get("key") or {}).get("id")

    async def edit(self, user_id: str, transport_id: str, new_text: str) -> None:
        await self._call("POST", "/chat/updateMessage", {
            "number": user_id.split("@")[0],
            "text": new_text,
            "key": {"remoteJid": user_id, "fromMe": True, "id": transport_id},
        })

    async def fetch_media(self, transport_id: str) -> Optional[str]:
        """Download the base64 body of a received media message."""
        data = await self._call("POST", "/chat/getBase64FromMediaMessage", {
            "message": {"key": {"id": transport_id}},
        })
        return data.get("base64")

    async def refresh_state(self) -> ConnectionState:
        try:
            data = await self._call("GET", "/instance/connectionState")
        except CollaboratorUnavailableError as e:
            logger.error(f"Could not read gateway state: {e}")
            self.state = ConnectionState.ERROR
            return self.state
        state = (data.get("instance") or {}).get("state")
        self.state = _CONNECTION_STATES.get(state, ConnectionState.DISCONNECTED)
        return self.state

    def apply_connection_update(self, update: ConnectionUpdate) -> None:
        if update.state != self.state:
            logger.info(f"Gateway connection {self.state.value} -> {update.state.value}")
        self.state = update.state
        self.qr_code = update.qr_code if update.state == ConnectionState.QR_READY else None
        if update.own_jid:
            self.own_jid = update.own_jid

    async def close(self) -> None:
        await self.client.aclose()


# ----- webhook parsing -----

def _event_name(payload: Dict[str, Any]) -> str:
    return str(payload.get("event") or "").lower().replace("_", ".")


def _as_list(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    return [data] if isinstance(data, dict) else []


def _plain_text(message: Dict[str, Any]) -> str:
    if isinstance(message.get("conversation"), str):
        return message["conversation"]
    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict) and isinstance(extended.get("text"), str):
        return extended["text"]
    for kind in _MEDIA_KINDS:
        media = message.get(kind)
        if isinstance(media, dict) and isinstance(media.get("caption"), str):
            return media["caption"]
    return ""


def _context_info(message: Dict[str, Any]) -> Dict[str, Any]:
    for value in message.values():
        if isinstance(value, dict) and isinstance(value.get("contextInfo"), dict):
            return value["contextInfo"]
    return {}


def _parse_upsert(data: Dict[str, Any], own_jid: Optional[str]) -> Optional[InboundEvent]:
    key = data.get("key") or {}
    remote_jid = key.get("remoteJid") or ""
    if key.get("fromMe") or not is_person_jid(remote_jid):
        return None

    message = data.get("message") or {}
    if not isinstance(message, dict):
        return None

    attachment = None
    for kind, media_type in _MEDIA_KINDS.items():
        media = message.get(kind)
        if isinstance(media, dict):
            mime_type = (media.get("mimetype") or f"{media_type}/octet-stream").split(";")[0]
            extension = mimetypes.guess_extension(mime_type) or ""
            attachment = FileAttachment(
                name=media.get("fileName") or f"{media_type}{extension}",
                mime_type=mime_type,
                data=message.get("base64") or "",
            )
            break

    quoted = None
    info = _context_info(message)
    if isinstance(info.get("quotedMessage"), dict):
        participant = info.get("participant")
        quoted = QuotedMessage(
            text=_plain_text(info["quotedMessage"]) or None,
            from_me=bool(own_jid) and participant == own_jid,
        )

    text = _plain_text(message).strip()
    if not text and attachment is None:
        return None

    return InboundEvent(
        user_id=remote_jid,
        user_name=data.get("pushName"),
        text=text,
        file=attachment,
        reply_context=quoted,
        transport_id=key.get("id"),
    )


def _parse_update(data: Dict[str, Any]) -> Optional[StatusReceipt]:
    key = data.get("key") or {}
    transport_id = data.get("keyId") or key.get("id")
    user_id = data.get("remoteJid") or key.get("remoteJid")
    status = data.get("status")
    if status is None:
        status = (data.get("update") or {}).get("status")
    mapped = _ACK_STATUSES.get(status)
    if not transport_id or not user_id or mapped is None:
        return None
    return StatusReceipt(user_id=user_id, transport_id=transport_id, status=mapped)


def parse_webhook(payload: Dict[str, Any], own_jid: Optional[str] = None) -> List[WebhookEvent]:
    """
    Parse an Evolution API webhook body into normalized events.

    Own messages, group chats and unknown events yield nothing.
    """
    event = _event_name(payload)
    items = _as_list(payload.get("data"))
    events: List[WebhookEvent] = []

    if event == "messages.upsert":
        for data in items:
            parsed = _parse_upsert(data, own_jid)
            if parsed:
                events.append(parsed)
    elif event == "messages.update":
        for data in items:
            receipt = _parse_update(data)
            if receipt:
                events.append(receipt)
    elif event == "connection.update":
        for data in items:
            state = _CONNECTION_STATES.get(data.get("state"), ConnectionState.ERROR)
            events.append(ConnectionUpdate(state=state, own_jid=data.get("wuid")))
    elif event == "qrcode.updated":
        for data in items:
            qrcode = data.get("qrcode") or {}
            code = qrcode.get("base64") if isinstance(qrcode, dict) else qrcode
            events.append(ConnectionUpdate(state=ConnectionState.QR_READY, qr_code=code))
    else:
        logger.debug(f"Ignoring gateway event {event!r}")

    return events
