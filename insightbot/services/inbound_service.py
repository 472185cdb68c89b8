"""Normalize Evolution API webhook envelopes into inbound events."""

import re
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from insightbot.logging_config import get_logger
from insightbot.schemas.webhook import EvolutionWebhook

logger = get_logger("inbound_service")

MESSAGE_EVENTS = {"messages.upsert", "message"}
CAPTIONED_MESSAGE_TYPES = ("imageMessage", "videoMessage", "documentMessage")

IGNORED_NOT_MESSAGE = "not_a_message_event"
IGNORED_FROM_SELF = "from_self"
IGNORED_GROUP = "group_message"
IGNORED_NO_SENDER = "missing_sender"
IGNORED_EMPTY = "empty_or_unsupported"


@dataclass
class AudioRef:
    base64: Optional[str] = None
    mimetype: Optional[str] = None
    seconds: Optional[float] = None
    message_key: dict = field(default_factory=dict)
    message: dict = field(default_factory=dict)


@dataclass
class InboundEvent:
    event_type: str
    instance_name: Optional[str]
    sender_id: str
    remote_jid: Optional[str]
    message_id: Optional[str]
    from_self: bool
    push_name: Optional[str] = None
    text: Optional[str] = None
    audio: Optional[AudioRef] = None

    @property
    def is_audio(self) -> bool:
        return self.audio is not None and not self.text

    @property
    def is_group(self) -> bool:
        return bool(self.remote_jid and self.remote_jid.endswith("@g.us"))


class InvalidEnvelope(ValueError):
    pass


def extract_phone(remote_jid: Optional[str]) -> str:
    """'5511999998888@s.whatsapp.net' -> '5511999998888'."""
    if not remote_jid:
        return ""
    local_part = remote_jid.split("@", 1)[0]
    local_part = local_part.split(":", 1)[0]
    return re.sub(r"\D", "", local_part)


def _extract_text(message: dict, fallback_body: Optional[str]) -> Optional[str]:
    text = message.get("conversation")
    if not text:
        extended = message.get("extendedTextMessage")
        if isinstance(extended, dict):
            text = extended.get("text")
    if not text:
        for key in CAPTIONED_MESSAGE_TYPES:
            media = message.get(key)
            if isinstance(media, dict) and media.get("caption"):
                text = media["caption"]
                break
    if not text:
        text = fallback_body
    if isinstance(text, str) and text.strip():
        return text.strip()
    return None


def _extract_audio(envelope: EvolutionWebhook, message: dict) -> Optional[AudioRef]:
    audio_message = message.get("audioMessage")
    if not isinstance(audio_message, dict):
        return None
    seconds = audio_message.get("seconds")
    try:
        seconds = float(seconds) if seconds is not None else None
    except (TypeError, ValueError):
        seconds = None
    return AudioRef(
        base64=audio_message.get("base64") or message.get("base64") or envelope.data.base64,
        mimetype=audio_message.get("mimetype"),
        seconds=seconds,
        message_key=envelope.data.key.model_dump(exclude_none=True),
        message=message,
    )


def parse_envelope(payload: dict) -> EvolutionWebhook:
    """Validate a raw webhook payload. Flat payloads (no `data` wrapper) are accepted."""
    if not isinstance(payload, dict):
        raise InvalidEnvelope("payload is not an object")
    if "data" not in payload and "key" in payload:
        payload = {"event": payload.get("event") or payload.get("type"), "instance": payload.get("instance"), "data": payload}
    try:
        return EvolutionWebhook.model_validate(payload)
    except ValidationError as exc:
        raise InvalidEnvelope(str(exc)) from exc


def normalize_event(envelope: EvolutionWebhook) -> InboundEvent:
    data = envelope.data
    message = data.message if isinstance(data.message, dict) else {}
    remote_jid = data.key.remoteJid
    return InboundEvent(
        event_type=(envelope.event or "").strip(),
        instance_name=envelope.instance,
        sender_id=extract_phone(remote_jid),
        remote_jid=remote_jid,
        message_id=data.key.id,
        from_self=bool(data.key.fromMe),
        push_name=data.pushName,
        text=_extract_text(message, data.body),
        audio=_extract_audio(envelope, message),
    )


def classify_ignored(event: InboundEvent) -> Optional[str]:
    """Return the reason an event must not be processed, or None when it should be."""
    if event.event_type.lower().replace("_", ".") not in MESSAGE_EVENTS:
        return IGNORED_NOT_MESSAGE
    if event.from_self:
        return IGNORED_FROM_SELF
    if event.is_group:
        return IGNORED_GROUP
    if not event.sender_id:
        return IGNORED_NO_SENDER
    if not event.text and event.audio is None:
        return IGNORED_EMPTY
    return None
