"""Evolution API (WhatsApp gateway) client bound to one channel instance."""

import base64
import os
import time
from typing import Callable, Optional

import httpx

from insightbot.logging_config import get_logger
from insightbot.models import ChannelInstance
from insightbot.services.result import Result

logger = get_logger("evolution_service")

EVOLUTION_SEND_TIMEOUT_SECONDS = float(os.environ.get("EVOLUTION_SEND_TIMEOUT_SECONDS", "30"))
EVOLUTION_MEDIA_TIMEOUT_SECONDS = float(os.environ.get("EVOLUTION_MEDIA_TIMEOUT_SECONDS", "20"))
EVOLUTION_FIND_TIMEOUT_SECONDS = float(os.environ.get("EVOLUTION_FIND_TIMEOUT_SECONDS", "15"))
EVOLUTION_PRESENCE_TIMEOUT_SECONDS = float(os.environ.get("EVOLUTION_PRESENCE_TIMEOUT_SECONDS", "5"))
MEDIA_FETCH_ATTEMPTS = 2
MEDIA_RETRY_DELAY_SECONDS = 1.5


def _digits(phone: str) -> str:
    return "".join(ch for ch in (phone or "") if ch.isdigit())


def _pick_base64(data) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    media = data.get("media") if isinstance(data.get("media"), dict) else {}
    return data.get("base64") or nested.get("base64") or data.get("mediaBase64") or media.get("base64")


class EvolutionClient:
    def __init__(self, instance: ChannelInstance, *, sleep_func: Callable[[float], None] = time.sleep):
        self.instance_name = instance.name
        self.api_url = (instance.api_url or "").rstrip("/")
        self.api_key = instance.api_key
        self.sleep_func = sleep_func

    def _url(self, path: str) -> str:
        return f"{self.api_url}/{path}/{self.instance_name}"

    def _post(self, path: str, payload: dict, timeout: float) -> httpx.Response:
        with httpx.Client(timeout=timeout) as client:
            return client.post(self._url(path), json=payload, headers={"apikey": self.api_key})

    def send_text(self, phone: str, text: str) -> bool:
        """Send a text message. Returns True on a 2xx answer."""
        if not text:
            return False
        try:
            response = self._post(
                "message/sendText", {"number": _digits(phone), "text": text}, EVOLUTION_SEND_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            logger.error(f"Evolution sendText failed: {e}", extra={"context": {"instance": self.instance_name}})
            return False

        if response.is_success:
            return True
        logger.error(
            "Evolution sendText rejected",
            extra={"context": {"instance": self.instance_name, "status": response.status_code, "body": response.text[:200]}},
        )
        return False

    def send_audio(self, phone: str, audio_bytes: bytes) -> bool:
        """Send an mp3 voice note, falling back to a generic media message."""
        encoded = base64.b64encode(audio_bytes).decode("ascii")
        number = _digits(phone)
        attempts = (
            ("message/sendWhatsAppAudio", {"number": number, "audio": f"data:audio/mp3;base64,{encoded}"}),
            (
                "message/sendMedia",
                {
                    "number": number,
                    "mediatype": "audio",
                    "mimetype": "audio/mpeg",
                    "media": f"data:audio/mpeg;base64,{encoded}",
                    "fileName": "audio.mp3",
                },
            ),
        )
        for path, payload in attempts:
            try:
                response = self._post(path, payload, EVOLUTION_SEND_TIMEOUT_SECONDS)
            except httpx.HTTPError as e:
                logger.warning(f"Evolution {path} error: {e}", extra={"context": {"instance": self.instance_name}})
                continue
            if response.is_success:
                logger.info("Audio sent", extra={"context": {"instance": self.instance_name, "operation": path}})
                return True
            logger.warning(
                f"Evolution {path} rejected",
                extra={"context": {"status": response.status_code, "body": response.text[:200]}},
            )

        logger.error("All audio send attempts failed", extra={"context": {"instance": self.instance_name}})
        return False

    def send_presence(self, phone: str, presence: str = "composing") -> None:
        try:
            self._post(
                "chat/presence", {"number": _digits(phone), "presence": presence}, EVOLUTION_PRESENCE_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            logger.warning(f"Presence update failed: {e}")

    def _media_via_base64_endpoint(self, message_key: dict, message: dict) -> Optional[str]:
        try:
            response = self._post(
                "chat/getBase64FromMediaMessage",
                {"message": {"key": message_key, "message": message}},
                EVOLUTION_MEDIA_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.info(f"getBase64FromMediaMessage error: {e}")
            return None
        if not response.is_success:
            logger.info(
                "getBase64FromMediaMessage failed",
                extra={"context": {"status": response.status_code, "body": response.text[:200]}},
            )
            return None
        try:
            return _pick_base64(response.json())
        except ValueError:
            return None

    def _media_via_find_messages(self, message_id: str) -> Optional[str]:
        try:
            response = self._post(
                "chat/findMessages", {"where": {"key": {"id": message_id}}}, EVOLUTION_FIND_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            logger.info(f"findMessages error: {e}")
            return None
        if not response.is_success:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, list):
            messages = data
        elif isinstance(data, dict):
            messages = data.get("data") or data.get("messages") or []
            if isinstance(messages, dict):
                messages = messages.get("records") or []
        else:
            messages = []
        return _pick_base64(messages[0]) if messages else None

    def fetch_media(self, message_key: dict, message: dict) -> Result[bytes]:
        """Download and decrypt a media message through the gateway."""
        message_id = (message_key or {}).get("id")
        for attempt in range(1, MEDIA_FETCH_ATTEMPTS + 1):
            encoded = None
            if message_key and message:
                encoded = self._media_via_base64_endpoint(message_key, message)
            if not encoded and message_id:
                encoded = self._media_via_find_messages(message_id)
            if encoded:
                try:
                    return Result.success(base64.b64decode(encoded))
                except ValueError as e:
                    return Result.failure(f"invalid base64 from gateway: {e}", "invalid_media")
            if attempt < MEDIA_FETCH_ATTEMPTS:
                self.sleep_func(MEDIA_RETRY_DELAY_SECONDS)

        logger.error("Media download failed", extra={"context": {"instance": self.instance_name, "message_id": message_id}})
        return Result.failure("media not available from gateway", "media_unavailable")
