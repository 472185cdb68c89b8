"""Speech bridge: voice notes in, spoken answers out."""

import base64
import binascii
import os
import re
from typing import Optional

from insightbot.logging_config import get_logger
from insightbot.services.errors import SynthesisFailure, TranscriptionFailure, UpstreamFailure
from insightbot.services.evolution_service import EvolutionClient
from insightbot.services.inbound_service import AudioRef
from insightbot.services.llm import OPENAI_API_KEY, get_llm_provider
from insightbot.services.spoken_numbers import (
    currency_to_words,
    grouped_integer_to_words,
    magnitude_multiplier,
    parse_br_number,
    percent_to_words,
)

logger = get_logger("speech_service")

TRANSCRIPTION_MODEL = os.environ.get("TRANSCRIPTION_MODEL", "whisper-1")
TRANSCRIPTION_LANGUAGE = "pt"
TRANSCRIPTION_TIMEOUT_SECONDS = float(os.environ.get("TRANSCRIPTION_TIMEOUT_SECONDS", "30"))
TTS_MODEL = os.environ.get("TTS_MODEL", "tts-1-hd")
TTS_VOICE = os.environ.get("TTS_VOICE", "nova")
TTS_SPEED = 0.95
TTS_TIMEOUT_SECONDS = float(os.environ.get("TTS_TIMEOUT_SECONDS", "30"))

MIN_AUDIO_BYTES = 100
MIN_SPEECH_CHARS = 5
MAX_SPEECH_CHARS = 4000

TRANSCRIPTION_APOLOGY = (
    "🎤 Desculpe, não consegui entender seu áudio. "
    "Pode gravar novamente ou enviar sua pergunta por texto?"
)

# (filename, mime type) tried in order
TRANSCRIPTION_CONTAINERS = (
    ("audio.ogg", "audio/ogg"),
    ("audio.oga", "audio/ogg; codecs=opus"),
)

_KEYCAP = re.compile(r"[0-9#*]\uFE0F?\u20E3")
_EMOJI = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\U00002600-\U000027BF"
    "\U00002B00-\U00002BFF"
    "\U0001F1E0-\U0001F1FF"
    "\uFE0F\u20E3\u200D"
    "]+"
)
_RULES = re.compile(r"[━─═]+")
_MARKDOWN = re.compile(r"[*_~`]")
_BULLET = re.compile(r"^\s*(?:[-•·]|\d+[.)])\s+", re.MULTILINE)
_CURRENCY = re.compile(
    r"R\$\s*(\d{1,3}(?:\.\d{3})+|\d+)(?:,(\d+))?(?:\s*(mil|mi(?:lhões|lhão)?|bi(?:lhões|lhão)?)\b)?",
    re.IGNORECASE,
)
_PERCENT = re.compile(r"([-+]?)(\d{1,3}(?:\.\d{3})+|\d+)(?:[.,](\d+))? ?%")
_GROUPED_INTEGER = re.compile(r"\b(\d{1,3}(?:\.\d{3})+)(?:,(\d+))?\b")
_SPACES = re.compile(r"[ \t]{2,}")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.,!?;:])")
_SENTENCE_END = re.compile(r"[.!?…:;]$")


def _currency(match: re.Match) -> str:
    value = parse_br_number(match.group(1), match.group(2)) * magnitude_multiplier(match.group(3))
    return currency_to_words(value)


def _percent(match: re.Match) -> str:
    return percent_to_words(match.group(1), match.group(2), match.group(3))


def _grouped_integer(match: re.Match) -> str:
    return grouped_integer_to_words(parse_br_number(match.group(1), match.group(2)))


def _collapse_lines(text: str) -> str:
    sentences = []
    for line in text.splitlines():
        line = line.strip(" \t,")
        if not line:
            continue
        if not _SENTENCE_END.search(line):
            line += "."
        sentences.append(line)
    return " ".join(sentences)


def _truncate_at_sentence(text: str, limit: int = MAX_SPEECH_CHARS) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    boundary = max(cut.rfind(". "), cut.rfind("! "), cut.rfind("? "))
    if boundary >= limit // 2:
        return cut[: boundary + 1]
    return cut.rstrip()


def normalize_for_speech(text: str) -> str:
    """Rewrite a WhatsApp-formatted answer into text a TTS voice reads naturally."""
    spoken = _KEYCAP.sub("", text or "")
    spoken = _EMOJI.sub("", spoken)
    spoken = _RULES.sub("", spoken)
    spoken = _MARKDOWN.sub("", spoken)
    spoken = _BULLET.sub("", spoken)
    spoken = _CURRENCY.sub(_currency, spoken)
    spoken = _PERCENT.sub(_percent, spoken)
    spoken = _GROUPED_INTEGER.sub(_grouped_integer, spoken)
    spoken = _collapse_lines(spoken)
    spoken = _SPACES.sub(" ", spoken)
    spoken = _SPACE_BEFORE_PUNCT.sub(r"\1", spoken).strip()
    return _truncate_at_sentence(spoken)


def obtain_audio_bytes(audio: AudioRef, client: EvolutionClient) -> bytes:
    """Inline base64 when the webhook carried it, else ask the gateway."""
    if audio.base64:
        try:
            data = base64.b64decode(audio.base64)
        except (binascii.Error, ValueError) as e:
            raise TranscriptionFailure(f"invalid inline base64: {e}") from e
    else:
        data = client.fetch_media(audio.message_key, audio.message).unwrap_or_raise(TranscriptionFailure)

    if len(data) < MIN_AUDIO_BYTES:
        raise TranscriptionFailure(f"audio buffer too small ({len(data)} bytes)")
    return data


def transcribe(audio_bytes: bytes) -> str:
    if not OPENAI_API_KEY:
        raise TranscriptionFailure("OPENAI_API_KEY missing")

    provider = get_llm_provider()
    last_error: Optional[Exception] = None
    for filename, mime_type in TRANSCRIPTION_CONTAINERS:
        try:
            transcript = provider.transcribe_audio(
                audio_bytes=audio_bytes,
                filename=filename,
                mime_type=mime_type,
                model=TRANSCRIPTION_MODEL,
                language=TRANSCRIPTION_LANGUAGE,
                timeout_seconds=TRANSCRIPTION_TIMEOUT_SECONDS,
            )
        except (UpstreamFailure, ValueError) as e:
            logger.warning(f"Transcription failed with {filename}: {e}")
            last_error = e
            continue
        if transcript and transcript.strip():
            logger.info("Audio transcribed", extra={"context": {"container": filename, "chars": len(transcript)}})
            return transcript.strip()
        last_error = TranscriptionFailure(f"empty transcript from {filename}")

    raise TranscriptionFailure(str(last_error) if last_error else "transcription failed")


def synthesize(text: str) -> bytes:
    """Normalize and synthesize an answer. Raises SynthesisFailure when audio cannot be produced."""
    if not text or len(text.strip()) < MIN_SPEECH_CHARS:
        raise SynthesisFailure("text too short for speech")

    spoken = normalize_for_speech(text)
    if len(spoken) < MIN_SPEECH_CHARS:
        raise SynthesisFailure("text too short after normalization")
    if not OPENAI_API_KEY:
        raise SynthesisFailure("OPENAI_API_KEY missing")

    try:
        audio = get_llm_provider().synthesize_speech(
            text=spoken,
            voice=TTS_VOICE,
            model=TTS_MODEL,
            response_format="mp3",
            speed=TTS_SPEED,
            timeout_seconds=TTS_TIMEOUT_SECONDS,
        )
    except UpstreamFailure as e:
        raise SynthesisFailure(str(e)) from e

    if not audio:
        raise SynthesisFailure("empty audio from provider")
    return audio
