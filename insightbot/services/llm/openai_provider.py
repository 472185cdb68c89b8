import time
from typing import Callable, List, Optional

import httpx

from insightbot.logging_config import get_logger
from insightbot.services.errors import UpstreamFailure
from insightbot.services.llm.base import LLMProvider, LLMResponse, ToolCall

logger = get_logger("llm.openai")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504, 529}


class OpenAIProvider(LLMProvider):
    """OpenAI API provider: chat completions with tools, transcription and speech."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4.1-mini",
        *,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        sleep_func: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.sleep_func = sleep_func
        self.base_url = "https://api.openai.com/v1/chat/completions"
        self.audio_url = "https://api.openai.com/v1/audio/transcriptions"
        self.speech_url = "https://api.openai.com/v1/audio/speech"

    def _post(self, url: str, *, timeout: float, **kwargs) -> httpx.Response:
        """POST with exponential backoff on rate limits and transient server errors."""
        headers = {"Authorization": f"Bearer {self.api_key}"}
        for attempt in range(1, self.max_retries + 1):
            try:
                with httpx.Client(timeout=timeout) as client:
                    response = client.post(url, headers=headers, **kwargs)
            except httpx.TimeoutException as exc:
                raise UpstreamFailure("openai", f"timeout after {timeout}s") from exc
            except httpx.HTTPError as exc:
                if attempt >= self.max_retries:
                    raise UpstreamFailure("openai", f"network error: {exc}") from exc
                response = None

            if response is not None:
                if response.status_code == 200:
                    return response
                if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= self.max_retries:
                    logger.error(f"OpenAI error: {response.status_code} - {response.text[:300]}")
                    raise UpstreamFailure("openai", f"status {response.status_code}")

            wait = min(self.backoff_seconds * (2 ** (attempt - 1)), 20.0)
            logger.warning(
                "OpenAI call failed, retrying",
                extra={"context": {"attempt": attempt, "wait_seconds": wait, "url": url}},
            )
            self.sleep_func(wait)

        raise UpstreamFailure("openai", "all attempts failed")

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        timeout_seconds: Optional[float] = None,
        tool_choice: Optional[str] = None,
    ) -> LLMResponse:
        """Generate response from OpenAI."""
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")
        timeout = timeout_seconds if timeout_seconds is not None else 45.0
        response = self._post(self.base_url, timeout=timeout, json=payload)
        try:
            data = response.json()
        except ValueError as exc:
            logger.error(f"OpenAI returned a non-JSON body: {response.text[:300]}")
            raise UpstreamFailure("openai", "invalid JSON response") from exc

        content = ""
        finish_reason = None
        tool_calls: List[ToolCall] = []
        if data.get("choices"):
            choice = data["choices"][0]
            finish_reason = choice.get("finish_reason")
            message = choice.get("message", {})
            content = message.get("content") or ""
            for raw_call in message.get("tool_calls") or []:
                function = raw_call.get("function") or {}
                tool_calls.append(
                    ToolCall(
                        id=raw_call.get("id", ""),
                        name=function.get("name", ""),
                        arguments=function.get("arguments") or "{}",
                    )
                )
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
            finish_reason=finish_reason,
        )

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Transcribe audio using OpenAI speech-to-text."""
        model = model or "whisper-1"
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        files = {"file": (filename or "audio", audio_bytes, mime_type or "application/octet-stream")}
        data = {"model": model, "response_format": "text"}
        if language:
            data["language"] = language

        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        response = self._post(self.audio_url, timeout=timeout, files=files, data=data)

        transcript = (response.text or "").strip()
        if not transcript:
            logger.warning("OpenAI transcription returned empty text")
        return transcript

    def synthesize_speech(
        self,
        *,
        text: str,
        voice: str = "nova",
        model: str = "tts-1-hd",
        response_format: str = "mp3",
        speed: float = 0.95,
        timeout_seconds: Optional[float] = None,
    ) -> bytes:
        """Synthesize speech audio for text. Returns raw audio bytes."""
        payload = {
            "model": model,
            "voice": voice,
            "input": text,
            "response_format": response_format,
            "speed": speed,
        }
        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        response = self._post(self.speech_url, timeout=timeout, json=payload)
        return response.content
