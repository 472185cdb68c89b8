from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from insightbot.services.errors import UpstreamFailure
from insightbot.services.llm.openai_provider import OpenAIProvider


def _response(status_code=200, json_data=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = json_data or {}
    response.text = text
    response.content = b""
    return response


def _completion(content="", tool_calls=None, finish_reason="stop"):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return _response(
        200,
        {
            "model": "gpt-4.1-mini",
            "choices": [{"message": message, "finish_reason": finish_reason}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5},
        },
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def provider(sleeps):
    return OpenAIProvider(api_key="test-key", sleep_func=sleeps.append, backoff_seconds=1.0)


class TestGenerate:
    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_plain_answer(self, mock_client_class, provider):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _completion("Faturamento de *R$ 10.000,00*")

        response = provider.generate([{"role": "user", "content": "oi"}])

        assert response.content == "Faturamento de *R$ 10.000,00*"
        assert response.tool_calls == []
        assert response.wants_tools is False
        payload = mock_client.post.call_args[1]["json"]
        assert "tools" not in payload
        assert "tool_choice" not in payload
        assert mock_client.post.call_args[1]["headers"] == {"Authorization": "Bearer test-key"}

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_parses_tool_calls(self, mock_client_class, provider):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _completion(
            content=None,
            tool_calls=[
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "execute_dax", "arguments": '{"query": "EVALUATE X"}'},
                }
            ],
            finish_reason="tool_calls",
        )

        response = provider.generate([{"role": "user", "content": "vendas"}], tools=[{"type": "function"}])

        assert response.content == ""
        assert response.wants_tools is True
        assert response.tool_calls[0].name == "execute_dax"
        assert response.tool_calls[0].arguments == '{"query": "EVALUATE X"}'
        assert mock_client.post.call_args[1]["json"]["tool_choice"] == "auto"

        echoed = response.as_assistant_message()
        assert echoed["content"] is None
        assert echoed["tool_calls"][0]["function"]["name"] == "execute_dax"

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_forced_text_round(self, mock_client_class, provider):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _completion("ok")

        provider.generate([{"role": "user", "content": "x"}], tools=[{"type": "function"}], tool_choice="none")

        assert mock_client.post.call_args[1]["json"]["tool_choice"] == "none"

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_retries_rate_limit(self, mock_client_class, provider, sleeps):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_response(429, text="slow down"), _response(503), _completion("ok")]

        response = provider.generate([{"role": "user", "content": "x"}])

        assert response.content == "ok"
        assert sleeps == [1.0, 2.0]

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_client_error_is_not_retried(self, mock_client_class, provider, sleeps):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _response(400, text="bad request")

        with pytest.raises(UpstreamFailure) as exc_info:
            provider.generate([{"role": "user", "content": "x"}])

        assert exc_info.value.service == "openai"
        assert mock_client.post.call_count == 1
        assert sleeps == []

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_timeout_aborts(self, mock_client_class, provider):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(UpstreamFailure, match="timeout"):
            provider.generate([{"role": "user", "content": "x"}], timeout_seconds=5)

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_network_errors_exhaust_retries(self, mock_client_class, provider, sleeps):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = httpx.ConnectError("refused")

        with pytest.raises(UpstreamFailure, match="network error"):
            provider.generate([{"role": "user", "content": "x"}])

        assert mock_client.post.call_count == 3
        assert len(sleeps) == 2

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_non_json_body_is_upstream_failure(self, mock_client_class, provider, sleeps):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        response = _response(200, text="<html>gateway</html>")
        response.json.side_effect = ValueError("Expecting value")
        mock_client.post.return_value = response

        with pytest.raises(UpstreamFailure, match="invalid JSON") as exc_info:
            provider.generate([{"role": "user", "content": "x"}])

        assert exc_info.value.service == "openai"
        assert mock_client.post.call_count == 1


class TestAudio:
    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_transcription_sends_multipart(self, mock_client_class, provider):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _response(200, text="  quanto vendemos hoje \n")

        text = provider.transcribe_audio(
            audio_bytes=b"ogg", filename="audio.ogg", mime_type="audio/ogg", language="pt"
        )

        assert text == "quanto vendemos hoje"
        kwargs = mock_client.post.call_args[1]
        assert kwargs["files"]["file"] == ("audio.ogg", b"ogg", "audio/ogg")
        assert kwargs["data"] == {"model": "whisper-1", "response_format": "text", "language": "pt"}

    def test_transcription_rejects_empty_audio(self, provider):
        with pytest.raises(ValueError):
            provider.transcribe_audio(audio_bytes=b"", filename="audio.ogg")

    @patch("insightbot.services.llm.openai_provider.httpx.Client")
    def test_speech_returns_bytes(self, mock_client_class, provider):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        response = _response(200)
        response.content = b"mp3-bytes"
        mock_client.post.return_value = response

        assert provider.synthesize_speech(text="dez mil reais") == b"mp3-bytes"
        payload = mock_client.post.call_args[1]["json"]
        assert payload["voice"] == "nova"
        assert payload["input"] == "dez mil reais"
