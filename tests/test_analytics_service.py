from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from insightbot.services import analytics_service
from insightbot.services.analytics_service import (
    TOKEN_TTL_SECONDS,
    clear_token_cache,
    execute_query,
    get_access_token,
)
from insightbot.services.errors import ToolExecutionFailure, UpstreamFailure


def _response(status_code=200, json_data=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = json_data or {}
    response.text = text
    return response


def _token(value="token-1"):
    return _response(200, {"access_token": value, "expires_in": 3599})


def _rows(rows):
    return _response(200, {"results": [{"tables": [{"rows": rows}]}]})


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_token_cache()
    yield
    clear_token_cache()


class TestAccessToken:
    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_client_credentials_exchange(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _token()

        assert get_access_token(make_connection()) == "token-1"

        url = mock_client.post.call_args[0][0]
        form = mock_client.post.call_args[1]["data"]
        assert url == "https://login.microsoftonline.com/azure-tenant/oauth2/v2.0/token"
        assert form["grant_type"] == "client_credentials"
        assert form["scope"] == "https://analysis.windows.net/powerbi/api/.default"

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_token_is_cached(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _token()
        connection = make_connection()

        get_access_token(connection, clock=lambda: 1000.0)
        get_access_token(connection, clock=lambda: 1000.0 + 40 * 60)

        assert mock_client.post.call_count == 1

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_token_renewed_near_expiry(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_token("token-1"), _token("token-2")]
        connection = make_connection()

        get_access_token(connection, clock=lambda: 1000.0)
        # less than five minutes of validity left
        renewed = get_access_token(connection, clock=lambda: 1000.0 + TOKEN_TTL_SECONDS - 4 * 60)

        assert renewed == "token-2"

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_auth_failure(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = _response(401, text="invalid_client")

        with pytest.raises(UpstreamFailure) as exc_info:
            get_access_token(make_connection())
        assert exc_info.value.service == "powerbi_auth"


class TestExecuteQuery:
    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_returns_first_table_rows(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_token(), _rows([{"[Total]": 42}])]

        rows = execute_query(make_connection(), "ds-1", "EVALUATE ROW(\"Total\", 42)")

        assert rows == [{"[Total]": 42}]
        url = mock_client.post.call_args[0][0]
        body = mock_client.post.call_args[1]["json"]
        assert url.endswith("/groups/workspace-1/datasets/ds-1/executeQueries")
        assert body["queries"] == [{"query": "EVALUATE ROW(\"Total\", 42)"}]
        assert body["serializerSettings"] == {"includeNulls": True}

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_empty_results(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_token(), _response(200, {"results": []})]

        assert execute_query(make_connection(), "ds-1", "EVALUATE X") == []

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_retries_once_on_401(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [
            _token("stale"),
            _response(401, text="expired"),
            _token("fresh"),
            _rows([{"x": 1}]),
        ]

        assert execute_query(make_connection(), "ds-1", "EVALUATE X") == [{"x": 1}]
        last_headers = mock_client.post.call_args[1]["headers"]
        assert last_headers["Authorization"] == "Bearer fresh"

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_rejected_query_is_tool_failure(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_token(), _response(400, text="x" * 1000)]

        with pytest.raises(ToolExecutionFailure) as exc_info:
            execute_query(make_connection(), "ds-1", "EVALUATE X")
        assert len(str(exc_info.value)) == len("Erro DAX: ") + analytics_service.ERROR_SNIPPET_CHARS

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_timeout_is_upstream_failure(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_token(), httpx.ReadTimeout("slow")]

        with pytest.raises(UpstreamFailure) as exc_info:
            execute_query(make_connection(), "ds-1", "EVALUATE X")
        assert exc_info.value.service == "powerbi"

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_non_json_rows_is_upstream_failure(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        broken = _response(200, text="<html>")
        broken.json.side_effect = ValueError("Expecting value")
        mock_client.post.side_effect = [_token(), broken]

        with pytest.raises(UpstreamFailure, match="invalid JSON") as exc_info:
            execute_query(make_connection(), "ds-1", "EVALUATE X")
        assert exc_info.value.service == "powerbi"

    @patch("insightbot.services.analytics_service.httpx.Client")
    def test_non_json_token_is_upstream_failure(self, mock_client_class, make_connection):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        broken = _response(200, text="<html>")
        broken.json.side_effect = ValueError("Expecting value")
        mock_client.post.return_value = broken

        with pytest.raises(UpstreamFailure) as exc_info:
            execute_query(make_connection(), "ds-1", "EVALUATE X")
        assert exc_info.value.service == "powerbi_auth"
