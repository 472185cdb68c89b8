"""Power BI REST client: client-credentials tokens and DAX executeQueries."""

import threading
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from insightbot.logging_config import get_logger
from insightbot.models import AnalyticsConnection
from insightbot.services.errors import ToolExecutionFailure, UpstreamFailure

logger = get_logger("analytics_service")

TOKEN_URL = "https://login.microsoftonline.com/{azure_tenant_id}/oauth2/v2.0/token"
POWERBI_SCOPE = "https://analysis.windows.net/powerbi/api/.default"
EXECUTE_QUERIES_URL = "https://api.powerbi.com/v1.0/myorg/groups/{workspace_id}/datasets/{dataset_id}/executeQueries"

TOKEN_TTL_SECONDS = 50 * 60
TOKEN_MIN_REMAINING_SECONDS = 5 * 60
TOKEN_TIMEOUT_SECONDS = 15.0
QUERY_TIMEOUT_SECONDS = 20.0
ERROR_SNIPPET_CHARS = 300


@dataclass
class CachedToken:
    access_token: str
    expires_at: float


_token_cache: dict[str, CachedToken] = {}
_token_lock = threading.Lock()


def clear_token_cache(connection_id=None) -> None:
    with _token_lock:
        if connection_id is None:
            _token_cache.clear()
        else:
            _token_cache.pop(str(connection_id), None)


def get_access_token(connection: AnalyticsConnection, *, clock: Callable[[], float] = time.time) -> str:
    """Return a cached token with more than five minutes left, or exchange credentials for a new one."""
    cache_key = str(connection.id)
    now = clock()
    with _token_lock:
        cached = _token_cache.get(cache_key)
        if cached and cached.expires_at > now + TOKEN_MIN_REMAINING_SECONDS:
            return cached.access_token

    url = TOKEN_URL.format(azure_tenant_id=connection.azure_tenant_id)
    form = {
        "grant_type": "client_credentials",
        "client_id": connection.client_id,
        "client_secret": connection.client_secret,
        "scope": POWERBI_SCOPE,
    }
    try:
        with httpx.Client(timeout=TOKEN_TIMEOUT_SECONDS) as client:
            response = client.post(url, data=form)
    except httpx.TimeoutException as e:
        raise UpstreamFailure("powerbi_auth", f"timeout after {TOKEN_TIMEOUT_SECONDS}s") from e
    except httpx.HTTPError as e:
        raise UpstreamFailure("powerbi_auth", f"network error: {e}") from e

    if response.status_code != 200:
        logger.error(
            "Power BI token exchange failed",
            extra={"context": {"connection_id": cache_key, "status": response.status_code, "body": response.text[:200]}},
        )
        raise UpstreamFailure("powerbi_auth", f"status {response.status_code}")

    try:
        access_token = response.json().get("access_token")
    except ValueError as e:
        raise UpstreamFailure("powerbi_auth", "invalid JSON in token response") from e
    if not access_token:
        raise UpstreamFailure("powerbi_auth", "token response without access_token")

    with _token_lock:
        _token_cache[cache_key] = CachedToken(access_token=access_token, expires_at=now + TOKEN_TTL_SECONDS)
    return access_token


def _post_query(connection: AnalyticsConnection, dataset_id: str, query: str, token: str) -> httpx.Response:
    url = EXECUTE_QUERIES_URL.format(workspace_id=connection.workspace_id, dataset_id=dataset_id)
    payload = {"queries": [{"query": query}], "serializerSettings": {"includeNulls": True}}
    try:
        with httpx.Client(timeout=QUERY_TIMEOUT_SECONDS) as client:
            return client.post(url, json=payload, headers={"Authorization": f"Bearer {token}"})
    except httpx.TimeoutException as e:
        raise UpstreamFailure("powerbi", f"query timeout after {QUERY_TIMEOUT_SECONDS}s") from e
    except httpx.HTTPError as e:
        raise UpstreamFailure("powerbi", f"network error: {e}") from e


def _first_table_rows(data: dict) -> list[dict]:
    results = data.get("results") or []
    if not results:
        return []
    tables = results[0].get("tables") or []
    if not tables:
        return []
    return tables[0].get("rows") or []


def execute_query(connection: AnalyticsConnection, dataset_id: str, query: str) -> list[dict]:
    """Run a DAX query and return the rows of the first result table.

    A rejected query raises ToolExecutionFailure with the engine's message so the
    model can correct itself. Auth, network and timeout problems raise UpstreamFailure.
    """
    started = time.monotonic()
    token = get_access_token(connection)
    response = _post_query(connection, dataset_id, query, token)

    if response.status_code == 401:
        logger.warning("Power BI token rejected, retrying with a fresh token")
        clear_token_cache(connection.id)
        token = get_access_token(connection)
        response = _post_query(connection, dataset_id, query, token)
        if response.status_code == 401:
            raise UpstreamFailure("powerbi", "unauthorized after token refresh")

    elapsed_ms = round((time.monotonic() - started) * 1000, 2)
    if not response.is_success:
        logger.info(
            "DAX query rejected",
            extra={"context": {"dataset_id": dataset_id, "status": response.status_code, "elapsed_ms": elapsed_ms}},
        )
        raise ToolExecutionFailure(f"Erro DAX: {response.text[:ERROR_SNIPPET_CHARS]}")

    try:
        rows = _first_table_rows(response.json())
    except ValueError as e:
        raise UpstreamFailure("powerbi", "invalid JSON in query response") from e
    logger.info(
        "DAX query executed",
        extra={"context": {"dataset_id": dataset_id, "rows": len(rows), "elapsed_ms": elapsed_ms}},
    )
    return rows
