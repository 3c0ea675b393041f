"""Query service client: lowest level, sends requests only. Non-stream calls return dicts; the stream raises."""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from pydantic import ValidationError

from querychat.core.errors import STATUS_UNAUTHORIZED, QueryStreamError
from querychat.schemas.api import ConnectionStatus
from querychat.services.auth_service import TokenStore
from querychat.services.query_api.config import ApiConfig

logger = logging.getLogger(__name__)


async def _non_blank_lines(response: httpx.Response) -> AsyncIterator[str]:
    async for line in response.aiter_lines():
        if line.strip():
            yield line


class QueryApiClient:
    """Query stream, schema/connect and auth endpoints of the query service."""

    def __init__(
        self,
        config: ApiConfig | None = None,
        *,
        token_store: TokenStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ApiConfig()
        self._tokens = token_store
        self._transport = transport

    def _token(self) -> str | None:
        return self._tokens.get() if self._tokens else None

    def _client(self, timeout: float | httpx.Timeout | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=timeout if timeout is not None else self._config.timeout,
            transport=self._transport,
        )

    def _on_unauthorized(self) -> None:
        # Stored token is no longer accepted; the user has to log in again.
        logger.info("Query service returned 401; clearing stored access token")
        if self._tokens:
            self._tokens.clear()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with self._client() as c:
                r = await c.request(method, path, json=json_body, data=data, headers=self._config.headers(self._token()))
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            return {"error": str(e) or type(e).__name__}
        if r.status_code == STATUS_UNAUTHORIZED:
            self._on_unauthorized()
        if not r.is_success:
            return {
                "error": f"Query service error: {r.status_code}",
                "status_code": r.status_code,
                "detail": (r.text[:500] if r.text else None),
            }
        try:
            return r.json() if r.content else {}
        except ValueError:
            return {"_raw_body": (r.text[:2000] if r.text else "")}

    # -- query stream ------------------------------------------------------

    @asynccontextmanager
    async def stream_query(
        self,
        message: str,
        user_id: str,
        previous_messages: list[dict[str, str]],
    ) -> AsyncIterator[AsyncIterator[str]]:
        """
        POST /query/stream and yield an iterator over the non-blank response lines (one JSON record each).
        Raises QueryStreamError on a non-2xx status; httpx errors propagate.
        """
        body = {"message": message, "user_id": user_id, "previous_messages": previous_messages}
        timeout = httpx.Timeout(self._config.timeout, read=self._config.stream_timeout)
        async with self._client(timeout) as c:
            async with c.stream("POST", "/query/stream", json=body, headers=self._config.headers(self._token())) as r:
                if r.status_code == STATUS_UNAUTHORIZED:
                    self._on_unauthorized()
                if not r.is_success:
                    raise QueryStreamError(f"HTTP error! status: {r.status_code}", status_code=r.status_code)
                yield _non_blank_lines(r)

    # -- data source -------------------------------------------------------

    async def get_schema(self, db_url: str, user_id: str, gemini_api_key: str | None = None) -> ConnectionStatus:
        """POST /operations/getSchema: connect the query service to a database and read its tables."""
        body: dict[str, Any] = {"db_url": db_url, "user_id": user_id}
        if gemini_api_key:
            body["gemini_api_key"] = gemini_api_key
        result = await self._request("POST", "/operations/getSchema", json_body=body)
        if "error" in result:
            return ConnectionStatus(success=False, message=result["error"])
        try:
            return ConnectionStatus.model_validate(result)
        except ValidationError:
            logger.warning("Unexpected getSchema response: %r", result)
            return ConnectionStatus(success=False, message="Unexpected response from the query service.")

    # -- auth --------------------------------------------------------------

    async def login(self, username: str, password: str) -> dict[str, Any]:
        """POST /token with a form-encoded body. Stores the access token on success."""
        result = await self._request("POST", "/token", data={"username": username, "password": password})
        if "error" in result:
            return result
        token = result.get("access_token")
        if not token:
            return {"error": "No token received from server"}
        if self._tokens:
            self._tokens.set(token)
        return result

    def logout(self) -> None:
        if self._tokens:
            self._tokens.clear()

    async def get_current_user(self) -> dict[str, Any]:
        return await self._request("GET", "/users/me")

    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        *,
        database_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"username": username, "email": email, "password": password}
        if database_data is not None:
            body["database_data"] = database_data
        return await self._request("POST", "/users/", json_body=body)

    async def update_user(self, user_id: int | str, **fields: Any) -> dict[str, Any]:
        return await self._request("PUT", f"/users/{user_id}", json_body=fields)

    async def change_password(self, user_id: int | str, password: str) -> dict[str, Any]:
        return await self.update_user(user_id, password=password)
