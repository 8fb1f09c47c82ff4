"""Async client for the ClickHouse HTTP interface."""

from typing import Any, AsyncIterator, Dict, Optional
import logging

import httpx

from ..models.transfer import ConnectionParams
from .exceptions import QueryError, StoreConnectionError

logger = logging.getLogger(__name__)

AUTH_FAILURE_MARKERS = ("AUTHENTICATION_FAILED", "Authentication failed")


class ClickHouseClient:
    """Executes statements against ClickHouse over HTTP.

    Results come back either materialized (``FORMAT JSON``: ``meta`` plus
    ``data``) or as a raw byte stream in the requested output format.
    """

    def __init__(
        self,
        params: ConnectionParams,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.params = params
        headers = {"X-ClickHouse-User": params.username or "default"}
        if params.password:
            headers["X-ClickHouse-Key"] = params.password
        self._client = httpx.AsyncClient(
            base_url=params.base_url,
            headers=headers,
            params={"database": params.database},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ClickHouseClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _raise_for_response(self, status_code: int, body: str) -> None:
        message = body.strip() or f"ClickHouse returned HTTP {status_code}"
        if status_code == 401 or any(m in message for m in AUTH_FAILURE_MARKERS):
            raise StoreConnectionError(message, {"status_code": status_code})
        raise QueryError(message, status_code=status_code)

    def _connection_error(self, error: httpx.HTTPError) -> StoreConnectionError:
        return StoreConnectionError(
            f"Unable to reach ClickHouse at {self.params.base_url}: {error}",
            {"error_type": type(error).__name__},
        )

    @staticmethod
    def _query_params(
        parameters: Optional[Dict[str, Any]],
        output_format: Optional[str] = None
    ) -> Dict[str, Any]:
        query_params: Dict[str, Any] = {}
        if output_format:
            query_params["default_format"] = output_format
        for name, value in (parameters or {}).items():
            query_params[f"param_{name}"] = value
        return query_params

    async def _post(
        self,
        sql: str,
        parameters: Optional[Dict[str, Any]] = None,
        output_format: Optional[str] = None,
        data: Optional[str] = None
    ) -> httpx.Response:
        logger.debug(f"Executing statement: {sql[:500]}")
        query_params = self._query_params(parameters, output_format)
        if data is None:
            body = sql
        else:
            # Statement in the URL, input rows in the body
            query_params["query"] = sql
            body = data
        try:
            response = await self._client.post(
                "/",
                content=body.encode("utf-8"),
                params=query_params,
            )
        except httpx.TransportError as e:
            raise self._connection_error(e) from e

        if response.status_code >= 400:
            self._raise_for_response(response.status_code, response.text)
        return response

    async def query_json(
        self,
        sql: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Run a statement and return the decoded ``FORMAT JSON`` document."""
        response = await self._post(sql, parameters, output_format="JSON")
        try:
            return response.json()
        except ValueError as e:
            raise QueryError(
                f"Unexpected response from ClickHouse: {response.text[:200]}"
            ) from e

    async def command(self, sql: str, data: Optional[str] = None) -> None:
        """Run a statement that returns no rows (DDL, INSERT).

        ``data`` is sent as the statement's input, e.g. the rows of an
        ``INSERT ... FORMAT JSONEachRow``.
        """
        await self._post(sql, data=data)

    async def stream(
        self,
        sql: str,
        output_format: str = "CSVWithNames",
        chunk_size: Optional[int] = None
    ) -> AsyncIterator[bytes]:
        """Yield the serialized result of ``sql`` chunk by chunk.

        The HTTP response stays open until the iterator is exhausted or
        closed.
        """
        logger.debug(f"Streaming statement: {sql[:500]}")
        request = self._client.build_request(
            "POST",
            "/",
            content=sql.encode("utf-8"),
            params=self._query_params(None, output_format),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise self._connection_error(e) from e

        try:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                self._raise_for_response(response.status_code, body)
            try:
                async for chunk in response.aiter_bytes(chunk_size):
                    yield chunk
            except httpx.TransportError as e:
                raise self._connection_error(e) from e
        finally:
            await response.aclose()
