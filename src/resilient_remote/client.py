from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from functools import partial
from typing import Any

import httpx

from resilient_remote.backoff import BackoffPolicy
from resilient_remote.circuit_breaker import CircuitBreaker
from resilient_remote.classifier import parse_json_response
from resilient_remote.errors import ErrorKind, RemoteError
from resilient_remote.executor import (
    DEFAULT_MAX_RETRIES,
    HealthSnapshot,
    RetryExecutor,
)
from resilient_remote.fetch import DEFAULT_FETCH_RETRIES, make_retryable_fetch
from resilient_remote.logging import StructuredLogger
from resilient_remote.settings import RemoteSettings

REST_PREFIX = "/rest/v1"

Rows = list[dict[str, object]]


def create_http_client(settings: RemoteSettings) -> httpx.AsyncClient:
    """Build the shared HTTP client with the configured request timeout."""
    return httpx.AsyncClient(timeout=settings.request_timeout_seconds)


class RemoteClient:
    """REST client for the persistence backend.

    Every public call is one logical call through the shared
    ``RetryExecutor``. Each executor attempt goes through the retrying fetch
    decorator and is decoded with ``parse_json_response``. The two retry
    layers multiply: a call may send up to
    ``max_retries * (fetch_max_retries + 1)`` requests. Set
    ``fetch_max_retries`` to 0 to leave retries to the executor alone.
    ``test_connection`` always makes a single send.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        executor: RetryExecutor,
        api_key: str | None = None,
        health_table: str = "activities",
        max_retries: int = DEFAULT_MAX_RETRIES,
        fetch_max_retries: int = DEFAULT_FETCH_RETRIES,
        fetch_policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Create a backend client.

        Args:
            client: Shared async HTTP client.
            base_url: Backend root URL, without the REST prefix.
            executor: Executor shared by all calls against this backend.
            api_key: Optional key sent as ``apikey`` and bearer token.
            health_table: Table read by ``test_connection``.
            max_retries: Default tries per logical call.
            fetch_max_retries: Extra sends per attempt at the transport edge.
            fetch_policy: Backoff between transport-edge sends.
            sleep: Awaitable sleep for transport-edge waits.
            logger: Structured logger for transport-edge retries.
        """
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._executor = executor
        self._api_key = api_key
        self._health_table = health_table
        self._max_retries = max_retries
        self._fetch = make_retryable_fetch(
            self._send,
            max_retries=fetch_max_retries,
            policy=fetch_policy,
            sleep=sleep,
            logger=logger,
        )
        self._single_send = make_retryable_fetch(
            self._send, max_retries=0, logger=logger
        )

    @classmethod
    def from_settings(
        cls,
        settings: RemoteSettings,
        *,
        client: httpx.AsyncClient,
        logger: StructuredLogger | None = None,
    ) -> RemoteClient:
        """Build a client and its executor from ``RemoteSettings``.

        With the default settings a failing read sends up to
        ``3 * (3 + 1) = 12`` requests; lower ``fetch_max_retries`` to bound
        the fan-out.
        """
        executor = RetryExecutor(
            breaker=CircuitBreaker(
                "backend",
                config=settings.breaker_config(),
                logger=logger,
            ),
            backoff=settings.executor_backoff_policy(),
            logger=logger,
        )
        return cls(
            client=client,
            base_url=settings.backend_url,
            executor=executor,
            api_key=settings.api_key,
            health_table=settings.health_table,
            max_retries=settings.max_retries,
            fetch_max_retries=settings.fetch_max_retries,
            fetch_policy=settings.fetch_backoff_policy(),
            logger=logger,
        )

    @property
    def executor(self) -> RetryExecutor:
        return self._executor

    async def _send(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        **options: Any,
    ) -> httpx.Response:
        return await self._client.request(method, url, headers=headers, **options)

    def _auth_headers(self) -> dict[str, str]:
        if self._api_key is None:
            return {}
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
        }

    async def _request_once(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: object = None,
        headers: Mapping[str, str] | None = None,
        fetch: Callable[..., Awaitable[httpx.Response]] | None = None,
    ) -> object:
        request_headers = self._auth_headers()
        if headers:
            request_headers.update(headers)
        options: dict[str, object] = {"method": method}
        if params:
            options["params"] = dict(params)
        if json is not None:
            options["json"] = json
        send = self._fetch if fetch is None else fetch
        response = await send(
            f"{self._base_url}{path}",
            headers=request_headers,
            **options,
        )
        return parse_json_response(response)

    async def _rows_once(self, method: str, path: str, **kwargs: Any) -> Rows:
        return _expect_rows(await self._request_once(method, path, **kwargs))

    def _select_operation(
        self,
        table: str,
        *,
        columns: str,
        filters: Mapping[str, str] | None,
        limit: int | None,
        fetch: Callable[..., Awaitable[httpx.Response]] | None = None,
    ) -> Callable[[], Awaitable[Rows]]:
        params: dict[str, str] = {"select": columns}
        if filters:
            params.update(filters)
        if limit is not None:
            params["limit"] = str(limit)
        return partial(
            self._rows_once,
            "GET",
            f"{REST_PREFIX}/{table}",
            params=params,
            fetch=fetch,
        )

    def _resolve_retries(self, max_retries: int | None) -> int:
        return self._max_retries if max_retries is None else max_retries

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: object = None,
        headers: Mapping[str, str] | None = None,
        max_retries: int | None = None,
    ) -> object:
        """Send one resilient request and return the decoded JSON body.

        Raises:
            CircuitOpenError: The backend breaker is open.
            RemoteError: The request failed after retries, or failed with a
                non-retryable classification.
        """
        operation = partial(
            self._request_once,
            method.upper(),
            path,
            params=params,
            json=json,
            headers=headers,
        )
        return await self._executor.run(
            operation,
            max_retries=self._resolve_retries(max_retries),
        )

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Mapping[str, str] | None = None,
        limit: int | None = None,
        max_retries: int | None = None,
    ) -> Rows:
        """Read rows from ``table`` using PostgREST query parameters.

        ``filters`` maps column names to PostgREST operators, for example
        ``{"status": "eq.active"}``.
        """
        operation = self._select_operation(
            table, columns=columns, filters=filters, limit=limit
        )
        return await self._executor.run(
            operation,
            max_retries=self._resolve_retries(max_retries),
        )

    async def insert(
        self,
        table: str,
        rows: Sequence[Mapping[str, object]] | Mapping[str, object],
        *,
        max_retries: int | None = None,
    ) -> Rows:
        """Insert rows into ``table`` and return the stored representation."""
        body: object
        if isinstance(rows, Mapping):
            body = dict(rows)
        else:
            body = [dict(row) for row in rows]
        operation = partial(
            self._rows_once,
            "POST",
            f"{REST_PREFIX}/{table}",
            json=body,
            headers={"Prefer": "return=representation"},
        )
        return await self._executor.run(
            operation,
            max_retries=self._resolve_retries(max_retries),
        )

    async def test_connection(self) -> bool:
        """Read one row id from the health table with a single send.

        The read bypasses transport-edge retries so a failing backend is
        reported after one request.
        """
        probe = self._select_operation(
            self._health_table,
            columns="id",
            filters=None,
            limit=1,
            fetch=self._single_send,
        )
        return await self._executor.test_connection(probe)

    def get_metrics(self) -> HealthSnapshot:
        """Return the executor's health snapshot."""
        return self._executor.get_metrics()


def _expect_rows(payload: object) -> Rows:
    if payload is None:
        return []
    if not isinstance(payload, list) or not all(
        isinstance(row, dict) for row in payload
    ):
        raise RemoteError(
            ErrorKind.PARSE_ERROR,
            "Expected a JSON array of rows",
            retryable=False,
            details={"payload_type": type(payload).__name__},
        )
    return payload
