from __future__ import annotations

import asyncio
import logging
from typing import Generator

import httpx

from .constants import HTTP_MAX_RETRIES, HTTP_TIMEOUT_SECONDS

LOGGER = logging.getLogger("bloggermcp.http")


def _seconds_from_retry_after(header: str | None) -> int | None:
    if header is None:
        return None
    try:
        return max(0, int(header))
    except ValueError:
        return None


class RetryTransport(httpx.AsyncBaseTransport):
    """Retries transport failures and 5xx responses with exponential backoff.

    A 429 is retried at most once, after ``Retry-After`` seconds.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = HTTP_MAX_RETRIES,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._logger = logger or LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retries = 0

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            try:
                response = await self._transport.handle_async_request(next_request)
            except httpx.TransportError as error:
                if retries >= self._max_retries:
                    raise
                backoff_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    type(error).__name__,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await self._sleep(backoff_seconds)
                retries += 1
                continue

            if self._max_retries == 0:
                return response

            if response.status_code == 429 and retries < min(self._max_retries, 1):
                wait_seconds = _seconds_from_retry_after(response.headers.get("retry-after"))
                if wait_seconds is None:
                    wait_seconds = 1
                self._logger.warning(
                    "Retrying 429 after %ss (%s %s)",
                    wait_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(wait_seconds)
                retries += 1
                continue

            if 500 <= response.status_code < 600 and retries < self._max_retries:
                backoff_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    response.status_code,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(backoff_seconds)
                retries += 1
                continue

            return response

    async def aclose(self) -> None:
        await self._transport.aclose()


def create_http_client(
    *,
    timeout: float = HTTP_TIMEOUT_SECONDS,
    max_retries: int = HTTP_MAX_RETRIES,
    sleep=asyncio.sleep,
) -> httpx.AsyncClient:
    transport = RetryTransport(
        httpx.AsyncHTTPTransport(),
        max_retries=max_retries,
        sleep=sleep,
    )
    return httpx.AsyncClient(timeout=timeout, transport=transport)


class ApiKeyAuth(httpx.Auth):
    """Appends a Blogger API key as the ``key`` query parameter."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.url = request.url.copy_merge_params({"key": self._api_key})
        yield request
