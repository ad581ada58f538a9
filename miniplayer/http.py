from __future__ import annotations

import asyncio
import logging

import httpx

from auth.errors import UpstreamAuthorizationError, UpstreamError
from auth.session import AuthSession

from .constants import LOGGER

# a 5xx may arrive after the player already applied a POST such as skip-next
RETRYABLE_5XX_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


def _seconds_until_retry(retry_after: str | None) -> int | None:
    if retry_after is None:
        return None
    try:
        return max(0, int(retry_after))
    except ValueError:
        return None


class RetryTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
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
            response = await self._transport.handle_async_request(next_request)

            if self._max_retries == 0:
                return response

            if response.status_code == 429 and retries < min(self._max_retries, 1):
                wait_seconds = _seconds_until_retry(response.headers.get("retry-after"))
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

            if (
                500 <= response.status_code < 600
                and request.method in RETRYABLE_5XX_METHODS
                and retries < self._max_retries
            ):
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


def friendly_error_message(status_code: int, wait_seconds: int | None = None) -> str:
    if status_code == 401:
        return "Authentication failed. Your Spotify token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return "The requested resource was not found on Spotify."
    if status_code == 429:
        wait = 0 if wait_seconds is None else wait_seconds
        return f"Rate limit exceeded. Please wait {wait} seconds."
    if status_code >= 500:
        return "Spotify API is experiencing issues. Please try again later."
    return f"Spotify API request failed with status {status_code}."


async def raise_for_upstream_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return

    await response.aread()
    try:
        detail = response.json()
    except ValueError:
        detail = {"raw": response.text}

    if response.status_code == 401:
        raise UpstreamAuthorizationError(detail=detail)

    wait_seconds = None
    if response.status_code == 429:
        wait_seconds = _seconds_until_retry(response.headers.get("retry-after"))
    raise UpstreamError(
        friendly_error_message(response.status_code, wait_seconds),
        status_code=response.status_code,
        detail=detail,
    )


async def inject_access_token(request: httpx.Request, session: AuthSession) -> None:
    access_token = session.access_token
    if not access_token:
        raise UpstreamAuthorizationError("No Spotify access token available (401).")
    request.headers["Authorization"] = f"Bearer {access_token}"


async def handle_rate_limits(response: httpx.Response) -> None:
    if response.status_code != 429:
        return
    LOGGER.warning(
        "Rate limit warning endpoint=%s retry_after=%s",
        response.request.url,
        response.headers.get("retry-after"),
    )


def build_api_client(
    session: AuthSession,
    *,
    base_url: str,
    timeout: float = 30.0,
    max_retries: int = 2,
    debug_enabled: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    async def sign_request(request: httpx.Request) -> None:
        await inject_access_token(request, session)

    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        LOGGER.info("Spotify API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        LOGGER.info(
            "Spotify API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("Spotify API error body: %s", text)

    retry_transport = RetryTransport(
        transport or httpx.AsyncHTTPTransport(),
        max_retries=max_retries,
        logger=LOGGER,
    )
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=retry_transport,
        event_hooks={
            "request": [sign_request, log_request],
            "response": [handle_rate_limits, log_response],
        },
    )
