"""Reliable async HTTP access: timeouts, retry with backoff, coalescing,
and JSON parsing that survives HTML error pages."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from marketfeed.core.config import HttpConfig
from marketfeed.core.exceptions import (
    FetchTimeoutError,
    HttpError,
    ParseError,
    TransportError,
)
from marketfeed.net.coalesce import RequestCoalescer

logger = logging.getLogger(__name__)

_HTML_SIGNATURES = ("<!doctype", "<html", "<?xml")
_EMBEDDED_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def is_retryable_status(status: int) -> bool:
    """429 and 5xx are transient; every other status is final."""
    return status == 429 or 500 <= status < 600


def _url_of(response: httpx.Response) -> str | None:
    try:
        return str(response.request.url)
    except RuntimeError:
        return None


def parse_json_safe(response: httpx.Response) -> Any:
    """Parse a response body as JSON, detecting HTML/XML error pages.

    Raises:
        HttpError: The body is an HTML or XML document (an upstream failure
            disguised as a normal response).
        ParseError: The body is not JSON and contains no embedded JSON
            object.
    """
    status = response.status_code
    url = _url_of(response)
    text = response.text
    head = text.lstrip()[:16].lower()

    if head.startswith(_HTML_SIGNATURES):
        raise HttpError(
            f"Received HTML instead of JSON (HTTP {status})",
            status=status,
            context={"url": url},
        )

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Some proxies wrap the payload; recover the outermost object if present
    match = _EMBEDDED_JSON_RE.search(text)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            raise ParseError(
                f"Invalid JSON response (HTTP {status})",
                status=status,
                context={"url": url, "reason": "invalid embedded json"},
            ) from None

    raise ParseError(
        f"Could not parse JSON response (HTTP {status})",
        status=status,
        context={"url": url, "reason": "no json found"},
    )


class ReliableHttpClient:
    """Async HTTP wrapper adding deadlines, bounded retries and coalescing.

    Timeout policy:
        Every attempt runs under ``asyncio.timeout``. Expiry cancels the
        in-flight request and raises FetchTimeoutError. Timeouts are not
        retried, which bounds the worst-case latency of a call.

    Retry policy:
        - HTTP 429 and 5xx: retried up to ``retries`` times, sleeping
          ``retry_delay * 2**attempt`` seconds. When the budget is spent the
          last response is returned for the caller to inspect.
        - Other 4xx: returned immediately, never retried.
        - Transport failures: retried with the same backoff, then
          TransportError.

    Use via ``async with ReliableHttpClient(...) as client:`` or call
    ``close()``; an injected ``httpx.AsyncClient`` is left open.
    """

    def __init__(
        self,
        config: HttpConfig | None = None,
        coalescer: RequestCoalescer | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or HttpConfig()
        self._coalescer = coalescer or RequestCoalescer()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._default_headers = {
            "User-Agent": self._config.user_agent,
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def __aenter__(self) -> ReliableHttpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this wrapper created it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    async def fetch_reliable(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
        limiter: AsyncLimiter | None = None,
    ) -> httpx.Response:
        """GET ``url`` with a per-attempt deadline and bounded retries.

        Returns:
            The final httpx.Response, which may be non-2xx.

        Raises:
            FetchTimeoutError: An attempt exceeded ``timeout`` seconds.
            TransportError: Connection failures outlasted every retry.
        """
        timeout = self._config.timeout if timeout is None else timeout
        retries = self._config.retries if retries is None else retries
        retry_delay = self._config.retry_delay if retry_delay is None else retry_delay
        merged_headers = {**self._default_headers, **(headers or {})}

        for attempt in range(retries + 1):
            try:
                response = await self._attempt(
                    url, params, merged_headers, timeout, limiter
                )
            except httpx.TransportError as e:
                if attempt < retries:
                    delay = retry_delay * 2**attempt
                    logger.warning(
                        "Transport error on %s (%s), retrying in %.2fs (attempt %d/%d)",
                        url, type(e).__name__, delay, attempt + 1, retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise TransportError(
                    f"Connection failed after {retries} retries: {url}",
                    context={"url": url, "error": str(e)},
                ) from e

            if is_retryable_status(response.status_code) and attempt < retries:
                delay = retry_delay * 2**attempt
                logger.warning(
                    "HTTP %d on %s, retrying in %.2fs (attempt %d/%d)",
                    response.status_code, url, delay, attempt + 1, retries,
                )
                await asyncio.sleep(delay)
                continue

            return response

        # range(retries + 1) always returns or raises above
        raise TransportError(f"Request failed after all retries: {url}", context={"url": url})

    async def _attempt(
        self,
        url: str,
        params: dict[str, Any] | None,
        headers: dict[str, str],
        timeout: float,
        limiter: AsyncLimiter | None,
    ) -> httpx.Response:
        if limiter is not None:
            await limiter.acquire()
        try:
            async with asyncio.timeout(timeout):
                return await self._client.get(url, params=params, headers=headers)
        except (TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeoutError(
                f"Request timeout after {timeout}s: {url}",
                timeout=timeout,
                context={"url": url},
            ) from e

    async def fetch_coalesced(self, key: str, url: str, **kwargs: Any) -> httpx.Response:
        """``fetch_reliable`` shared among concurrent callers using ``key``."""
        return await self._coalescer.run(key, lambda: self.fetch_reliable(url, **kwargs))

    async def fetch_json(
        self,
        url: str,
        *,
        coalesce_key: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Fetch and parse a JSON document, raising on non-2xx.

        Raises:
            HttpError: Non-2xx status (after retries) or HTML body.
            ParseError: Unparseable body.
            FetchTimeoutError, TransportError: see ``fetch_reliable``.
        """
        if coalesce_key is not None:
            response = await self.fetch_coalesced(coalesce_key, url, **kwargs)
        else:
            response = await self.fetch_reliable(url, **kwargs)

        if not response.is_success:
            raise HttpError(
                f"HTTP {response.status_code} from {url}",
                status=response.status_code,
                context={"url": url},
            )
        return parse_json_safe(response)
