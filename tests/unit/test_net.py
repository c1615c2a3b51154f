"""Tests for marketfeed.net (reliable client + request coalescing)."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from marketfeed.core.config import HttpConfig
from marketfeed.core.exceptions import (
    FetchTimeoutError,
    HttpError,
    ParseError,
    TransportError,
)
from marketfeed.net import RequestCoalescer, ReliableHttpClient, parse_json_safe
from marketfeed.net.reliable import is_retryable_status

URL = "https://api.example.com/data"


def _response(text: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=text, request=httpx.Request("GET", URL))


@pytest.fixture
async def client():
    async with ReliableHttpClient(HttpConfig(retries=2, retry_delay=0.5, timeout=5)) as c:
        yield c


class TestRetryableStatus:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 599])
    def test_retryable(self, status):
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [200, 301, 400, 401, 403, 404])
    def test_final(self, status):
        assert not is_retryable_status(status)


class TestParseJsonSafe:
    def test_plain_json(self):
        assert parse_json_safe(_response('{"a": 1}')) == {"a": 1}

    @pytest.mark.parametrize(
        "body",
        [
            "<!DOCTYPE html><html><body>Oops</body></html>",
            "   <html><head></head></html>",
            '<?xml version="1.0"?><error/>',
        ],
    )
    def test_html_detected(self, body):
        with pytest.raises(HttpError, match="HTML instead of JSON") as exc_info:
            parse_json_safe(_response(body))
        assert not isinstance(exc_info.value, ParseError)
        assert exc_info.value.status == 200

    def test_embedded_json_recovered(self):
        assert parse_json_safe(_response('callback({"price": 3.5});')) == {"price": 3.5}

    def test_broken_embedded_json(self):
        with pytest.raises(ParseError, match="Invalid JSON"):
            parse_json_safe(_response("prefix {not json} suffix"))

    def test_no_json_at_all(self):
        with pytest.raises(ParseError, match="Could not parse"):
            parse_json_safe(_response("Service Unavailable", status=503))


class TestFetchReliable:
    @respx.mock
    @patch("marketfeed.net.reliable.asyncio.sleep", new_callable=AsyncMock)
    async def test_retries_5xx_with_backoff(self, mock_sleep, client):
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(500),
                httpx.Response(200, json={"ok": True}),
            ]
        )
        response = await client.fetch_reliable(URL)
        assert response.status_code == 200
        assert route.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @respx.mock
    @patch("marketfeed.net.reliable.asyncio.sleep", new_callable=AsyncMock)
    async def test_retries_429(self, mock_sleep, client):
        respx.get(URL).mock(side_effect=[httpx.Response(429), httpx.Response(200, json={})])
        assert (await client.fetch_reliable(URL)).status_code == 200
        mock_sleep.assert_awaited_once_with(0.5)

    @respx.mock
    @patch("marketfeed.net.reliable.asyncio.sleep", new_callable=AsyncMock)
    async def test_exhausted_returns_last_response(self, mock_sleep, client):
        route = respx.get(URL).mock(return_value=httpx.Response(502))
        response = await client.fetch_reliable(URL)
        assert response.status_code == 502
        assert route.call_count == 3

    @respx.mock
    @patch("marketfeed.net.reliable.asyncio.sleep", new_callable=AsyncMock)
    async def test_404_not_retried(self, mock_sleep, client):
        route = respx.get(URL).mock(return_value=httpx.Response(404))
        response = await client.fetch_reliable(URL)
        assert response.status_code == 404
        assert route.call_count == 1
        mock_sleep.assert_not_awaited()

    @respx.mock
    @patch("marketfeed.net.reliable.asyncio.sleep", new_callable=AsyncMock)
    async def test_per_call_retry_override(self, mock_sleep, client):
        route = respx.get(URL).mock(return_value=httpx.Response(500))
        await client.fetch_reliable(URL, retries=0)
        assert route.call_count == 1

    @respx.mock
    @patch("marketfeed.net.reliable.asyncio.sleep", new_callable=AsyncMock)
    async def test_transport_error_exhausted(self, mock_sleep, client):
        route = respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(TransportError, match="after 2 retries"):
            await client.fetch_reliable(URL)
        assert route.call_count == 3

    @respx.mock
    async def test_httpx_timeout_not_retried(self, client):
        route = respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(FetchTimeoutError) as exc_info:
            await client.fetch_reliable(URL, timeout=1.5)
        assert exc_info.value.timeout == 1.5
        assert route.call_count == 1

    async def test_deadline_cancels_slow_request(self):
        class SlowClient:
            async def get(self, url, params=None, headers=None):
                await asyncio.sleep(10)

        c = ReliableHttpClient(HttpConfig(), client=SlowClient())
        with pytest.raises(FetchTimeoutError, match="timeout after 0.05s"):
            await c.fetch_reliable(URL, timeout=0.05)

    @respx.mock
    async def test_default_headers_sent(self, client):
        route = respx.get(URL).mock(return_value=httpx.Response(200, json={}))
        await client.fetch_reliable(URL, headers={"X-Extra": "1"})
        sent = route.calls.last.request.headers
        assert "Mozilla" in sent["user-agent"]
        assert sent["accept"] == "application/json"
        assert sent["x-extra"] == "1"

    @respx.mock
    async def test_params_forwarded(self, client):
        route = respx.get(URL, params={"ids": "bitcoin"}).mock(
            return_value=httpx.Response(200, json={})
        )
        await client.fetch_reliable(URL, params={"ids": "bitcoin"})
        assert route.called


class TestFetchJson:
    @respx.mock
    async def test_success(self, client):
        respx.get(URL).mock(return_value=httpx.Response(200, json={"x": 1}))
        assert await client.fetch_json(URL) == {"x": 1}

    @respx.mock
    async def test_non_2xx_raises_http_error(self, client):
        respx.get(URL).mock(return_value=httpx.Response(404))
        with pytest.raises(HttpError) as exc_info:
            await client.fetch_json(URL)
        assert exc_info.value.status == 404

    @respx.mock
    async def test_html_200_raises(self, client):
        respx.get(URL).mock(return_value=httpx.Response(200, text="<html>captcha</html>"))
        with pytest.raises(HttpError, match="HTML"):
            await client.fetch_json(URL)

    @respx.mock
    async def test_coalesced_concurrent_calls(self, client):
        route = respx.get(URL).mock(return_value=httpx.Response(200, json={"v": 1}))
        results = await asyncio.gather(
            *(client.fetch_json(URL, coalesce_key="k") for _ in range(5))
        )
        assert results == [{"v": 1}] * 5
        assert route.call_count == 1
        assert len(client.coalescer) == 0


class TestRequestCoalescer:
    async def test_concurrent_callers_share_one_call(self):
        coalescer = RequestCoalescer()
        calls = 0
        release = asyncio.Event()

        async def fetcher():
            nonlocal calls
            calls += 1
            await release.wait()
            return "result"

        waiters = [asyncio.create_task(coalescer.run("key", fetcher)) for _ in range(4)]
        await asyncio.sleep(0)
        assert coalescer.in_flight("key")
        release.set()
        assert await asyncio.gather(*waiters) == ["result"] * 4
        assert calls == 1
        assert not coalescer.in_flight("key")

    async def test_failure_propagates_and_clears_entry(self):
        coalescer = RequestCoalescer()

        async def failing():
            await asyncio.sleep(0)
            raise HttpError("HTTP 500", status=500)

        results = await asyncio.gather(
            coalescer.run("k", failing), coalescer.run("k", failing), return_exceptions=True
        )
        assert all(isinstance(r, HttpError) for r in results)
        assert len(coalescer) == 0

    async def test_sequential_calls_refetch(self):
        coalescer = RequestCoalescer()
        fetcher = AsyncMock(side_effect=["first", "second"])
        assert await coalescer.run("k", fetcher) == "first"
        assert await coalescer.run("k", fetcher) == "second"
        assert fetcher.await_count == 2

    async def test_distinct_keys_do_not_share(self):
        coalescer = RequestCoalescer()
        fetcher = AsyncMock(side_effect=["a", "b"])
        assert await asyncio.gather(coalescer.run("a", fetcher), coalescer.run("b", fetcher)) == ["a", "b"]

    async def test_abandoned_waiter_does_not_cancel_fetch(self):
        coalescer = RequestCoalescer()
        release = asyncio.Event()

        async def fetcher():
            await release.wait()
            return 42

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.01):
                await coalescer.run("k", fetcher)
        assert coalescer.in_flight("k")
        follower = asyncio.create_task(coalescer.run("k", fetcher))
        await asyncio.sleep(0)
        release.set()
        assert await follower == 42
