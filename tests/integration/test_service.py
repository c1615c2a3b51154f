"""End-to-end lookups through MarketDataService with upstream APIs mocked."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from marketfeed.core.models import HistoryError, QuoteSource
from payloads import BN, CG, CHART, FX, YF, binance_ticker, chart_payload, quote_payload

pytestmark = pytest.mark.integration


class TestQuotes:
    @respx.mock
    async def test_mixed_crypto_and_equity(self, service):
        cg = respx.get(f"{CG}/simple/price").mock(
            return_value=httpx.Response(
                200, json={"bitcoin": {"usd": 43000.0, "usd_24h_change": 1.5}}
            )
        )
        yf = respx.get(f"{YF}/v7/finance/quote").mock(
            return_value=httpx.Response(
                200,
                json=quote_payload(
                    {"symbol": "AAPL", "regularMarketPrice": 190.0, "currency": "USD",
                     "regularMarketChangePercent": 0.4}
                ),
            )
        )

        results = await service.get_quotes(["cg:bitcoin", "yahoo:AAPL"])

        assert [r.id for r in results] == ["cg:bitcoin", "yahoo:AAPL"]
        assert results[0].price == 43000.0
        assert results[0].source is QuoteSource.COINGECKO
        assert results[1].price == 190.0
        assert results[1].source is QuoteSource.YAHOO
        assert cg.call_count == 1
        assert yf.call_count == 1

    @respx.mock
    async def test_crypto_fallback_to_binance(self, service):
        respx.get(f"{CG}/simple/price").mock(return_value=httpx.Response(200, json={}))
        ticker = respx.get(f"{BN}/api/v3/ticker/24hr", params={"symbol": "DOGEUSDT"}).mock(
            return_value=httpx.Response(200, json=binance_ticker("DOGEUSDT", "0.0812"))
        )

        [result] = await service.get_quotes(["cg:dogecoin"])

        assert ticker.called
        assert result.id == "cg:dogecoin"
        assert result.price == 0.0812
        assert result.currency == "USD"
        assert result.source is QuoteSource.BINANCE_FALLBACK

    @respx.mock
    async def test_partial_batch(self, service):
        respx.get(f"{YF}/v7/finance/quote").mock(
            return_value=httpx.Response(
                200,
                json=quote_payload(
                    {"symbol": "AAPL", "regularMarketPrice": 190.0},
                    {"symbol": "MSFT", "regularMarketPrice": 370.0},
                ),
            )
        )

        results = await service.get_quotes(["yahoo:AAPL", "yahoo:MSFT", "yahoo:ZZZZ"])

        assert [r.ok for r in results] == [True, True, False]
        assert results[2].id == "yahoo:ZZZZ"
        assert results[2].error == "Symbol ZZZZ not found"

    @respx.mock
    async def test_unknown_tase_security_routed_and_rescaled(self, service):
        route = respx.get(f"{YF}/v7/finance/quote", params={"symbols": "9999999.TA"}).mock(
            return_value=httpx.Response(
                200,
                json=quote_payload(
                    {"symbol": "9999999.TA", "regularMarketPrice": 25320.0, "currency": "ILS"}
                ),
            )
        )

        [result] = await service.get_quotes(["tase:9999999"])

        assert route.called
        assert result.id == "tase:9999999"
        assert result.price == pytest.approx(253.2)
        assert result.currency == "ILS"

    @respx.mock
    async def test_quote_endpoint_rejected_uses_chart(self, service):
        respx.get(f"{YF}/v7/finance/quote").mock(return_value=httpx.Response(401))
        respx.get(f"{CHART}/POLI.TA").mock(
            return_value=httpx.Response(
                200, json=chart_payload("POLI.TA", price=3050.0, currency="ILA", previous_close=3000.0)
            )
        )

        [result] = await service.get_quotes(["tase:662577"])

        assert result.price == pytest.approx(30.5)
        assert result.currency == "ILS"
        assert result.change_pct == pytest.approx(100 / 60)

    @respx.mock
    async def test_legacy_id_answered_under_request_id(self, service):
        respx.get(f"{YF}/v7/finance/quote", params={"symbols": "POLI.TA"}).mock(
            return_value=httpx.Response(
                200, json=quote_payload({"symbol": "POLI.TA", "regularMarketPrice": 30.5, "currency": "ILS"})
            )
        )
        [result] = await service.get_quotes(["yahoo:662577.TA"])
        assert result.id == "yahoo:662577.TA"
        assert result.price == 30.5

    @respx.mock
    async def test_one_provider_down_does_not_affect_other(self, service):
        respx.get(f"{CG}/simple/price").mock(return_value=httpx.Response(200, json={"bitcoin": {"usd": 43000.0}}))
        respx.get(f"{YF}/v7/finance/quote").mock(return_value=httpx.Response(503))
        respx.get(f"{CHART}/AAPL").mock(return_value=httpx.Response(503))

        results = await service.get_quotes(["cg:bitcoin", "yahoo:AAPL"])

        assert results[0].ok
        assert results[1].error == "Upstream Yahoo failure: HTTP 503"


class TestHistory:
    @respx.mock
    async def test_crypto_history_falls_back_to_binance(self, service):
        respx.get(f"{CG}/coins/bitcoin/market_chart").mock(return_value=httpx.Response(429))
        klines = respx.get(
            f"{BN}/api/v3/klines", params={"symbol": "BTCUSDT", "interval": "1d", "limit": "365"}
        ).mock(
            return_value=httpx.Response(200, json=[[1_700_000_000_000, "0", "0", "0", "43000.0"]])
        )

        result = await service.get_history("cg:bitcoin", "1y")

        assert klines.called
        assert result.id == "cg:bitcoin"
        assert result.source is QuoteSource.BINANCE_FALLBACK
        assert result.points[0].value == 43000.0

    @respx.mock
    async def test_equity_history_upstream_failure(self, service):
        respx.get(f"{CHART}/AAPL").mock(return_value=httpx.Response(503))
        result = await service.get_history("yahoo:AAPL")
        assert isinstance(result, HistoryError)
        assert result.upstream_status == 502
        assert result.error == "Upstream Yahoo failure: HTTP 503"

    @respx.mock
    async def test_tase_history_rescaled(self, service):
        respx.get(f"{CHART}/POLI.TA").mock(
            return_value=httpx.Response(
                200, json=chart_payload("POLI.TA", currency="ILS", closes=[2900.0, 3050.0])
            )
        )
        result = await service.get_history("tase:662577", "5d")
        assert [p.value for p in result.points] == pytest.approx([29.0, 30.5])
        assert result.currency == "ILS"

    @respx.mock
    async def test_concurrent_requests_coalesced(self, service):
        route = respx.get(f"{CHART}/AAPL").mock(
            return_value=httpx.Response(200, json=chart_payload("AAPL"))
        )
        results = await asyncio.gather(
            *(service.get_history("yahoo:AAPL", "1mo") for _ in range(5))
        )
        assert route.call_count == 1
        assert all(len(r.points) == 3 for r in results)
        assert len(service.coalescer) == 0


class TestSearchAndFx:
    @respx.mock
    async def test_search_merges_sources(self, service):
        respx.get(f"{CG}/search").mock(
            return_value=httpx.Response(
                200, json={"coins": [{"id": "leumi-coin", "name": "Leumi Coin", "symbol": "lmc"}]}
            )
        )
        respx.get(f"{YF}/v1/finance/search").mock(
            return_value=httpx.Response(
                200,
                json={"quotes": [{"symbol": "LUMI.TA", "quoteType": "EQUITY", "shortname": "LEUMI", "exchange": "TLV"}]},
            )
        )

        results = await service.search("Leumi")

        ids = [r.id for r in results]
        assert ids[0] == "tase:604611"
        assert "cg:leumi-coin" in ids
        assert "yahoo:LUMI.TA" in ids

    @respx.mock
    async def test_numeric_search_stays_local(self, service):
        cg = respx.get(f"{CG}/search")
        yf = respx.get(f"{YF}/v1/finance/search")
        results = await service.search("662577")
        assert [r.id for r in results] == ["tase:662577"]
        assert not cg.called
        assert not yf.called

    @respx.mock
    async def test_fx(self, service):
        route = respx.get(f"{FX}/latest/USD").mock(
            return_value=httpx.Response(200, json={"base": "USD", "rates": {"ILS": 3.72}})
        )
        first, second = await asyncio.gather(service.get_fx(), service.get_fx("USD", "ILS"))
        assert first.rate == second.rate == 3.72
        assert route.call_count == 1
