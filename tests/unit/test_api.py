"""Tests for the FastAPI REST API module."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from marketfeed.api.app import create_app, status_for
from marketfeed.api.routes import parse_ids
from marketfeed.api.schemas import (
    ERROR_CACHE,
    FX_CACHE,
    HISTORY_CACHE,
    QUOTE_CACHE,
    QUOTE_CDN_CACHE,
    SEARCH_CACHE,
)
from marketfeed.core.exceptions import (
    ConfigError,
    FetchTimeoutError,
    HttpError,
    MarketFeedError,
    NotFound,
    ParseError,
    ValidationError,
)
from marketfeed.core.models import (
    FxResult,
    HistoryError,
    HistoryPoint,
    HistoryResult,
    QuoteResult,
    QuoteSource,
    SearchResult,
)


# -- Fixtures --


@pytest.fixture
def service():
    svc = AsyncMock()
    svc.get_quotes.side_effect = lambda ids: [
        QuoteResult(id=i, price=1.0, currency="USD", timestamp=1, source=QuoteSource.YAHOO)
        for i in ids
    ]
    return svc


@pytest.fixture
def app(config, service):
    return create_app(config=config, service=service)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


# -- Helpers --


class TestParseIds:
    def test_repeated_and_comma_separated(self):
        assert parse_ids(["yahoo:AAPL,cg:bitcoin", "tase:662577"]) == [
            "yahoo:AAPL",
            "cg:bitcoin",
            "tase:662577",
        ]

    def test_blanks_and_duplicates_dropped(self):
        assert parse_ids([" a , ,a", "b", ""]) == ["a", "b"]

    def test_none(self):
        assert parse_ids(None) == []


class TestStatusFor:
    @pytest.mark.parametrize(
        "exc,status",
        [
            (ValidationError("bad"), 400),
            (NotFound("gone"), 404),
            (HttpError("HTTP 500", status=500), 502),
            (ParseError("bad json", status=200), 502),
            (FetchTimeoutError("slow", timeout=1.0), 502),
            (ConfigError("broken"), 500),
            (MarketFeedError("generic"), 500),
        ],
    )
    def test_mapping(self, exc, status):
        assert status_for(exc) == status


# -- Health --


class TestHealth:
    def test_get(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["version"] == "0.1.0"
        assert data["timestamp"] > 0

    def test_head(self, client):
        resp = client.head("/api/health")
        assert resp.status_code == 200
        assert resp.content == b""


# -- Quotes --


class TestQuoteEndpoint:
    def test_get_quotes(self, client, service):
        resp = client.get("/api/quote?ids=yahoo:AAPL,cg:bitcoin&ids=yahoo:AAPL")
        assert resp.status_code == 200
        assert [q["id"] for q in resp.json()] == ["yahoo:AAPL", "cg:bitcoin"]
        assert resp.headers["cache-control"] == QUOTE_CACHE
        assert resp.headers["cdn-cache-control"] == QUOTE_CDN_CACHE
        service.get_quotes.assert_awaited_once_with(["yahoo:AAPL", "cg:bitcoin"])

    def test_wire_shape_omits_nulls(self, client, service):
        service.get_quotes.side_effect = None
        service.get_quotes.return_value = [QuoteResult.failure("yahoo:ZZZZ", "Symbol ZZZZ not found")]
        resp = client.get("/api/quote", params={"ids": "yahoo:ZZZZ"})
        assert resp.json() == [{"id": "yahoo:ZZZZ", "error": "Symbol ZZZZ not found"}]

    def test_missing_ids(self, client, service):
        resp = client.get("/api/quote")
        assert resp.status_code == 400
        assert 'Query parameter "ids" is required' in resp.json()["error"]
        service.get_quotes.assert_not_awaited()

    def test_blank_ids(self, client):
        assert client.get("/api/quote?ids=,,").status_code == 400

    def test_head(self, client, service):
        resp = client.head("/api/quote?ids=cg:bitcoin")
        assert resp.status_code == 200
        assert resp.content == b""
        assert resp.headers["cache-control"] == QUOTE_CACHE

    def test_post_ids_and_symbols(self, client, service):
        resp = client.post("/api/quote", json={"ids": ["cg:bitcoin"], "symbols": ["AAPL", "  "]})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-cache"
        service.get_quotes.assert_awaited_once_with(["cg:bitcoin", "yahoo:AAPL"])

    def test_post_symbols_stripped(self, client, service):
        resp = client.post("/api/quote", json={"symbols": [" MSFT ", "", "MSFT"]})
        assert [q["id"] for q in resp.json()] == ["yahoo:MSFT"]
        service.get_quotes.assert_awaited_once_with(["yahoo:MSFT"])

    def test_post_only_blank_symbols(self, client, service):
        resp = client.post("/api/quote", json={"symbols": ["  ", ""]})
        assert resp.status_code == 400
        assert resp.json()["error"] == "No valid IDs or symbols provided"
        service.get_quotes.assert_not_awaited()

    def test_post_without_body(self, client):
        resp = client.post("/api/quote")
        assert resp.status_code == 400
        assert resp.json() == {"error": 'Either "ids" or "symbols" must be provided'}

    def test_post_empty_object(self, client):
        resp = client.post("/api/quote", json={})
        assert resp.status_code == 400

    def test_post_only_blank_ids(self, client):
        resp = client.post("/api/quote", json={"ids": ["  "]})
        assert resp.status_code == 400
        assert resp.json()["error"] == "No valid IDs or symbols provided"

    def test_post_malformed_body(self, client):
        resp = client.post("/api/quote", json={"ids": "not-a-list"})
        assert resp.status_code == 400

    def test_method_not_allowed(self, client):
        resp = client.delete("/api/quote")
        assert resp.status_code == 405
        assert resp.json() == {"error": "Method not allowed"}


# -- History --


class TestHistoryEndpoint:
    def test_success(self, client, service):
        service.get_history.return_value = HistoryResult(
            id="yahoo:AAPL",
            points=[HistoryPoint(t=1_700_000_000_000, v=190.0)],
            currency="USD",
            source=QuoteSource.YAHOO,
        )
        resp = client.get("/api/history", params={"id": "yahoo:AAPL", "range": "1y", "interval": "1wk"})
        assert resp.status_code == 200
        assert resp.json() == {
            "id": "yahoo:AAPL",
            "points": [{"t": 1_700_000_000_000, "v": 190.0}],
            "currency": "USD",
            "source": "yahoo",
        }
        assert resp.headers["cache-control"] == HISTORY_CACHE
        service.get_history.assert_awaited_once_with("yahoo:AAPL", "1y", "1wk")

    def test_defaults(self, client, service):
        service.get_history.return_value = HistoryError(id="cg:x", error="History data not found")
        client.get("/api/history?id=cg:x")
        service.get_history.assert_awaited_once_with("cg:x", "1mo", "1d")

    def test_not_found_is_200_with_error(self, client, service):
        service.get_history.return_value = HistoryError(id="yahoo:NOPE", error="History data not found")
        resp = client.get("/api/history?id=yahoo:NOPE")
        assert resp.status_code == 200
        assert resp.json() == {"id": "yahoo:NOPE", "error": "History data not found"}
        assert resp.headers["cache-control"] == ERROR_CACHE

    @pytest.mark.parametrize("status", [502, 504])
    def test_upstream_failure_status(self, client, service, status):
        service.get_history.return_value = HistoryError(
            id="yahoo:AAPL", error="Upstream Yahoo failure: HTTP 503", upstream_status=status
        )
        resp = client.get("/api/history?id=yahoo:AAPL")
        assert resp.status_code == status
        assert resp.json() == {"id": "yahoo:AAPL", "error": "Upstream Yahoo failure: HTTP 503"}

    def test_missing_id(self, client):
        resp = client.get("/api/history")
        assert resp.status_code == 400
        assert resp.json() == {"error": 'Query parameter "id" is required'}

    def test_head(self, client, service):
        service.get_history.return_value = HistoryError(id="yahoo:X", error="History data not found")
        resp = client.head("/api/history?id=yahoo:X")
        assert resp.status_code == 200
        assert resp.content == b""

    def test_post_not_allowed(self, client):
        assert client.post("/api/history").status_code == 405


# -- FX --


class TestFxEndpoint:
    def test_rate(self, client, service):
        service.get_fx.return_value = FxResult(base="USD", quote="ILS", rate=3.7, timestamp=1)
        resp = client.get("/api/fx")
        assert resp.status_code == 200
        assert resp.json() == {
            "base": "USD",
            "quote": "ILS",
            "rate": 3.7,
            "timestamp": 1,
            "source": "exchangerate-api",
        }
        assert resp.headers["cache-control"] == FX_CACHE
        service.get_fx.assert_awaited_once_with("USD", "ILS")

    def test_unsupported_base(self, client, service):
        service.get_fx.side_effect = ValidationError("Only USD base currency is supported")
        resp = client.get("/api/fx?base=EUR")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Only USD base currency is supported"}

    def test_missing_rate(self, client, service):
        service.get_fx.side_effect = NotFound("Exchange rate not found for USD/XYZ")
        assert client.get("/api/fx?quote=XYZ").status_code == 404

    def test_upstream_failure(self, client, service):
        service.get_fx.side_effect = HttpError("HTTP 503 from upstream", status=503)
        resp = client.get("/api/fx")
        assert resp.status_code == 502
        assert resp.json() == {"error": "HTTP 503 from upstream"}
        assert resp.headers["cache-control"] == ERROR_CACHE


# -- Search --


class TestSearchEndpoint:
    def test_search(self, client, service):
        service.search.return_value = [
            SearchResult(
                id="tase:662577", type="equity", provider="tase-local", symbol="POLI.TA",
                name="Bank Hapoalim", currency="ILS", exchange="TASE", country="IL",
            )
        ]
        resp = client.get("/api/search?q=poalim")
        assert resp.status_code == 200
        assert resp.json()[0]["id"] == "tase:662577"
        assert "extra" not in resp.json()[0]
        assert resp.headers["cache-control"] == SEARCH_CACHE

    def test_missing_query(self, client, service):
        resp = client.get("/api/search?q=")
        assert resp.status_code == 400
        service.search.assert_not_awaited()


# -- Internal errors --


class TestInternalErrors:
    @pytest.fixture
    def lenient_client(self, app):
        with TestClient(app, raise_server_exceptions=False) as c:
            yield c

    def test_unexpected_exception(self, lenient_client, service):
        service.get_fx.side_effect = RuntimeError("boom")
        resp = lenient_client.get("/api/fx", headers={"x-request-id": "req-123"})
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Internal server error",
            "details": "boom",
            "requestId": "req-123",
        }

    def test_vercel_id_preferred(self, lenient_client, service):
        service.get_fx.side_effect = RuntimeError("boom")
        resp = lenient_client.get(
            "/api/fx", headers={"x-vercel-id": "fra1::abc", "x-request-id": "req-123"}
        )
        assert resp.json()["requestId"] == "fra1::abc"

    def test_config_error_is_internal(self, client, service):
        service.search.side_effect = ConfigError("bad config")
        resp = client.get("/api/search?q=x")
        assert resp.status_code == 500
        assert resp.json()["error"] == "Internal server error"
        assert resp.json()["requestId"] == "unknown"

    def test_unknown_route(self, client):
        assert client.get("/api/nope").status_code == 404
