"""Tests for the Backpack REST client using httpx's mock transport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backpack_monitor.core.config import ExchangeConfig
from backpack_monitor.data.fetcher import BackpackAPIError, BackpackClient

BASE = "https://api.backpack.exchange/api/v1"


def _client(handler, attempts: int = 3) -> BackpackClient:
    cfg = ExchangeConfig(retry_attempts=attempts, retry_backoff_seconds=0)
    http = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
    return BackpackClient(cfg, client=http)


def _json(payload, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(payload), headers={"content-type": "application/json"})


def _run(client: BackpackClient, coro_fn):
    async def _go():
        try:
            return await coro_fn(client)
        finally:
            await client.close()

    return asyncio.run(_go())


def test_markets_are_normalised():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/markets"
        return _json(
            [
                {"symbol": "BTC_USDC_PERP", "visible": True, "orderBookState": "Open", "createdAt": "2024-01-01"},
                {"symbol": "NEW_USDC", "visible": "false", "orderBookState": "PostOnly"},
                {"baseSymbol": "nosymbol"},
            ]
        )

    markets = _run(_client(handler), lambda c: c.fetch_markets())
    assert [m.symbol for m in markets] == ["BTC_USDC_PERP", "NEW_USDC"]
    assert markets[0].is_perp and markets[0].created_at == "2024-01-01"
    assert markets[1].visible is False
    assert markets[1].order_book_state == "PostOnly"


def test_ticker_accepts_object_or_array():
    payloads = iter(
        [
            {"symbol": "SOL_USDC", "lastPrice": "150.5", "volume": "1000"},
            [{"symbol": "SOL_USDC", "lastPrice": "151", "volume": None, "bestBid": "150.9", "bestAsk": "151.1"}],
            [],
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["symbol"] == "SOL_USDC"
        return _json(next(payloads))

    async def _three(client):
        return [await client.fetch_ticker("SOL_USDC") for _ in range(3)]

    first, second, third = _run(_client(handler), _three)
    assert (first.last_price, first.volume, first.bid) == (150.5, 1000.0, None)
    assert (second.last_price, second.volume, second.bid, second.ask) == (151.0, 0.0, 150.9, 151.1)
    assert third is None


def test_open_interest_map():
    def handler(request):
        return _json([{"symbol": "BTC_USDC_PERP", "openInterest": "12.5"}, {"symbol": "ETH_USDC_PERP"}])

    oi = _run(_client(handler), lambda c: c.fetch_open_interest())
    assert oi == {"BTC_USDC_PERP": 12.5, "ETH_USDC_PERP": 0.0}


def test_klines_parse_start_strings_and_epochs():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return _json(
            [
                {"start": "2024-01-01 00:03:00", "open": "1", "high": "2", "low": "0.5", "close": "1.5", "volume": "10"},
                {"openTime": 1704067200000, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1},
                {"open": "1"},
            ]
        )

    candles = _run(_client(handler), lambda c: c.fetch_klines("BTC_USDC", "3m", 100, 200))
    assert seen == {"symbol": "BTC_USDC", "interval": "3m", "startTime": "100", "endTime": "200"}
    assert [c.open_time for c in candles] == [1704067380, 1704067200]
    assert (candles[0].high, candles[0].close, candles[0].volume) == (2.0, 1.5, 10.0)


def test_trades_sorted_and_filtered():
    def handler(request):
        assert request.url.params["limit"] == "3"
        return _json(
            [
                {"price": "2", "quantity": "1", "timestamp": 1704067260000},
                {"price": "1", "quantity": "3", "timestamp": 1704067200000},
                {"price": "0", "quantity": "3", "timestamp": 1704067200000},
            ]
        )

    trades = _run(_client(handler), lambda c: c.fetch_trades("BTC_USDC", 3))
    assert [(t.timestamp, t.price, t.quantity) for t in trades] == [
        (1704067200, 1.0, 3.0),
        (1704067260, 2.0, 1.0),
    ]


def test_trade_timestamps_accept_fractional_and_iso_strings():
    def handler(request):
        return _json(
            [
                {"price": "1", "quantity": "1", "timestamp": "1704067200.5"},
                {"price": "1", "quantity": "1", "timestamp": "1704067260000.0"},
                {"price": "1", "quantity": "1", "timestamp": "2024-01-01T00:02:00Z"},
                {"price": "1", "quantity": "1", "timestamp": "not a time"},
            ]
        )

    trades = _run(_client(handler), lambda c: c.fetch_trades("BTC_USDC", 10))
    assert [t.timestamp for t in trades] == [1704067200, 1704067260, 1704067320]


def test_assets_flatten_tokens():
    def handler(request):
        return _json(
            [
                {
                    "symbol": "usdc",
                    "tokens": [
                        {"blockchain": "Solana", "depositEnabled": True, "withdrawEnabled": False, "withdrawalFee": "1"},
                        {"blockchain": "Ethereum", "depositEnabled": True, "withdrawEnabled": True},
                    ],
                },
                {"symbol": "EMPTY", "tokens": []},
            ]
        )

    networks = _run(_client(handler), lambda c: c.fetch_assets())
    assert [(n.symbol, n.blockchain) for n in networks] == [("USDC", "Solana"), ("USDC", "Ethereum")]
    assert networks[0].withdrawal_fee == "1"
    assert networks[1].min_withdraw == "-"
    assert networks[0].to_dict()["depositEnabled"] is True


def test_retries_server_errors_then_succeeds():
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        if attempts["n"] < 3:
            return httpx.Response(503)
        return _json([])

    assert _run(_client(handler), lambda c: c.fetch_markets()) == []
    assert attempts["n"] == 3


def test_client_errors_are_not_retried():
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        return httpx.Response(404)

    with pytest.raises(BackpackAPIError) as err:
        _run(_client(handler), lambda c: c.fetch_markets())
    assert err.value.status_code == 404
    assert err.value.path == "/markets"
    assert attempts["n"] == 1


def test_transport_errors_exhaust_retries():
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(BackpackAPIError):
        _run(_client(handler, attempts=2), lambda c: c.fetch_open_interest())
    assert attempts["n"] == 2


def test_invalid_json_is_an_api_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>")

    with pytest.raises(BackpackAPIError, match="invalid JSON"):
        _run(_client(handler), lambda c: c.fetch_markets())
