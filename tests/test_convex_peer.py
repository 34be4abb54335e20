"""Wire-level tests for PeerClient against a fake aiohttp session.

No real network: the ``peer_http`` fixture replaces ``PeerClient._make_session``
with a recorder that returns canned (status, body) replies per endpoint.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from vortex.adapters.convex_peer import (
    DemoAccount,
    NotConnectedError,
    PeerClient,
    PeerConnectionError,
    PeerResponse,
    QueryError,
    TransactionError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_INIT_OK = (200, {"value": 7})


def _connected_client(address: str = "#42") -> PeerClient:
    """Client with an adopted session, skipping the init round-trip."""
    client = PeerClient("http://peer.test:8080/")
    client.set_address(address)
    client.set_credential("secret")
    client.session.connected = True  # type: ignore[union-attr]
    return client


# ---------------------------------------------------------------------------
# connect / bootstrap
# ---------------------------------------------------------------------------


def test_connect_with_explicit_account_skips_bootstrap(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [_INIT_OK]})

    client = asyncio.run(PeerClient.connect("http://peer.test:8080", "#99", "seed99"))

    assert client.is_connected
    assert client.address == "#99"
    assert client.session.credential == "seed99"  # type: ignore[union-attr]
    assert client.session.sequence == 0  # type: ignore[union-attr]
    # Only the init check was sent
    assert len(http.calls) == 1
    assert http.calls[0]["url"] == "http://peer.test:8080/api/v1/query"
    assert http.calls[0]["json"] == {"address": "#12", "source": "(+ 2 2 2 1)"}


def test_connect_creates_account_and_requests_faucet(peer_http: Any) -> None:
    http = peer_http({
        "/api/v1/query": [_INIT_OK],
        "/api/v1/createAccount": [(200, {"address": "#777"})],
        "/api/v1/faucet": [(200, {"amount": 10000000})],
    })

    client = asyncio.run(PeerClient.connect("http://peer.test:8080", demo=DemoAccount(account_key="abc123")))

    assert client.address == "#777"
    assert client.session.credential == "abc123"  # type: ignore[union-attr]
    assert http.calls[1]["url"].endswith("/api/v1/createAccount")
    assert http.calls[1]["json"] == {"accountKey": "abc123"}
    assert http.calls[2]["json"] == {"address": "#777", "amount": "10000000"}


def test_connect_falls_back_to_demo_account(peer_http: Any) -> None:
    http = peer_http({
        "/api/v1/query": [_INIT_OK],
        "/api/v1/createAccount": [(404, "not found")],
    })

    client = asyncio.run(PeerClient.connect("http://peer.test:8080"))

    assert client.address == "#12"
    assert client.session.credential == "demo"  # type: ignore[union-attr]
    assert not any(c["url"].endswith("/faucet") for c in http.calls)


def test_connect_falls_back_when_create_account_unreachable(peer_http: Any) -> None:
    peer_http({
        "/api/v1/query": [_INIT_OK],
        "/api/v1/createAccount": [aiohttp.ClientConnectionError("refused")],
    })

    client = asyncio.run(PeerClient.connect("http://peer.test:8080"))

    assert client.address == "#12"


def test_faucet_failure_is_ignored(peer_http: Any) -> None:
    peer_http({
        "/api/v1/query": [_INIT_OK],
        "/api/v1/createAccount": [(200, {"address": "#5"})],
        "/api/v1/faucet": [aiohttp.ClientConnectionError("down")],
    })

    client = asyncio.run(PeerClient.connect("http://peer.test:8080"))

    assert client.address == "#5"


def test_connect_unexpected_init_value_raises(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [(200, {"value": 6})]})

    with pytest.raises(PeerConnectionError) as exc_info:
        asyncio.run(PeerClient.connect("http://peer.test:8080"))

    assert "expected 7" in str(exc_info.value)
    assert http.closed


def test_connect_unreachable_raises_connection_error(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [aiohttp.ClientConnectionError("refused")]})

    with pytest.raises(PeerConnectionError):
        asyncio.run(PeerClient.connect("http://unreachable.test:8080"))

    assert http.closed


def test_connect_timeout_raises_connection_error(peer_http: Any) -> None:
    peer_http({"/api/v1/query": [asyncio.TimeoutError()]})

    with pytest.raises(PeerConnectionError):
        asyncio.run(PeerClient.connect("http://slow.test:8080"))


def test_connect_closes_client_when_bootstrap_raises(peer_http: Any, monkeypatch: Any) -> None:
    http = peer_http({"/api/v1/query": [_INIT_OK]})

    async def _explode(self: PeerClient) -> None:
        raise RuntimeError("bootstrap crashed")

    monkeypatch.setattr(PeerClient, "create_demo_account", _explode)

    with pytest.raises(RuntimeError):
        asyncio.run(PeerClient.connect("http://peer.test:8080"))

    assert http.closed


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------


def test_query_defaults_to_session_address(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [(200, {"value": 1})]})
    client = _connected_client(address="#42")

    result = asyncio.run(client.query("(balance #42)"))

    assert result.value == 1
    assert http.calls[0]["json"] == {"address": "#42", "source": "(balance #42)"}


def test_query_error_code_with_http_200_raises(peer_http: Any) -> None:
    peer_http({"/api/v1/query": [(200, {"errorCode": "UNDECLARED", "value": "foo"})]})
    client = _connected_client()

    with pytest.raises(QueryError) as exc_info:
        asyncio.run(client.query("foo"))

    assert exc_info.value.error_code == "UNDECLARED"
    assert "foo" in str(exc_info.value)


def test_query_non_2xx_raises_with_status(peer_http: Any) -> None:
    peer_http({"/api/v1/query": [(503, "overloaded")]})
    client = _connected_client()

    with pytest.raises(QueryError) as exc_info:
        asyncio.run(client.query("(+ 1 1)"))

    err = exc_info.value
    assert err.status == 503
    assert err.to_dict()["endpoint"] == "query"


def test_query_non_json_body_raises(peer_http: Any) -> None:
    peer_http({"/api/v1/query": [(200, "<html>proxy error</html>")]})
    client = _connected_client()

    with pytest.raises(QueryError):
        asyncio.run(client.query("(+ 1 1)"))


# ---------------------------------------------------------------------------
# transact
# ---------------------------------------------------------------------------


def test_transact_sends_seed_and_increments_sequence(peer_http: Any) -> None:
    http = peer_http({"/api/v1/transact": [(200, {"value": True, "info": {"juice": 512}})]})
    client = _connected_client(address="#42")

    result = asyncio.run(client.transact("(def x 1)"))

    assert result.juice == 512
    assert http.calls[0]["json"] == {"address": "#42", "source": "(def x 1)", "seed": "secret"}
    assert client.session.sequence == 1  # type: ignore[union-attr]


def test_transact_error_code_leaves_sequence_unchanged(peer_http: Any) -> None:
    peer_http({"/api/v1/transact": [(200, {"errorCode": "FUNDS", "value": "Insufficient"})]})
    client = _connected_client()

    with pytest.raises(TransactionError) as exc_info:
        asyncio.run(client.transact("(transfer #1 1000)"))

    assert exc_info.value.error_code == "FUNDS"
    assert client.session.sequence == 0  # type: ignore[union-attr]


def test_transact_without_session_raises_not_connected() -> None:
    client = PeerClient("http://peer.test:8080")

    with pytest.raises(NotConnectedError):
        asyncio.run(client.transact("(def x 1)"))


def test_set_address_resets_sequence(peer_http: Any) -> None:
    peer_http({"/api/v1/transact": [(200, {"value": 1})]})
    client = _connected_client()
    asyncio.run(client.transact("(def x 1)"))

    client.set_address("#43")

    assert client.session.sequence == 0  # type: ignore[union-attr]


def test_buy_and_sell_build_exchange_expressions(peer_http: Any) -> None:
    http = peer_http({"/api/v1/transact": [(200, {"value": 1})]})
    client = _connected_client()

    async def _run() -> None:
        await client.buy_tokens("#128", Decimal("100"))
        await client.sell_tokens("#128", Decimal("2.50"))
        await client.buy_tokens(None, Decimal("5"))

    asyncio.run(_run())

    assert http.sources() == [
        "(do (import exchange.torus :as torus) (torus/buy-tokens #128 100))",
        "(do (import exchange.torus :as torus) (torus/sell-tokens #128 2.5))",
        "(do (import exchange.torus :as torus) (torus/buy-tokens nil 5))",
    ]


def test_buy_renders_amounts_beyond_default_precision(peer_http: Any) -> None:
    http = peer_http({"/api/v1/transact": [(200, {"value": 1})]})
    client = _connected_client()

    async def _run() -> None:
        await client.buy_tokens(None, Decimal("1e30"))
        await client.sell_tokens("#128", Decimal("12345678901234567890123456789.5"))

    asyncio.run(_run())

    assert http.sources() == [
        "(do (import exchange.torus :as torus) (torus/buy-tokens nil 1" + "0" * 30 + "))",
        "(do (import exchange.torus :as torus) "
        "(torus/sell-tokens #128 12345678901234567890123456789.5))",
    ]


# ---------------------------------------------------------------------------
# absorbing lookups
# ---------------------------------------------------------------------------


def test_get_balance_returns_decimal(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [(200, {"value": 123456789})]})
    client = _connected_client(address="#42")

    assert asyncio.run(client.get_balance()) == Decimal(123456789)
    assert http.sources() == ["(balance #42)"]


def test_get_balance_failure_reads_as_zero(peer_http: Any) -> None:
    peer_http({"/api/v1/query": [(500, "boom")]})
    client = _connected_client()

    async def _run() -> tuple[Any, Any]:
        return await client.get_balance(), await client.lookup_balance()

    balance, lookup = asyncio.run(_run())

    assert balance == Decimal(0)
    assert not lookup.ok
    assert lookup.unwrap_or(Decimal(-1)) == Decimal(-1)


def test_get_market_failure_returns_none(peer_http: Any) -> None:
    peer_http({"/api/v1/query": [(200, {"errorCode": "NOBODY"})]})
    client = _connected_client()

    assert asyncio.run(client.get_market("#128")) is None


def test_get_market_returns_value(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [(200, {"value": "#201"})]})
    client = _connected_client()

    assert asyncio.run(client.get_market("#128")) == "#201"
    assert http.sources() == ["(do (import exchange.torus :as torus) (torus/get-market #128))"]


def test_undecodable_body_is_absorbed_by_lookups_and_fails_connect() -> None:
    async def _garbled(request: web.Request) -> web.Response:
        return web.Response(body=b'{"value": "\xff\xfe"}', content_type="application/json")

    async def _run() -> tuple[Any, Any, Any]:
        app = web.Application()
        app.router.add_post("/api/v1/query", _garbled)
        server = TestServer(app)
        await server.start_server()
        client = PeerClient(str(server.make_url("/")))
        client.set_address("#42")
        try:
            balance = await client.get_balance()
            market = await client.get_market("#128")
            with pytest.raises(QueryError):
                await client.query("(balance #42)")
            with pytest.raises(PeerConnectionError) as exc_info:
                await PeerClient.connect(str(server.make_url("/")))
            return balance, market, exc_info.value
        finally:
            await client.close()
            await server.close()

    balance, market, error = asyncio.run(_run())

    assert balance == Decimal(0)
    assert market is None
    assert isinstance(error.__cause__, QueryError)


def test_get_account_info_strips_hash_and_absorbs_errors(peer_http: Any) -> None:
    http = peer_http({"/api/v1/accounts/42": [(200, {"balance": 10}), (404, "missing")]})
    client = _connected_client(address="#42")

    async def _run() -> tuple[Any, Any]:
        return await client.get_account_info(), await client.get_account_info()

    first, second = asyncio.run(_run())

    assert first == {"balance": 10}
    assert second is None
    assert http.calls[0]["method"] == "GET"


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------


def test_close_drops_session_locally(peer_http: Any) -> None:
    http = peer_http({"/api/v1/query": [(200, {"value": 1})]})
    client = _connected_client()
    asyncio.run(client.query("1"))

    asyncio.run(client.close())

    assert client.session is None
    assert not client.is_connected
    assert client.address is None
    assert http.closed
    # The peer is never told about the disconnect
    assert len(http.calls) == 1


def test_peer_response_from_json_handles_missing_fields() -> None:
    resp = PeerResponse.from_json({"value": 3})
    assert resp.value == 3
    assert resp.error_code is None
    assert resp.juice is None
