"""Tests for the chain REST client."""

from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from ledgerwatch.clients.chain import ChainDataClient
from ledgerwatch.config_loader import ChainConfig, EndpointsConfig

REST = "https://rest.test"
AGGREGATOR = "https://agg.test"
ORACLE = "https://oracle.test/simple/price"


def make_client(handler) -> ChainDataClient:
    endpoints = EndpointsConfig(
        rest_endpoint=REST,
        aggregator_host=AGGREGATOR,
        price_oracle_url=ORACLE,
        price_oracle_coin_id="bzedge",
    )
    chain = ChainConfig(decimals={"ibc/WETH": 18})
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChainDataClient(endpoints, chain, client=http)


def routes(table: dict[str, object]):
    """Map URL paths to JSON bodies; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        if key in table:
            return httpx.Response(200, json=table[key])
        return httpx.Response(404, json={"code": 5, "message": "not found"})

    return handler


class TestBank:
    @pytest.mark.asyncio
    async def test_fetch_balances(self):
        client = make_client(
            routes(
                {
                    f"{REST}/cosmos/bank/v1beta1/spendable_balances/bze1me": {
                        "balances": [
                            {"denom": "ubze", "amount": "1500000"},
                            {"denom": "ulp_1", "amount": "7"},
                        ],
                        "pagination": {"next_key": None, "total": "2"},
                    }
                }
            )
        )

        balances = await client.fetch_balances("bze1me")

        assert [(b.denom, b.amount) for b in balances] == [
            ("ubze", Decimal("1500000")),
            ("ulp_1", Decimal("7")),
        ]

    @pytest.mark.asyncio
    async def test_fetch_balances_without_address_skips_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        client = make_client(handler)
        assert await client.fetch_balances("") == []

    @pytest.mark.asyncio
    async def test_fetch_assets_assigns_decimals(self):
        client = make_client(
            routes(
                {
                    f"{REST}/cosmos/bank/v1beta1/supply": {
                        "supply": [
                            {"denom": "ubze", "amount": "100"},
                            {"denom": "ibc/WETH", "amount": "5"},
                            {"denom": "ulp_1", "amount": "9"},
                        ]
                    }
                }
            )
        )

        assets = {a.denom: a for a in await client.fetch_assets()}

        assert assets["ubze"].decimals == 6
        assert assets["ibc/WETH"].decimals == 18
        assert assets["ulp_1"].decimals == 12
        assert assets["ubze"].supply == Decimal("100")


class TestTradeModule:
    @pytest.mark.asyncio
    async def test_fetch_markets(self):
        client = make_client(
            routes(
                {
                    f"{REST}/bze/tradebin/all_markets": {
                        "market": [{"base": "ubze", "quote": "uusdc", "creator": "bze1c"}]
                    }
                }
            )
        )

        markets = await client.fetch_markets()

        assert [m.market_id for m in markets] == ["ubze/uusdc"]

    @pytest.mark.asyncio
    async def test_fetch_trade_history_sends_market_and_limit(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(
                200,
                json={
                    "list": [
                        {
                            "market_id": "ubze/uusdc",
                            "price": "0.0021",
                            "amount": "1000",
                            "executed_at": "1700000000",
                        }
                    ]
                },
            )

        client = make_client(handler)
        trades = await client.fetch_trade_history("ubze/uusdc", limit=1)

        assert seen["market"] == "ubze/uusdc"
        assert seen["pagination.limit"] == "1"
        assert trades[0].price == Decimal("0.0021")
        assert trades[0].executed_at.year == 2023

    @pytest.mark.asyncio
    async def test_fetch_liquidity_pools_skips_malformed(self):
        client = make_client(
            routes(
                {
                    f"{REST}/bze/tradebin/all_liquidity_pools": {
                        "list": [
                            {
                                "id": "ubze_uusdc",
                                "base": "ubze",
                                "quote": "uusdc",
                                "reserve_base": "10",
                                "reserve_quote": "20",
                            },
                            {"id": "broken"},
                        ]
                    }
                }
            )
        )

        pools = await client.fetch_liquidity_pools()

        assert len(pools) == 1
        assert pools[0].reserve_quote == Decimal("20")


class TestAggregatorAndOracle:
    @pytest.mark.asyncio
    async def test_fetch_tickers(self):
        client = make_client(
            routes(
                {
                    f"{AGGREGATOR}/api/dex/tickers": [
                        {
                            "base": "ibc/ED07",
                            "quote": "ubze",
                            "market_id": "ibc/ED07/ubze",
                            "last_price": 190,
                            "base_volume": 346.014664,
                            "change": -13.64,
                        }
                    ]
                }
            )
        )

        tickers = await client.fetch_tickers()

        assert tickers[0].market_id == "ibc/ED07/ubze"
        assert tickers[0].last_price == Decimal("190")
        assert tickers[0].change == Decimal("-13.64")

    @pytest.mark.asyncio
    async def test_fetch_tickers_http_error_returns_empty(self):
        client = make_client(lambda request: httpx.Response(503))
        assert await client.fetch_tickers() == []

    @pytest.mark.asyncio
    async def test_fetch_native_usd_price(self):
        client = make_client(routes({ORACLE: {"bzedge": {"usd": 0.00123}}}))
        assert await client.fetch_native_usd_price() == Decimal("0.00123")

    @pytest.mark.asyncio
    async def test_oracle_network_error_returns_zero(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = make_client(handler)
        assert await client.fetch_native_usd_price() == Decimal("0")

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = ChainDataClient(EndpointsConfig(), ChainConfig(), client=http)

        await client.close()

        assert not http.is_closed
        await http.aclose()


class TestMalformedPayloads:
    """Unexpected JSON shapes degrade to empty results, never exceptions."""

    @pytest.mark.asyncio
    async def test_list_instead_of_object(self):
        client = make_client(lambda request: httpx.Response(200, json=[]))

        assert await client.fetch_balances("bze1me") == []
        assert await client.fetch_assets() == []
        assert await client.fetch_markets() == []
        assert await client.fetch_trade_history("ubze/uusdc") == []
        assert await client.fetch_liquidity_pools() == []
        assert await client.fetch_native_usd_price() == Decimal("0")

    @pytest.mark.asyncio
    async def test_non_object_entries_are_skipped(self):
        client = make_client(
            routes(
                {
                    f"{REST}/cosmos/bank/v1beta1/supply": {
                        "supply": ["100ubze", None, {"denom": "ubze", "amount": "100"}]
                    },
                    f"{REST}/bze/tradebin/all_markets": {"market": [7, "ubze/uusdc"]},
                }
            )
        )

        assets = await client.fetch_assets()

        assert [a.denom for a in assets] == ["ubze"]
        assert await client.fetch_markets() == []

    @pytest.mark.asyncio
    async def test_null_and_scalar_lists(self):
        client = make_client(
            routes(
                {
                    f"{REST}/bze/tradebin/all_liquidity_pools": {"list": None},
                    f"{REST}/bze/tradebin/market_history": {"list": "oops"},
                    f"{REST}/cosmos/bank/v1beta1/spendable_balances/bze1me": {"balances": 3},
                    ORACLE: {"bzedge": 0.5},
                }
            )
        )

        assert await client.fetch_liquidity_pools() == []
        assert await client.fetch_trade_history("ubze/uusdc") == []
        assert await client.fetch_balances("bze1me") == []
        assert await client.fetch_native_usd_price() == Decimal("0")

    @pytest.mark.asyncio
    async def test_tickers_skip_non_object_items(self):
        client = make_client(
            routes(
                {
                    f"{AGGREGATOR}/api/dex/tickers": [
                        "ubze/uusdc",
                        None,
                        {"base": "ubze", "quote": "uusdc", "last_price": "0.5"},
                    ]
                }
            )
        )

        tickers = await client.fetch_tickers()

        assert [t.market_id for t in tickers] == ["ubze/uusdc"]
