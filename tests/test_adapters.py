"""
Tests for the external-collaborator adapters: RPC clients, token account
decoding, DexScreener pricing and environment settings.
"""

import base64
import json
import struct
from decimal import Decimal
from unittest.mock import Mock

import base58
import httpx
import pytest

from holder_rewards.config import Settings, http_to_ws
from holder_rewards.errors import ConfigurationError, RpcError
from holder_rewards.pricing import DexScreenerPriceSource
from holder_rewards.rpc import AsyncRpcClient, RpcClient
from holder_rewards.token_accounts import (
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    RpcHolderSource,
    aggregate_holders_from_b64,
    load_excluded_wallets,
    parse_owner_and_amount,
)

OWNER_A = bytes(range(32))
OWNER_B = bytes(range(100, 132))


def token_account(owner: bytes, amount: int) -> str:
    data = b"\x01" * 32 + owner + struct.pack("<Q", amount) + b"\x00" * 93
    return base64.b64encode(data).decode("ascii")


def rpc_handler(results):
    """MockTransport handler answering JSON-RPC by method name."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        result = results[body["method"]]
        if isinstance(result, Exception):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": str(result)}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return handler, seen


# ============================================================================
# RPC
# ============================================================================

class TestRpcClient:
    def test_program_accounts_filters(self):
        handler, seen = rpc_handler(
            {"getProgramAccounts": [{"pubkey": "x", "account": {"data": ["AAAA", "base64"]}}]}
        )
        rpc = RpcClient("https://rpc.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
        assert rpc.get_program_accounts_base64(TOKEN_PROGRAM_ID, "Mint111", True) == ["AAAA"]
        rpc.get_program_accounts_base64(TOKEN_2022_PROGRAM_ID, "Mint111", False)

        classic_filters = seen[0]["params"][1]["filters"]
        t22_filters = seen[1]["params"][1]["filters"]
        assert {"dataSize": 165} in classic_filters
        assert {"dataSize": 165} not in t22_filters
        assert classic_filters[0] == {"memcmp": {"offset": 0, "bytes": "Mint111"}}

    def test_rpc_error(self):
        handler, _ = rpc_handler({"getProgramAccounts": RuntimeError("boom")})
        rpc = RpcClient("https://rpc.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(RpcError):
            rpc.get_program_accounts_base64(TOKEN_PROGRAM_ID, "Mint111", True)

    def test_http_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        rpc = RpcClient("https://rpc.test", client=httpx.Client(transport=transport))
        with pytest.raises(RpcError):
            rpc.get_program_accounts_base64(TOKEN_2022_PROGRAM_ID, "Mint111", False)

    def test_holder_source_close_closes_http_client(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        RpcHolderSource(RpcClient("https://rpc.test", client=client)).close()
        assert client.is_closed


class TestAsyncRpcClient:
    @pytest.mark.asyncio
    async def test_get_balance(self):
        handler, seen = rpc_handler({"getBalance": {"context": {"slot": 1}, "value": 1234}})
        rpc = AsyncRpcClient("https://rpc.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        try:
            assert await rpc.get_balance("Wallet111") == 1234
        finally:
            await rpc.aclose()
        assert seen[0]["params"][0] == "Wallet111"

    @pytest.mark.asyncio
    async def test_history_calls(self):
        handler, seen = rpc_handler(
            {
                "getSignaturesForAddress": [{"signature": "sig1", "err": None}],
                "getTransaction": {"meta": {"err": None}},
            }
        )
        rpc = AsyncRpcClient("https://rpc.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        try:
            assert await rpc.get_signatures_for_address("Wallet111", 10) == [
                {"signature": "sig1", "err": None}
            ]
            assert await rpc.get_transaction("sig1") == {"meta": {"err": None}}
        finally:
            await rpc.aclose()
        assert seen[0]["params"][1]["limit"] == 10
        assert seen[1]["params"][1]["maxSupportedTransactionVersion"] == 0

    @pytest.mark.asyncio
    async def test_error_raises_rpc_error(self):
        handler, _ = rpc_handler({"getBalance": RuntimeError("boom")})
        rpc = AsyncRpcClient("https://rpc.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(RpcError):
            await rpc.get_balance("Wallet111")
        await rpc.aclose()


# ============================================================================
# Token accounts
# ============================================================================

class TestTokenAccounts:
    def test_parse_owner_and_amount(self):
        owner, amount = parse_owner_and_amount(base64.b64decode(token_account(OWNER_A, 42)))
        assert owner == base58.b58encode(OWNER_A).decode("ascii")
        assert amount == 42

    def test_short_data(self):
        assert parse_owner_and_amount(b"\x00" * 71) is None

    def test_aggregate(self):
        balances = aggregate_holders_from_b64(
            [
                token_account(OWNER_A, 10),
                token_account(OWNER_A, 5),
                token_account(OWNER_B, 0),
                base64.b64encode(b"short").decode("ascii"),
            ]
        )
        assert balances == {base58.b58encode(OWNER_A).decode("ascii"): 15}

    def test_holder_source_scans_both_programs(self):
        rpc = Mock()
        rpc.get_program_accounts_base64.side_effect = [
            [token_account(OWNER_B, 7)],
            [token_account(OWNER_A, 3)],
        ]
        snapshot = RpcHolderSource(rpc, mint="Mint111").fetch_snapshot()
        assert snapshot == sorted(
            [
                (base58.b58encode(OWNER_A).decode("ascii"), 3),
                (base58.b58encode(OWNER_B).decode("ascii"), 7),
            ]
        )
        assert rpc.get_program_accounts_base64.call_count == 2

    def test_holder_source_propagates_failure(self):
        rpc = Mock()
        rpc.get_program_accounts_base64.side_effect = RpcError("timeout")
        with pytest.raises(RpcError):
            RpcHolderSource(rpc).fetch_snapshot()

    def test_load_excluded_wallets(self, tmp_path):
        path = tmp_path / "excluded.txt"
        path.write_text("# treasury\nTreasury111 Treasury multisig\n\nVault22222\n", encoding="utf-8")
        assert load_excluded_wallets(str(path)) == {
            "Treasury111": "Treasury multisig",
            "Vault22222": "System exclusion",
        }
        assert load_excluded_wallets(None) == {}


# ============================================================================
# Pricing
# ============================================================================

class TestDexScreenerPrice:
    def source(self, handler):
        return DexScreenerPriceSource("Mint111", client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_most_liquid_pair_wins(self):
        payload = {
            "pairs": [
                {"dexId": "small", "priceUsd": "0.0002", "liquidity": {"usd": 50}},
                {"dexId": "raydium", "priceUsd": "0.000105", "liquidity": {"usd": 90000}},
            ]
        }
        src = self.source(lambda request: httpx.Response(200, json=payload))
        assert src.get_unit_price_usd() == Decimal("0.000105")

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500),
            httpx.Response(200, json={"pairs": None}),
            httpx.Response(200, json={"pairs": [{"priceUsd": "0"}]}),
            httpx.Response(200, json={"pairs": [{"priceUsd": "abc"}]}),
        ],
    )
    def test_failures_fail_closed(self, response):
        src = self.source(lambda request: response)
        with pytest.raises(ConfigurationError):
            src.get_unit_price_usd()


# ============================================================================
# Settings
# ============================================================================

class TestSettings:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for key in ("RPC_URL", "HELIUS_API_KEY", "RPC_WS_URL", "FEE_WALLET",
                    "STORE_DIR", "POLL_INTERVAL_S", "MIN_HOLDERS_FOR_DRAW"):
            monkeypatch.delenv(key, raising=False)

    def test_override_wins(self):
        s = Settings.from_env(rpc_url_override="https://my.rpc/")
        assert s.rpc_url == "https://my.rpc/"
        assert s.ws_url == "wss://my.rpc/"

    def test_helius_key(self, monkeypatch):
        monkeypatch.setenv("HELIUS_API_KEY", "abc")
        s = Settings.from_env()
        assert s.rpc_url == "https://mainnet.helius-rpc.com/?api-key=abc"

    def test_env_values(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "http://localhost:8899")
        monkeypatch.setenv("POLL_INTERVAL_S", "5")
        monkeypatch.setenv("MIN_HOLDERS_FOR_DRAW", "5")
        monkeypatch.setenv("STORE_DIR", "/var/lib/rewards")
        s = Settings.from_env()
        assert s.ws_url == "ws://localhost:8899"
        assert s.poll_interval_s == 5.0
        assert s.min_holders_for_draw == 5
        assert s.store_dir == "/var/lib/rewards"

    def test_missing_rpc(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env()

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "http://localhost:8899")
        monkeypatch.setenv("POLL_INTERVAL_S", "soon")
        with pytest.raises(ConfigurationError):
            Settings.from_env()

    def test_http_to_ws(self):
        assert http_to_ws("https://a/b") == "wss://a/b"
        assert http_to_ws("wss://a") == "wss://a"
