from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from .errors import RpcError


def _payload(method: str, params: List[Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}


def _unwrap(resp: httpx.Response) -> Dict[str, Any]:
    try:
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise RpcError(f"RPC request failed: {e}") from e
    if "error" in data:
        raise RpcError(f"RPC error: {data['error']}")
    return data


def _program_accounts_params(program_id: str, mint: str, classic: bool) -> List[Any]:
    filters: List[Dict[str, Any]] = [{"memcmp": {"offset": 0, "bytes": mint}}]
    if classic:
        filters.append({"dataSize": 165})
    return [program_id, {"encoding": "base64", "filters": filters}]


def _signatures_params(address: str, limit: int) -> List[Any]:
    return [address, {"limit": limit, "commitment": "confirmed"}]


def _transaction_params(signature: str) -> List[Any]:
    return [
        signature,
        {
            "encoding": "json",
            "commitment": "confirmed",
            "maxSupportedTransactionVersion": 0,
        },
    ]


class RpcClient:
    """Blocking Solana JSON-RPC client, used for holder snapshots."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        try:
            resp = self.client.post(self.rpc_url, json=_payload(method, params))
        except httpx.HTTPError as e:
            raise RpcError(f"{method} failed: {e}") from e
        return _unwrap(resp)

    def get_program_accounts_base64(
        self,
        program_id: str,
        mint: str,
        classic_token_program: bool,
    ) -> List[str]:
        """
        Returns base64 strings for account data.
        Note: For classic SPL Token accounts, we enforce dataSize=165.
        Token-2022 accounts can vary due to extensions.
        """
        data = self._post(
            "getProgramAccounts",
            _program_accounts_params(program_id, mint, classic_token_program),
        )
        results = data.get("result") or []
        # item['account']['data'] is [base64_str, "base64"]
        return [item["account"]["data"][0] for item in results]


class AsyncRpcClient:
    """Non-blocking counterpart used by the fee monitor."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = client or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        try:
            resp = await self.client.post(self.rpc_url, json=_payload(method, params))
        except httpx.HTTPError as e:
            raise RpcError(f"{method} failed: {e}") from e
        return _unwrap(resp)

    async def get_balance(self, address: str) -> int:
        data = await self._post("getBalance", [address, {"commitment": "confirmed"}])
        return int(data["result"]["value"])

    async def get_signatures_for_address(self, address: str, limit: int) -> List[Dict[str, Any]]:
        data = await self._post("getSignaturesForAddress", _signatures_params(address, limit))
        return list(data.get("result") or [])

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        data = await self._post("getTransaction", _transaction_params(signature))
        return data.get("result")
