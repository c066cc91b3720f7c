from __future__ import annotations

import os
from dataclasses import dataclass
from dotenv import load_dotenv

from .errors import ConfigurationError
from .project_constants import FEE_WALLET, POLL_INTERVAL_S


def http_to_ws(rpc_url: str) -> str:
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    return rpc_url


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    ws_url: str
    fee_wallet: str = FEE_WALLET
    store_dir: str = "data"
    poll_interval_s: float = POLL_INTERVAL_S
    min_holders_for_draw: int = 1

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        store_dir_override: str | None = None,
    ) -> "Settings":
        load_dotenv()

        # If user provides --rpc-url, trust it.
        rpc_url = (rpc_url_override or "").strip()

        # Otherwise, use RPC_URL from env if present, else build helius url from key.
        if not rpc_url:
            rpc_url = os.getenv("RPC_URL", "").strip()
        if not rpc_url:
            helius_key = os.getenv("HELIUS_API_KEY", "").strip()
            if not helius_key:
                raise ConfigurationError(
                    "Missing HELIUS_API_KEY (or RPC_URL). Put it in .env or export it."
                )
            rpc_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

        ws_url = os.getenv("RPC_WS_URL", "").strip() or http_to_ws(rpc_url)

        try:
            poll_interval_s = float(os.getenv("POLL_INTERVAL_S", "") or POLL_INTERVAL_S)
            min_holders = int(os.getenv("MIN_HOLDERS_FOR_DRAW", "") or 1)
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e
        if poll_interval_s <= 0:
            raise ConfigurationError("POLL_INTERVAL_S must be positive.")

        return Settings(
            rpc_url=rpc_url,
            ws_url=ws_url,
            fee_wallet=os.getenv("FEE_WALLET", "").strip() or FEE_WALLET,
            store_dir=store_dir_override or os.getenv("STORE_DIR", "").strip() or "data",
            poll_interval_s=poll_interval_s,
            min_holders_for_draw=max(1, min_holders),
        )
