from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

from .errors import ConfigurationError
from .project_constants import TOKEN_MINT

log = logging.getLogger(__name__)

DEXSCREENER_URL = "https://api.dexscreener.com/latest/dex/tokens/{mint}"


def _liquidity(pair: Dict[str, Any]) -> float:
    try:
        return float((pair.get("liquidity") or {}).get("usd") or 0)
    except (TypeError, ValueError):
        return 0.0


class DexScreenerPriceSource:
    """
    Spot USD price from the most liquid DexScreener pair.

    No fallback price: any failure raises ConfigurationError.
    """

    def __init__(
        self,
        mint: str = TOKEN_MINT,
        timeout_s: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.mint = mint
        self.client = client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    def get_unit_price_usd(self) -> Decimal:
        url = DEXSCREENER_URL.format(mint=self.mint)
        try:
            resp = self.client.get(url)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ConfigurationError(f"Price lookup failed: {e}") from e

        pairs = [p for p in (data.get("pairs") or []) if p.get("priceUsd")]
        if not pairs:
            raise ConfigurationError(f"No priced pairs for {self.mint}")

        best = max(pairs, key=_liquidity)
        try:
            price = Decimal(str(best["priceUsd"]))
        except InvalidOperation as e:
            raise ConfigurationError(f"Unparseable price {best['priceUsd']!r}") from e
        if not price.is_finite() or price <= 0:
            raise ConfigurationError(f"Invalid price {price} from DexScreener")

        log.info("Token price: $%s (%s)", price, best.get("dexId", "unknown dex"))
        return price
