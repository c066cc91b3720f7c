from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Callable

from .errors import LimitExceededError
from .models import Distribution, to_sol, utcnow
from .project_constants import BURN_RATIO, MAX_DAILY_REWARD, REWARD_RATIO

log = logging.getLogger(__name__)


def _share(amount: int, ratio: Decimal) -> int:
    return int((Decimal(amount) * ratio).to_integral_value(rounding=ROUND_FLOOR))


class DistributionSplitter:
    """Splits a confirmed fee (lamports) into reward, burn and ops shares."""

    def __init__(
        self,
        reward_ratio: Decimal = REWARD_RATIO,
        burn_ratio: Decimal = BURN_RATIO,
        max_amount: int = MAX_DAILY_REWARD,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if reward_ratio < 0 or burn_ratio < 0 or reward_ratio + burn_ratio > 1:
            raise ValueError("Ratios must be non-negative and sum to at most 1")
        self.reward_ratio = reward_ratio
        self.burn_ratio = burn_ratio
        self.max_amount = max_amount
        self._clock = clock

    def split(self, delta: int, source_tx_signature: str = "") -> Distribution:
        if delta > self.max_amount:
            raise LimitExceededError(
                f"Fee amount {to_sol(delta)} SOL exceeds safety limit "
                f"{to_sol(self.max_amount)} SOL; manual review required"
            )
        if delta <= 0:
            raise ValueError(f"Fee amount must be positive, got {delta}")

        reward = _share(delta, self.reward_ratio)
        burn = _share(delta, self.burn_ratio)
        # Ops absorbs the rounding remainder so the shares sum to delta.
        ops = delta - reward - burn

        log.info(
            "Distribution of %s SOL: reward %s, burn %s, ops %s",
            to_sol(delta),
            to_sol(reward),
            to_sol(burn),
            to_sol(ops),
        )
        return Distribution(
            total_fee_amount=delta,
            reward_amount=reward,
            burn_amount=burn,
            ops_amount=ops,
            source_tx_signature=source_tx_signature,
            timestamp=self._clock(),
        )
