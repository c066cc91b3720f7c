"""
Entry ledger: turn a raw holder snapshot into HolderRecords.

Pure functions only. Nothing here knows about exclusions; the ledger is
annotated later by the ExclusionManager.

    usd_value     = raw_balance / 10**decimals * unit_price
    base_entries  = floor(usd_value / ENTRY_UNIT_USD)
    final_entries = (base_entries + membership baseline) * multiplier
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .models import NO_MEMBERSHIP, HolderRecord, Membership, Tier, utcnow
from .project_constants import (
    ENTRY_UNIT_USD,
    MIN_ELIGIBLE_USD,
    MIN_RAW_BALANCE,
    TIER_THRESHOLDS,
    TOKEN_DECIMALS,
    VIP_MULTIPLIERS,
)

log = logging.getLogger(__name__)

_TIER_ORDER = [Tier.NONE, Tier.BRONZE, Tier.SILVER, Tier.GOLD]


def compute_tier(usd_value: Decimal) -> Tier:
    if usd_value >= TIER_THRESHOLDS["Gold"]:
        return Tier.GOLD
    if usd_value >= TIER_THRESHOLDS["Silver"]:
        return Tier.SILVER
    if usd_value >= TIER_THRESHOLDS["Bronze"]:
        return Tier.BRONZE
    return Tier.NONE


def resolve_membership(membership: Optional[Membership], now: datetime) -> Membership:
    """Expired or missing memberships count as no membership at all."""
    if membership is None or not membership.is_active(now):
        return NO_MEMBERSHIP
    multiplier = VIP_MULTIPLIERS.get(membership.vip_tier, membership.multiplier)
    return Membership(
        vip_tier=membership.vip_tier,
        multiplier=max(1, int(multiplier)),
        baseline_entries=max(0, int(membership.baseline_entries)),
        expires_at=membership.expires_at,
    )


def check_unit_price(unit_price: Optional[Decimal]) -> Decimal:
    if unit_price is None:
        raise ConfigurationError("Token price unavailable; refusing to compute entries.")
    price = Decimal(unit_price)
    if not price.is_finite() or price <= 0:
        raise ConfigurationError(f"Invalid token price: {unit_price!r}")
    return price


def build_record(
    address: str,
    raw_balance: int,
    unit_price: Decimal,
    membership: Membership = NO_MEMBERSHIP,
    decimals: int = TOKEN_DECIMALS,
) -> HolderRecord:
    usd_value = Decimal(raw_balance) / (Decimal(10) ** decimals) * unit_price
    # Floor, never round: rounding up would mint entries out of nothing.
    base_entries = int(usd_value // ENTRY_UNIT_USD)
    final_entries = (base_entries + membership.baseline_entries) * membership.multiplier
    return HolderRecord(
        address=address,
        raw_balance=int(raw_balance),
        usd_value=usd_value,
        tier=compute_tier(usd_value),
        multiplier=membership.multiplier,
        base_entries=base_entries,
        baseline_entries=membership.baseline_entries,
        final_entries=max(0, final_entries),
        is_eligible=usd_value >= MIN_ELIGIBLE_USD,
        vip_tier=membership.vip_tier,
    )


def build_ledger(
    snapshot: Iterable[Tuple[str, int]],
    unit_price: Optional[Decimal],
    memberships: Optional[Mapping[str, Membership]] = None,
    decimals: int = TOKEN_DECIMALS,
    min_raw_balance: int = MIN_RAW_BALANCE,
    now: Optional[datetime] = None,
) -> Tuple[List[HolderRecord], int]:
    """
    Returns (records sorted by address, number of dust balances dropped).
    Raises ConfigurationError if the price is missing or nonsensical.
    """
    price = check_unit_price(unit_price)
    memberships = memberships or {}
    now = now or utcnow()

    balances: Dict[str, int] = {}
    for addr, bal in snapshot:
        balances[addr] = balances.get(addr, 0) + int(bal)

    records: List[HolderRecord] = []
    dropped = 0
    for addr in sorted(balances):
        bal = balances[addr]
        if bal < min_raw_balance:
            dropped += 1
            continue
        membership = resolve_membership(memberships.get(addr), now)
        records.append(build_record(addr, bal, price, membership, decimals))

    log.debug("Ledger built: %d records, %d dust dropped", len(records), dropped)
    return records, dropped


def next_tier_requirement(tier: Tier, unit_price: Decimal) -> Optional[Dict[str, object]]:
    """USD and tokens needed to reach the next tier, or None at the top."""
    idx = _TIER_ORDER.index(tier)
    if idx + 1 >= len(_TIER_ORDER) or unit_price <= 0:
        return None
    nxt = _TIER_ORDER[idx + 1]
    usd_needed = TIER_THRESHOLDS[nxt.value]
    return {
        "tier": nxt.value,
        "usd_needed": usd_needed,
        "tokens_needed": math.ceil(usd_needed / unit_price),
    }
