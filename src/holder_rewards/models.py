from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .project_constants import LAMPORTS_PER_SOL


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def short_address(address: str) -> str:
    if len(address) < 8:
        return address
    return f"{address[:4]}...{address[-4:]}"


def to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


class Tier(str, Enum):
    NONE = "None"
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


@dataclass(frozen=True)
class Membership:
    """Paid (VIP) membership as supplied by the membership store."""

    vip_tier: str = "None"
    multiplier: int = 1
    baseline_entries: int = 0
    expires_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at > now


NO_MEMBERSHIP = Membership()


@dataclass(frozen=True)
class HolderRecord:
    address: str
    raw_balance: int
    usd_value: Decimal
    tier: Tier
    multiplier: int
    base_entries: int
    baseline_entries: int
    final_entries: int
    is_eligible: bool
    vip_tier: str = "None"
    excluded: bool = False
    exclusion_reason: Optional[str] = None
    excluded_by: Optional[str] = None

    @property
    def draw_entries(self) -> int:
        """Entries this record actually contributes to a draw."""
        if self.excluded or not self.is_eligible:
            return 0
        return self.final_entries

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["usd_value"] = str(self.usd_value)
        d["tier"] = self.tier.value
        return d

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "HolderRecord":
        return HolderRecord(
            address=d["address"],
            raw_balance=int(d["raw_balance"]),
            usd_value=Decimal(d["usd_value"]),
            tier=Tier(d["tier"]),
            multiplier=int(d["multiplier"]),
            base_entries=int(d["base_entries"]),
            baseline_entries=int(d.get("baseline_entries", 0)),
            final_entries=int(d["final_entries"]),
            is_eligible=bool(d["is_eligible"]),
            vip_tier=d.get("vip_tier", "None"),
            excluded=bool(d.get("excluded", False)),
            exclusion_reason=d.get("exclusion_reason"),
            excluded_by=d.get("excluded_by"),
        )


@dataclass(frozen=True)
class ExclusionRecord:
    address: str
    reason: str
    applied_by: str
    applied_at: datetime
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "reason": self.reason,
            "applied_by": self.applied_by,
            "applied_at": self.applied_at.isoformat(),
            "active": self.active,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ExclusionRecord":
        return ExclusionRecord(
            address=d["address"],
            reason=d["reason"],
            applied_by=d["applied_by"],
            applied_at=datetime.fromisoformat(d["applied_at"]),
            active=bool(d["active"]),
        )


@dataclass(frozen=True)
class EntryRange:
    address: str
    entries: int
    start_index: int
    end_index: int  # inclusive


@dataclass(frozen=True)
class DrawResult:
    winning_number: int
    winner_address: str
    winner_entries: int
    total_entries: int
    total_eligible_holders: int
    prize_amount: Decimal
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winning_number": self.winning_number,
            "winner_address": self.winner_address,
            "winner_entries": self.winner_entries,
            "total_entries": self.total_entries,
            "total_eligible_holders": self.total_eligible_holders,
            "prize_amount": str(self.prize_amount),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Distribution:
    """One confirmed fee event split into its three shares. Amounts in lamports."""

    total_fee_amount: int
    reward_amount: int
    burn_amount: int
    ops_amount: int
    source_tx_signature: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass
class SyncStats:
    holders_scanned: int = 0
    dust_dropped: int = 0
    records_written: int = 0
    eligible_holders: int = 0
    excluded_holders: int = 0
    total_entries: int = 0
    vip_members: int = 0
    unit_price_usd: Decimal = Decimal(0)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["unit_price_usd"] = str(self.unit_price_usd)
        return d
