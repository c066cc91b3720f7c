from __future__ import annotations

import logging
import secrets
from bisect import bisect_left
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Tuple

from .errors import NoEligibleEntriesError
from .models import DrawResult, EntryRange, HolderRecord, short_address, utcnow
from .project_constants import TOKEN_DECIMALS, TOKEN_MINT

log = logging.getLogger(__name__)

# Returns a uniform integer in [0, n). Production uses secrets.randbelow.
RandBelow = Callable[[int], int]


def to_tokens(raw_amount: int) -> float:
    return round(raw_amount / (10**TOKEN_DECIMALS), 1)


def win_probability(entries: int, total_entries: int) -> float:
    """Chance of winning, as a percentage."""
    if total_entries <= 0:
        return 0.0
    return round(entries / total_entries * 100, 2)


def build_ranges(ledger: List[HolderRecord]) -> Tuple[List[EntryRange], int]:
    """
    Assign each holder a contiguous block of entry numbers starting at 1.

    Holders are ordered by address (never by balance) so the same ledger
    always produces the same ranges. Records contributing no entries get
    no range.
    """
    ranges: List[EntryRange] = []
    cursor = 0
    seen = set()
    for rec in sorted(ledger, key=lambda r: r.address):
        if rec.address in seen:
            raise RuntimeError(f"Duplicate address in ledger: {rec.address}")
        seen.add(rec.address)
        if rec.excluded:
            raise RuntimeError(
                f"Excluded address {rec.address} reached the draw; ledger was not filtered."
            )
        entries = rec.draw_entries
        if entries <= 0:
            continue
        ranges.append(EntryRange(rec.address, entries, cursor + 1, cursor + entries))
        cursor += entries
    return ranges, cursor


def find_winner(ranges: List[EntryRange], winning_number: int) -> EntryRange:
    ends = [r.end_index for r in ranges]
    idx = bisect_left(ends, winning_number)
    if winning_number < 1 or idx >= len(ranges):
        raise RuntimeError("Winning number out of range (unexpected).")
    found = ranges[idx]
    if not found.start_index <= winning_number <= found.end_index:
        raise RuntimeError("Entry ranges are not contiguous (unexpected).")
    return found


def draw_winning_number(total_entries: int, randbelow: RandBelow = secrets.randbelow) -> int:
    number = randbelow(total_entries) + 1
    if not 1 <= number <= total_entries:
        raise RuntimeError(f"Random source returned {number - 1} for n={total_entries}")
    return number


def build_audit(result: DrawResult, ranges: List[EntryRange]) -> Dict[str, Any]:
    return {
        "metadata": {
            "tool": "holder-rewards",
            "version": "1.0.0",
            "generated_at_utc": utcnow().isoformat(),
            "token_mint": TOKEN_MINT,
            "random_source": "secrets.randbelow",
            "total_entries": result.total_entries,
            "total_eligible_holders": result.total_eligible_holders,
            "winning_number": result.winning_number,
        },
        "result": result.to_dict(),
        # Entrants in deterministic order with ranges so anyone can re-run.
        "all_entrants": [
            {
                "address": r.address,
                "entries": r.entries,
                "start_index": r.start_index,
                "end_index": r.end_index,
            }
            for r in ranges
        ],
    }


class DrawEngine:
    """
    Picks one winner from a filtered ledger.

    Range construction is deterministic; the winning number comes from a
    CSPRNG. Inject ``randbelow`` only in tests.
    """

    def __init__(
        self,
        randbelow: RandBelow = secrets.randbelow,
        min_holders: int = 1,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._randbelow = randbelow
        self._min_holders = min_holders
        self._clock = clock

    def run(
        self, ledger: List[HolderRecord], prize_amount: Decimal
    ) -> Tuple[DrawResult, List[EntryRange]]:
        prize = Decimal(prize_amount)
        if prize <= 0:
            raise ValueError(f"Prize amount must be positive, got {prize_amount}")

        ranges, total_entries = build_ranges(ledger)
        if not ranges or total_entries == 0:
            raise NoEligibleEntriesError("No eligible entries in the draw pool.")
        if len(ranges) < self._min_holders:
            raise NoEligibleEntriesError(
                f"Not enough eligible holders ({len(ranges)} < {self._min_holders})"
            )

        log.info("Eligible entrants : %d", len(ranges))
        log.info("Total entries     : %d", total_entries)

        winning_number = draw_winning_number(total_entries, self._randbelow)
        winner = find_winner(ranges, winning_number)

        log.info(
            "Winner %s with entry #%d of %d (%d entries, %.2f%% chance)",
            short_address(winner.address),
            winning_number,
            total_entries,
            winner.entries,
            win_probability(winner.entries, total_entries),
        )

        result = DrawResult(
            winning_number=winning_number,
            winner_address=winner.address,
            winner_entries=winner.entries,
            total_entries=total_entries,
            total_eligible_holders=len(ranges),
            prize_amount=prize,
            timestamp=self._clock(),
        )
        return result, ranges
