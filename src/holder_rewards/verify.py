from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict

from .draw import build_ranges, find_winner
from .errors import AuditMismatchError
from .models import HolderRecord, Tier


def _entrant_record(e: Dict[str, Any]) -> HolderRecord:
    # Only address and entry count matter for range construction.
    entries = int(e["entries"])
    return HolderRecord(
        address=e["address"],
        raw_balance=0,
        usd_value=Decimal(0),
        tier=Tier.NONE,
        multiplier=1,
        base_entries=entries,
        baseline_entries=0,
        final_entries=entries,
        is_eligible=True,
    )


def verify_audit(audit_path: str) -> Dict[str, Any]:
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)

    meta = audit["metadata"]
    total_expected = int(meta["total_entries"])
    winning_number = int(meta["winning_number"])

    entrants = audit["all_entrants"]
    # Recreate ranges from stored entrants (deterministic)
    ranges, total = build_ranges([_entrant_record(e) for e in entrants])
    if total != total_expected:
        raise AuditMismatchError(
            f"Total entries mismatch: audit={total_expected} recomputed={total}"
        )

    if len(ranges) != len(entrants):
        raise AuditMismatchError(
            f"Entrant count mismatch: audit={len(entrants)} recomputed={len(ranges)}"
        )

    for stored, rebuilt in zip(entrants, ranges):
        if (int(stored["start_index"]), int(stored["end_index"])) != (
            rebuilt.start_index,
            rebuilt.end_index,
        ):
            raise AuditMismatchError(f"Range mismatch for {rebuilt.address}")

    if not 1 <= winning_number <= total:
        raise AuditMismatchError(
            f"Winning number {winning_number} outside 1..{total}"
        )

    winner = find_winner(ranges, winning_number)
    winner_expected = audit["result"]["winner_address"]
    if winner.address != winner_expected:
        raise AuditMismatchError(
            f"Winner mismatch: audit={winner_expected} recomputed={winner.address}"
        )

    return {
        "ok": True,
        "winner": winner.address,
        "winning_number": winning_number,
        "total_entries": total,
        "winner_entries": winner.entries,
    }
