from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .errors import ConflictError, ForbiddenError
from .models import ExclusionRecord, HolderRecord, short_address, utcnow
from .project_constants import SYSTEM_ACTOR

log = logging.getLogger(__name__)


class ExclusionLog(Protocol):
    def append_exclusion(self, record: ExclusionRecord) -> None: ...

    def load_exclusions(self) -> List[ExclusionRecord]: ...


class ExclusionManager:
    """
    Tracks which addresses may not win.

    History is append-only: lifting an exclusion appends an inactive record
    rather than deleting anything. The latest record per address decides
    whether it is currently excluded.
    """

    def __init__(
        self,
        log_store: Optional[ExclusionLog] = None,
        clock: Callable[[], datetime] = utcnow,
        system_addresses: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._store = log_store
        self._clock = clock
        self._history: List[ExclusionRecord] = []
        self._active: Dict[str, ExclusionRecord] = {}
        # Addresses no admin may ever include, whoever excluded them.
        self._system: Dict[str, str] = dict(system_addresses or {})
        if log_store is not None:
            for record in log_store.load_exclusions():
                self._apply(record)

    def _apply(self, record: ExclusionRecord) -> None:
        self._history.append(record)
        if record.active:
            self._active[record.address] = record
        else:
            self._active.pop(record.address, None)

    def _record(self, record: ExclusionRecord) -> None:
        if self._store is not None:
            self._store.append_exclusion(record)
        self._apply(record)

    def active_exclusion(self, address: str) -> Optional[ExclusionRecord]:
        return self._active.get(address)

    def is_excluded(self, address: str) -> bool:
        return address in self._active

    def list_exclusions(self) -> List[ExclusionRecord]:
        return sorted(self._active.values(), key=lambda r: r.address)

    def history(self) -> List[ExclusionRecord]:
        return list(self._history)

    def exclude(self, address: str, reason: str, applied_by: str) -> ExclusionRecord:
        existing = self._active.get(address)
        if existing is not None:
            raise ConflictError(
                f"{short_address(address)} is already excluded "
                f"({existing.reason}, by {existing.applied_by})"
            )
        record = ExclusionRecord(
            address=address,
            reason=reason,
            applied_by=applied_by,
            applied_at=self._clock(),
            active=True,
        )
        self._record(record)
        log.info("Excluded %s (%s) by %s", short_address(address), reason, applied_by)
        return record

    def include(self, address: str, requested_by: str) -> ExclusionRecord:
        existing = self._active.get(address)
        if existing is None:
            raise ConflictError(f"{short_address(address)} is not excluded")
        is_system = existing.applied_by == SYSTEM_ACTOR or address in self._system
        if is_system and requested_by != SYSTEM_ACTOR:
            raise ForbiddenError(
                f"{short_address(address)} is a system exclusion ({existing.reason}); "
                "it cannot be lifted by an admin"
            )
        record = ExclusionRecord(
            address=address,
            reason=existing.reason,
            applied_by=requested_by,
            applied_at=self._clock(),
            active=False,
        )
        self._record(record)
        log.info("Included %s back in draws by %s", short_address(address), requested_by)
        return record

    def apply_system_exclusions(self, known_system_addresses: Mapping[str, str]) -> int:
        """
        Reconcile the fixed system set. Every address in it ends up with an
        active SYSTEM exclusion; an admin exclusion of a system address is
        superseded (lifted, then re-applied as SYSTEM). Returns how many
        exclusions were written or taken over.
        """
        self._system.update(known_system_addresses)
        applied = 0
        for address in sorted(known_system_addresses):
            reason = known_system_addresses[address]
            existing = self._active.get(address)
            if existing is not None:
                if existing.applied_by == SYSTEM_ACTOR:
                    continue
                log.info(
                    "Taking over admin exclusion of system wallet %s (was %s by %s)",
                    short_address(address),
                    existing.reason,
                    existing.applied_by,
                )
                self._record(
                    replace(existing, applied_by=SYSTEM_ACTOR, applied_at=self._clock(), active=False)
                )
            self.exclude(address, reason, SYSTEM_ACTOR)
            applied += 1
        log.info(
            "System exclusions reconciled: %d applied, %d already in place",
            applied,
            len(known_system_addresses) - applied,
        )
        return applied

    def filter(self, ledger: List[HolderRecord]) -> Tuple[List[HolderRecord], List[HolderRecord]]:
        """
        Returns (draw-eligible ledger, full annotated ledger). Input order is
        preserved in both.
        """
        eligible: List[HolderRecord] = []
        annotated: List[HolderRecord] = []
        for rec in ledger:
            excl = self._active.get(rec.address)
            if excl is None:
                clean = replace(rec, excluded=False, exclusion_reason=None, excluded_by=None)
                eligible.append(clean)
                annotated.append(clean)
            else:
                annotated.append(
                    replace(
                        rec,
                        excluded=True,
                        exclusion_reason=excl.reason,
                        excluded_by=excl.applied_by,
                    )
                )
        return eligible, annotated
