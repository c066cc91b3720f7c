"""
Tests for holder_rewards/exclusions.py
"""

from decimal import Decimal

import pytest

from holder_rewards.errors import ConflictError, ForbiddenError
from holder_rewards.exclusions import ExclusionManager
from holder_rewards.models import HolderRecord, Tier
from holder_rewards.project_constants import SYSTEM_ACTOR
from holder_rewards.store import JsonStore

SYSTEM_SET = {
    "DevWallet1": "Dev Wallet",
    "AmmPool111": "Bonding Curve AMM",
    "LockedVlt1": "Locked Tokens Account",
}


def holder(address: str, entries: int) -> HolderRecord:
    return HolderRecord(
        address=address,
        raw_balance=entries * 10_000_000_000,
        usd_value=Decimal(entries * 10),
        tier=Tier.BRONZE,
        multiplier=1,
        base_entries=entries,
        baseline_entries=0,
        final_entries=entries,
        is_eligible=True,
    )


@pytest.fixture
def manager():
    return ExclusionManager()


# ============================================================================
# exclude / include
# ============================================================================

class TestExcludeInclude:
    def test_exclude_creates_active_record(self, manager):
        rec = manager.exclude("Whale1111", "Team wallet", "Admin1")
        assert rec.active
        assert rec.applied_by == "Admin1"
        assert manager.is_excluded("Whale1111")

    def test_duplicate_exclusion_conflicts(self, manager):
        manager.exclude("Whale1111", "Team wallet", "Admin1")
        with pytest.raises(ConflictError):
            manager.exclude("Whale1111", "Another reason", "Admin2")

    def test_include_keeps_history(self, manager):
        manager.exclude("Whale1111", "Team wallet", "Admin1")
        rec = manager.include("Whale1111", "Admin2")
        assert not rec.active
        assert not manager.is_excluded("Whale1111")
        assert len(manager.history()) == 2

    def test_can_exclude_again_after_include(self, manager):
        manager.exclude("Whale1111", "Team wallet", "Admin1")
        manager.include("Whale1111", "Admin1")
        manager.exclude("Whale1111", "Sybil", "Admin1")
        assert manager.active_exclusion("Whale1111").reason == "Sybil"

    def test_include_unknown_address_conflicts(self, manager):
        with pytest.raises(ConflictError):
            manager.include("Nobody111", "Admin1")

    def test_admin_cannot_lift_system_exclusion(self, manager):
        manager.exclude("DevWallet1", "Dev Wallet", SYSTEM_ACTOR)
        with pytest.raises(ForbiddenError):
            manager.include("DevWallet1", "Admin1")
        assert manager.is_excluded("DevWallet1")

    def test_system_can_lift_system_exclusion(self, manager):
        manager.exclude("DevWallet1", "Dev Wallet", SYSTEM_ACTOR)
        manager.include("DevWallet1", SYSTEM_ACTOR)
        assert not manager.is_excluded("DevWallet1")


# ============================================================================
# System exclusions
# ============================================================================

class TestApplySystemExclusions:
    def test_idempotent(self, manager):
        assert manager.apply_system_exclusions(SYSTEM_SET) == 3
        assert manager.apply_system_exclusions(SYSTEM_SET) == 0

        active = manager.list_exclusions()
        assert sorted(r.address for r in active) == sorted(SYSTEM_SET)
        assert all(r.applied_by == SYSTEM_ACTOR for r in active)
        assert len(manager.history()) == 3

    def test_admin_exclusion_of_system_wallet_taken_over(self, manager):
        manager.exclude("AmmPool111", "Flagged early", "Admin1")

        assert manager.apply_system_exclusions(SYSTEM_SET) == 3

        active = manager.active_exclusion("AmmPool111")
        assert active.applied_by == SYSTEM_ACTOR
        assert active.reason == "Bonding Curve AMM"
        assert len(manager.list_exclusions()) == 3
        # admin record, its lift, then the SYSTEM record, plus two others
        assert len(manager.history()) == 5
        with pytest.raises(ForbiddenError):
            manager.include("AmmPool111", "Admin1")
        assert manager.apply_system_exclusions(SYSTEM_SET) == 0

    def test_known_system_wallet_cannot_be_included_by_admin(self):
        manager = ExclusionManager(system_addresses=SYSTEM_SET)
        manager.exclude("DevWallet1", "Flagged early", "Admin1")
        with pytest.raises(ForbiddenError):
            manager.include("DevWallet1", "Admin1")
        assert manager.is_excluded("DevWallet1")

    def test_takeover_survives_replay(self, tmp_path):
        store = JsonStore(str(tmp_path))
        first = ExclusionManager(store)
        first.exclude("AmmPool111", "Flagged early", "Admin1")
        first.apply_system_exclusions(SYSTEM_SET)

        second = ExclusionManager(store)
        assert second.active_exclusion("AmmPool111").applied_by == SYSTEM_ACTOR


# ============================================================================
# filter
# ============================================================================

class TestFilter:
    def test_two_outputs(self, manager):
        ledger = [holder("A", 30), holder("B", 10), holder("C", 50)]
        manager.exclude("C", "Team wallet", "Admin1")

        eligible, annotated = manager.filter(ledger)

        assert [r.address for r in eligible] == ["A", "B"]
        assert [r.address for r in annotated] == ["A", "B", "C"]
        c = annotated[2]
        assert c.excluded
        assert c.exclusion_reason == "Team wallet"
        assert c.excluded_by == "Admin1"
        assert c.final_entries == 50
        assert c.draw_entries == 0

    def test_stale_stamp_cleared_after_include(self, manager):
        manager.exclude("A", "Team wallet", "Admin1")
        _, annotated = manager.filter([holder("A", 30)])
        manager.include("A", "Admin1")

        eligible, _ = manager.filter(annotated)
        assert eligible[0].address == "A"
        assert not eligible[0].excluded
        assert eligible[0].exclusion_reason is None

    def test_input_not_mutated(self, manager):
        ledger = [holder("A", 30)]
        manager.exclude("A", "Team wallet", "Admin1")
        manager.filter(ledger)
        assert not ledger[0].excluded


# ============================================================================
# Persistence
# ============================================================================

class TestPersistence:
    def test_state_replayed_from_log(self, tmp_path):
        store = JsonStore(str(tmp_path))
        first = ExclusionManager(store)
        first.apply_system_exclusions(SYSTEM_SET)
        first.exclude("Whale1111", "Team wallet", "Admin1")
        first.include("Whale1111", "Admin1")

        second = ExclusionManager(store)
        assert sorted(r.address for r in second.list_exclusions()) == sorted(SYSTEM_SET)
        assert not second.is_excluded("Whale1111")
        assert len(second.history()) == 5
        # Replayed state still guards against duplicates
        assert second.apply_system_exclusions(SYSTEM_SET) == 0
