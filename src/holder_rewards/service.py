from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from .config import Settings
from .draw import DrawEngine, build_audit
from .errors import ConfigurationError, ConflictError
from .exclusions import ExclusionManager
from .ledger import build_ledger, next_tier_requirement
from .models import Distribution, DrawResult, ExclusionRecord, HolderRecord, SyncStats, short_address
from .monitor import AccountSubscription, FeeMonitor
from .pricing import DexScreenerPriceSource
from .project_constants import SYSTEM_EXCLUDED_WALLETS, TOKEN_DECIMALS
from .rpc import AsyncRpcClient, RpcClient
from .splitter import DistributionSplitter
from .store import JsonStore
from .token_accounts import RpcHolderSource

log = logging.getLogger(__name__)


class HolderSource(Protocol):
    def fetch_snapshot(self) -> List[Tuple[str, int]]: ...


class PriceSource(Protocol):
    def get_unit_price_usd(self) -> Decimal: ...


class RewardsService:
    """
    The operations an admin surface (CLI, HTTP handler, cron job) calls.

    prepare_draw  resync holders, rebuild and persist the annotated ledger
    run_draw      draw one winner from the persisted ledger
    start/stop    run the fee monitor
    """

    def __init__(
        self,
        store: JsonStore,
        holders: HolderSource,
        prices: PriceSource,
        exclusions: Optional[ExclusionManager] = None,
        engine: Optional[DrawEngine] = None,
        splitter: Optional[DistributionSplitter] = None,
        monitor: Optional[FeeMonitor] = None,
        system_exclusions: Mapping[str, str] = SYSTEM_EXCLUDED_WALLETS,
    ) -> None:
        self.store = store
        self.holders = holders
        self.prices = prices
        self.system_exclusions = dict(system_exclusions)
        self.exclusions = exclusions or ExclusionManager(
            store, system_addresses=self.system_exclusions
        )
        self.engine = engine or DrawEngine()
        self.splitter = splitter or DistributionSplitter()
        self.monitor = monitor
        self.last_audit_path: Optional[str] = None
        self._draw_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        timeout_s: float = 60.0,
        extra_exclusions: Optional[Mapping[str, str]] = None,
    ) -> "RewardsService":
        store = JsonStore(settings.store_dir)
        splitter = DistributionSplitter()
        system = dict(SYSTEM_EXCLUDED_WALLETS)
        system.update(extra_exclusions or {})
        service = cls(
            store=store,
            holders=RpcHolderSource(RpcClient(settings.rpc_url, timeout_s=timeout_s)),
            prices=DexScreenerPriceSource(),
            engine=DrawEngine(min_holders=settings.min_holders_for_draw),
            splitter=splitter,
            system_exclusions=system,
        )
        service.monitor = FeeMonitor(
            chain=AsyncRpcClient(settings.rpc_url),
            splitter=splitter,
            account=settings.fee_wallet,
            on_distribution=service.record_distribution,
            subscription=AccountSubscription(settings.ws_url, settings.fee_wallet),
            poll_interval_s=settings.poll_interval_s,
        )
        return service

    # Ledger

    def prepare_draw(self) -> SyncStats:
        """
        Full resync. Anything failing before the final write leaves the
        previously persisted ledger untouched.
        """
        log.info("Preparing draw: fetching price and holder snapshot")
        price = self.prices.get_unit_price_usd()
        snapshot = self.holders.fetch_snapshot()
        ledger, dropped = build_ledger(snapshot, price, self.store.load_memberships())

        self.exclusions.apply_system_exclusions(self.system_exclusions)
        eligible, annotated = self.exclusions.filter(ledger)

        self.store.replace_holders(annotated)

        drawable = [r for r in eligible if r.draw_entries > 0]
        stats = SyncStats(
            holders_scanned=len(snapshot),
            dust_dropped=dropped,
            records_written=len(annotated),
            eligible_holders=len(drawable),
            excluded_holders=len(annotated) - len(eligible),
            total_entries=sum(r.draw_entries for r in drawable),
            vip_members=sum(1 for r in ledger if r.vip_tier != "None"),
            unit_price_usd=price,
        )
        log.info(
            "Sync complete: %d records, %d eligible, %d excluded, %d entries",
            stats.records_written,
            stats.eligible_holders,
            stats.excluded_holders,
            stats.total_entries,
        )
        return stats

    def list_holders(self) -> List[HolderRecord]:
        """Persisted ledger annotated with current exclusions."""
        _, annotated = self.exclusions.filter(self.store.load_holders())
        return annotated

    def list_eligible(self) -> List[HolderRecord]:
        eligible, _ = self.exclusions.filter(self.store.load_holders())
        return [r for r in eligible if r.draw_entries > 0]

    def next_tier(self, record: HolderRecord) -> Optional[Dict[str, Any]]:
        """Next tier for a holder, priced at the rate of the sync that produced it."""
        if record.raw_balance <= 0:
            return None
        tokens = Decimal(record.raw_balance) / (Decimal(10) ** TOKEN_DECIMALS)
        return next_tier_requirement(record.tier, record.usd_value / tokens)

    # Exclusions

    def exclude(self, address: str, reason: str, applied_by: str) -> ExclusionRecord:
        return self.exclusions.exclude(address, reason, applied_by)

    def include(self, address: str, requested_by: str) -> ExclusionRecord:
        return self.exclusions.include(address, requested_by)

    def apply_system_exclusions(self) -> int:
        return self.exclusions.apply_system_exclusions(self.system_exclusions)

    def list_exclusions(self) -> List[ExclusionRecord]:
        return self.exclusions.list_exclusions()

    # Draw

    def run_draw(self, prize_amount: Decimal) -> DrawResult:
        if not self._draw_lock.acquire(blocking=False):
            raise ConflictError("A draw is already in progress.")
        try:
            # System wallets must be out of the pool even if nobody resynced.
            self.exclusions.apply_system_exclusions(self.system_exclusions)
            ledger = self.list_eligible()
            result, ranges = self.engine.run(ledger, prize_amount)
            self.store.append_draw(result)
            self.last_audit_path = self.store.write_audit(result, build_audit(result, ranges))
            log.info(
                "Draw recorded: %s wins %s (audit %s)",
                short_address(result.winner_address),
                result.prize_amount,
                self.last_audit_path,
            )
            return result
        finally:
            self._draw_lock.release()

    # Fees

    def record_distribution(self, distribution: Distribution) -> None:
        self.store.append_distribution(distribution)

    def split_fee(self, amount: int, source_tx_signature: str = "manual") -> Distribution:
        """Manual trigger: split a fee that did not come through the monitor."""
        distribution = self.splitter.split(amount, source_tx_signature)
        self.record_distribution(distribution)
        return distribution

    async def start_monitor(self) -> None:
        if self.monitor is None:
            raise ConfigurationError("No fee monitor configured.")
        await self.monitor.start()

    async def stop_monitor(self) -> None:
        if self.monitor is not None:
            await self.monitor.stop()

    def close(self) -> None:
        """Release the blocking HTTP clients held by the holder and price sources."""
        for source in (self.holders, self.prices):
            close = getattr(source, "close", None)
            if close is not None:
                close()

    async def aclose(self) -> None:
        if self.monitor is not None:
            await self.monitor.aclose()
        self.close()

    def status(self) -> Dict[str, Any]:
        if self.monitor is None:
            return {"is_monitoring": False, "last_balance": None}
        return self.monitor.status()
