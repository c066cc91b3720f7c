"""
Fee monitor for one watched account.

    IDLE -> OBSERVING -> VERIFYING -> CONFIRMED | REJECTED -> OBSERVING

Two triggers feed the same transition: a timer-driven poll and a websocket
accountSubscribe push channel. Both go through one asyncio.Lock; a trigger
that finds verification already in flight is dropped, not queued. The next
tick sees the latest balance anyway.

last_known_balance is advanced before the splitter runs, so a duplicate
observation of the same increase sees a zero delta.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Set, Tuple

import websockets
from websockets.exceptions import ConnectionClosed

from .errors import LimitExceededError, RpcError, VerificationInconclusiveError
from .models import Distribution, short_address, to_sol
from .project_constants import (
    FEE_SOURCE_PROGRAM,
    FEE_WALLET,
    HISTORY_WINDOW,
    MATCH_TOLERANCE,
    MIN_REWARD_AMOUNT,
    POLL_INTERVAL_S,
)
from .splitter import DistributionSplitter

log = logging.getLogger(__name__)


class MonitorState(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    VERIFYING = "verifying"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class ChainReader(Protocol):
    async def get_balance(self, address: str) -> int: ...

    async def get_signatures_for_address(self, address: str, limit: int) -> List[Dict[str, Any]]: ...

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]: ...


def _account_keys(tx: Dict[str, Any]) -> List[str]:
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = [k if isinstance(k, str) else k.get("pubkey", "") for k in message.get("accountKeys") or []]
    # v0 transactions list lookup-table accounts after the static keys
    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    return keys + list(loaded.get("writable") or []) + list(loaded.get("readonly") or [])


def fee_transfer_amount(
    tx: Optional[Dict[str, Any]],
    account: str,
    program_id: str = FEE_SOURCE_PROGRAM,
) -> Optional[int]:
    """
    Lamports a successful transaction added to ``account``, provided it
    touched ``program_id``. None for anything else.
    """
    if not tx:
        return None
    meta = tx.get("meta") or {}
    if meta.get("err") is not None:
        return None
    keys = _account_keys(tx)
    if program_id not in keys or account not in keys:
        return None
    idx = keys.index(account)
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if idx >= len(pre) or idx >= len(post):
        return None
    change = int(post[idx]) - int(pre[idx])
    return change if change > 0 else None


class AccountSubscription:
    """accountSubscribe push channel with reconnect and exponential backoff."""

    def __init__(
        self,
        ws_url: str,
        account: str,
        reconnect_min_s: float = 1.0,
        reconnect_max_s: float = 60.0,
    ) -> None:
        if not ws_url.strip():
            raise ValueError("ws_url must be non-empty")
        self.ws_url = ws_url
        self.account = account
        self.reconnect_min_s = reconnect_min_s
        self.reconnect_max_s = reconnect_max_s

    async def run(self, on_balance: Callable[[int], None], stop: asyncio.Event) -> None:
        backoff = self.reconnect_min_s
        while not stop.is_set():
            try:
                async with websockets.connect(self.ws_url, close_timeout=5.0) as ws:
                    await ws.send(
                        json.dumps(
                            {
                                "jsonrpc": "2.0",
                                "id": 1,
                                "method": "accountSubscribe",
                                "params": [
                                    self.account,
                                    {"encoding": "base64", "commitment": "confirmed"},
                                ],
                            }
                        )
                    )
                    log.info("Subscribed to balance changes of %s", short_address(self.account))
                    backoff = self.reconnect_min_s
                    async for raw in ws:
                        if stop.is_set():
                            return
                        lamports = self.parse_notification(raw)
                        if lamports is not None:
                            on_balance(lamports)
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                log.warning("Subscription closed: %s", e)
            except Exception:
                log.exception("Subscription error")

            if stop.is_set():
                break
            log.info("Reconnecting subscription in %.1fs", backoff)
            try:
                await asyncio.wait_for(stop.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, self.reconnect_max_s)

    @staticmethod
    def parse_notification(raw: str | bytes) -> Optional[int]:
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if msg.get("method") != "accountNotification":
            return None
        value = (((msg.get("params") or {}).get("result") or {}).get("value")) or {}
        lamports = value.get("lamports")
        return int(lamports) if lamports is not None else None


class FeeMonitor:
    def __init__(
        self,
        chain: ChainReader,
        splitter: DistributionSplitter,
        account: str = FEE_WALLET,
        on_distribution: Optional[Callable[[Distribution], Awaitable[None] | None]] = None,
        subscription: Optional[AccountSubscription] = None,
        program_id: str = FEE_SOURCE_PROGRAM,
        min_amount: int = MIN_REWARD_AMOUNT,
        tolerance: int = MATCH_TOLERANCE,
        history_window: int = HISTORY_WINDOW,
        poll_interval_s: float = POLL_INTERVAL_S,
        settle_s: float = 5.0,
    ) -> None:
        self.chain = chain
        self.splitter = splitter
        self.account = account
        self.on_distribution = on_distribution
        self.subscription = subscription
        self.program_id = program_id
        self.min_amount = min_amount
        self.tolerance = tolerance
        self.history_window = history_window
        self.poll_interval_s = poll_interval_s
        self.settle_s = settle_s

        self.state = MonitorState.IDLE
        self.last_known_balance: Optional[int] = None
        self.held_for_review: List[Tuple[int, str]] = []

        self._lock = asyncio.Lock()
        # Only signatures still inside the history window can match again.
        self._consumed: Deque[str] = deque(maxlen=max(1, history_window) * 10)
        self._stop: Optional[asyncio.Event] = None
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._push_task: Optional[asyncio.Task[None]] = None
        self._tick_task: Optional[asyncio.Task[None]] = None
        self._push_handlers: Set[asyncio.Task[None]] = set()

    @property
    def is_monitoring(self) -> bool:
        return self._stop is not None and not self._stop.is_set()

    def status(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self.is_monitoring,
            "last_balance": self.last_known_balance,
            "state": self.state.value,
            "held_for_review": len(self.held_for_review),
        }

    async def start(self) -> None:
        if self.is_monitoring:
            log.info("Already monitoring %s", short_address(self.account))
            return
        self.last_known_balance = await self.chain.get_balance(self.account)
        self.state = MonitorState.OBSERVING
        self._stop = asyncio.Event()
        log.info(
            "Watching %s, current balance %s SOL",
            short_address(self.account),
            to_sol(self.last_known_balance),
        )
        self._poll_task = asyncio.create_task(self._poll_loop(self._stop))
        if self.subscription is not None:
            self._push_task = asyncio.create_task(
                self.subscription.run(self._on_push, self._stop)
            )

    async def stop(self) -> None:
        if self._stop is None:
            return
        self._stop.set()
        tasks = [t for t in (self._poll_task, self._push_task, self._tick_task) if t is not None]
        tasks.extend(self._push_handlers)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = self._push_task = self._tick_task = None
        self._push_handlers.clear()
        self.state = MonitorState.IDLE
        log.info("Stopped monitoring %s", short_address(self.account))

    async def aclose(self) -> None:
        """Stop monitoring and release the chain client. Not restartable."""
        await self.stop()
        aclose = getattr(self.chain, "aclose", None)
        if aclose is not None:
            await aclose()

    async def _poll_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval_s)
                break
            except asyncio.TimeoutError:
                pass
            if self._tick_task is not None and not self._tick_task.done():
                log.debug("Previous tick still running; skipping")
                continue
            self._tick_task = asyncio.create_task(self._guarded(self.poll_once(), "poll"))

    async def _guarded(self, coro: Awaitable[Any], source: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Error in %s cycle", source)

    def _on_push(self, lamports: int) -> None:
        task = asyncio.create_task(self._guarded(self._handle_push(lamports), "push"))
        self._push_handlers.add(task)
        task.add_done_callback(self._push_handlers.discard)

    async def _handle_push(self, lamports: int) -> None:
        # Give the claim transaction time to show up in history. The pushed
        # value is only a wake-up: it may be stale by the time we get here.
        log.debug("Push notification: %s SOL", to_sol(lamports))
        if self.settle_s > 0:
            await asyncio.sleep(self.settle_s)
        await self.poll_once(source="push")

    async def poll_once(self, source: str = "poll") -> Optional[Distribution]:
        balance = await self.chain.get_balance(self.account)
        return await self.observe(balance, source=source)

    async def observe(self, current_balance: int, source: str = "poll") -> Optional[Distribution]:
        """
        Run one transition for an observed balance. Returns the Distribution
        when a fee is confirmed and split.
        """
        if self._lock.locked():
            log.debug("Verification in flight; dropping %s observation", source)
            return None
        async with self._lock:
            try:
                return await self._transition(current_balance, source)
            finally:
                if self.state is not MonitorState.IDLE:
                    self.state = MonitorState.OBSERVING

    async def _transition(self, current: int, source: str) -> Optional[Distribution]:
        if self.last_known_balance is None:
            self.last_known_balance = current
            return None

        delta = current - self.last_known_balance
        if delta < self.min_amount:
            self.last_known_balance = current
            return None

        log.info("Balance increased by %s SOL (%s)", to_sol(delta), source)
        self.state = MonitorState.VERIFYING
        try:
            signature = await self.verify(delta)
        except VerificationInconclusiveError as e:
            # Balance left as is: the next tick retries this delta.
            log.warning("Could not verify increase of %s SOL: %s", to_sol(delta), e)
            return None

        if signature is None:
            self.state = MonitorState.REJECTED
            self.last_known_balance = current
            log.info("Increase of %s SOL is not a fee claim; ignoring", to_sol(delta))
            return None

        self.state = MonitorState.CONFIRMED
        self.last_known_balance = current
        self._consumed.append(signature)
        log.info("Confirmed fee claim %s", signature)

        try:
            distribution = self.splitter.split(delta, signature)
        except LimitExceededError as e:
            self.held_for_review.append((delta, signature))
            log.error("Distribution held for manual review: %s", e)
            return None

        if self.on_distribution is not None:
            maybe = self.on_distribution(distribution)
            if asyncio.iscoroutine(maybe):
                await maybe
        return distribution

    async def verify(self, delta: int) -> Optional[str]:
        """
        Signature of a recent fee-program transaction that credited ``delta``
        (within tolerance), or None if the window holds no such transaction.
        Raises VerificationInconclusiveError if history cannot be read.
        """
        try:
            signatures = await self.chain.get_signatures_for_address(
                self.account, self.history_window
            )
        except RpcError as e:
            raise VerificationInconclusiveError(str(e)) from e

        for entry in signatures[: self.history_window]:
            sig = entry.get("signature")
            if not sig or entry.get("err") is not None or sig in self._consumed:
                continue
            try:
                tx = await self.chain.get_transaction(sig)
            except RpcError as e:
                raise VerificationInconclusiveError(str(e)) from e
            amount = fee_transfer_amount(tx, self.account, self.program_id)
            if amount is not None and abs(amount - delta) <= self.tolerance:
                return sig
        return None
