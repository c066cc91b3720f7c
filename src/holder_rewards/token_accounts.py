from __future__ import annotations

import base64
import binascii
import logging
import struct
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

import base58

from .project_constants import TOKEN_MINT
from .rpc import RpcClient

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

log = logging.getLogger(__name__)


def parse_owner_and_amount(account_data: bytes) -> Tuple[str, int] | None:
    """
    Standard token account layout (works for classic; Token-2022 typically keeps these offsets too).
    Mint(0-32) | Owner(32-64) | Amount(64-72)
    """
    if len(account_data) < 72:
        return None

    owner_bytes = account_data[32:64]
    amount_bytes = account_data[64:72]
    owner = base58.b58encode(owner_bytes).decode("ascii")
    amount = struct.unpack("<Q", amount_bytes)[0]
    return owner, amount


def aggregate_holders_from_b64(b64_items: Iterable[str]) -> Dict[str, int]:
    balances: Dict[str, int] = defaultdict(int)

    for b64_str in b64_items:
        try:
            raw = base64.b64decode(b64_str)
        except (binascii.Error, ValueError):
            log.debug("Skipping undecodable token account")
            continue

        parsed = parse_owner_and_amount(raw)
        if not parsed:
            continue

        owner, amount = parsed
        if amount > 0:
            balances[owner] += int(amount)

    return dict(balances)


class RpcHolderSource:
    """Holder snapshot straight from the chain: every non-zero owner of the mint."""

    def __init__(self, rpc: RpcClient, mint: str = TOKEN_MINT) -> None:
        self.rpc = rpc
        self.mint = mint

    def close(self) -> None:
        self.rpc.close()

    def fetch_snapshot(self) -> List[Tuple[str, int]]:
        # Any RpcError propagates: a partial scan must not become a snapshot.
        log.info("Scanning classic SPL Token program...")
        classic_b64 = self.rpc.get_program_accounts_base64(
            program_id=TOKEN_PROGRAM_ID,
            mint=self.mint,
            classic_token_program=True,
        )
        log.info("Scanning Token-2022 program...")
        t22_b64 = self.rpc.get_program_accounts_base64(
            program_id=TOKEN_2022_PROGRAM_ID,
            mint=self.mint,
            classic_token_program=False,
        )
        all_b64 = classic_b64 + t22_b64
        log.info("Accounts fetched  : %d", len(all_b64))

        owner_to_balance = aggregate_holders_from_b64(all_b64)
        log.info("Unique owners     : %d", len(owner_to_balance))
        return sorted(owner_to_balance.items())


def load_excluded_wallets(path: str | None) -> Dict[str, str]:
    """
    Extra system exclusions from a text file: one address per line,
    optionally followed by a reason. Lines starting with # are ignored.
    """
    if not path:
        return {}
    out: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            w = line.strip()
            if not w or w.startswith("#"):
                continue
            addr, _, reason = w.partition(" ")
            out[addr] = reason.strip() or "System exclusion"
    return out
