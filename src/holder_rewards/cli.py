from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation

from .config import Settings
from .draw import to_tokens, win_probability
from .errors import RewardsError
from .models import to_sol
from .project_constants import LAMPORTS_PER_SOL
from .service import RewardsService
from .token_accounts import load_excluded_wallets
from .verify import verify_audit


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _service(args: argparse.Namespace) -> RewardsService:
    settings = Settings.from_env(
        rpc_url_override=args.rpc_url,
        store_dir_override=args.store_dir,
    )
    return RewardsService.from_settings(
        settings,
        timeout_s=args.timeout,
        extra_exclusions=load_excluded_wallets(args.exclusions_file),
    )


def _sol_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if amount <= 0:
        raise argparse.ArgumentTypeError("amount must be positive")
    return amount


def cmd_sync(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        stats = service.prepare_draw()
    finally:
        service.close()
    print("========================================")
    print("🔄 HOLDER SYNC")
    print("========================================")
    print(f"Token price    : ${stats.unit_price_usd}")
    print(f"Holders scanned: {stats.holders_scanned}")
    print(f"Dust dropped   : {stats.dust_dropped}")
    print(f"Records written: {stats.records_written}")
    print(f"Eligible       : {stats.eligible_holders}")
    print(f"Excluded       : {stats.excluded_holders}")
    print(f"VIP members    : {stats.vip_members}")
    print(f"Total entries  : {stats.total_entries}")
    return 0


def _next_tier_label(req) -> str:
    if req is None:
        return "top tier"
    return f"{req['tier']} at {req['tokens_needed']} tokens"


def cmd_eligible(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        eligible = service.list_eligible()
        total = sum(r.draw_entries for r in eligible)
        for r in sorted(eligible, key=lambda r: r.draw_entries, reverse=True):
            print(
                f"{r.address}  {to_tokens(r.raw_balance):>14}  ${r.usd_value:.2f}  "
                f"{r.tier.value:<6}  x{r.multiplier}  {r.draw_entries:>6} entries  "
                f"{win_probability(r.draw_entries, total):.2f}%  "
                f"next: {_next_tier_label(service.next_tier(r))}"
            )
        print(f"{len(eligible)} eligible holders, {total} entries")
    finally:
        service.close()
    return 0


def cmd_exclusions(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        for rec in service.list_exclusions():
            print(f"{rec.address}  {rec.reason}  by {rec.applied_by}  at {rec.applied_at.isoformat()}")
    finally:
        service.close()
    return 0


def cmd_exclude(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        rec = service.exclude(args.address, args.reason, args.admin)
    finally:
        service.close()
    print(f"🚫 Excluded {rec.address} ({rec.reason})")
    return 0


def cmd_include(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        rec = service.include(args.address, args.admin)
    finally:
        service.close()
    print(f"✅ Included {rec.address} back in draws")
    return 0


def cmd_apply_system(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        applied = service.apply_system_exclusions()
    finally:
        service.close()
    print(f"System exclusions applied: {applied}")
    return 0


def cmd_draw(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        result = service.run_draw(args.prize)
    finally:
        service.close()
    print("========================================")
    print("🎲 HOLDER REWARDS DRAW")
    print("========================================")
    print(f"Eligible holders: {result.total_eligible_holders}")
    print(f"Total entries   : {result.total_entries}")
    print(f"Winning entry   : #{result.winning_number}")
    print("----------------------------------------")
    print("🏆 WINNER")
    print(f"Address         : {result.winner_address}")
    print(f"Entries         : {result.winner_entries}")
    print(f"Prize           : {result.prize_amount} SOL")
    print("----------------------------------------")
    print(f"🧾 Wrote audit: {service.last_audit_path}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    result = verify_audit(args.audit)
    print("✅ AUDIT VERIFIED")
    print(f"Winner        : {result['winner']}")
    print(f"Winning Entry : {result['winning_number']}")
    print(f"Total Entries : {result['total_entries']}")
    return 0


def cmd_split(args: argparse.Namespace) -> int:
    lamports = int(args.amount * LAMPORTS_PER_SOL)
    service = _service(args)
    try:
        dist = service.split_fee(lamports, args.signature)
    finally:
        service.close()
    print(f"Total      : {to_sol(dist.total_fee_amount)} SOL")
    print(f"Reward     : {to_sol(dist.reward_amount)} SOL")
    print(f"Burn       : {to_sol(dist.burn_amount)} SOL")
    print(f"Operations : {to_sol(dist.ops_amount)} SOL")
    return 0


async def _run_monitor(service: RewardsService) -> None:
    try:
        await service.start_monitor()
        while True:
            await asyncio.sleep(3600)
    finally:
        await service.aclose()


def cmd_monitor(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        asyncio.run(_run_monitor(service))
    except KeyboardInterrupt:
        pass
    print(json.dumps(service.status(), default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="holder-rewards",
        description="Entry-weighted holder draw and creator-fee distribution.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")
    p.add_argument("--store-dir", default=None, help="Data directory (else STORE_DIR or ./data).")
    p.add_argument(
        "--exclusions-file",
        default=None,
        help="Extra system exclusions, one address (and optional reason) per line.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("sync", help="Resync holders from chain and rebuild the ledger.")
    s.set_defaults(func=cmd_sync)

    e = sub.add_parser("eligible", help="List holders eligible for the next draw.")
    e.set_defaults(func=cmd_eligible)

    ls = sub.add_parser("exclusions", help="List active exclusions.")
    ls.set_defaults(func=cmd_exclusions)

    ex = sub.add_parser("exclude", help="Exclude an address from draws.")
    ex.add_argument("address")
    ex.add_argument("--reason", required=True)
    ex.add_argument("--admin", required=True, help="Admin wallet applying the exclusion.")
    ex.set_defaults(func=cmd_exclude)

    inc = sub.add_parser("include", help="Lift an admin exclusion.")
    inc.add_argument("address")
    inc.add_argument("--admin", required=True, help="Admin wallet lifting the exclusion.")
    inc.set_defaults(func=cmd_include)

    ap = sub.add_parser("apply-system-exclusions", help="Reconcile built-in system exclusions.")
    ap.set_defaults(func=cmd_apply_system)

    d = sub.add_parser("draw", help="Run the draw and write an audit JSON.")
    d.add_argument("--prize", required=True, type=_sol_amount, help="Prize in SOL.")
    d.set_defaults(func=cmd_draw)

    v = sub.add_parser(
        "verify", help="Verify an existing audit JSON deterministically."
    )
    v.add_argument("--audit", required=True, help="Path to the audit JSON.")
    v.set_defaults(func=cmd_verify)

    sp = sub.add_parser("split", help="Split a fee amount by hand.")
    sp.add_argument("--amount", required=True, type=_sol_amount, help="Fee in SOL.")
    sp.add_argument("--signature", default="manual", help="Source transaction signature.")
    sp.set_defaults(func=cmd_split)

    m = sub.add_parser("monitor", help="Watch the fee wallet and split confirmed fees.")
    m.set_defaults(func=cmd_monitor)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except RewardsError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        code = 1
    raise SystemExit(code)
