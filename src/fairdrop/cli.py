"""FairDrop CLI — command-line interface for the settlement pipeline.

Usage:
    python -m fairdrop.cli status
    python -m fairdrop.cli commitment
    python -m fairdrop.cli rotate
    python -m fairdrop.cli settle --payment-id P-1 --txid T-1 --user uid_1 --amount 10
    python -m fairdrop.cli verify --seed-id seed_ab12 --nonce 1 --round-id r1 --bin 3
    python -m fairdrop.cli check-invariants
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from fairdrop.crypto.anchor import SEPOLIA_CHAIN_ID, anchor_commitment
from fairdrop.errors import SettlementError
from fairdrop.persistence.event_log import EventLog
from fairdrop.persistence.ledger_store import LedgerStore
from fairdrop.policy.resolver import PolicyResolver
from fairdrop.service import FairDropService, ServiceResult
from fairdrop.settings import Settings, load_settings
from fairdrop.settlement.payments import PiPaymentClient


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
JOURNAL_FILE = "ledger.jsonl"


def _make_service(args: argparse.Namespace, with_gateway: bool = False) -> FairDropService:
    """Create a FairDropService backed by the durable journal."""
    settings: Settings = args.settings
    data_dir = args.data or settings.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    store = LedgerStore(EventLog(storage_path=data_dir / JOURNAL_FILE))
    gateway = None
    if with_gateway:
        gateway = PiPaymentClient(settings.pi_api_key, base_url=settings.pi_api_url)
    return FairDropService(resolver, store, gateway=gateway)


def _print_result(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    if result.data:
        print(json.dumps(result.data, indent=2, default=str), file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_commitment(args: argparse.Namespace) -> int:
    return _print_result(_make_service(args).commitment())


def cmd_rotate(args: argparse.Namespace) -> int:
    return _print_result(_make_service(args).rotate())


def cmd_revealed_seeds(args: argparse.Namespace) -> int:
    return _print_result(_make_service(args).revealed_seeds())


def cmd_settle(args: argparse.Namespace) -> int:
    """Settle one payment against the configured payment API."""
    service = _make_service(args, with_gateway=True)
    try:
        result = service.handle_payment_webhook({
            "paymentId": args.payment_id,
            "txid": args.txid,
            "user": args.user,
            "username": args.username,
            "betAmount": args.amount,
            "clientSeed": args.client_seed,
        })
    finally:
        service.close()
    return _print_result(result)


def cmd_recover(args: argparse.Namespace) -> int:
    service = _make_service(args, with_gateway=True)
    try:
        return _print_result(service.recover())
    finally:
        service.close()


def cmd_verify(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.verify_round(args.seed_id, args.nonce, args.round_id, args.bin)
    if result.success and not result.data["verified"]:
        print(json.dumps(result.data, indent=2))
        return 1
    return _print_result(result)


def cmd_audit(args: argparse.Namespace) -> int:
    """Verify every settled bet whose seed has been revealed."""
    return _print_result(_make_service(args).verify_settled_bets())


def cmd_leaderboard(args: argparse.Namespace) -> int:
    return _print_result(_make_service(args).leaderboard())


def cmd_metrics(args: argparse.Namespace) -> int:
    return _print_result(_make_service(args).admin_metrics())


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run game parameter invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(Path(args.config) / "game_params.json")


def cmd_anchor_commitment(args: argparse.Namespace) -> int:
    """Publish the active commitment hash in an EVM transaction."""
    settings: Settings = args.settings
    if not settings.anchor_private_key:
        print("ERROR: Missing ANCHOR_PRIVATE_KEY in environment or .env", file=sys.stderr)
        return 1
    service = _make_service(args)
    commitment = service.commitment().data
    record = anchor_commitment(
        commitment["seed_id"],
        commitment["commitment_hash"],
        rpc_url=args.rpc_url,
        private_key=settings.anchor_private_key,
        chain_id=args.chain_id,
    )
    print(json.dumps(record.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fairdrop",
        description="FairDrop — provably-fair drop game settlement CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: FAIRDROP_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show system status")
    sub.add_parser("commitment", help="Show the active seed commitment")
    sub.add_parser("rotate", help="Reveal the active seed and activate a new one")
    sub.add_parser("revealed-seeds", help="List revealed seeds and their secrets")

    # settle
    p_settle = sub.add_parser("settle", help="Settle a payment")
    p_settle.add_argument("--payment-id", required=True, help="Payment ID")
    p_settle.add_argument("--txid", required=True, help="Blockchain transaction ID")
    p_settle.add_argument("--user", required=True, help="User ID")
    p_settle.add_argument("--amount", required=True, help="Bet amount (Decimal)")
    p_settle.add_argument("--username", help="Display name")
    p_settle.add_argument("--client-seed", default="", help="Player-chosen client seed")

    sub.add_parser("recover", help="Finish interrupted settlements")

    # verify
    p_verify = sub.add_parser("verify", help="Verify a round against its revealed seed")
    p_verify.add_argument("--seed-id", required=True, help="Seed ID")
    p_verify.add_argument("--nonce", required=True, type=int, help="Round nonce")
    p_verify.add_argument("--round-id", required=True, help="Round ID")
    p_verify.add_argument("--bin", required=True, type=int, help="Claimed bin index")

    sub.add_parser("audit", help="Verify all settled bets on revealed seeds")
    sub.add_parser("leaderboard", help="Show the leaderboard")
    sub.add_parser("metrics", help="Show admin metrics")
    sub.add_parser("check-invariants", help="Run game parameter invariant checks")

    # anchor-commitment
    p_anchor = sub.add_parser("anchor-commitment", help="Anchor the active commitment on-chain")
    p_anchor.add_argument("--rpc-url", required=True, help="JSON-RPC endpoint")
    p_anchor.add_argument("--chain-id", type=int, default=SEPOLIA_CHAIN_ID, help="Chain ID (default: Sepolia)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "status": cmd_status,
        "commitment": cmd_commitment,
        "rotate": cmd_rotate,
        "revealed-seeds": cmd_revealed_seeds,
        "settle": cmd_settle,
        "recover": cmd_recover,
        "verify": cmd_verify,
        "audit": cmd_audit,
        "leaderboard": cmd_leaderboard,
        "metrics": cmd_metrics,
        "check-invariants": cmd_check_invariants,
        "anchor-commitment": cmd_anchor_commitment,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        args.settings = load_settings()
        return handler(args)
    except SettlementError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
