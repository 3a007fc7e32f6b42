"""matrix-client CLI entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from solders.pubkey import Pubkey

from matrix_client import pda
from matrix_client.config import load_config
from matrix_client.errors import MatrixError, SubmissionFailed
from matrix_client.ledger import open_ledger
from matrix_client.provisioning import reclaim_wrapped_account
from matrix_client.pubkeys import LAMPORTS_PER_SOL, MAX_SLOTS
from matrix_client.reconstruct import reconstruct, render_lines
from matrix_client.registration import RegistrationAttempt, RegistrationReport, verify_and_register
from matrix_client.solana_wallet import generate_wallets, load_keypair
from matrix_client.verifier import AlreadyRegisteredReport

logger = logging.getLogger(__name__)


def _tag(level: str) -> str:
    return f"[{level}]"


def _print_status(level: str, message: str) -> None:
    print(f"{_tag(level)} {message}")


def _parse_address(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a valid address: {value}") from exc


def _print_upline(entries) -> None:
    for index, entry in enumerate(entries, start=1):
        print(f"  Upline #{index}:")
        print(f"    PDA: {entry.pda}")
        print(f"    Wallet: {entry.wallet}")


def _print_already_registered(report: AlreadyRegisteredReport) -> None:
    _print_status("OK", "User is already registered; nothing to do.")
    print(f"  User PDA: {report.user_account}")
    print(f"  Upline ID: {report.upline_id}")
    print(f"  Chain ID: {report.chain_id}")
    print(f"  Filled slots: {report.filled_slots}/{MAX_SLOTS}")
    print(f"  Owner wallet: {report.account.owner_wallet}")
    if not report.owner_matches:
        _print_status("WARN", "Owner wallet does not match the signing wallet.")
    _print_upline(report.upline_history)


def _print_registration(report: RegistrationReport) -> None:
    _print_status("OK", f"Registration confirmed: {report.signature}")
    print(f"  User PDA: {report.user_account}")
    print(f"  Registered: {report.is_registered}")
    print(f"  Upline ID: {report.upline_id}")
    print(f"  Chain ID: {report.chain_id}")
    print(f"  Filled slots: {report.filled_slots}/{MAX_SLOTS}")
    print(f"  Reserved SOL: {report.reserved_sol / LAMPORTS_PER_SOL} SOL")
    print(f"  Reserved tokens: {report.reserved_tokens / 1e9}")
    if not report.owner_matches:
        _print_status("WARN", "Owner wallet does not match the signing wallet.")
    _print_upline(report.account.upline.history)


async def _register(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    keypair = load_keypair(args.wallet)
    _print_status("OK", f"Wallet: {keypair.pubkey()}")

    attempt = RegistrationAttempt()
    async with open_ledger(config) as ledger:
        try:
            report = await verify_and_register(keypair, config, ledger, attempt=attempt)
        except SubmissionFailed as exc:
            _print_status("ERROR", f"[{exc.step}] {exc.message}")
            if exc.hint:
                _print_status("HINT", exc.hint)
            for index, line in enumerate(exc.diagnostic_logs):
                print(f"  {index}: {line}")
            if attempt.orphaned_account is not None:
                _print_status(
                    "WARN",
                    f"Wrapped SOL account {attempt.orphaned_account} still holds the deposit; "
                    f"run 'matrix-client reclaim {args.wallet} {attempt.orphaned_account}'",
                )
            return 1

    if isinstance(report, AlreadyRegisteredReport):
        _print_already_registered(report)
    else:
        _print_registration(report)
    return 0


async def _view(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    async with open_ledger(config) as ledger:
        result = await reconstruct(args.address, config, ledger)
    for line in render_lines(result):
        print(line)
    return 0


async def _reclaim(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    keypair = load_keypair(args.wallet)
    async with open_ledger(config) as ledger:
        signature = await reclaim_wrapped_account(ledger, keypair, args.account)
    _print_status("OK", f"Closed {args.account}: {signature}")
    return 0


def _wallets(args: argparse.Namespace) -> int:
    wallets = generate_wallets(Path(args.folder), args.count)
    for wallet in wallets:
        print(f"Wallet {wallet['index']}: {wallet['public_key']} ({wallet['file_path']})")
    _print_status("WARN", "New wallets hold no funds; send SOL before registering.")
    return 0


def _derive(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    for name, address in pda.derive_all(config, args.owner).items():
        print(f"{name}: {address}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matrix-client",
        description="Register and inspect participants of the matrix referral program",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", type=Path, default=None, help="Path to matriz-config.json")
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Register a wallet as a participant without referrer")
    register.add_argument("wallet", help="Path to the wallet keypair file")

    view = sub.add_parser("view", help="Show the matrix and upline of a user account")
    view.add_argument("address", type=_parse_address, help="User account PDA")

    reclaim = sub.add_parser("reclaim", help="Close an orphaned wrapped SOL account")
    reclaim.add_argument("wallet", help="Path to the owner's keypair file")
    reclaim.add_argument("account", type=_parse_address, help="Wrapped SOL account address")

    wallets = sub.add_parser("wallets", help="Generate wallet keypair files")
    wallets.add_argument("--count", type=int, default=7)
    wallets.add_argument("--folder", default="wallets")

    derive = sub.add_parser("derive", help="Print the addresses derived for a wallet")
    derive.add_argument("owner", type=_parse_address, help="Wallet address")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "register":
            return asyncio.run(_register(args))
        if args.command == "view":
            return asyncio.run(_view(args))
        if args.command == "reclaim":
            return asyncio.run(_reclaim(args))
        if args.command == "wallets":
            return _wallets(args)
        if args.command == "derive":
            return _derive(args)
    except MatrixError as exc:
        logger.error(f"{exc.code} at step '{exc.step}': {exc.message}")
        _print_status("ERROR", f"[{exc.step or 'unknown'}] {exc.message}")
        return 1
    except (FileExistsError, ValueError) as exc:
        _print_status("ERROR", str(exc))
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
