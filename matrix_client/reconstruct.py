"""Read-only reconstruction of a user's matrix position.

Given a UserAccount address, load it and resolve one level of detail for the
referrer, each occupied slot and each upline entry. Lookups are independent
and run concurrently; a failed lookup only marks its own node Unavailable.
Nothing is walked recursively, so one call makes at most
1 + 3 + len(upline history) extra reads.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from solders.pubkey import Pubkey

from matrix_client import pda
from matrix_client.config import MatrixConfig
from matrix_client.errors import AccountDecodeError, LedgerError
from matrix_client.layouts import UplineEntry, UserAccount, decode_user_account
from matrix_client.pubkeys import LAMPORTS_PER_SOL, MAX_SLOTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSummary:
    address: Pubkey
    owner_wallet: Pubkey
    is_registered: bool
    depth: int
    chain_id: int
    filled_slots: int


@dataclass(frozen=True)
class Resolved:
    summary: AccountSummary


@dataclass(frozen=True)
class Unavailable:
    address: Pubkey
    reason: str


NodeResult = Union[Resolved, Unavailable]


@dataclass(frozen=True)
class UplineNode:
    position: int  # index in the on-chain history, 1 = oldest ancestor
    entry: UplineEntry
    detail: NodeResult


@dataclass(frozen=True)
class DisplayModel:
    address: Pubkey
    account: UserAccount
    token_account: Pubkey
    referrer: Optional[NodeResult]
    slots: List[Optional[NodeResult]]
    upline: List[UplineNode]


@dataclass(frozen=True)
class AccountNotFound:
    address: Pubkey


@dataclass(frozen=True)
class AccountUndecodable:
    address: Pubkey
    reason: str


ReconstructionResult = Union[DisplayModel, AccountNotFound, AccountUndecodable]


async def _summarize(ledger, address: Pubkey) -> NodeResult:
    try:
        snapshot = await ledger.get_account(address)
    except LedgerError as exc:
        logger.warning(f"Lookup of {address} failed: {exc.message}")
        return Unavailable(address, exc.message)
    if snapshot is None:
        logger.warning(f"Lookup of {address} failed: account not found")
        return Unavailable(address, "account not found")
    try:
        account = decode_user_account(snapshot.data)
    except AccountDecodeError as exc:
        logger.warning(f"Lookup of {address} failed: {exc.message}")
        return Unavailable(address, exc.message)
    return Resolved(
        AccountSummary(
            address=address,
            owner_wallet=account.owner_wallet,
            is_registered=account.is_registered,
            depth=account.upline.depth,
            chain_id=account.chain.id,
            filled_slots=account.chain.filled_slots,
        )
    )


async def reconstruct(address: Pubkey, config: MatrixConfig, ledger) -> ReconstructionResult:
    """Build the display model for the UserAccount at ``address``.

    Raises LedgerError only if the root account itself cannot be fetched.
    """
    snapshot = await ledger.get_account(address)
    if snapshot is None:
        logger.info(f"No account at {address}")
        return AccountNotFound(address)
    try:
        account = decode_user_account(snapshot.data)
    except AccountDecodeError as exc:
        logger.info(f"Account at {address} is not a user account: {exc.message}")
        return AccountUndecodable(address, exc.message)

    # Most recent ancestor is appended last on-chain; display it first
    history = list(reversed(account.upline.history))
    slot_addresses = [slot for slot in account.chain.slots if slot is not None]

    lookups = []
    if account.referrer is not None:
        lookups.append(_summarize(ledger, account.referrer))
    lookups.extend(_summarize(ledger, slot) for slot in slot_addresses)
    lookups.extend(_summarize(ledger, entry.pda) for entry in history)
    results = list(await asyncio.gather(*lookups))

    referrer: Optional[NodeResult] = results.pop(0) if account.referrer is not None else None
    slots: List[Optional[NodeResult]] = []
    for slot in account.chain.slots:
        slots.append(results.pop(0) if slot is not None else None)
    upline = [
        UplineNode(position=len(history) - offset, entry=entry, detail=results.pop(0))
        for offset, entry in enumerate(history)
    ]

    token_account, _ = pda.derive_associated_token_account(config.token_mint, account.owner_wallet)
    return DisplayModel(
        address=address,
        account=account,
        token_account=token_account,
        referrer=referrer,
        slots=slots,
        upline=upline,
    )


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def render_lines(result: ReconstructionResult) -> List[str]:
    """Console rendering of a reconstruction result."""
    if isinstance(result, AccountNotFound):
        return [f"Account {result.address} does not exist or is not a user account."]
    if isinstance(result, AccountUndecodable):
        return [f"Account {result.address} is not a user account: {result.reason}"]

    account = result.account
    lines = [
        "BASIC INFORMATION",
        f"  User PDA: {result.address}",
        f"  Owner wallet: {account.owner_wallet}",
        f"  Registered: {_yes_no(account.is_registered)}",
    ]

    if result.referrer is None:
        lines.append("  Referrer: none (base user)")
    else:
        lines.append(f"  Referrer: {account.referrer}")
        if isinstance(result.referrer, Resolved):
            lines.append(f"    wallet: {result.referrer.summary.owner_wallet}")
            lines.append(f"    registered: {_yes_no(result.referrer.summary.is_registered)}")
        else:
            lines.append(f"    unavailable: {result.referrer.reason}")

    lines.append("")
    lines.append("MATRIX")
    lines.append(f"  Chain ID: {account.chain.id}")
    lines.append(f"  Filled slots: {account.chain.filled_slots}/{MAX_SLOTS}")
    for index, slot in enumerate(result.slots, start=1):
        if slot is None:
            lines.append(f"  Slot {index}: empty")
        elif isinstance(slot, Resolved):
            lines.append(f"  Slot {index}: {slot.summary.address}")
            lines.append(f"    wallet: {slot.summary.owner_wallet}")
            lines.append(f"    registered: {_yes_no(slot.summary.is_registered)}")
        else:
            lines.append(f"  Slot {index}: {slot.address}")
            lines.append(f"    unavailable: {slot.reason}")

    lines.append("")
    lines.append("BALANCES")
    lines.append(f"  Reserved SOL: {account.reserved_sol / LAMPORTS_PER_SOL} SOL")
    lines.append(f"  Reserved tokens: {account.reserved_tokens / 1e9}")
    lines.append(f"  Token account: {result.token_account}")

    lines.append("")
    lines.append("UPLINE")
    lines.append(f"  Upline ID: {account.upline.id}")
    lines.append(f"  Depth: {account.upline.depth}")
    if not result.upline:
        lines.append("  Uplines: none (base user)")
    else:
        lines.append(f"  Total uplines: {len(result.upline)} (most recent first)")
        for node in result.upline:
            lines.append(f"  Upline #{node.position}:")
            lines.append(f"    PDA: {node.entry.pda}")
            lines.append(f"    Wallet: {node.entry.wallet}")
            if isinstance(node.detail, Resolved):
                lines.append(f"    Depth: {node.detail.summary.depth}")
                lines.append(f"    Chain ID: {node.detail.summary.chain_id}")
                lines.append(f"    Filled slots: {node.detail.summary.filled_slots}/{MAX_SLOTS}")
            else:
                lines.append(f"    unavailable: {node.detail.reason}")
    return lines
