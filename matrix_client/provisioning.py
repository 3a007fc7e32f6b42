"""
Auxiliary token accounts required before registration.

Two prerequisites:
  1. The program's reward-token vault (ATA of the token mint owned by the
     vault authority PDA). Created once; later calls are no-ops.
  2. A single-use wrapped-SOL token account holding exactly the deposit.
     Created, initialized and synced in one transaction signed by the payer
     and the new account's keypair.

Both transactions are confirmed before returning. Any failure raises
ProvisioningFailed; nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from spl.token.instructions import (
    CloseAccountParams,
    InitializeAccountParams,
    SyncNativeParams,
    close_account,
    create_associated_token_account,
    initialize_account,
    sync_native,
)

from matrix_client import pda
from matrix_client.config import MatrixConfig
from matrix_client.errors import AccountDecodeError, LedgerError, ProvisioningFailed, ReclaimRefused
from matrix_client.layouts import decode_token_account_header
from matrix_client.ledger import describe_failure, filter_diagnostic_logs
from matrix_client.pubkeys import LAMPORTS_PER_SOL, TOKEN_ACCOUNT_SIZE, TOKEN_PROGRAM, WSOL_MINT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WrappedSolAccount:
    keypair: Keypair
    deposit: int
    rent_exempt: int
    signature: str

    @property
    def address(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def lamports(self) -> int:
        return self.deposit + self.rent_exempt


def _provisioning_failed(step: str, exc: LedgerError) -> ProvisioningFailed:
    logs = filter_diagnostic_logs(exc.logs)
    for line in logs:
        logger.error(f"  {line}")
    return ProvisioningFailed(
        f"{step} failed: {exc.message}",
        step=step,
        logs=logs,
        hint=describe_failure(exc.message, exc.logs),
    )


async def ensure_vault_token_account(
    ledger,
    config: MatrixConfig,
    payer: Keypair,
) -> Tuple[Pubkey, Optional[str]]:
    """Create the program's token vault ATA if it is missing.

    Returns the vault address and the creation signature, or None when the
    account already existed.
    """
    vault_authority, _ = pda.derive_vault_authority(config.program_id)
    vault_ata, _ = pda.derive_associated_token_account(config.token_mint, vault_authority)

    try:
        existing = await ledger.get_account(vault_ata)
    except LedgerError as exc:
        raise _provisioning_failed("vault_ata", exc) from exc
    if existing is not None:
        logger.info(f"Program token vault already exists: {vault_ata}")
        return vault_ata, None

    logger.info(f"Program token vault {vault_ata} missing, creating")
    ix = create_associated_token_account(payer.pubkey(), vault_authority, config.token_mint)
    try:
        signature = await ledger.send_and_confirm([ix], payer)
    except LedgerError as exc:
        raise _provisioning_failed("vault_ata", exc) from exc
    logger.info(f"Program token vault created: {signature}")
    return vault_ata, signature


def build_wrapped_sol_instructions(owner: Pubkey, account: Pubkey, lamports: int) -> List[Instruction]:
    """create_account -> initialize_account -> sync_native, in that order."""
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=owner,
                to_pubkey=account,
                lamports=lamports,
                space=TOKEN_ACCOUNT_SIZE,
                owner=TOKEN_PROGRAM,
            )
        ),
        initialize_account(
            InitializeAccountParams(
                program_id=TOKEN_PROGRAM,
                account=account,
                mint=WSOL_MINT,
                owner=owner,
            )
        ),
        sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM, account=account)),
    ]


async def provision_wrapped_sol(
    ledger,
    config: MatrixConfig,
    payer: Keypair,
    account_keypair: Optional[Keypair] = None,
) -> WrappedSolAccount:
    """Create and fund a single-use wrapped-SOL account with the deposit."""
    account_keypair = account_keypair or Keypair()
    try:
        rent_exempt = await ledger.get_minimum_balance_for_rent_exemption(TOKEN_ACCOUNT_SIZE)
    except LedgerError as exc:
        raise _provisioning_failed("wrapped_sol", exc) from exc

    lamports = config.deposit_amount + rent_exempt
    logger.info(
        f"Creating wrapped SOL account {account_keypair.pubkey()}: "
        f"rent={rent_exempt / LAMPORTS_PER_SOL} SOL deposit={config.deposit_amount / LAMPORTS_PER_SOL} SOL"
    )
    instructions = build_wrapped_sol_instructions(payer.pubkey(), account_keypair.pubkey(), lamports)
    try:
        signature = await ledger.send_and_confirm(instructions, payer, [account_keypair])
    except LedgerError as exc:
        raise _provisioning_failed("wrapped_sol", exc) from exc

    logger.info(f"Wrapped SOL account created and synced: {signature}")
    return WrappedSolAccount(
        keypair=account_keypair,
        deposit=config.deposit_amount,
        rent_exempt=rent_exempt,
        signature=signature,
    )


async def reclaim_wrapped_account(ledger, owner: Keypair, account: Pubkey) -> str:
    """Close an orphaned wrapped-SOL account and return its lamports to ``owner``.

    Used when provisioning confirmed but the registration transaction did not.
    """
    try:
        snapshot = await ledger.get_account(account)
    except LedgerError as exc:
        exc.step = "reclaim"
        raise
    if snapshot is None:
        raise ReclaimRefused(f"Account {account} does not exist", step="reclaim")
    if snapshot.owner != TOKEN_PROGRAM:
        raise ReclaimRefused(f"Account {account} is not owned by the token program", step="reclaim")
    try:
        header = decode_token_account_header(snapshot.data)
    except AccountDecodeError as exc:
        raise ReclaimRefused(f"Account {account} is not a token account", step="reclaim") from exc
    if header.mint != WSOL_MINT:
        raise ReclaimRefused(f"Account {account} does not hold wrapped SOL", step="reclaim")
    if header.owner != owner.pubkey():
        raise ReclaimRefused(
            f"Account {account} belongs to {header.owner}, not {owner.pubkey()}",
            step="reclaim",
        )

    ix = close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM,
            account=account,
            dest=owner.pubkey(),
            owner=owner.pubkey(),
        )
    )
    try:
        signature = await ledger.send_and_confirm([ix], owner)
    except LedgerError as exc:
        exc.step = "reclaim"
        raise
    logger.info(f"Reclaimed {snapshot.lamports / LAMPORTS_PER_SOL} SOL from {account}: {signature}")
    return signature
