"""Read-only pre-flight checks run before any registration transaction.

Checks run in a fixed order and the first failure aborts: signer balance,
program state, token mint, then the user's own account. A user that is
already registered short-circuits into an AlreadyRegisteredReport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Union

from solders.pubkey import Pubkey

from matrix_client import pda
from matrix_client.config import MatrixConfig
from matrix_client.errors import (
    AccountDecodeError,
    InsufficientFunds,
    LedgerError,
    MintNotFound,
    ProgramStateUnavailable,
)
from matrix_client.layouts import (
    ProgramState,
    UplineEntry,
    UserAccount,
    decode_program_state,
    decode_user_account,
)
from matrix_client.pubkeys import LAMPORTS_PER_SOL, MAX_SLOTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlreadyRegisteredReport:
    """Snapshot returned instead of registering a second time."""
    user_account: Pubkey
    signer: Pubkey
    account: UserAccount

    @property
    def owner_matches(self) -> bool:
        return self.account.owner_wallet == self.signer

    @property
    def chain_id(self) -> int:
        return self.account.chain.id

    @property
    def upline_id(self) -> int:
        return self.account.upline.id

    @property
    def filled_slots(self) -> int:
        return self.account.chain.filled_slots

    @property
    def upline_history(self) -> List[UplineEntry]:
        return self.account.upline.history


@dataclass(frozen=True)
class VerificationResult:
    signer: Pubkey
    balance: int
    program_state: ProgramState
    addresses: Dict[str, Pubkey]

    @property
    def user_account(self) -> Pubkey:
        return self.addresses["user_account"]


async def _run_step(step: str, awaitable: Awaitable[Any]) -> Any:
    try:
        return await awaitable
    except LedgerError as exc:
        exc.step = step
        logger.error(f"Pre-flight step '{step}' failed: {exc.message}")
        raise


async def verify(
    ledger,
    config: MatrixConfig,
    signer: Pubkey,
) -> Union[VerificationResult, AlreadyRegisteredReport]:
    """Run every pre-flight check for ``signer``."""
    balance = await _run_step("balance", ledger.get_balance(signer))
    logger.info(f"Signer {signer} balance: {balance / LAMPORTS_PER_SOL} SOL")
    if balance < config.required_balance:
        raise InsufficientFunds(balance, config.required_balance)

    state_account = await _run_step("program_state", ledger.get_account(config.state_address))
    if state_account is None:
        raise ProgramStateUnavailable(
            f"Program state {config.state_address} does not exist",
            {"address": str(config.state_address)},
            step="program_state",
        )
    try:
        program_state = decode_program_state(state_account.data)
    except AccountDecodeError as exc:
        raise ProgramStateUnavailable(
            f"Program state {config.state_address} is undecodable: {exc.message}",
            {"address": str(config.state_address)},
            step="program_state",
        ) from exc
    logger.info(
        f"Program state verified: owner={program_state.owner} "
        f"next_upline_id={program_state.next_upline_id} next_chain_id={program_state.next_chain_id}"
    )

    mint_account = await _run_step("mint", ledger.get_account(config.token_mint))
    if mint_account is None:
        raise MintNotFound(
            f"Token mint {config.token_mint} does not exist",
            {"address": str(config.token_mint)},
            step="mint",
        )
    logger.info(f"Token mint verified: {config.token_mint}")

    addresses = pda.derive_all(config, signer)
    user_address = addresses["user_account"]
    logger.info(f"User account PDA: {user_address}")

    existing = await _run_step("user_account", ledger.get_account(user_address))
    if existing is not None:
        account: Optional[UserAccount] = None
        try:
            account = decode_user_account(existing.data)
        except AccountDecodeError as exc:
            logger.warning(f"User account {user_address} exists but is undecodable: {exc.message}")
        if account is not None and account.is_registered:
            logger.info(
                f"User already registered: upline_id={account.upline.id} "
                f"chain_id={account.chain.id} filled_slots={account.chain.filled_slots}/{MAX_SLOTS}"
            )
            report = AlreadyRegisteredReport(user_account=user_address, signer=signer, account=account)
            if not report.owner_matches:
                logger.warning(f"Owner wallet {account.owner_wallet} does not match signer {signer}")
            return report

    return VerificationResult(
        signer=signer,
        balance=balance,
        program_state=program_state,
        addresses=addresses,
    )
