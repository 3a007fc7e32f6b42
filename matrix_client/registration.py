"""
Registration of a participant without a referrer.

Flow for one attempt:

    NOT_STARTED -> VERIFYING -> ALREADY_REGISTERED           (idempotent exit)
                             -> VERIFIED -> PROVISIONING -> PROVISIONED
                                -> SUBMITTING -> CONFIRMED | FAILED

The provisioning and registration transactions are separate: the wrapped-SOL
account is confirmed before the registration transaction references it. A
failed attempt is never resumed; callers start a new attempt. If registration
fails after provisioning confirmed, the attempt record names the orphaned
wrapped-SOL account so it can be reclaimed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from borsh_construct import CStruct, U64
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from matrix_client import provisioning, verifier
from matrix_client.config import MatrixConfig
from matrix_client.errors import (
    AccountDecodeError,
    InvalidTransition,
    LedgerError,
    MatrixError,
    SubmissionFailed,
)
from matrix_client.layouts import UserAccount, decode_user_account, instruction_discriminator
from matrix_client.ledger import classify_failure, describe_failure, filter_diagnostic_logs
from matrix_client.pubkeys import (
    ASSOCIATED_TOKEN_PROGRAM,
    LAMPORTS_PER_SOL,
    MAX_SLOTS,
    SYSTEM_PROGRAM,
    TOKEN_PROGRAM,
)
from matrix_client.verifier import AlreadyRegisteredReport

logger = logging.getLogger(__name__)

REGISTER_WITHOUT_REFERRER = instruction_discriminator("register_without_referrer")
RegisterArgsLayout = CStruct("deposit_amount" / U64)

REMAINING_ACCOUNTS_LEN = 5
ORACLE_FEED_INDEX = 3
ORACLE_PROGRAM_INDEX = 4


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    VERIFYING = "verifying"
    ALREADY_REGISTERED = "already_registered"
    VERIFIED = "verified"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_TRANSITIONS = {
    AttemptState.NOT_STARTED: {AttemptState.VERIFYING},
    AttemptState.VERIFYING: {AttemptState.ALREADY_REGISTERED, AttemptState.VERIFIED, AttemptState.FAILED},
    AttemptState.VERIFIED: {AttemptState.PROVISIONING},
    AttemptState.PROVISIONING: {AttemptState.PROVISIONED, AttemptState.FAILED},
    AttemptState.PROVISIONED: {AttemptState.SUBMITTING},
    AttemptState.SUBMITTING: {AttemptState.CONFIRMED, AttemptState.FAILED},
}

TERMINAL_STATES = frozenset(
    {AttemptState.ALREADY_REGISTERED, AttemptState.CONFIRMED, AttemptState.FAILED}
)


@dataclass
class RegistrationAttempt:
    """In-memory record of one registration attempt."""
    state: AttemptState = AttemptState.NOT_STARTED
    failed_step: Optional[str] = None
    error: Optional[str] = None
    wrapped_account: Optional[Pubkey] = None
    signatures: Dict[str, str] = field(default_factory=dict)
    history: List[AttemptState] = field(default_factory=lambda: [AttemptState.NOT_STARTED])

    def advance(self, new_state: AttemptState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise InvalidTransition(
                f"Cannot move registration attempt from {self.state.value} to {new_state.value}",
                {"from": self.state.value, "to": new_state.value},
            )
        logger.debug(f"Registration attempt: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, step: str, error: str) -> None:
        self.advance(AttemptState.FAILED)
        self.failed_step = step
        self.error = error

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def orphaned_account(self) -> Optional[Pubkey]:
        """Funded wrapped-SOL account left behind by a failed submission."""
        if self.state is AttemptState.FAILED and self.failed_step == "submit":
            return self.wrapped_account
        return None


@dataclass(frozen=True)
class RegistrationReport:
    user_account: Pubkey
    signer: Pubkey
    account: UserAccount
    signature: str
    attempt: RegistrationAttempt

    @property
    def is_registered(self) -> bool:
        return self.account.is_registered

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
    def reserved_sol(self) -> int:
        return self.account.reserved_sol

    @property
    def reserved_tokens(self) -> int:
        return self.account.reserved_tokens

    @property
    def owner_matches(self) -> bool:
        return self.account.owner_wallet == self.signer


def registration_accounts(
    config: MatrixConfig,
    signer: Pubkey,
    user_account: Pubkey,
    source_token: Pubkey,
) -> List[AccountMeta]:
    """Named accounts of register_without_referrer, in program order."""
    return [
        AccountMeta(config.state_address, is_signer=False, is_writable=True),
        AccountMeta(signer, is_signer=True, is_writable=True),
        AccountMeta(user_account, is_signer=False, is_writable=True),
        AccountMeta(config.pool, is_signer=False, is_writable=True),
        AccountMeta(source_token, is_signer=False, is_writable=True),
        AccountMeta(config.b_vault, is_signer=False, is_writable=True),
        AccountMeta(config.b_token_vault, is_signer=False, is_writable=True),
        AccountMeta(config.b_vault_lp_mint, is_signer=False, is_writable=True),
        AccountMeta(config.b_vault_lp, is_signer=False, is_writable=True),
        AccountMeta(config.vault_program, is_signer=False, is_writable=False),
        AccountMeta(config.token_mint, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM, is_signer=False, is_writable=False),
        AccountMeta(ASSOCIATED_TOKEN_PROGRAM, is_signer=False, is_writable=False),
    ]


def remaining_accounts(config: MatrixConfig) -> List[AccountMeta]:
    """Positional tail read by the program: vault A (writable), then oracle feed and program."""
    return [
        AccountMeta(config.a_vault_lp, is_signer=False, is_writable=True),
        AccountMeta(config.a_vault_lp_mint, is_signer=False, is_writable=True),
        AccountMeta(config.a_token_vault, is_signer=False, is_writable=True),
        AccountMeta(config.oracle_feed, is_signer=False, is_writable=False),
        AccountMeta(config.oracle_program, is_signer=False, is_writable=False),
    ]


def compute_budget_instructions(config: MatrixConfig) -> List[Instruction]:
    return [
        set_compute_unit_limit(config.compute_unit_limit),
        set_compute_unit_price(config.compute_unit_price),
    ]


def build_register_instruction(
    config: MatrixConfig,
    signer: Pubkey,
    user_account: Pubkey,
    source_token: Pubkey,
) -> Instruction:
    data = REGISTER_WITHOUT_REFERRER + RegisterArgsLayout.build({"deposit_amount": config.deposit_amount})
    accounts = registration_accounts(config, signer, user_account, source_token) + remaining_accounts(config)
    return Instruction(config.program_id, data, accounts)


def build_registration_instructions(
    config: MatrixConfig,
    signer: Pubkey,
    user_account: Pubkey,
    source_token: Pubkey,
) -> List[Instruction]:
    """Compute-budget pre-instructions followed by the register instruction."""
    return compute_budget_instructions(config) + [
        build_register_instruction(config, signer, user_account, source_token)
    ]


async def _fetch_registered(ledger, user_address: Pubkey) -> UserAccount:
    snapshot = await ledger.get_account(user_address)
    if snapshot is None:
        raise SubmissionFailed(
            f"Transaction confirmed but user account {user_address} was not found",
            step="report",
        )
    try:
        return decode_user_account(snapshot.data)
    except AccountDecodeError as exc:
        raise SubmissionFailed(
            f"Transaction confirmed but user account is undecodable: {exc.message}",
            step="report",
        ) from exc


async def verify_and_register(
    keypair: Keypair,
    config: MatrixConfig,
    ledger,
    attempt: Optional[RegistrationAttempt] = None,
) -> Union[RegistrationReport, AlreadyRegisteredReport]:
    """Verify, provision and register ``keypair`` as a participant without referrer.

    Pass ``attempt`` to observe the state machine, including after a failure.
    Raises a MatrixError subclass naming the failing step; nothing is retried.
    """
    attempt = attempt or RegistrationAttempt()
    if attempt.state is not AttemptState.NOT_STARTED:
        raise InvalidTransition(
            f"Registration attempts cannot be resumed (state={attempt.state.value}); start a new one",
            {"state": attempt.state.value},
        )
    signer = keypair.pubkey()

    attempt.advance(AttemptState.VERIFYING)
    try:
        verified = await verifier.verify(ledger, config, signer)
    except MatrixError as exc:
        attempt.fail(exc.step or "verify", exc.message)
        raise
    if isinstance(verified, AlreadyRegisteredReport):
        attempt.advance(AttemptState.ALREADY_REGISTERED)
        return verified
    attempt.advance(AttemptState.VERIFIED)

    attempt.advance(AttemptState.PROVISIONING)
    try:
        _, vault_signature = await provisioning.ensure_vault_token_account(ledger, config, keypair)
        if vault_signature:
            attempt.signatures["vault_ata"] = vault_signature
        wrapped = await provisioning.provision_wrapped_sol(ledger, config, keypair)
    except MatrixError as exc:
        attempt.fail(exc.step or "provision", exc.message)
        raise
    attempt.wrapped_account = wrapped.address
    attempt.signatures["wrapped_sol"] = wrapped.signature
    attempt.advance(AttemptState.PROVISIONED)

    user_address = verified.user_account
    instructions = build_registration_instructions(config, signer, user_address, wrapped.address)

    attempt.advance(AttemptState.SUBMITTING)
    logger.info(f"Submitting register_without_referrer for {signer} (deposit={config.deposit_amount})")
    try:
        signature = await ledger.send_and_confirm(instructions, keypair)
    except LedgerError as exc:
        diagnostic = filter_diagnostic_logs(exc.logs)
        category = classify_failure(exc.message, exc.logs)
        hint = describe_failure(exc.message, exc.logs)
        attempt.fail("submit", exc.message)
        logger.error(f"Registration failed ({category}): {exc.message}")
        for index, line in enumerate(diagnostic):
            logger.error(f"  {index}: {line}")
        logger.warning(
            f"Wrapped SOL account {wrapped.address} is still funded; "
            f"reclaim it before retrying"
        )
        failure = SubmissionFailed(
            f"Registration transaction failed: {exc.message}",
            logs=exc.logs,
            diagnostic_logs=diagnostic,
            category=category,
            hint=hint,
        )
        failure.details["wrapped_account"] = str(wrapped.address)
        raise failure from exc

    attempt.signatures["register"] = signature
    attempt.advance(AttemptState.CONFIRMED)
    logger.info(f"Registration confirmed: {signature}")

    try:
        account = await _fetch_registered(ledger, user_address)
    except LedgerError as exc:
        exc.step = "report"
        raise
    logger.info(
        f"Registered={account.is_registered} upline_id={account.upline.id} chain_id={account.chain.id} "
        f"filled_slots={account.chain.filled_slots}/{MAX_SLOTS} reserved_sol={account.reserved_sol / LAMPORTS_PER_SOL} SOL"
    )
    return RegistrationReport(
        user_account=user_address,
        signer=signer,
        account=account,
        signature=signature,
        attempt=attempt,
    )
