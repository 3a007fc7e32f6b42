"""
Shared fixtures for matrix client tests.

FakeLedger mirrors the SolanaLedger surface in memory and emulates the
effects of the instructions the client sends: system account creation,
ATA creation, SPL token init/sync/close and the matrix program's
register_without_referrer.
"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from matrix_client.config import MatrixConfig, default_config
from matrix_client.errors import LedgerError
from matrix_client.layouts import (
    ProgramState,
    ReferralChain,
    ReferralUpline,
    UplineEntry,
    UserAccount,
    TokenAccountHeaderLayout,
    encode_program_state,
    encode_user_account,
)
from matrix_client.ledger import AccountSnapshot
from matrix_client.pubkeys import (
    ASSOCIATED_TOKEN_PROGRAM,
    LAMPORTS_PER_SOL,
    SYSTEM_PROGRAM,
    TOKEN_ACCOUNT_SIZE,
    TOKEN_PROGRAM,
)
from matrix_client.registration import REGISTER_WITHOUT_REFERRER

RENT_EXEMPT_MINIMUM = 2_039_280

TOKEN_IX_INITIALIZE_ACCOUNT = 1
TOKEN_IX_CLOSE_ACCOUNT = 9
TOKEN_IX_SYNC_NATIVE = 17


def token_account_data(mint: Pubkey, owner: Pubkey, amount: int = 0) -> bytes:
    header = TokenAccountHeaderLayout.build(
        {"mint": list(bytes(mint)), "owner": list(bytes(owner)), "amount": amount}
    )
    return header + bytes(TOKEN_ACCOUNT_SIZE - len(header))


class FakeLedger:
    def __init__(self, config: MatrixConfig):
        self.config = config
        self.accounts: Dict[Pubkey, AccountSnapshot] = {}
        self.balances: Dict[Pubkey, int] = {}
        self.read_failures: Dict[Pubkey, Exception] = {}
        self.send_failures: List[Exception] = []
        self.sent: List[dict] = []
        self.reads: List[Pubkey] = []
        self.registrations = 0
        self.state = ProgramState(owner=Pubkey.default(), next_upline_id=1, next_chain_id=1)

    # --- seeding helpers -------------------------------------------------

    def put(self, address: Pubkey, data: bytes, owner: Optional[Pubkey] = None, lamports: int = 1) -> None:
        self.accounts[address] = AccountSnapshot(
            address=address,
            owner=owner or self.config.program_id,
            lamports=lamports,
            data=data,
        )

    def put_user(self, address: Pubkey, account: UserAccount) -> None:
        self.put(address, encode_user_account(account) + bytes(64))

    def put_program_state(self, state: Optional[ProgramState] = None) -> None:
        self.state = state or self.state
        self.put(self.config.state_address, encode_program_state(self.state))

    # --- ledger surface --------------------------------------------------

    async def get_account(self, address: Pubkey) -> Optional[AccountSnapshot]:
        self.reads.append(address)
        if address in self.read_failures:
            raise self.read_failures[address]
        return self.accounts.get(address)

    async def get_balance(self, address: Pubkey) -> int:
        return self.balances.get(address, 0)

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return RENT_EXEMPT_MINIMUM

    async def latest_blockhash(self) -> Tuple[Hash, int]:
        return Hash.default(), 0

    async def send_and_confirm(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair] = (),
    ) -> str:
        self.sent.append(
            {
                "instructions": list(instructions),
                "payer": payer.pubkey(),
                "signers": [kp.pubkey() for kp in signers],
            }
        )
        if self.send_failures:
            raise self.send_failures.pop(0)
        for ix in instructions:
            self._apply(ix, payer.pubkey())
        return f"sig{len(self.sent)}"

    # --- instruction emulation -------------------------------------------

    def _apply(self, ix: Instruction, payer: Pubkey) -> None:
        keys = [meta.pubkey for meta in ix.accounts]
        data = bytes(ix.data)
        if ix.program_id == SYSTEM_PROGRAM:
            lamports = int.from_bytes(data[4:12], "little")
            self.put(keys[1], bytes(TOKEN_ACCOUNT_SIZE), owner=TOKEN_PROGRAM, lamports=lamports)
            self.balances[payer] = self.balances.get(payer, 0) - lamports
        elif ix.program_id == ASSOCIATED_TOKEN_PROGRAM:
            self.put(keys[1], token_account_data(keys[3], keys[2]), owner=TOKEN_PROGRAM, lamports=RENT_EXEMPT_MINIMUM)
        elif ix.program_id == TOKEN_PROGRAM:
            self._apply_token(data[0], keys, payer)
        elif ix.program_id == self.config.program_id and data.startswith(REGISTER_WITHOUT_REFERRER):
            self._apply_register(data, keys)

    def _apply_token(self, opcode: int, keys: List[Pubkey], payer: Pubkey) -> None:
        account = self.accounts[keys[0]]
        if opcode == TOKEN_IX_INITIALIZE_ACCOUNT:
            self.put(keys[0], token_account_data(keys[1], keys[2]), owner=TOKEN_PROGRAM, lamports=account.lamports)
        elif opcode == TOKEN_IX_SYNC_NATIVE:
            header = TokenAccountHeaderLayout.parse(account.data)
            amount = account.lamports - RENT_EXEMPT_MINIMUM
            self.put(
                keys[0],
                token_account_data(bytes_to_pubkey(header.mint), bytes_to_pubkey(header.owner), amount),
                owner=TOKEN_PROGRAM,
                lamports=account.lamports,
            )
        elif opcode == TOKEN_IX_CLOSE_ACCOUNT:
            del self.accounts[keys[0]]
            self.balances[keys[1]] = self.balances.get(keys[1], 0) + account.lamports

    def _apply_register(self, data: bytes, keys: List[Pubkey]) -> None:
        wallet, user, source = keys[1], keys[2], keys[4]
        if source not in self.accounts:
            raise LedgerError("Program log: AnchorError: AccountNotInitialized", logs=["Program log: source missing"])
        if user in self.accounts:
            raise LedgerError("custom program error: 0x0", logs=["Program log: account already in use"])
        deposit = int.from_bytes(data[8:16], "little")
        self.put_user(
            user,
            UserAccount(
                is_registered=True,
                referrer=None,
                owner_wallet=wallet,
                upline=ReferralUpline(id=self.state.next_upline_id, depth=1, history=[]),
                chain=ReferralChain(id=self.state.next_chain_id, slots=[None, None, None], filled_slots=0),
                reserved_sol=deposit,
                reserved_tokens=0,
            ),
        )
        self.state = ProgramState(
            owner=self.state.owner,
            next_upline_id=self.state.next_upline_id + 1,
            next_chain_id=self.state.next_chain_id + 1,
        )
        self.put_program_state()
        self.registrations += 1


def bytes_to_pubkey(raw) -> Pubkey:
    return Pubkey.from_bytes(bytes(raw))


@pytest.fixture
def config() -> MatrixConfig:
    return default_config()


@pytest.fixture
def signer() -> Keypair:
    return Keypair()


@pytest.fixture
def ledger(config: MatrixConfig, signer: Keypair) -> FakeLedger:
    """Ledger with program state, token mint and a funded signer."""
    fake = FakeLedger(config)
    fake.put_program_state()
    fake.put(config.token_mint, bytes(82), owner=TOKEN_PROGRAM)
    fake.balances[signer.pubkey()] = LAMPORTS_PER_SOL
    return fake


@pytest.fixture
def make_user() -> Callable[..., UserAccount]:
    def _make(
        owner: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
        slots: Optional[List[Optional[Pubkey]]] = None,
        history: Optional[List[UplineEntry]] = None,
        chain_id: int = 1,
        upline_id: int = 1,
        depth: int = 1,
        is_registered: bool = True,
        reserved_sol: int = 0,
        reserved_tokens: int = 0,
    ) -> UserAccount:
        slots = slots if slots is not None else [None, None, None]
        return UserAccount(
            is_registered=is_registered,
            referrer=referrer,
            owner_wallet=owner or Keypair().pubkey(),
            upline=ReferralUpline(id=upline_id, depth=depth, history=history or []),
            chain=ReferralChain(
                id=chain_id,
                slots=slots,
                filled_slots=sum(1 for slot in slots if slot is not None),
            ),
            reserved_sol=reserved_sol,
            reserved_tokens=reserved_tokens,
        )

    return _make
