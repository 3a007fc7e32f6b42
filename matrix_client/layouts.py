"""
On-chain account layouts for the matrix referral program.

Program accounts are Anchor accounts: an 8-byte discriminator
(sha256("account:<Name>")[:8]) followed by the Borsh encoding of the struct.
Anchor over-allocates account space, so trailing bytes are ignored.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import List, Optional

from borsh_construct import Bool, CStruct, Option, U8, U32, U64, Vec
from construct import ConstructError
from solders.pubkey import Pubkey

from matrix_client.errors import AccountDecodeError
from matrix_client.pubkeys import MAX_SLOTS

DISCRIMINATOR_LEN = 8

PubkeyLayout = U8[32]

ProgramStateLayout = CStruct(
    "owner" / PubkeyLayout,
    "next_upline_id" / U32,
    "next_chain_id" / U32,
)

UplineEntryLayout = CStruct(
    "pda" / PubkeyLayout,
    "wallet" / PubkeyLayout,
)

ReferralUplineLayout = CStruct(
    "id" / U32,
    "depth" / U8,
    "upline" / Vec(UplineEntryLayout),
)

ReferralChainLayout = CStruct(
    "id" / U32,
    "slots" / Option(PubkeyLayout)[MAX_SLOTS],
    "filled_slots" / U8,
)

UserAccountLayout = CStruct(
    "is_registered" / Bool,
    "referrer" / Option(PubkeyLayout),
    "owner_wallet" / PubkeyLayout,
    "upline" / ReferralUplineLayout,
    "chain" / ReferralChainLayout,
    "reserved_sol" / U64,
    "reserved_tokens" / U64,
)

# Leading fields of an SPL token account (165 bytes total)
TokenAccountHeaderLayout = CStruct(
    "mint" / PubkeyLayout,
    "owner" / PubkeyLayout,
    "amount" / U64,
)


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


PROGRAM_STATE_DISCRIMINATOR = account_discriminator("ProgramState")
USER_ACCOUNT_DISCRIMINATOR = account_discriminator("UserAccount")


def _to_pubkey(raw) -> Pubkey:
    return Pubkey.from_bytes(bytes(raw))


def _pubkey_bytes(key: Pubkey) -> List[int]:
    return list(bytes(key))


@dataclass(frozen=True)
class ProgramState:
    owner: Pubkey
    next_upline_id: int
    next_chain_id: int


@dataclass(frozen=True)
class UplineEntry:
    pda: Pubkey
    wallet: Pubkey


@dataclass(frozen=True)
class ReferralUpline:
    id: int
    depth: int
    history: List[UplineEntry] = field(default_factory=list)


@dataclass(frozen=True)
class ReferralChain:
    id: int
    slots: List[Optional[Pubkey]] = field(default_factory=lambda: [None] * MAX_SLOTS)
    filled_slots: int = 0


@dataclass(frozen=True)
class UserAccount:
    is_registered: bool
    referrer: Optional[Pubkey]
    owner_wallet: Pubkey
    upline: ReferralUpline
    chain: ReferralChain
    reserved_sol: int = 0
    reserved_tokens: int = 0

    @property
    def is_root(self) -> bool:
        return self.referrer is None


@dataclass(frozen=True)
class TokenAccountHeader:
    mint: Pubkey
    owner: Pubkey
    amount: int


def _strip_discriminator(data: bytes, expected: bytes, name: str) -> bytes:
    if len(data) < DISCRIMINATOR_LEN:
        raise AccountDecodeError(
            f"{name} data too short: {len(data)} bytes",
            {"length": len(data)},
            step="decode",
        )
    if data[:DISCRIMINATOR_LEN] != expected:
        raise AccountDecodeError(
            f"Account is not a {name} (discriminator mismatch)",
            {"discriminator": data[:DISCRIMINATOR_LEN].hex()},
            step="decode",
        )
    return data[DISCRIMINATOR_LEN:]


def decode_program_state(data: bytes) -> ProgramState:
    body = _strip_discriminator(bytes(data), PROGRAM_STATE_DISCRIMINATOR, "ProgramState")
    try:
        parsed = ProgramStateLayout.parse(body)
    except ConstructError as exc:
        raise AccountDecodeError(f"Malformed ProgramState: {exc}", step="decode") from exc
    return ProgramState(
        owner=_to_pubkey(parsed.owner),
        next_upline_id=parsed.next_upline_id,
        next_chain_id=parsed.next_chain_id,
    )


def decode_user_account(data: bytes) -> UserAccount:
    """Decode a UserAccount and check the slot-count invariant."""
    body = _strip_discriminator(bytes(data), USER_ACCOUNT_DISCRIMINATOR, "UserAccount")
    try:
        parsed = UserAccountLayout.parse(body)
    except ConstructError as exc:
        raise AccountDecodeError(f"Malformed UserAccount: {exc}", step="decode") from exc

    slots = [_to_pubkey(slot) if slot is not None else None for slot in parsed.chain.slots]
    occupied = sum(1 for slot in slots if slot is not None)
    if parsed.chain.filled_slots > MAX_SLOTS or parsed.chain.filled_slots != occupied:
        raise AccountDecodeError(
            f"filled_slots={parsed.chain.filled_slots} does not match {occupied} occupied slots",
            {"filled_slots": parsed.chain.filled_slots, "occupied": occupied},
            step="decode",
        )

    return UserAccount(
        is_registered=bool(parsed.is_registered),
        referrer=_to_pubkey(parsed.referrer) if parsed.referrer is not None else None,
        owner_wallet=_to_pubkey(parsed.owner_wallet),
        upline=ReferralUpline(
            id=parsed.upline.id,
            depth=parsed.upline.depth,
            history=[
                UplineEntry(pda=_to_pubkey(entry.pda), wallet=_to_pubkey(entry.wallet))
                for entry in parsed.upline.upline
            ],
        ),
        chain=ReferralChain(
            id=parsed.chain.id,
            slots=slots,
            filled_slots=parsed.chain.filled_slots,
        ),
        reserved_sol=parsed.reserved_sol,
        reserved_tokens=parsed.reserved_tokens,
    )


def decode_token_account_header(data: bytes) -> TokenAccountHeader:
    try:
        parsed = TokenAccountHeaderLayout.parse(bytes(data))
    except ConstructError as exc:
        raise AccountDecodeError(f"Malformed token account: {exc}", step="decode") from exc
    return TokenAccountHeader(
        mint=_to_pubkey(parsed.mint),
        owner=_to_pubkey(parsed.owner),
        amount=parsed.amount,
    )


def encode_program_state(state: ProgramState) -> bytes:
    return PROGRAM_STATE_DISCRIMINATOR + ProgramStateLayout.build(
        {
            "owner": _pubkey_bytes(state.owner),
            "next_upline_id": state.next_upline_id,
            "next_chain_id": state.next_chain_id,
        }
    )


def encode_user_account(account: UserAccount) -> bytes:
    return USER_ACCOUNT_DISCRIMINATOR + UserAccountLayout.build(
        {
            "is_registered": account.is_registered,
            "referrer": _pubkey_bytes(account.referrer) if account.referrer is not None else None,
            "owner_wallet": _pubkey_bytes(account.owner_wallet),
            "upline": {
                "id": account.upline.id,
                "depth": account.upline.depth,
                "upline": [
                    {"pda": _pubkey_bytes(entry.pda), "wallet": _pubkey_bytes(entry.wallet)}
                    for entry in account.upline.history
                ],
            },
            "chain": {
                "id": account.chain.id,
                "slots": [_pubkey_bytes(slot) if slot is not None else None for slot in account.chain.slots],
                "filled_slots": account.chain.filled_slots,
            },
            "reserved_sol": account.reserved_sol,
            "reserved_tokens": account.reserved_tokens,
        }
    )
