"""
Deterministic program-derived addresses for the matrix referral program.

Seeds (derived against the matrix program id):
  - user account:          [b"user_account", owner]
  - token vault authority: [b"token_vault_authority"]
  - token mint authority:  [b"token_mint_authority"]

Associated token accounts are derived against the associated-token program
with seeds [owner, token_program, mint].

All functions are pure and make no RPC calls.
"""

from __future__ import annotations

from typing import Dict, Sequence, Tuple

from solders.pubkey import Pubkey

from matrix_client import pubkeys
from matrix_client.config import MatrixConfig

MAX_SEED_LEN = 32
MAX_SEEDS = 16


def _validate_seeds(seeds: Sequence[bytes]) -> None:
    if not seeds:
        raise ValueError("At least one seed is required")
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"Too many seeds: {len(seeds)} > {MAX_SEEDS}")
    for seed in seeds:
        if not isinstance(seed, (bytes, bytearray)):
            raise ValueError(f"Seed must be bytes, got {type(seed).__name__}")
        if len(seed) > MAX_SEED_LEN:
            raise ValueError(f"Seed too long: {len(seed)} > {MAX_SEED_LEN} bytes")


def find_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Return the (address, bump) pair for ``seeds`` under ``program_id``."""
    _validate_seeds(seeds)
    return Pubkey.find_program_address([bytes(seed) for seed in seeds], program_id)


def derive_user_account(owner: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return find_address([pubkeys.USER_ACCOUNT_SEED, bytes(owner)], program_id)


def derive_vault_authority(program_id: Pubkey) -> Tuple[Pubkey, int]:
    return find_address([pubkeys.VAULT_AUTHORITY_SEED], program_id)


def derive_mint_authority(program_id: Pubkey) -> Tuple[Pubkey, int]:
    return find_address([pubkeys.MINT_AUTHORITY_SEED], program_id)


def derive_associated_token_account(
    mint: Pubkey,
    owner: Pubkey,
    token_program: Pubkey = pubkeys.TOKEN_PROGRAM,
) -> Tuple[Pubkey, int]:
    """Canonical ATA for (mint, owner); PDA owners are allowed."""
    return find_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        pubkeys.ASSOCIATED_TOKEN_PROGRAM,
    )


def derive_all(config: MatrixConfig, owner: Pubkey) -> Dict[str, Pubkey]:
    """Every address the registration flow references for ``owner``."""
    user_account, _ = derive_user_account(owner, config.program_id)
    vault_authority, _ = derive_vault_authority(config.program_id)
    mint_authority, _ = derive_mint_authority(config.program_id)
    program_token_vault, _ = derive_associated_token_account(config.token_mint, vault_authority)
    return {
        "user_account": user_account,
        "vault_authority": vault_authority,
        "mint_authority": mint_authority,
        "program_token_vault": program_token_vault,
    }
