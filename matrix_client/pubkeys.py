"""
Fixed addresses and constants for the matrix referral program.

Defaults point at the devnet deployment. Everything that can be overridden
lives in MatrixConfig; the system programs below never change.
"""

from typing import Final

from solders.pubkey import Pubkey

LAMPORTS_PER_SOL: Final[int] = 1_000_000_000

# Core system programs
SYSTEM_PROGRAM: Final[Pubkey] = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM: Final[Pubkey] = Pubkey.from_string(
    "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
)
ASSOCIATED_TOKEN_PROGRAM: Final[Pubkey] = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)
RENT_SYSVAR: Final[Pubkey] = Pubkey.from_string(
    "SysvarRent111111111111111111111111111111111"
)
WSOL_MINT: Final[Pubkey] = Pubkey.from_string(
    "So11111111111111111111111111111111111111112"
)

# SPL token account size; rent exemption for the wrapped-SOL account is computed for this
TOKEN_ACCOUNT_SIZE: Final[int] = 165

# PDA seeds
USER_ACCOUNT_SEED: Final[bytes] = b"user_account"
VAULT_AUTHORITY_SEED: Final[bytes] = b"token_vault_authority"
MINT_AUTHORITY_SEED: Final[bytes] = b"token_mint_authority"

# Matrix program deployment (devnet)
DEFAULT_PROGRAM_ID: Final[str] = "jFUpBH7wTd9G1EfFADhJCZ89CSujPoh15bdWL5NutT9"
DEFAULT_TOKEN_MINT: Final[str] = "H4T9Y1wGsexYKYshYbqHG3fKhu16nkJhyYQArp1Q1Adj"
DEFAULT_STATE_ADDRESS: Final[str] = "5vpLg8dHiGXxRR7LMED5x88zA6PCQDiqdSeMUzBsEEY1"
DEFAULT_POOL_ADDRESS: Final[str] = "CH8thKKhqGLQzwZwNYkEfRdkoxJBALNSSzmW1bVAkwat"

# Vault A (reward token side), passed as remaining accounts
DEFAULT_A_VAULT_LP: Final[str] = "5fNj6tGC35QuofE799DvVxH3e41z7772bzsFg5dJbNoE"
DEFAULT_A_VAULT_LP_MINT: Final[str] = "7d6bm8vGtj64nzz8Eqgiqdt27WSebaGZtfkGZxZA1ckW"
DEFAULT_A_TOKEN_VAULT: Final[str] = "2h2Z9mhfdvGUZnubxDcn2PD9vPSeeekEcnBRcCWtAt9b"

# Vault B (SOL side), passed as named accounts
DEFAULT_B_VAULT: Final[str] = "FERjPVNEa7Udq8CEv68h6tPL46Tq7ieE49HrE2wea3XT"
DEFAULT_B_TOKEN_VAULT: Final[str] = "HZeLxbZ9uHtSpwZC3LBr4Nubd14iHwz7bRSghRZf5VCG"
DEFAULT_B_VAULT_LP_MINT: Final[str] = "BvoAjwEDhpLzs3jtu4H72j96ShKT5rvZE9RP1vgpfSM"
DEFAULT_B_VAULT_LP: Final[str] = "HayCbdhLpmqpbqQjjArmCbF9oZumTD7PbvxcHtjf8JhK"
DEFAULT_VAULT_PROGRAM: Final[str] = "24Uqj9JCLxUeoC3hGfh5W3s9FM9uCHDS2SG3LYwBpyTi"

# Chainlink SOL/USD (devnet)
DEFAULT_ORACLE_PROGRAM: Final[str] = "HEvSKofvBgfaexv23kMabbYqxasxU3mQ4ibBMEmJWHny"
DEFAULT_ORACLE_FEED: Final[str] = "99B2bTijsU6f1GCT73HmdR7HCFFjGMBcPZY6jZ96ynrR"

DEFAULT_RPC_URL: Final[str] = "https://api.devnet.solana.com"

# 0.1 SOL deposit, plus a 0.03 SOL margin for rent and fees
FIXED_DEPOSIT_AMOUNT: Final[int] = 100_000_000
RESERVE_MARGIN: Final[int] = 30_000_000

DEFAULT_COMPUTE_UNIT_LIMIT: Final[int] = 1_000_000
DEFAULT_COMPUTE_UNIT_PRICE: Final[int] = 5_000  # micro-lamports

MAX_SLOTS: Final[int] = 3
