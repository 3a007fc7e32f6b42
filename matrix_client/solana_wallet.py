"""Wallet utilities for Solana key loading and wallet file generation."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import base58
from solders.keypair import Keypair

from matrix_client.errors import WalletLoadError

logger = logging.getLogger(__name__)

SOLANA_CLI_KEYPAIR = Path.home() / ".config" / "solana" / "id.json"
PRIVATE_KEY_ENV = "SOLANA_PRIVATE_KEY"


def _keypair_from_value(value: Any, source: str) -> Keypair:
    try:
        if isinstance(value, list):
            return Keypair.from_bytes(bytes(value))
        if isinstance(value, str):
            return Keypair.from_bytes(base58.b58decode(value.strip()))
    except (TypeError, ValueError) as exc:
        raise WalletLoadError(f"Invalid key material in {source}", step="wallet") from exc
    raise WalletLoadError(
        f"Unsupported key format in {source}: expected a byte array or base58 string",
        step="wallet",
    )


def _load_keypair_from_file(path: Path) -> Keypair:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise WalletLoadError(f"Cannot read wallet file {path}: {exc.strerror or exc}", step="wallet") from exc
    if not text:
        raise WalletLoadError(f"Wallet file {path} is empty", step="wallet")
    if text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise WalletLoadError(f"Wallet file {path} is not valid JSON", step="wallet") from exc
        return _keypair_from_value(data, str(path))
    return _keypair_from_value(text, str(path))


def load_keypair(path: Optional[str] = None) -> Keypair:
    """Load a keypair from ``path``, the Solana CLI default, or SOLANA_PRIVATE_KEY.

    Raises WalletLoadError when no usable key material is found; the error
    message never contains key bytes.
    """
    if path:
        return _load_keypair_from_file(Path(path).expanduser())

    if SOLANA_CLI_KEYPAIR.exists():
        return _load_keypair_from_file(SOLANA_CLI_KEYPAIR)

    env_key = os.environ.get(PRIVATE_KEY_ENV)
    if env_key:
        return _keypair_from_value(env_key, PRIVATE_KEY_ENV)

    raise WalletLoadError(
        f"No wallet given and neither {SOLANA_CLI_KEYPAIR} nor {PRIVATE_KEY_ENV} is available",
        step="wallet",
    )


def save_keypair(keypair: Keypair, path: Path) -> None:
    """Write ``keypair`` as a Solana CLI byte array, readable by the owner only."""
    path.write_text(json.dumps(list(bytes(keypair))), encoding="utf-8")
    os.chmod(path, 0o600)


def generate_wallets(folder: Path, count: int, prefix: str = "wallet") -> List[Dict[str, Any]]:
    """Create ``count`` fresh wallet files in ``folder`` plus a summary.json.

    Existing wallet files are never overwritten.
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)

    targets = [folder / f"{prefix}{index}.json" for index in range(1, count + 1)]
    existing = [str(target) for target in targets if target.exists()]
    if existing:
        raise FileExistsError(f"Refusing to overwrite wallet files: {', '.join(existing)}")

    wallets: List[Dict[str, Any]] = []
    for index, target in enumerate(targets, start=1):
        keypair = Keypair()
        save_keypair(keypair, target)
        logger.info(f"Wallet {index} generated: {keypair.pubkey()}")
        wallets.append({"index": index, "public_key": str(keypair.pubkey()), "file_path": str(target)})

    summary_path = folder / "summary.json"
    summary_path.write_text(json.dumps(wallets, indent=2), encoding="utf-8")
    logger.info(f"Wallet summary written to {summary_path}")
    return wallets
