"""Immutable configuration for the matrix client.

Values are resolved in three layers: built-in devnet defaults, an optional
JSON file (``matriz-config.json`` by default) and environment overrides.
Every address is validated as a pubkey before a MatrixConfig is built.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from solders.pubkey import Pubkey

from matrix_client import pubkeys
from matrix_client.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("matriz-config.json")

# camelCase keys written by the deploy scripts
FILE_KEY_ALIASES = {
    "programId": "program_id",
    "tokenMint": "token_mint",
    "stateAddress": "state_address",
    "rpcUrl": "rpc_url",
}

ENV_OVERRIDES = {
    "MATRIX_PROGRAM_ID": "program_id",
    "MATRIX_TOKEN_MINT": "token_mint",
    "MATRIX_STATE_ADDRESS": "state_address",
    "SOLANA_RPC_URL": "rpc_url",
    "MATRIX_COMMITMENT": "commitment",
}

VALID_COMMITMENTS = ("processed", "confirmed", "finalized")


@dataclass(frozen=True)
class MatrixConfig:
    program_id: Pubkey
    token_mint: Pubkey
    state_address: Pubkey
    pool: Pubkey
    a_vault_lp: Pubkey
    a_vault_lp_mint: Pubkey
    a_token_vault: Pubkey
    b_vault: Pubkey
    b_token_vault: Pubkey
    b_vault_lp_mint: Pubkey
    b_vault_lp: Pubkey
    vault_program: Pubkey
    oracle_program: Pubkey
    oracle_feed: Pubkey
    rpc_url: str = pubkeys.DEFAULT_RPC_URL
    commitment: str = "confirmed"
    deposit_amount: int = pubkeys.FIXED_DEPOSIT_AMOUNT
    reserve_margin: int = pubkeys.RESERVE_MARGIN
    compute_unit_limit: int = pubkeys.DEFAULT_COMPUTE_UNIT_LIMIT
    compute_unit_price: int = pubkeys.DEFAULT_COMPUTE_UNIT_PRICE

    @property
    def required_balance(self) -> int:
        return self.deposit_amount + self.reserve_margin

    def with_overrides(self, **overrides: Any) -> "MatrixConfig":
        """Return a copy with ``overrides`` validated and applied."""
        merged = {f.name: getattr(self, f.name) for f in fields(self)}
        merged.update(overrides)
        return build_config(merged)


_DEFAULTS: Dict[str, Any] = {
    "program_id": pubkeys.DEFAULT_PROGRAM_ID,
    "token_mint": pubkeys.DEFAULT_TOKEN_MINT,
    "state_address": pubkeys.DEFAULT_STATE_ADDRESS,
    "pool": pubkeys.DEFAULT_POOL_ADDRESS,
    "a_vault_lp": pubkeys.DEFAULT_A_VAULT_LP,
    "a_vault_lp_mint": pubkeys.DEFAULT_A_VAULT_LP_MINT,
    "a_token_vault": pubkeys.DEFAULT_A_TOKEN_VAULT,
    "b_vault": pubkeys.DEFAULT_B_VAULT,
    "b_token_vault": pubkeys.DEFAULT_B_TOKEN_VAULT,
    "b_vault_lp_mint": pubkeys.DEFAULT_B_VAULT_LP_MINT,
    "b_vault_lp": pubkeys.DEFAULT_B_VAULT_LP,
    "vault_program": pubkeys.DEFAULT_VAULT_PROGRAM,
    "oracle_program": pubkeys.DEFAULT_ORACLE_PROGRAM,
    "oracle_feed": pubkeys.DEFAULT_ORACLE_FEED,
}

_INT_FIELDS = ("deposit_amount", "reserve_margin", "compute_unit_limit", "compute_unit_price")


def _parse_pubkey(name: str, value: Any) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{name} must be a base58 address", {"field": name}, step="config")
    try:
        return Pubkey.from_string(value.strip())
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} is not a valid pubkey: {value!r}",
            {"field": name, "value": value},
            step="config",
        ) from exc


def _parse_int(name: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ConfigurationError(
        f"{name} must be a whole number, got {value!r}",
        {"field": name, "value": value},
        step="config",
    )


def _substitute_env(value: str, env: Mapping[str, str]) -> Optional[str]:
    if "${" not in value:
        return value
    start = value.find("${")
    end = value.find("}", start + 2)
    if start == -1 or end == -1:
        return value
    env_name = value[start + 2 : end]
    env_value = env.get(env_name)
    if not env_value:
        return None
    return value.replace(f"${{{env_name}}}", env_value)


def build_config(values: Mapping[str, Any]) -> MatrixConfig:
    """Validate raw values and build a MatrixConfig."""
    known = {f.name for f in fields(MatrixConfig)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            {"keys": sorted(unknown)},
            step="config",
        )

    kwargs: Dict[str, Any] = {}
    for name in _DEFAULTS:
        kwargs[name] = _parse_pubkey(name, values.get(name, _DEFAULTS[name]))

    for name in _INT_FIELDS:
        if name not in values:
            continue
        number = _parse_int(name, values[name])
        if number < 0:
            raise ConfigurationError(f"{name} must not be negative", {"field": name}, step="config")
        kwargs[name] = number

    if "rpc_url" in values:
        rpc_url = values["rpc_url"]
        if not isinstance(rpc_url, str) or not rpc_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"rpc_url must be an http(s) URL: {rpc_url!r}", {"field": "rpc_url"}, step="config")
        kwargs["rpc_url"] = rpc_url

    if "commitment" in values:
        commitment = str(values["commitment"]).lower()
        if commitment not in VALID_COMMITMENTS:
            raise ConfigurationError(
                f"commitment must be one of {', '.join(VALID_COMMITMENTS)}",
                {"field": "commitment"},
                step="config",
            )
        kwargs["commitment"] = commitment

    return MatrixConfig(**kwargs)


def default_config() -> MatrixConfig:
    return build_config({})


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}", step="config") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object", step="config")
    return data


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> MatrixConfig:
    """Load configuration from defaults, ``path`` and ``env``.

    A missing file is not an error when ``path`` is not given explicitly;
    the defaults are used instead.
    """
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        logger.info(f"Loading configuration from {config_path}")
        for key, value in _load_json(config_path).items():
            values[FILE_KEY_ALIASES.get(key, key)] = value
    elif path:
        raise ConfigurationError(f"Config file not found: {config_path}", step="config")
    else:
        logger.info(f"No config file at {config_path}, using default addresses")

    for env_name, field_name in ENV_OVERRIDES.items():
        env_value = env.get(env_name)
        if env_value:
            values[field_name] = env_value

    if isinstance(values.get("rpc_url"), str):
        rpc_url = _substitute_env(values["rpc_url"], env)
        if rpc_url is None:
            logger.warning("RPC URL references an unset environment variable, using default endpoint")
            values.pop("rpc_url")
        else:
            values["rpc_url"] = rpc_url

    return build_config(values)


__all__ = [
    "MatrixConfig",
    "build_config",
    "default_config",
    "load_config",
]
