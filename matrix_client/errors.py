"""Custom exception hierarchy."""
from typing import Any, Dict, List, Optional


class MatrixError(Exception):
    """Base exception for all matrix client errors."""
    code: str = "SYS_001"

    def __init__(self, message: str, details: Dict[str, Any] = None, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.step = step

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "step": self.step,
            "message": self.message,
            "details": self.details,
        }


class WalletLoadError(MatrixError):
    """Key material is missing or malformed."""
    code = "WALLET_001"


class ConfigurationError(MatrixError):
    """Configuration value is missing or not a valid address."""
    code = "CFG_001"


class InsufficientFunds(MatrixError):
    """Signer balance is below deposit plus reserve margin."""
    code = "FUNDS_001"

    def __init__(self, balance: int, required: int, step: str = "balance"):
        super().__init__(
            f"Insufficient balance: have {balance} lamports, need at least {required}",
            {"balance": balance, "required": required},
            step=step,
        )
        self.balance = balance
        self.required = required


class ProgramStateUnavailable(MatrixError):
    """Program state account is absent or undecodable."""
    code = "STATE_001"


class MintNotFound(MatrixError):
    """Reward token mint does not exist."""
    code = "MINT_001"


class AccountDecodeError(MatrixError):
    """Raw account data does not match the expected layout."""
    code = "DECODE_001"


class LedgerError(MatrixError):
    """RPC transport or transaction failure reported by the network layer."""
    code = "RPC_001"

    def __init__(
        self,
        message: str,
        details: Dict[str, Any] = None,
        step: Optional[str] = None,
        logs: Optional[List[str]] = None,
    ):
        super().__init__(message, details, step=step)
        self.logs = list(logs or [])


class ProvisioningFailed(MatrixError):
    """Auxiliary token account creation or funding failed."""
    code = "PROV_001"

    def __init__(
        self,
        message: str,
        step: str,
        logs: Optional[List[str]] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message, {"hint": hint} if hint else {}, step=step)
        self.logs = list(logs or [])
        self.hint = hint


class SubmissionFailed(MatrixError):
    """Registration transaction was rejected or never confirmed."""
    code = "TX_001"

    def __init__(
        self,
        message: str,
        logs: Optional[List[str]] = None,
        diagnostic_logs: Optional[List[str]] = None,
        category: str = "unknown",
        hint: Optional[str] = None,
        step: str = "submit",
    ):
        super().__init__(message, {"category": category, "hint": hint}, step=step)
        self.logs = list(logs or [])
        self.diagnostic_logs = list(diagnostic_logs or [])
        self.category = category
        self.hint = hint


class InvalidTransition(MatrixError):
    """Registration attempt moved between states out of order."""
    code = "STATE_002"


class ReclaimRefused(MatrixError):
    """Account is not a wrapped-SOL account the signer may close."""
    code = "RECLAIM_001"
