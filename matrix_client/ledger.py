"""Solana RPC boundary: account reads, balances and send-and-confirm.

Every network call goes through SolanaLedger so the rest of the client can be
exercised against an in-memory ledger. The ledger performs a single attempt
per call; timeouts are whatever the underlying AsyncClient enforces.
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, List, Optional, Sequence, Tuple

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import (
    RPCException,
    RPCNoResultException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from matrix_client.config import MatrixConfig
from matrix_client.errors import LedgerError

# Key material must never reach the logs
logging.getLogger("solana").setLevel(logging.WARNING)
logging.getLogger("solders").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

_RPC_ERRORS = (SolanaRpcException, RPCException, RPCNoResultException)

# Raised by confirm_transaction once last_valid_block_height has passed
_EXPIRED_ERRORS = (TransactionExpiredBlockheightExceededError, UnconfirmedTxError)


@dataclass(frozen=True)
class AccountSnapshot:
    address: Pubkey
    owner: Pubkey
    lamports: int
    data: bytes
    executable: bool = False


def _extract_logs(exc: BaseException) -> List[str]:
    for arg in getattr(exc, "args", ()):
        data = getattr(arg, "data", None)
        logs = getattr(data, "logs", None)
        if logs:
            return [str(line) for line in logs]
    return []


def filter_diagnostic_logs(logs: Iterable[str]) -> List[str]:
    """Keep program log and error lines; fall back to every line if none match."""
    lines = list(logs)
    relevant = [
        line for line in lines
        if "Program log:" in line or "Error" in line or "error" in line
    ]
    return relevant or lines


def classify_failure(error: Optional[str], logs: Sequence[str] = ()) -> str:
    """Classify a failed submission; every category is terminal for the attempt."""
    text = " ".join([error or "", *logs]).lower()
    if not text.strip():
        return "unknown"
    if "blockhash" in text:
        return "stale_blockhash"
    if (
        "exceeded cus meter" in text
        or "computationalbudgetexceeded" in text
        or "computational budget exceeded" in text
    ):
        return "compute_exhausted"
    if "insufficientfunds" in text or "insufficient funds" in text or "insufficient lamports" in text:
        return "insufficient_funds"
    if (
        "custom program error" in text
        or "instructionerrorcustom" in text
        or "custom(" in text
        or "anchorerror" in text
    ):
        return "business_rule"
    return "unknown"


def describe_failure(error: Optional[str], logs: Sequence[str] = ()) -> Optional[str]:
    """Return a short, human-readable hint for common transaction failures."""
    category = classify_failure(error, logs)
    if category == "stale_blockhash":
        return "Blockhash expired; rerun the registration from the start."
    if category == "compute_exhausted":
        return "Compute budget exhausted; raise compute_unit_limit."
    if category == "insufficient_funds":
        return "Insufficient funds for fee or transfer."
    if category == "business_rule":
        match = re.search(r"custom program error: (0x[0-9a-f]+)", " ".join([error or "", *logs]), re.I)
        if match:
            return f"Custom program error {match.group(1)}; program rejected the request."
        return "Program rejected the request; see the program log lines."
    lower = (error or "").lower()
    if "alreadyprocessed" in lower:
        return "Transaction already processed; likely duplicate or replayed."
    if "accountinuse" in lower:
        return "Account in use by another transaction."
    if "signatureverificationfailed" in lower:
        return "Signature verification failed; ensure every signer signed."
    return None


class SolanaLedger:
    """Thin async wrapper around solana-py's AsyncClient."""

    def __init__(self, client: AsyncClient, commitment: str = "confirmed"):
        self._client = client
        self._commitment = Commitment(commitment)

    async def get_account(self, address: Pubkey) -> Optional[AccountSnapshot]:
        try:
            resp = await self._client.get_account_info(address, commitment=self._commitment)
        except _RPC_ERRORS as exc:
            raise LedgerError(f"get_account_info failed for {address}: {exc}", {"address": str(address)}) from exc
        account = resp.value
        if account is None:
            return None
        return AccountSnapshot(
            address=address,
            owner=account.owner,
            lamports=account.lamports,
            data=bytes(account.data),
            executable=account.executable,
        )

    async def get_balance(self, address: Pubkey) -> int:
        try:
            resp = await self._client.get_balance(address, commitment=self._commitment)
        except _RPC_ERRORS as exc:
            raise LedgerError(f"get_balance failed for {address}: {exc}", {"address": str(address)}) from exc
        return resp.value

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        try:
            resp = await self._client.get_minimum_balance_for_rent_exemption(size, commitment=self._commitment)
        except _RPC_ERRORS as exc:
            raise LedgerError(f"get_minimum_balance_for_rent_exemption failed: {exc}") from exc
        return resp.value

    async def latest_blockhash(self) -> Tuple[Hash, int]:
        """Recent blockhash and the last block height at which it is valid."""
        try:
            resp = await self._client.get_latest_blockhash(commitment=self._commitment)
        except _RPC_ERRORS as exc:
            raise LedgerError(f"get_latest_blockhash failed: {exc}") from exc
        return resp.value.blockhash, resp.value.last_valid_block_height

    async def _fetch_failure_logs(self, signature: Signature) -> List[str]:
        try:
            resp = await self._client.get_transaction(
                signature,
                commitment=self._commitment,
                max_supported_transaction_version=0,
            )
        except _RPC_ERRORS as exc:
            logger.warning(f"Could not fetch logs for {signature}: {exc}")
            return []
        meta = resp.value.transaction.meta if resp.value else None
        return list(meta.log_messages or []) if meta else []

    async def send_and_confirm(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair] = (),
    ) -> str:
        """Sign, submit and wait for confirmation. Returns the signature string.

        ``payer`` always signs; ``signers`` are any additional keypairs the
        instructions require. Raises LedgerError carrying the program logs when
        the RPC or the cluster rejects the transaction.
        """
        blockhash, last_valid_block_height = await self.latest_blockhash()

        all_signers = [payer, *[kp for kp in signers if kp.pubkey() != payer.pubkey()]]
        tx = Transaction.new_signed_with_payer(list(instructions), payer.pubkey(), all_signers, blockhash)

        try:
            send_resp = await self._client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=False, preflight_commitment=self._commitment),
            )
        except _RPC_ERRORS as exc:
            logs = _extract_logs(exc)
            raise LedgerError(f"Transaction rejected: {exc}", logs=logs) from exc

        signature = send_resp.value
        logger.info(f"Transaction sent: {signature}")

        try:
            confirm_resp = await self._client.confirm_transaction(
                signature,
                commitment=self._commitment,
                last_valid_block_height=last_valid_block_height,
            )
        except _EXPIRED_ERRORS as exc:
            raise LedgerError(
                f"Transaction {signature} not confirmed before its blockhash expired: {exc}",
                {"signature": str(signature)},
            ) from exc
        except _RPC_ERRORS as exc:
            raise LedgerError(
                f"Transaction {signature} not confirmed: {exc}",
                {"signature": str(signature)},
            ) from exc

        status = confirm_resp.value[0] if confirm_resp.value else None
        if status is not None and status.err is not None:
            logs = await self._fetch_failure_logs(signature)
            raise LedgerError(
                f"Transaction {signature} failed: {status.err}",
                {"signature": str(signature)},
                logs=logs,
            )

        logger.info(f"Transaction confirmed: {signature}")
        return str(signature)


@asynccontextmanager
async def open_ledger(config: MatrixConfig) -> AsyncIterator[SolanaLedger]:
    """Yield a SolanaLedger bound to ``config.rpc_url``; closes the client on exit."""
    async with AsyncClient(config.rpc_url, commitment=Commitment(config.commitment)) as client:
        yield SolanaLedger(client, config.commitment)
