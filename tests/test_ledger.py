"""
Tests for the Solana RPC boundary.

Covers diagnostic log filtering, failure classification and the
SolanaLedger wrapper against a mocked AsyncClient.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from solana.rpc.core import (
    RPCException,
    RPCNoResultException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from matrix_client.errors import LedgerError
from matrix_client.ledger import (
    SolanaLedger,
    classify_failure,
    describe_failure,
    filter_diagnostic_logs,
)
from matrix_client.pubkeys import TOKEN_PROGRAM


class TestFilterDiagnosticLogs:
    """Tests for log line selection."""

    def test_keeps_program_and_error_lines(self):
        logs = [
            "Program ComputeBudget111111111111111111111111111111 invoke [1]",
            "Program log: Instruction: RegisterWithoutReferrer",
            "Program log: AnchorError occurred",
            "Program failed: custom program error: 0x1771",
            "Program consumed 2000 of 1000000 compute units",
        ]
        assert filter_diagnostic_logs(logs) == [
            "Program log: Instruction: RegisterWithoutReferrer",
            "Program log: AnchorError occurred",
            "Program failed: custom program error: 0x1771",
        ]

    def test_falls_back_to_all_lines(self):
        logs = ["Program X invoke [1]", "Program X success"]
        assert filter_diagnostic_logs(logs) == logs

    def test_empty(self):
        assert filter_diagnostic_logs([]) == []


class TestClassifyFailure:
    """Tests for failure categories."""

    @pytest.mark.parametrize(
        "error,logs,expected",
        [
            ("Blockhash not found", [], "stale_blockhash"),
            ("failed", ["Program X consumed 1000000 of 1000000 compute units", "exceeded CUs meter at BPF instruction"], "compute_exhausted"),
            ("Attempt to debit an account but found no record of a prior credit. insufficient funds", [], "insufficient_funds"),
            ("Transaction failed", ["Program failed: custom program error: 0x1771"], "business_rule"),
            ("something odd", [], "unknown"),
            (None, [], "unknown"),
        ],
    )
    def test_categories(self, error, logs, expected):
        assert classify_failure(error, logs) == expected

    def test_describe_custom_error_code(self):
        hint = describe_failure("Transaction failed", ["custom program error: 0x1771"])
        assert "0x1771" in hint

    def test_describe_unknown_is_none(self):
        assert describe_failure("something odd") is None

    def test_describe_signature_failure(self):
        assert "signer" in describe_failure("SignatureVerificationFailed")


def _client() -> MagicMock:
    client = MagicMock()
    for name in (
        "get_account_info",
        "get_balance",
        "get_minimum_balance_for_rent_exemption",
        "get_latest_blockhash",
        "send_raw_transaction",
        "confirm_transaction",
        "get_transaction",
    ):
        setattr(client, name, AsyncMock())
    client.get_latest_blockhash.return_value = SimpleNamespace(
        value=SimpleNamespace(blockhash=Hash.default(), last_valid_block_height=100)
    )
    client.send_raw_transaction.return_value = SimpleNamespace(value=Signature.default())
    client.confirm_transaction.return_value = SimpleNamespace(value=[SimpleNamespace(err=None)])
    return client


def _transfer(payer: Keypair):
    return transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))


class TestSolanaLedgerReads:
    """Tests for account and balance reads."""

    @pytest.mark.asyncio
    async def test_missing_account_is_none(self):
        client = _client()
        client.get_account_info.return_value = SimpleNamespace(value=None)
        ledger = SolanaLedger(client)

        assert await ledger.get_account(Keypair().pubkey()) is None

    @pytest.mark.asyncio
    async def test_account_snapshot(self):
        client = _client()
        address = Keypair().pubkey()
        client.get_account_info.return_value = SimpleNamespace(
            value=SimpleNamespace(owner=TOKEN_PROGRAM, lamports=2_039_280, data=b"\x01" * 165, executable=False)
        )
        ledger = SolanaLedger(client)

        snapshot = await ledger.get_account(address)

        assert snapshot.address == address
        assert snapshot.owner == TOKEN_PROGRAM
        assert snapshot.lamports == 2_039_280
        assert snapshot.data == b"\x01" * 165

    @pytest.mark.asyncio
    async def test_transport_error_becomes_ledger_error(self):
        client = _client()
        client.get_balance.side_effect = RPCException("connection reset")
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError, match="get_balance failed"):
            await ledger.get_balance(Keypair().pubkey())

    @pytest.mark.asyncio
    async def test_latest_blockhash(self):
        ledger = SolanaLedger(_client())

        assert await ledger.latest_blockhash() == (Hash.default(), 100)

    @pytest.mark.asyncio
    async def test_rent_exemption(self):
        client = _client()
        client.get_minimum_balance_for_rent_exemption.return_value = SimpleNamespace(value=2_039_280)
        ledger = SolanaLedger(client)

        assert await ledger.get_minimum_balance_for_rent_exemption(165) == 2_039_280


class TestSendAndConfirm:
    """Tests for the submit path."""

    @pytest.mark.asyncio
    async def test_success_returns_signature(self):
        client = _client()
        payer = Keypair()
        ledger = SolanaLedger(client)

        signature = await ledger.send_and_confirm([_transfer(payer)], payer)

        assert signature == str(Signature.default())
        client.send_raw_transaction.assert_awaited_once()
        opts = client.send_raw_transaction.call_args.kwargs["opts"]
        assert opts.skip_preflight is False
        assert client.confirm_transaction.call_args.kwargs["last_valid_block_height"] == 100

    @pytest.mark.asyncio
    async def test_preflight_rejection_carries_logs(self):
        client = _client()
        preflight = SimpleNamespace(
            message="Transaction simulation failed",
            data=SimpleNamespace(logs=["Program log: AnchorError", "Program X failed"]),
        )
        client.send_raw_transaction.side_effect = RPCException(preflight)
        payer = Keypair()
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError) as exc_info:
            await ledger.send_and_confirm([_transfer(payer)], payer)

        assert exc_info.value.logs == ["Program log: AnchorError", "Program X failed"]
        client.confirm_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_confirmation_fetches_logs(self):
        client = _client()
        client.confirm_transaction.return_value = SimpleNamespace(
            value=[SimpleNamespace(err="InstructionError(2, Custom(6001))")]
        )
        client.get_transaction.return_value = SimpleNamespace(
            value=SimpleNamespace(
                transaction=SimpleNamespace(
                    meta=SimpleNamespace(log_messages=["Program log: custom program error: 0x1771"])
                )
            )
        )
        payer = Keypair()
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError, match="failed") as exc_info:
            await ledger.send_and_confirm([_transfer(payer)], payer)

        assert exc_info.value.logs == ["Program log: custom program error: 0x1771"]
        assert exc_info.value.details["signature"] == str(Signature.default())

    @pytest.mark.asyncio
    async def test_blockhash_failure(self):
        client = _client()
        client.get_latest_blockhash.side_effect = RPCException("timeout")
        payer = Keypair()
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError, match="get_latest_blockhash"):
            await ledger.send_and_confirm([_transfer(payer)], payer)

        client.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_blockhash_during_confirmation(self):
        client = _client()
        client.confirm_transaction.side_effect = TransactionExpiredBlockheightExceededError(
            f"{Signature.default()} has expired: block height exceeded"
        )
        payer = Keypair()
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError) as exc_info:
            await ledger.send_and_confirm([_transfer(payer)], payer)

        assert classify_failure(exc_info.value.message, exc_info.value.logs) == "stale_blockhash"
        assert exc_info.value.details["signature"] == str(Signature.default())

    @pytest.mark.asyncio
    async def test_unconfirmed_transaction(self):
        client = _client()
        client.confirm_transaction.side_effect = UnconfirmedTxError("Unable to confirm transaction")
        payer = Keypair()
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError) as exc_info:
            await ledger.send_and_confirm([_transfer(payer)], payer)

        assert classify_failure(exc_info.value.message) == "stale_blockhash"

    @pytest.mark.asyncio
    async def test_empty_rpc_result(self):
        client = _client()
        client.get_account_info.side_effect = RPCNoResultException("no result")
        ledger = SolanaLedger(client)

        with pytest.raises(LedgerError, match="get_account_info failed"):
            await ledger.get_account(Keypair().pubkey())
