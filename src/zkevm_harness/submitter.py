"""
Sequential transaction submission.

TxSubmitter signs and sends a batch of transactions in caller order and,
optionally, waits for each one to be mined.

Partial submission: submission is fail-fast. If transaction i fails to sign
or send, transactions 0..i-1 have already been broadcast and stay on the
ledger. Nothing is rolled back; the raised error carries details["index"]
so the caller knows how far the batch got.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .config import ConfirmationTimeouts, PollPolicy
from .exceptions import (
    MiningTimeoutError,
    SigningError,
    SubmissionError,
    TransactionFailedError,
    WaitTimeoutError,
)
from .logging_utils import ChainLogger, OperationType
from .polling import WaitLoop
from .signer import TransactionRequest, TransactionSigner

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """The subset of the L2 JSON-RPC API the harness drives."""

    async def send_raw_transaction(self, signed_tx: str) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]: ...

    async def is_block_virtualized(self, block_number: int) -> bool: ...

    async def is_block_consolidated(self, block_number: int) -> bool: ...


@dataclass(frozen=True)
class TransactionHandle:
    """
    A transaction accepted by the ledger's pool.

    block_number is set once the submitter has seen the receipt.
    """
    hash: str
    nonce: int
    sender: str
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    block_number: Optional[int] = None


def quantity_to_int(value: Any) -> int:
    """Decode a JSON-RPC quantity (0x-hex string or int)."""
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


def receipt_block_number(receipt: Dict[str, Any]) -> int:
    return quantity_to_int(receipt["blockNumber"])


def receipt_succeeded(receipt: Dict[str, Any]) -> bool:
    """Receipts without a status field (pre-Byzantium) count as successful."""
    status = receipt.get("status")
    if status is None:
        return True
    return quantity_to_int(status) == 1


class TxSubmitter:
    """
    Signs and sends transactions one at a time, in caller order.

    Shares its WaitLoop with the confirmation tracker so one cancellation
    signal stops both submission and every wait.
    """

    def __init__(
        self,
        wait_loop: Optional[WaitLoop] = None,
        timeouts: Optional[ConfirmationTimeouts] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._wait_loop = wait_loop or WaitLoop()
        self._timeouts = timeouts or ConfirmationTimeouts()
        self._chain_logger = chain_logger or ChainLogger()

    @property
    def wait_loop(self) -> WaitLoop:
        return self._wait_loop

    @property
    def timeouts(self) -> ConfirmationTimeouts:
        return self._timeouts

    async def submit(
        self,
        transactions: Sequence[TransactionRequest],
        signer: TransactionSigner,
        client: LedgerClient,
        wait_for_inclusion: bool = False,
    ) -> List[TransactionHandle]:
        """
        Sign and send every transaction, in order.

        Submission stops at the first failure. Transactions sent before the
        failing one are NOT rolled back; the error's details["index"] is the
        position of the transaction that failed.

        Args:
            transactions: Unsigned transactions, submitted in this order
            signer: Signs in the target chain's domain
            client: L2 ledger client
            wait_for_inclusion: After sending all, wait for each receipt in order

        Returns:
            One handle per transaction, in input order. With
            wait_for_inclusion each handle carries its block number.

        Raises:
            SigningError: If the signer fails on a transaction
            SubmissionError: If the ledger rejects a transaction
            OperationCancelledError: If the cancellation signal is set
            MiningTimeoutError: If a receipt does not appear in time
            TransactionFailedError: If a mined transaction reverted
        """
        handles: List[TransactionHandle] = []

        async with self._chain_logger.operation_context(
            OperationType.SUBMIT_BATCH,
            count=len(transactions),
            wait_for_inclusion=wait_for_inclusion,
        ) as ctx:
            for index, request in enumerate(transactions):
                self._wait_loop.check_cancelled(f"Submission of transaction {index}")

                try:
                    signed = await signer.sign(request)
                except Exception as e:
                    raise SigningError(
                        f"Signing transaction {index} failed: {e}",
                        details={"index": index},
                    ) from e

                self._wait_loop.check_cancelled(f"Submission of transaction {index}")

                try:
                    tx_hash = await client.send_raw_transaction(signed.raw_hex)
                except Exception as e:
                    raise SubmissionError(
                        f"Sending transaction {index} (nonce {signed.nonce}) failed: {e}",
                        details={"index": index},
                    ) from e

                if tx_hash and tx_hash.lower() != signed.hash.lower():
                    logger.warning(f"Ledger returned hash {tx_hash} for locally computed {signed.hash}")

                handle = TransactionHandle(
                    hash=tx_hash or signed.hash,
                    nonce=signed.nonce,
                    sender=signed.sender,
                )
                self._chain_logger.log_transaction_submitted(handle.hash, handle.sender, handle.nonce)
                handles.append(handle)

            ctx.metadata["hashes"] = [h.hash for h in handles]

            if wait_for_inclusion:
                for index, handle in enumerate(handles):
                    receipt = await self.wait_until_mined(handle, client)
                    handles[index] = replace(handle, block_number=receipt_block_number(receipt))

        return handles

    async def wait_until_mined(
        self,
        handle: TransactionHandle,
        client: LedgerClient,
        policy: Optional[PollPolicy] = None,
    ) -> Dict[str, Any]:
        """
        Wait for the transaction's receipt.

        Returns:
            The receipt

        Raises:
            MiningTimeoutError: If no receipt appears before the deadline
            TransactionFailedError: If the receipt reports failure
        """
        policy = policy or self._timeouts.mining

        async def fetch_receipt() -> Optional[Dict[str, Any]]:
            return await client.get_transaction_receipt(handle.hash)

        async with self._chain_logger.operation_context(OperationType.WAIT_MINED, tx_hash=handle.hash):
            try:
                receipt = await self._wait_loop.wait_for(
                    fetch_receipt, policy, description=f"receipt of {handle.hash}"
                )
            except WaitTimeoutError as e:
                self._chain_logger.log_transaction_failed(handle.hash, "not mined in time")
                raise MiningTimeoutError(
                    f"Transaction {handle.hash} not mined after {policy.timeout}s",
                    details={**e.details, "tx_hash": handle.hash, "last_tier": "POOLED"},
                ) from e

        block_number = receipt_block_number(receipt)
        if not receipt_succeeded(receipt):
            self._chain_logger.log_transaction_failed(handle.hash, f"reverted in block {block_number}")
            raise TransactionFailedError(handle.hash, block_number)

        logger.debug(f"Transaction {handle.hash} mined in block {block_number}")
        return receipt
