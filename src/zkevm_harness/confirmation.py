"""
Confirmation tier tracking for L2 transactions.

A transaction moves through strictly ordered tiers:

    POOLED -> MINED (trusted) -> VIRTUALIZED -> CONSOLIDATED (verified)

- MINED: a receipt exists in an L2 block
- VIRTUALIZED: the block's batch has been sequenced on L1
- CONSOLIDATED: the block's batch has been verified on L1

ConfirmationTracker submits a batch and waits, transaction by transaction,
until each reaches the requested tier.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from .config import ConfirmationTimeouts, PollPolicy
from .exceptions import (
    ConsolidationTimeoutError,
    MiningTimeoutError,
    TierRegressionError,
    VirtualizationTimeoutError,
    WaitTimeoutError,
)
from .logging_utils import ChainLogger, OperationType
from .polling import WaitLoop
from .signer import TransactionRequest, TransactionSigner
from .submitter import LedgerClient, TransactionHandle, TxSubmitter, receipt_block_number

logger = logging.getLogger(__name__)


class ConfirmationTier(IntEnum):
    """Finality tiers of an L2 transaction, in order."""
    POOLED = 0
    MINED = 1
    VIRTUALIZED = 2
    CONSOLIDATED = 3

    # Aliases
    TRUSTED = 1
    VERIFIED = 3

    @classmethod
    def parse(cls, value: Union["ConfirmationTier", int, str]) -> "ConfirmationTier":
        """
        Accept a tier, its integer level, or its name (case-insensitive).

        Raises:
            ValueError: For anything that is not a tier
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid confirmation level: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValueError(f"Invalid confirmation level: {value}") from None
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls.parse(int(text))
            member = cls.__members__.get(text.upper())
            if member is not None:
                return member
        raise ValueError(f"Invalid confirmation level: {value!r}")


@dataclass
class TrackedTransaction:
    """A submitted transaction and the tiers it has been observed at."""
    handle: TransactionHandle
    tier: ConfirmationTier = ConfirmationTier.POOLED
    block_number: Optional[int] = None
    history: List[Tuple[ConfirmationTier, datetime]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.tier, self.handle.submitted_at))

    @property
    def tx_hash(self) -> str:
        return self.handle.hash

    def advance(self, tier: ConfirmationTier, block_number: Optional[int] = None) -> None:
        """Record the next tier; tiers are entered one step at a time."""
        if tier <= self.tier:
            raise TierRegressionError(
                f"Transaction {self.tx_hash} observed at {tier.name} after reaching {self.tier.name}",
                details=self.error_details(),
            )
        if tier != self.tier + 1:
            raise ValueError(f"Cannot enter {tier.name} from {self.tier.name}")

        self.tier = tier
        if block_number is not None:
            self.block_number = block_number
        self.history.append((tier, datetime.now(timezone.utc)))

    def error_details(self) -> Dict[str, object]:
        return {
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "last_tier": self.tier.name,
        }


class ConfirmationTracker:
    """
    Submits transactions and tracks them to a confirmation tier.

    Transactions are processed sequentially in input order. Any failure
    aborts the whole batch; transactions already submitted stay on the
    ledger. The most recent `max_tracked` transactions stay available
    through get_transaction().
    """

    def __init__(
        self,
        submitter: Optional[TxSubmitter] = None,
        wait_loop: Optional[WaitLoop] = None,
        timeouts: Optional[ConfirmationTimeouts] = None,
        chain_logger: Optional[ChainLogger] = None,
        max_tracked: int = 1000,
    ):
        if submitter is not None:
            self._wait_loop = wait_loop or submitter.wait_loop
            self._timeouts = timeouts or submitter.timeouts
        else:
            self._wait_loop = wait_loop or WaitLoop()
            self._timeouts = timeouts or ConfirmationTimeouts()
        self._chain_logger = chain_logger or ChainLogger()
        self._submitter = submitter or TxSubmitter(
            wait_loop=self._wait_loop,
            timeouts=self._timeouts,
            chain_logger=self._chain_logger,
        )
        self._tracked: Dict[str, TrackedTransaction] = {}
        self._max_tracked = max_tracked

    @property
    def submitter(self) -> TxSubmitter:
        return self._submitter

    @property
    def tracked(self) -> List[TrackedTransaction]:
        return list(self._tracked.values())

    def get_transaction(self, tx_hash: str) -> Optional[TrackedTransaction]:
        return self._tracked.get(tx_hash)

    async def apply(
        self,
        transactions: Sequence[TransactionRequest],
        signer: TransactionSigner,
        client: LedgerClient,
        tier: Union[ConfirmationTier, int, str],
    ) -> Optional[List[int]]:
        """
        Submit transactions and wait until each reaches `tier`.

        Args:
            transactions: Unsigned transactions, in submission order
            signer: Signer for the target chain
            client: L2 ledger client
            tier: Target tier (enum, level 0-3 or name)

        Returns:
            None for POOLED, otherwise the block number of each transaction
            in input order

        Raises:
            ValueError: If tier is not a valid confirmation level
            SigningError, SubmissionError: Submission failures (partial effect)
            MiningTimeoutError, VirtualizationTimeoutError,
            ConsolidationTimeoutError: A tier was not reached in time
            TransactionFailedError: A transaction reverted
            TierRegressionError: A transaction fell back below a reached tier
            OperationCancelledError: The cancellation signal fired
        """
        tier = ConfirmationTier.parse(tier)

        async with self._chain_logger.operation_context(
            OperationType.APPLY, count=len(transactions), tier=tier.name
        ) as ctx:
            handles = await self._submitter.submit(
                transactions,
                signer,
                client,
                wait_for_inclusion=tier > ConfirmationTier.POOLED,
            )
            tracked = [self._track(handle) for handle in handles]

            if tier == ConfirmationTier.POOLED:
                return None

            blocks = []
            for tx in tracked:
                await self._track_to(tx, client, tier)
                blocks.append(tx.block_number)

            ctx.metadata["blocks"] = blocks
            return blocks

    def _track(self, handle: TransactionHandle) -> TrackedTransaction:
        tx = TrackedTransaction(handle=handle)
        self._tracked[handle.hash] = tx
        if len(self._tracked) > self._max_tracked:
            oldest = next(iter(self._tracked))
            del self._tracked[oldest]
        return tx

    async def _track_to(
        self,
        tx: TrackedTransaction,
        client: LedgerClient,
        tier: ConfirmationTier,
    ) -> None:
        block_number = tx.handle.block_number
        if block_number is None:
            try:
                block_number = await self._current_block(tx, client, self._timeouts.mining)
            except WaitTimeoutError as e:
                raise MiningTimeoutError(
                    f"Could not fetch the receipt of {tx.tx_hash}",
                    details={**e.details, **tx.error_details()},
                ) from e
        self._reach(tx, ConfirmationTier.MINED, block_number)

        stages = (
            (ConfirmationTier.VIRTUALIZED, self.wait_virtualized,
             self._timeouts.virtualization, VirtualizationTimeoutError),
            (ConfirmationTier.CONSOLIDATED, self.wait_consolidated,
             self._timeouts.consolidation, ConsolidationTimeoutError),
        )
        for stage, wait, policy, timeout_error in stages:
            if tier < stage:
                break
            try:
                await wait(block_number, client)
            except WaitTimeoutError as e:
                e.details.update(tx.error_details())
                raise
            await self._check_still_included(tx, client, policy, timeout_error)
            self._reach(tx, stage)

    def _reach(self, tx: TrackedTransaction, tier: ConfirmationTier, block_number: Optional[int] = None) -> None:
        tx.advance(tier, block_number)
        self._chain_logger.log_tier_reached(tx.tx_hash, tier.name, tx.block_number)

    async def _current_block(self, tx: TrackedTransaction, client: LedgerClient, policy: PollPolicy) -> int:
        """
        Fetch the block the transaction is currently included in.

        Transient RPC failures are retried within `policy`; a missing receipt
        is not retried.
        """
        async def fetch_receipt() -> Optional[Dict[str, Any]]:
            return await client.get_transaction_receipt(tx.tx_hash)

        receipt = await self._wait_loop.wait_for(
            fetch_receipt,
            policy,
            accept=lambda _: True,
            description=f"receipt of {tx.tx_hash}",
        )
        if not receipt:
            raise TierRegressionError(
                f"Receipt of mined transaction {tx.tx_hash} disappeared",
                details=tx.error_details(),
            )
        return receipt_block_number(receipt)

    async def _check_still_included(
        self,
        tx: TrackedTransaction,
        client: LedgerClient,
        policy: PollPolicy,
        timeout_error: Type[WaitTimeoutError],
    ) -> None:
        try:
            block_number = await self._current_block(tx, client, policy)
        except WaitTimeoutError as e:
            raise timeout_error(
                f"Could not re-check inclusion of {tx.tx_hash} within {policy.timeout}s",
                details={**e.details, **tx.error_details()},
            ) from e

        if block_number != tx.block_number:
            raise TierRegressionError(
                f"Transaction {tx.tx_hash} moved from block {tx.block_number} to {block_number}",
                details={**tx.error_details(), "observed_block_number": block_number},
            )

    async def wait_virtualized(
        self,
        block_number: int,
        client: LedgerClient,
        policy: Optional[PollPolicy] = None,
    ) -> None:
        """
        Wait until the L2 block belongs to a virtual batch.

        Raises:
            VirtualizationTimeoutError: If the deadline elapses first
        """
        policy = policy or self._timeouts.virtualization

        async def is_virtualized() -> bool:
            return await client.is_block_virtualized(block_number)

        async with self._chain_logger.operation_context(
            OperationType.WAIT_VIRTUALIZED, block_number=block_number
        ):
            try:
                await self._wait_loop.wait_until(
                    is_virtualized, policy, description=f"virtualization of block {block_number}"
                )
            except WaitTimeoutError as e:
                raise VirtualizationTimeoutError(
                    f"Block {block_number} not virtualized after {policy.timeout}s",
                    details={**e.details, "block_number": block_number},
                ) from e

    async def wait_consolidated(
        self,
        block_number: int,
        client: LedgerClient,
        policy: Optional[PollPolicy] = None,
    ) -> None:
        """
        Wait until the L2 block belongs to a verified batch.

        Raises:
            ConsolidationTimeoutError: If the deadline elapses first
        """
        policy = policy or self._timeouts.consolidation

        async def is_consolidated() -> bool:
            return await client.is_block_consolidated(block_number)

        async with self._chain_logger.operation_context(
            OperationType.WAIT_CONSOLIDATED, block_number=block_number
        ):
            try:
                await self._wait_loop.wait_until(
                    is_consolidated, policy, description=f"consolidation of block {block_number}"
                )
            except WaitTimeoutError as e:
                raise ConsolidationTimeoutError(
                    f"Block {block_number} not consolidated after {policy.timeout}s",
                    details={**e.details, "block_number": block_number},
                ) from e
