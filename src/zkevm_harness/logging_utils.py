"""
Structured logging for transaction lifecycles.

Features:
- Operation timing via an async context manager
- Transaction lifecycle logging (submitted, tier reached, failed)
- Optional address masking for shared CI logs
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import LoggingConfig

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Kinds of harness operations."""
    SUBMIT_BATCH = "submit_batch"
    WAIT_MINED = "wait_mined"
    WAIT_VIRTUALIZED = "wait_virtualized"
    WAIT_CONSOLIDATED = "wait_consolidated"
    APPLY = "apply"


def mask_address(address: str) -> str:
    """Mask middle portion of address for privacy."""
    if len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


@dataclass
class OperationContext:
    """Context for one timed operation."""
    operation_id: str
    operation_type: OperationType
    chain: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "chain": self.chain,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class TransactionLog:
    """Lifecycle record of one submitted transaction."""
    tx_hash: str
    chain: str
    sender: str
    nonce: int
    submitted_at: datetime
    status: str = "submitted"
    block_number: Optional[int] = None
    tiers: List[Tuple[str, str]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self, mask_addresses: bool = False) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "chain": self.chain,
            "sender": mask_address(self.sender) if mask_addresses else self.sender,
            "nonce": self.nonce,
            "submitted_at": self.submitted_at.isoformat(),
            "status": self.status,
            "block_number": self.block_number,
            "tiers": [{"tier": tier, "at": at} for tier, at in self.tiers],
            "error": self.error,
        }


class ChainLogger:
    """
    Logger for transaction lifecycles.

    Keeps a bounded history of transaction records so tests and the CLI can
    inspect what was logged.
    """

    def __init__(
        self,
        name: str = "zkevm_harness",
        config: Optional[LoggingConfig] = None,
        chain: str = "l2",
    ):
        self._logger = logging.getLogger(name)
        self._config = config or LoggingConfig()
        self._chain = chain
        self._operation_counter = 0
        self._transactions: Dict[str, TransactionLog] = {}
        self._max_history = 1000

    @property
    def config(self) -> LoggingConfig:
        return self._config

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    def _get_level(self, level_str: str) -> int:
        return getattr(logging, level_str.upper(), logging.INFO)

    @asynccontextmanager
    async def operation_context(self, operation_type: OperationType, **metadata):
        """
        Time an operation and log its outcome.

        Usage:
            async with chain_logger.operation_context(OperationType.APPLY, count=2) as ctx:
                ...
                ctx.metadata["blocks"] = blocks
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            chain=self._chain,
            metadata=metadata,
        )

        self._logger.debug(
            f"Starting {operation_type.value} on {self._chain}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)
        except BaseException as e:
            ctx.complete(success=False, error=str(e) or type(e).__name__)
            raise
        finally:
            level = (
                self._get_level(self._config.error_level)
                if not ctx.success
                else self._get_level(self._config.transaction_level)
            )
            self._logger.log(
                level,
                f"Completed {operation_type.value} on {self._chain} in {ctx.duration_ms:.0f}ms "
                f"(success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_transaction_submitted(self, tx_hash: str, sender: str, nonce: int) -> None:
        entry = TransactionLog(
            tx_hash=tx_hash,
            chain=self._chain,
            sender=sender,
            nonce=nonce,
            submitted_at=datetime.now(timezone.utc),
        )
        self._transactions[tx_hash] = entry
        if len(self._transactions) > self._max_history:
            oldest = next(iter(self._transactions))
            del self._transactions[oldest]

        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Sending Tx {tx_hash} Nonce {nonce}",
            extra={"transaction": entry.to_dict(self._config.mask_addresses)},
        )

    def log_tier_reached(self, tx_hash: str, tier: str, block_number: Optional[int] = None) -> None:
        entry = self._transactions.get(tx_hash)
        if entry is not None:
            entry.status = tier
            if block_number is not None:
                entry.block_number = block_number
            entry.tiers.append((tier, datetime.now(timezone.utc).isoformat()))

        self._logger.log(
            self._get_level(self._config.confirmation_level),
            f"Transaction {tx_hash} reached {tier}"
            + (f" in block {block_number}" if block_number is not None else ""),
            extra={"transaction": entry.to_dict(self._config.mask_addresses) if entry else {}},
        )

    def log_transaction_failed(self, tx_hash: str, error: str) -> None:
        entry = self._transactions.get(tx_hash)
        if entry is not None:
            entry.status = "failed"
            entry.error = error

        self._logger.log(
            self._get_level(self._config.error_level),
            f"Transaction failed: {tx_hash} - {error}",
            extra={"transaction": entry.to_dict(self._config.mask_addresses) if entry else {}},
        )

    def get_transaction_log(self, tx_hash: str) -> Optional[TransactionLog]:
        return self._transactions.get(tx_hash)
