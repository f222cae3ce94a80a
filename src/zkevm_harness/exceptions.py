"""Exception hierarchy for the zkEVM harness.

All harness exceptions inherit from HarnessError, which carries:
- error_code: Machine-readable error code (e.g., "UNKNOWN_NETWORK")
- message: Human-readable error message
- details: Additional context (tx hash, block number, last tier reached)
- to_dict(): Serializable form for logs and CLI output

Usage:
    from zkevm_harness.exceptions import HarnessError, UnknownNetworkError

    try:
        descriptor = registry.resolve("hermez-cardona")
    except UnknownNetworkError as e:
        logger.warning(e.to_dict())
"""
from __future__ import annotations

from typing import Any, Optional


class HarnessError(Exception):
    """Base exception for all harness errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "HARNESS_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Network registry
# =============================================================================

class NetworkRegistryError(HarnessError):
    """Base class for network resolution failures."""

    error_code = "NETWORK_REGISTRY_ERROR"


class UnknownNetworkError(NetworkRegistryError):
    """Identifier is neither statically known nor resolvable from the dynamic store."""

    error_code = "UNKNOWN_NETWORK"

    def __init__(
        self,
        identifier: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["identifier"] = identifier
        self.identifier = identifier
        super().__init__(f"Unknown network '{identifier}'", details=details)


class ConfigParseError(NetworkRegistryError):
    """A chain-spec document could not be read or parsed."""

    error_code = "CONFIG_PARSE_ERROR"

    def __init__(
        self,
        source: str,
        reason: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["source"] = source
        details["reason"] = reason
        self.source = source
        self.reason = reason
        super().__init__(f"Could not parse chain spec {source}: {reason}", details=details)


class InitializationError(NetworkRegistryError):
    """A packaged chain spec is malformed.

    Raised while building the static registry. It signals a packaging
    defect, so entry points are expected to abort rather than recover.
    """

    error_code = "INITIALIZATION_ERROR"


# =============================================================================
# Submission
# =============================================================================

class SigningError(HarnessError):
    """The signer rejected a transaction (bad key material, wrong chain domain)."""

    error_code = "SIGNING_ERROR"


class SubmissionError(HarnessError):
    """The ledger endpoint rejected a signed transaction."""

    error_code = "SUBMISSION_ERROR"


class TransactionFailedError(HarnessError):
    """A transaction was mined but its receipt reports failure."""

    error_code = "TRANSACTION_FAILED"

    def __init__(
        self,
        tx_hash: str,
        block_number: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["tx_hash"] = tx_hash
        details["block_number"] = block_number
        self.tx_hash = tx_hash
        self.block_number = block_number
        super().__init__(f"Transaction {tx_hash} has failed", details=details)


# =============================================================================
# Waiting
# =============================================================================

class WaitTimeoutError(HarnessError):
    """A polled condition did not hold before its deadline."""

    error_code = "WAIT_TIMEOUT"


class MiningTimeoutError(WaitTimeoutError):
    """Transaction receipt did not appear in time."""

    error_code = "MINING_TIMEOUT"


class VirtualizationTimeoutError(WaitTimeoutError):
    """L2 block was not reported as part of a virtual batch in time."""

    error_code = "VIRTUALIZATION_TIMEOUT"


class ConsolidationTimeoutError(WaitTimeoutError):
    """L2 block was not reported as part of a verified batch in time."""

    error_code = "CONSOLIDATION_TIMEOUT"


class OperationCancelledError(HarnessError):
    """The caller's cancellation signal aborted the operation."""

    error_code = "CANCELLED"


class TierRegressionError(HarnessError):
    """A transaction was observed below a tier it had already reached."""

    error_code = "TIER_REGRESSION"


# =============================================================================
# Transport
# =============================================================================

class TransientError(HarnessError):
    """Failure that a polling loop may retry until its deadline."""

    error_code = "TRANSIENT_ERROR"
