"""
zkEVM test harness: network registry and transaction confirmation tracking.

Resolve networks by name or genesis hash, submit transactions to an L2
ledger and follow them through pooled, mined, virtualized and consolidated
tiers.
"""

from .chainspec import ChainSpec, ConsensusKind, NetworkDescriptor
from .config import (
    ConfirmationTimeouts,
    HarnessSettings,
    LoggingConfig,
    PollPolicy,
    RPCEndpointConfig,
    get_settings,
    load_settings,
)
from .confirmation import ConfirmationTier, ConfirmationTracker, TrackedTransaction
from .exceptions import (
    ConfigParseError,
    ConsolidationTimeoutError,
    HarnessError,
    InitializationError,
    MiningTimeoutError,
    NetworkRegistryError,
    OperationCancelledError,
    SigningError,
    SubmissionError,
    TierRegressionError,
    TransactionFailedError,
    TransientError,
    UnknownNetworkError,
    VirtualizationTimeoutError,
    WaitTimeoutError,
)
from .logging_utils import ChainLogger
from .polling import WaitLoop
from .registry import (
    DynamicChainSpecStore,
    NetworkRegistry,
    build_static_registry,
    registry_from_settings,
)
from .rpc_client import AllEndpointsFailedError, ChainIDMismatchError, LedgerRPCClient, RPCError
from .signer import AccountSigner, SignedTransaction, TransactionRequest, TransactionSigner
from .submitter import TransactionHandle, TxSubmitter

__all__ = [
    # Chain specs and registry
    "ChainSpec",
    "ConsensusKind",
    "NetworkDescriptor",
    "NetworkRegistry",
    "DynamicChainSpecStore",
    "build_static_registry",
    "registry_from_settings",
    # Config
    "HarnessSettings",
    "get_settings",
    "load_settings",
    "PollPolicy",
    "ConfirmationTimeouts",
    "RPCEndpointConfig",
    "LoggingConfig",
    # Submission and tracking
    "WaitLoop",
    "TxSubmitter",
    "TransactionHandle",
    "ConfirmationTier",
    "ConfirmationTracker",
    "TrackedTransaction",
    "TransactionRequest",
    "TransactionSigner",
    "SignedTransaction",
    "AccountSigner",
    "LedgerRPCClient",
    "ChainLogger",
    # Errors
    "HarnessError",
    "NetworkRegistryError",
    "UnknownNetworkError",
    "ConfigParseError",
    "InitializationError",
    "SigningError",
    "SubmissionError",
    "TransactionFailedError",
    "WaitTimeoutError",
    "MiningTimeoutError",
    "VirtualizationTimeoutError",
    "ConsolidationTimeoutError",
    "OperationCancelledError",
    "TierRegressionError",
    "TransientError",
    "AllEndpointsFailedError",
    "RPCError",
    "ChainIDMismatchError",
]

__version__ = "0.1.0"
