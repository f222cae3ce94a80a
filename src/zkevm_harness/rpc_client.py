"""
JSON-RPC client for L1 and L2 ledger endpoints.

Features:
- Multi-endpoint support with priority-ordered failover
- Chain ID validation on connection
- Health tracking per endpoint
- zkEVM status methods (virtual/verified batches, block tier queries)
- Injectable httpx transport for tests
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .config import HarnessSettings, RPCEndpointConfig
from .exceptions import HarnessError, TransientError

logger = logging.getLogger(__name__)

# JSON-RPC error codes worth retrying on another endpoint
RETRYABLE_RPC_CODES = (-32000, -32005)


class EndpointStatus(str, Enum):
    """Health status of an RPC endpoint."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class EndpointHealth:
    """Health tracking for an RPC endpoint."""
    url: str
    status: EndpointStatus = EndpointStatus.UNKNOWN
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_latency_ms: float = 0.0
    last_error: Optional[str] = None
    max_consecutive_failures: int = 3

    def record_success(self, latency_ms: float) -> None:
        self.consecutive_failures = 0
        self.total_requests += 1
        self.last_success = datetime.now(timezone.utc)
        self.last_latency_ms = latency_ms
        self.status = EndpointStatus.HEALTHY

    def record_failure(self, error: str) -> None:
        self.consecutive_failures += 1
        self.total_requests += 1
        self.total_failures += 1
        self.last_failure = datetime.now(timezone.utc)
        self.last_error = error

        if self.consecutive_failures >= self.max_consecutive_failures:
            self.status = EndpointStatus.UNHEALTHY

    def priority_score(self, base_priority: int) -> float:
        """Lower score = tried earlier."""
        score = float(base_priority * 100)
        if self.status == EndpointStatus.UNHEALTHY:
            score += 10000
        score += self.consecutive_failures * 100
        return score


class RPCError(HarnessError):
    """Non-retryable error returned by a JSON-RPC endpoint."""

    error_code = "RPC_ERROR"

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message, details={"code": code, "data": data})


class ChainIDMismatchError(HarnessError):
    """Raised when the endpoint serves a different chain than expected."""

    error_code = "CHAIN_ID_MISMATCH"

    def __init__(self, name: str, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Chain ID mismatch for {name}: expected {expected}, got {received}",
            details={"expected": expected, "received": received},
        )


class AllEndpointsFailedError(TransientError):
    """Raised when every endpoint failed at the transport level."""

    error_code = "ALL_ENDPOINTS_FAILED"

    def __init__(self, name: str, errors: List[Tuple[str, str]]):
        self.errors = errors
        error_summary = "; ".join([f"{url}: {err}" for url, err in errors[:3]])
        super().__init__(
            f"All RPC endpoints failed for {name}. Errors: {error_summary}",
            details={"errors": [{"url": url, "error": err} for url, err in errors]},
        )


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


class LedgerRPCClient:
    """
    JSON-RPC client with failover, used for both L1 and L2 nodes.

    Transport failures and retryable RPC errors move on to the next
    endpoint; when every endpoint fails, AllEndpointsFailedError (a
    TransientError) is raised so polling loops keep retrying.
    """

    def __init__(
        self,
        name: str,
        endpoints: Sequence[RPCEndpointConfig],
        expected_chain_id: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not endpoints:
            raise ValueError(f"No RPC endpoints configured for {name}")

        self._name = name
        self._expected_chain_id = expected_chain_id
        self._transport = transport
        self._request_id = 0
        self._http_client: Optional[httpx.AsyncClient] = None
        self._connected = False
        self._verified_chain_id: Optional[int] = None

        self._endpoints: List[Tuple[RPCEndpointConfig, EndpointHealth]] = [
            (
                config,
                EndpointHealth(url=config.url, max_consecutive_failures=config.max_consecutive_failures),
            )
            for config in sorted(endpoints, key=lambda e: e.priority)
        ]

        logger.info(f"Initialized RPC client for {name} with {len(self._endpoints)} endpoints")

    @classmethod
    def for_l2(cls, settings: HarnessSettings, **kwargs) -> "LedgerRPCClient":
        return cls(
            "l2",
            settings.l2_endpoints(),
            expected_chain_id=settings.l2_chain_id if settings.validate_chain_id else None,
            **kwargs,
        )

    @classmethod
    def for_l1(cls, settings: HarnessSettings, **kwargs) -> "LedgerRPCClient":
        return cls(
            "l1",
            settings.l1_endpoints(),
            expected_chain_id=settings.l1_chain_id if settings.validate_chain_id else None,
            **kwargs,
        )

    @property
    def name(self) -> str:
        return self._name

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._endpoints[0][0].timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._http_client

    async def connect(self) -> None:
        """Validate the chain ID of the endpoint, if an expected one is configured."""
        if self._connected:
            return

        if self._expected_chain_id is not None:
            chain_id = await self._fetch_chain_id()
            if chain_id != self._expected_chain_id:
                raise ChainIDMismatchError(self._name, self._expected_chain_id, chain_id)
            self._verified_chain_id = chain_id
            logger.info(f"Chain ID validated for {self._name}: {chain_id}")

        self._connected = True

    async def _fetch_chain_id(self) -> int:
        result = await self._call_internal("eth_chainId", [], skip_connect=True)
        return _to_int(result)

    def _ordered_endpoints(self) -> List[Tuple[RPCEndpointConfig, EndpointHealth]]:
        return sorted(self._endpoints, key=lambda pair: pair[1].priority_score(pair[0].priority))

    async def _call_internal(
        self,
        method: str,
        params: List[Any],
        skip_connect: bool = False,
    ) -> Any:
        if not skip_connect and not self._connected:
            await self.connect()

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        errors: List[Tuple[str, str]] = []

        for config, health in self._ordered_endpoints():
            start_time = time.time()
            try:
                response = await self._get_client().post(
                    config.url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=config.timeout_seconds,
                )
                latency_ms = (time.time() - start_time) * 1000
                response.raise_for_status()
                result = response.json()
            except (httpx.HTTPError, ValueError) as e:
                latency_ms = (time.time() - start_time) * 1000
                health.record_failure(str(e))
                errors.append((config.url, str(e)))
                logger.warning(f"RPC call {method} to {config.url} failed after {latency_ms:.0f}ms: {e}")
                continue

            if "error" in result:
                error = result["error"] or {}
                error_msg = str(error)
                error_code = error.get("code", 0)
                health.record_failure(error_msg)
                errors.append((config.url, error_msg))

                if error_code in RETRYABLE_RPC_CODES:
                    logger.warning(f"RPC error from {config.url}: {error_msg}, trying next endpoint")
                    continue

                raise RPCError(
                    message=error.get("message", error_msg),
                    code=error_code,
                    data=error.get("data"),
                )

            health.record_success(latency_ms)
            logger.debug(f"RPC call {method} to {config.url} succeeded in {latency_ms:.0f}ms")
            return result.get("result")

        raise AllEndpointsFailedError(self._name, errors)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make a JSON-RPC call with automatic failover.

        Raises:
            ChainIDMismatchError: If chain ID validation fails
            RPCError: If the endpoint returns a non-retryable error
            AllEndpointsFailedError: If all endpoints fail
        """
        return await self._call_internal(method, params or [])

    # ------------------------------------------------------------------
    # Ethereum methods
    # ------------------------------------------------------------------

    async def get_chain_id(self) -> int:
        """Get chain ID (cached after validation)."""
        if self._verified_chain_id is not None:
            return self._verified_chain_id
        return await self._fetch_chain_id()

    async def get_block_number(self) -> int:
        return _to_int(await self.call("eth_blockNumber"))

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        """Get transaction count (nonce) for address."""
        return _to_int(await self.call("eth_getTransactionCount", [address, block]))

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction, returning its hash."""
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    # ------------------------------------------------------------------
    # zkEVM methods
    # ------------------------------------------------------------------

    async def is_block_virtualized(self, block_number: int) -> bool:
        """Whether the block belongs to a batch sequenced on L1."""
        return bool(await self.call("zkevm_isBlockVirtualized", [hex(block_number)]))

    async def is_block_consolidated(self, block_number: int) -> bool:
        """Whether the block belongs to a batch verified on L1."""
        return bool(await self.call("zkevm_isBlockConsolidated", [hex(block_number)]))

    async def get_batch_number_by_block_number(self, block_number: int) -> int:
        return _to_int(await self.call("zkevm_batchNumberByBlockNumber", [hex(block_number)]))

    async def get_virtual_batch_number(self) -> int:
        return _to_int(await self.call("zkevm_virtualBatchNumber"))

    async def get_verified_batch_number(self) -> int:
        return _to_int(await self.call("zkevm_verifiedBatchNumber"))

    def get_endpoint_stats(self) -> List[Dict[str, Any]]:
        """Get statistics for all endpoints."""
        return [
            {
                "url": config.url,
                "priority": config.priority,
                "status": health.status.value,
                "consecutive_failures": health.consecutive_failures,
                "total_requests": health.total_requests,
                "total_failures": health.total_failures,
                "last_latency_ms": round(health.last_latency_ms, 2),
                "last_error": health.last_error,
            }
            for config, health in self._endpoints
        ]

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        self._connected = False

    async def __aenter__(self) -> "LedgerRPCClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
