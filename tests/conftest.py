"""
Pytest configuration for zkevm-harness tests.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from eth_utils import decode_hex, encode_hex, keccak

from zkevm_harness.config import DEFAULT_L2_CHAIN_ID, DEFAULT_SEQUENCER_PRIVATE_KEY
from zkevm_harness.polling import WaitLoop
from zkevm_harness.signer import AccountSigner, TransactionRequest


class FakeClock:
    """Simulated monotonic clock; sleeping advances it instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class RecordingLedger:
    """
    In-memory L2 ledger double.

    Every accepted transaction is mined immediately into `block_number`.
    Blocks become virtualized once the clock reaches `virtualized_at` and
    consolidated once it reaches `consolidated_at`.
    """

    def __init__(
        self,
        clock: FakeClock,
        block_number: int = 100,
        virtualized_at: float = 30.0,
        consolidated_at: float = 90.0,
        mine: bool = True,
    ):
        self.clock = clock
        self.block_number = block_number
        self.virtualized_at = virtualized_at
        self.consolidated_at = consolidated_at
        self.mine = mine
        self.sent: List[str] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.reject_at: Optional[int] = None
        self.revert: set = set()
        self.virtualized_queries: List[int] = []
        self.consolidated_queries: List[int] = []

    async def send_raw_transaction(self, signed_tx: str) -> str:
        if self.reject_at is not None and len(self.sent) == self.reject_at:
            raise RuntimeError("nonce too low")

        tx_hash = encode_hex(keccak(decode_hex(signed_tx)))
        self.sent.append(signed_tx)
        if self.mine:
            self.receipts[tx_hash] = {
                "transactionHash": tx_hash,
                "blockNumber": hex(self.block_number),
                "status": "0x0" if len(self.sent) - 1 in self.revert else "0x1",
            }
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.receipts.get(tx_hash)

    async def is_block_virtualized(self, block_number: int) -> bool:
        self.virtualized_queries.append(block_number)
        return self.clock.now >= self.virtualized_at

    async def is_block_consolidated(self, block_number: int) -> bool:
        self.consolidated_queries.append(block_number)
        return self.clock.now >= self.consolidated_at


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wait_loop(clock):
    """WaitLoop running on the simulated clock."""
    return WaitLoop(clock=clock.time, sleep=clock.sleep)


@pytest.fixture
def ledger(clock):
    return RecordingLedger(clock)


@pytest.fixture
def signer():
    """Sequencer signer on the devnet L2 chain, nonces from 0."""
    return AccountSigner(DEFAULT_SEQUENCER_PRIVATE_KEY, DEFAULT_L2_CHAIN_ID, start_nonce=0)


@pytest.fixture
def sample_eth_address():
    """Valid Ethereum address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def transfers(sample_eth_address):
    """Factory for simple value transfers."""
    def make(count: int = 2, value: int = 1):
        return [TransactionRequest(to_address=sample_eth_address, value=value) for _ in range(count)]
    return make


@pytest.fixture
def config_root(tmp_path):
    """Config root with an empty dynamic-configs directory."""
    (tmp_path / "dynamic-configs").mkdir()
    return tmp_path
