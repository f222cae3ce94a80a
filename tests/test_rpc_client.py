"""
Tests for the JSON-RPC ledger client.
"""
import json

import httpx
import pytest

from zkevm_harness.config import HarnessSettings, RPCEndpointConfig
from zkevm_harness.exceptions import TransientError
from zkevm_harness.rpc_client import (
    AllEndpointsFailedError,
    ChainIDMismatchError,
    EndpointStatus,
    LedgerRPCClient,
    RPCError,
)

PRIMARY = "http://primary:8124"
FALLBACK = "http://fallback:8124"


class FakeNode:
    """JSON-RPC node served through httpx.MockTransport."""

    def __init__(self, results=None, chain_id=195, down=(), errors=None):
        self.results = results or {}
        self.chain_id = chain_id
        self.down = set(down)
        self.errors = errors or {}
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).rstrip("/")
        payload = json.loads(request.content)
        self.calls.append((url, payload["method"], payload["params"]))

        if url in self.down:
            raise httpx.ConnectError("connection refused", request=request)

        method = payload["method"]
        if method in self.errors:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": self.errors[method]})
        if method == "eth_chainId":
            result = hex(self.chain_id)
        else:
            result = self.results.get(method)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    def methods(self):
        return [method for _, method, _ in self.calls]


def make_client(node, urls=(PRIMARY,), expected_chain_id=195):
    endpoints = [RPCEndpointConfig(url=url, priority=i) for i, url in enumerate(urls)]
    return LedgerRPCClient(
        "l2",
        endpoints,
        expected_chain_id=expected_chain_id,
        transport=httpx.MockTransport(node),
    )


class TestConnect:
    """Test chain id validation."""

    @pytest.mark.asyncio
    async def test_validates_chain_id(self):
        node = FakeNode(results={"eth_blockNumber": "0x10"})

        async with make_client(node) as client:
            assert await client.get_block_number() == 16
            assert await client.get_chain_id() == 195

        assert node.methods() == ["eth_chainId", "eth_blockNumber"]

    @pytest.mark.asyncio
    async def test_chain_id_mismatch(self):
        node = FakeNode(chain_id=1)
        client = make_client(node)

        with pytest.raises(ChainIDMismatchError) as exc_info:
            await client.get_block_number()

        assert exc_info.value.details == {"expected": 195, "received": 1}
        await client.close()

    @pytest.mark.asyncio
    async def test_no_validation_without_expected_chain(self):
        node = FakeNode(results={"eth_blockNumber": "0x1"})
        client = make_client(node, expected_chain_id=None)

        await client.get_block_number()

        assert node.methods() == ["eth_blockNumber"]
        await client.close()

    def test_requires_endpoints(self):
        with pytest.raises(ValueError):
            LedgerRPCClient("l2", [])


class TestFailover:
    """Test endpoint failover."""

    @pytest.mark.asyncio
    async def test_fails_over_to_next_endpoint(self):
        node = FakeNode(results={"eth_blockNumber": "0x2a"}, down={PRIMARY})
        client = make_client(node, urls=(PRIMARY, FALLBACK), expected_chain_id=None)

        assert await client.get_block_number() == 42

        stats = {s["url"]: s for s in client.get_endpoint_stats()}
        assert stats[PRIMARY]["total_failures"] == 1
        assert stats[FALLBACK]["status"] == EndpointStatus.HEALTHY.value
        await client.close()

    @pytest.mark.asyncio
    async def test_all_endpoints_failed_is_transient(self):
        node = FakeNode(down={PRIMARY, FALLBACK})
        client = make_client(node, urls=(PRIMARY, FALLBACK), expected_chain_id=None)

        with pytest.raises(AllEndpointsFailedError) as exc_info:
            await client.get_block_number()

        assert isinstance(exc_info.value, TransientError)
        assert len(exc_info.value.errors) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_retryable_rpc_error_moves_on(self):
        node = FakeNode(errors={"eth_blockNumber": {"code": -32005, "message": "limit exceeded"}})
        client = make_client(node, urls=(PRIMARY, FALLBACK), expected_chain_id=None)

        with pytest.raises(AllEndpointsFailedError):
            await client.get_block_number()

        assert [url for url, _, _ in node.calls] == [PRIMARY, FALLBACK]
        await client.close()

    @pytest.mark.asyncio
    async def test_non_retryable_rpc_error(self):
        node = FakeNode(errors={"eth_sendRawTransaction": {"code": -32602, "message": "invalid params"}})
        client = make_client(node, urls=(PRIMARY, FALLBACK), expected_chain_id=None)

        with pytest.raises(RPCError) as exc_info:
            await client.send_raw_transaction("0xdead")

        assert exc_info.value.code == -32602
        assert len(node.calls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_unhealthy_endpoint_is_tried_last(self):
        node = FakeNode(results={"eth_blockNumber": "0x1"}, down={PRIMARY})
        client = make_client(node, urls=(PRIMARY, FALLBACK), expected_chain_id=None)

        for _ in range(3):
            await client.get_block_number()
        node.calls.clear()
        await client.get_block_number()

        assert node.calls[0][0] == FALLBACK
        await client.close()


class TestMethods:
    """Test the L2 methods used by the harness."""

    @pytest.mark.asyncio
    async def test_send_raw_transaction_adds_prefix(self):
        node = FakeNode(results={"eth_sendRawTransaction": "0x" + "b" * 64})
        client = make_client(node, expected_chain_id=None)

        tx_hash = await client.send_raw_transaction("f86c")

        assert tx_hash == "0x" + "b" * 64
        assert node.calls[0][2] == ["0xf86c"]
        await client.close()

    @pytest.mark.asyncio
    async def test_receipt_missing(self):
        client = make_client(FakeNode(), expected_chain_id=None)

        assert await client.get_transaction_receipt("0x" + "a" * 64) is None
        await client.close()

    @pytest.mark.asyncio
    async def test_nonce(self):
        node = FakeNode(results={"eth_getTransactionCount": "0x5"})
        client = make_client(node, expected_chain_id=None)

        assert await client.get_nonce("0xabc") == 5
        assert node.calls[0][2] == ["0xabc", "pending"]
        await client.close()

    @pytest.mark.asyncio
    async def test_zkevm_block_queries(self):
        node = FakeNode(results={
            "zkevm_isBlockVirtualized": True,
            "zkevm_isBlockConsolidated": False,
            "zkevm_batchNumberByBlockNumber": "0x7",
            "zkevm_virtualBatchNumber": "0x9",
            "zkevm_verifiedBatchNumber": "0x8",
        })
        client = make_client(node, expected_chain_id=None)

        assert await client.is_block_virtualized(100) is True
        assert await client.is_block_consolidated(100) is False
        assert await client.get_batch_number_by_block_number(100) == 7
        assert await client.get_virtual_batch_number() == 9
        assert await client.get_verified_batch_number() == 8
        assert node.calls[0][2] == ["0x64"]
        await client.close()


class TestFromSettings:
    def test_l2_endpoints_with_fallbacks(self):
        settings = HarnessSettings(
            l2_rpc_url=PRIMARY,
            l2_rpc_fallback_urls=f"{FALLBACK}, {PRIMARY},",
        )

        client = LedgerRPCClient.for_l2(settings)

        assert [s["url"] for s in client.get_endpoint_stats()] == [PRIMARY, FALLBACK]
        assert client.name == "l2"

    def test_l1(self):
        client = LedgerRPCClient.for_l1(HarnessSettings(l1_rpc_url="http://l1:8545"))

        assert [s["url"] for s in client.get_endpoint_stats()] == ["http://l1:8545"]
