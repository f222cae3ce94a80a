"""
Tests for the zkevm-harness CLI.
"""
import json
import logging

import pytest
from click.testing import CliRunner
from rich.console import Console

from zkevm_harness import cli as cli_module
from zkevm_harness.cli import EXIT_HARNESS_ERROR, EXIT_INITIALIZATION_ERROR, cli
from zkevm_harness.exceptions import InitializationError
from zkevm_harness.logging_config import CorrelationIDFilter

CARDONA_GENESIS = "0x676c1a76a6c5855a32bdf7c61977a0d1510088a4eeac1330466453b3d08b60b9"


@pytest.fixture(autouse=True)
def isolate_cli(monkeypatch):
    """Wide console output; the CLI reconfigures the root logger, so put it back after each test."""
    monkeypatch.setattr(cli_module, "console", Console(width=200))
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if any(isinstance(f, CorrelationIDFilter) for f in handler.filters):
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, config_root, *args):
    return runner.invoke(cli, ["--config-root", str(config_root), *args], obj={})


class FakeL2Client:
    """Stands in for LedgerRPCClient in CLI commands."""

    virtualized = True
    consolidated = True

    def __init__(self):
        self.queries = []

    @classmethod
    def for_l2(cls, settings, **kwargs):
        return cls()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def is_block_virtualized(self, block_number):
        self.queries.append(("virtualized", block_number))
        return self.virtualized

    async def is_block_consolidated(self, block_number):
        self.queries.append(("consolidated", block_number))
        return self.consolidated


class TestNetworks:
    """Test the networks command group."""

    def test_list(self, runner, config_root):
        result = invoke(runner, config_root, "networks", "list")

        assert result.exit_code == 0, result.output
        assert "hermez-cardona" in result.output
        assert "2442" in result.output

    def test_show_by_name(self, runner, config_root):
        result = invoke(runner, config_root, "networks", "show", "mainnet")

        assert result.exit_code == 0, result.output
        assert "Chain ID: 1" in result.output
        assert "london" in result.output

    def test_show_by_genesis_hash(self, runner, config_root):
        result = invoke(runner, config_root, "networks", "show", CARDONA_GENESIS)

        assert result.exit_code == 0, result.output
        assert "hermez-cardona" in result.output

    def test_show_dynamic(self, runner, config_root):
        path = config_root / "dynamic-configs" / "mynet-chainspec.json"
        path.write_text(json.dumps({"chainId": 4242, "consensus": "ethash"}))

        result = invoke(runner, config_root, "networks", "show", "mynet")

        assert result.exit_code == 0, result.output
        assert "4242" in result.output

    def test_show_unknown(self, runner, config_root):
        result = invoke(runner, config_root, "networks", "show", "nonexistent")

        assert result.exit_code == EXIT_HARNESS_ERROR
        assert "UNKNOWN_NETWORK" in result.output

    def test_initialization_failure(self, runner, config_root, monkeypatch):
        def broken(settings):
            raise InitializationError("Packaged chain spec for mainnet is unusable")

        monkeypatch.setattr(cli_module, "registry_from_settings", broken)

        result = invoke(runner, config_root, "networks", "list")

        assert result.exit_code == EXIT_INITIALIZATION_ERROR
        assert "INITIALIZATION_ERROR" in result.output


class TestBlockStatus:
    def test_virtualized(self, runner, config_root, monkeypatch):
        monkeypatch.setattr(cli_module, "LedgerRPCClient", FakeL2Client)

        result = invoke(runner, config_root, "block-status", "100")

        assert result.exit_code == 0, result.output
        assert "virtualized" in result.output

    def test_consolidated(self, runner, config_root, monkeypatch):
        monkeypatch.setattr(cli_module, "LedgerRPCClient", FakeL2Client)

        result = invoke(runner, config_root, "block-status", "100", "--tier", "consolidated")

        assert result.exit_code == 0, result.output
        assert "consolidated" in result.output

    def test_timeout(self, runner, config_root, monkeypatch):
        class NeverVirtualized(FakeL2Client):
            virtualized = False

        monkeypatch.setattr(cli_module, "LedgerRPCClient", NeverVirtualized)
        monkeypatch.setenv("ZKEVM_HARNESS_POLL_INTERVAL_SECONDS", "0.01")

        result = invoke(runner, config_root, "block-status", "100", "--timeout", "0.05")

        assert result.exit_code == EXIT_HARNESS_ERROR
        assert "VIRTUALIZATION_TIMEOUT" in result.output

    def test_rejects_unknown_tier(self, runner, config_root):
        result = invoke(runner, config_root, "block-status", "100", "--tier", "mined")

        assert result.exit_code == 2


class TestTransfer:
    """Test the transfer command against the in-memory ledger."""

    @pytest.fixture
    def l2(self, ledger, monkeypatch):
        class LedgerBackedClient:
            @classmethod
            def for_l2(cls, settings, **kwargs):
                return cls()

            async def __aenter__(self):
                return ledger

            async def __aexit__(self, exc_type, exc_val, exc_tb):
                return None

        async def get_nonce(address, block="pending"):
            return 7

        ledger.get_nonce = get_nonce
        monkeypatch.setattr(cli_module, "LedgerRPCClient", LedgerBackedClient)
        return ledger

    def test_transfer_to_mined(self, runner, config_root, l2, sample_eth_address):
        result = invoke(
            runner, config_root,
            "transfer", "--to", sample_eth_address, "--count", "2", "--tier", "mined",
        )

        assert result.exit_code == 0, result.output
        assert len(l2.sent) == 2
        assert "Blocks: 100, 100" in result.output

    def test_transfer_pooled(self, runner, config_root, l2, sample_eth_address):
        result = invoke(runner, config_root, "transfer", "--to", sample_eth_address, "--tier", "pooled")

        assert result.exit_code == 0, result.output
        assert len(l2.sent) == 1
        assert "Blocks:" not in result.output

    def test_send_failure_exit_code(self, runner, config_root, l2, sample_eth_address):
        l2.reject_at = 1

        result = invoke(
            runner, config_root,
            "transfer", "--to", sample_eth_address, "--count", "3", "--tier", "pooled",
        )

        assert result.exit_code == EXIT_HARNESS_ERROR
        assert len(l2.sent) == 1
        assert "SUBMISSION_ERROR" in result.output
