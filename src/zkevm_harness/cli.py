"""
zkevm-harness command-line entry point.

Usage:
    zkevm-harness [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ConfirmationTimeouts, HarnessSettings, PollPolicy, load_settings
from .confirmation import ConfirmationTier, ConfirmationTracker
from .exceptions import HarnessError, InitializationError
from .logging_config import generate_correlation_id, set_correlation_id, setup_logging
from .polling import WaitLoop
from .registry import NetworkRegistry, registry_from_settings
from .rpc_client import LedgerRPCClient
from .signer import AccountSigner, TransactionRequest

console = Console()

EXIT_HARNESS_ERROR = 1
EXIT_INITIALIZATION_ERROR = 2

WAITABLE_TIERS = ["virtualized", "consolidated"]
ALL_TIERS = ["pooled", "mined", "trusted", "virtualized", "consolidated", "verified"]


def _fail(ctx: click.Context, error: HarnessError) -> NoReturn:
    code = EXIT_INITIALIZATION_ERROR if isinstance(error, InitializationError) else EXIT_HARNESS_ERROR
    console.print(f"[red]Error ({error.error_code}): {escape(error.message)}[/red]")
    if ctx.obj.get("verbose") and error.details:
        console.print(error.details)
    ctx.exit(code)


def _registry(ctx: click.Context) -> NetworkRegistry:
    registry = ctx.obj.get("registry")
    if registry is None:
        registry = registry_from_settings(ctx.obj["settings"])
        ctx.obj["registry"] = registry
    return registry


@click.group()
@click.version_option(package_name="zkevm-harness", message="%(prog)s %(version)s")
@click.option(
    "--config-root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding dynamic-configs/ (default: home directory)",
)
@click.option("--env-file", type=click.Path(dir_okay=False), help="Load settings from this .env file")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Override the configured log level",
)
@click.option("--json-logs", is_flag=True, help="Emit structured JSON logs")
@click.option("-v", "--verbose", is_flag=True, help="Show error details")
@click.pass_context
def cli(
    ctx,
    config_root: Optional[Path],
    env_file: Optional[str],
    log_level: Optional[str],
    json_logs: bool,
    verbose: bool,
):
    """Drive transactions through a zkEVM devnet and inspect known networks."""
    ctx.ensure_object(dict)

    settings = load_settings(env_file)
    overrides = {}
    if config_root is not None:
        overrides["config_root"] = config_root
    if log_level:
        overrides["log_level"] = log_level.upper()
    if json_logs:
        overrides["log_json"] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    setup_logging(level=settings.log_level, json_format=settings.log_json)
    set_correlation_id(generate_correlation_id())

    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


@cli.group()
def networks():
    """Known networks and chain specs."""
    pass


@networks.command("list")
@click.pass_context
def list_networks(ctx):
    """List statically known networks."""
    try:
        registry = _registry(ctx)
    except HarnessError as e:
        _fail(ctx, e)

    table = Table(title="Networks")
    table.add_column("Name", style="cyan")
    table.add_column("Chain ID", justify="right")
    table.add_column("Consensus")
    table.add_column("Genesis hash")

    for descriptor in registry.descriptors:
        genesis = "0x" + descriptor.genesis_hash.hex() if descriptor.genesis_hash else "-"
        table.add_row(
            descriptor.name,
            str(descriptor.chain_id),
            descriptor.consensus.value,
            genesis,
        )

    console.print(table)


@networks.command("show")
@click.argument("identifier")
@click.pass_context
def show_network(ctx, identifier: str):
    """Resolve a network by name or 0x-prefixed genesis hash."""
    try:
        descriptor = _registry(ctx).resolve(identifier)
    except HarnessError as e:
        _fail(ctx, e)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="IDENTIFIER")

    info = descriptor.to_dict()
    console.print(f"\n[bold blue]{info['name']}[/bold blue]\n")
    console.print(f"Chain ID: [cyan]{info['chain_id']}[/cyan]")
    console.print(f"Consensus: {info['consensus']}")
    console.print(f"Genesis hash: {info['genesis_hash'] or '-'}")

    if info["fork_blocks"]:
        table = Table(title="Fork activation")
        table.add_column("Fork", style="cyan")
        table.add_column("Activation", justify="right")
        for fork, block in info["fork_blocks"].items():
            table.add_row(fork, str(block))
        for fork, timestamp in info["fork_times"].items():
            table.add_row(fork, f"t={timestamp}")
        console.print(table)


@cli.command("block-status")
@click.argument("block_number", type=click.IntRange(min=0))
@click.option(
    "--tier",
    type=click.Choice(WAITABLE_TIERS, case_sensitive=False),
    default="virtualized",
    show_default=True,
    help="Tier to wait for",
)
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), help="Seconds to wait")
@click.pass_context
def block_status(ctx, block_number: int, tier: str, timeout: Optional[float]):
    """Wait until an L2 block reaches a tier."""
    settings: HarnessSettings = ctx.obj["settings"]
    target = ConfirmationTier.parse(tier)

    async def run() -> None:
        timeouts = ConfirmationTimeouts.from_settings(settings)
        tracker = ConfirmationTracker(wait_loop=WaitLoop(), timeouts=timeouts)
        async with LedgerRPCClient.for_l2(settings) as client:
            policy = timeouts.virtualization
            if timeout is not None:
                policy = PollPolicy(interval=policy.interval, timeout=timeout)
            await tracker.wait_virtualized(block_number, client, policy)
            if target == ConfirmationTier.CONSOLIDATED:
                if timeout is None:
                    policy = timeouts.consolidation
                await tracker.wait_consolidated(block_number, client, policy)

    try:
        asyncio.run(run())
    except HarnessError as e:
        _fail(ctx, e)

    console.print(f"[green]✓ Block {block_number} is {target.name.lower()}[/green]")


@cli.command()
@click.option("--to", "to_address", required=True, help="Recipient address")
@click.option("--value", type=click.IntRange(min=0), default=0, show_default=True, help="Value in wei")
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True, help="Number of transfers")
@click.option(
    "--tier",
    type=click.Choice(ALL_TIERS, case_sensitive=False),
    default="mined",
    show_default=True,
    help="Tier to wait for",
)
@click.option("--admin", is_flag=True, help="Sign with the L2 admin account instead of the sequencer")
@click.pass_context
def transfer(ctx, to_address: str, value: int, count: int, tier: str, admin: bool):
    """Send transfers from a devnet account and track them to a tier."""
    settings: HarnessSettings = ctx.obj["settings"]
    target = ConfirmationTier.parse(tier)

    async def run():
        tracker = ConfirmationTracker(timeouts=ConfirmationTimeouts.from_settings(settings))
        async with LedgerRPCClient.for_l2(settings) as client:
            signer = AccountSigner.for_settings(settings, nonce_source=client, use_admin=admin)
            requests = [TransactionRequest(to_address=to_address, value=value) for _ in range(count)]
            blocks = await tracker.apply(requests, signer, client, target)
            return tracker.tracked, blocks

    try:
        tracked, blocks = asyncio.run(run())
    except HarnessError as e:
        _fail(ctx, e)

    table = Table(title=f"Transfers ({target.name.lower()})")
    table.add_column("Tx hash", style="cyan")
    table.add_column("Nonce", justify="right")
    table.add_column("Block", justify="right")
    table.add_column("Tier")

    for tx in tracked:
        table.add_row(
            tx.tx_hash,
            str(tx.handle.nonce),
            str(tx.block_number) if tx.block_number is not None else "-",
            tx.tier.name.lower(),
        )

    console.print(table)
    if blocks is not None:
        console.print(f"Blocks: {', '.join(str(b) for b in blocks)}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
