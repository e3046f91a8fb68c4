import asyncio
import base64
import binascii
from typing import List, Optional

import typer
from solders.pubkey import Pubkey

from .config import ManagerConfig
from .domains import get_domains_from_address
from .errors import ToolkitError
from .latency import probe_all
from .ledger import LedgerClient
from .log import configure_logging
from .manager import ConnectionManager
from .relay import BundleRelayClient

app = typer.Typer(help="Solana RPC toolkit")


def _run(coro):
    try:
        return asyncio.run(coro)
    except ToolkitError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)


def summary(
    endpoints: List[str] = typer.Argument(..., help="RPC endpoints to probe"),
    commitment: str = typer.Option("processed", help="processed|confirmed|finalized"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Show reachability, latency and slot of each endpoint and highlight the fastest."""
    configure_logging(verbose)

    async def run():
        results = await probe_all(endpoints, commitment)
        reachable = [h for h in results if h.reachable]
        fastest = min(reachable, key=lambda h: h.latency_ms).endpoint if reachable else None

        # Sort by latency
        results.sort(key=lambda h: (h.latency_ms is None, h.latency_ms or 999999))

        for health in results:
            mark = "★" if health.endpoint == fastest else " "
            if health.reachable:
                line = (
                    f"{mark} {health.endpoint}  {health.latency_ms:8.1f} ms"
                    f"  slot={health.current_height}  valid_until={health.freshness_marker}"
                )
            else:
                line = f"{mark} {health.endpoint}  unreachable"
            typer.echo(line)

    _run(run())


def relay_regions():
    """Show latency to all bundle relay regions and highlight the fastest."""
    async def run():
        client = BundleRelayClient()
        regions = await client.list_regions()

        # Sort by latency
        regions.sort(key=lambda x: (x["avg_ms"] is None, x["avg_ms"] or 999999))

        for region in regions:
            mark = "★" if region["fastest"] else " "
            avg = "n/a" if region["avg_ms"] is None else f"{region['avg_ms']:.1f} ms"
            typer.echo(f"{mark} {region['region']:9}  avg={avg:8}  tx={region['tx_url']}")

    _run(run())


def send_raw(
    tx_path: str = typer.Argument(..., help="Path to signed transaction file"),
    endpoint: Optional[str] = typer.Option(None, help="Send through this RPC endpoint instead of a bundle relay"),
    region: Optional[str] = typer.Option(None, help="Relay region: mainnet|amsterdam|frankfurt|ny|tokyo"),
    encoding: str = typer.Option("auto", help="auto|base64|raw"),
    skip_preflight: bool = typer.Option(False, help="Skip preflight checks (RPC endpoint only)"),
):
    """Submit a signed transaction."""
    async def run():
        # Read transaction data
        with open(tx_path, "rb") as f:
            data = f.read()

        # Handle encoding
        if encoding == "base64" or (encoding == "auto" and _looks_b64(data)):
            data = base64.b64decode(data)

        if endpoint:
            async with LedgerClient(endpoint) as client:
                signature = await client.send_raw_transaction(data, skip_preflight=skip_preflight)
        else:
            client = BundleRelayClient(region_code=region)
            signature = await client.send_transaction(data)
        typer.echo(str(signature))

    _run(run())


def airdrop(
    address: str = typer.Argument(..., help="Recipient address"),
    lamports: int = typer.Argument(1_000_000_000, help="Amount in lamports"),
    network: str = typer.Option("devnet", help="devnet|testnet|localnet"),
):
    """Request funding from the network's canonical endpoint."""
    async def run():
        manager = await ConnectionManager.initialize(ManagerConfig(network=network))
        try:
            client = manager.get_cached(use_network_default=True)
            signature = await client.request_airdrop(Pubkey.from_string(address), lamports)
            typer.echo(str(signature))
        finally:
            await manager.close()

    _run(run())


def domains(
    address: str = typer.Argument(..., help="Owner address"),
):
    """List the .sol domains owned by an address."""
    async def run():
        names = await get_domains_from_address(address)
        if names is None:
            raise ToolkitError(f"Domain lookup for {address} failed")
        for name in names:
            typer.echo(name)

    _run(run())


def _looks_b64(data: bytes) -> bool:
    """Check if data looks like base64."""
    try:
        base64.b64decode(data, validate=True)
        return True
    except (binascii.Error, ValueError):
        return False


app.command()(summary)
app.command()(relay_regions)
app.command()(send_raw)
app.command()(airdrop)
app.command()(domains)

if __name__ == "__main__":
    app()
