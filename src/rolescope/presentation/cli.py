import asyncio, json, logging, os
from dataclasses import dataclass
from typing import Optional

import typer
from eth_utils import is_address, to_checksum_address
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.abi_file import load_abi_file
from ..adapters.explorer_httpx import EtherscanExplorer
from ..adapters.json_output import JSONEventSink, JSONResultSink, events_filename, roles_filename
from ..adapters.manifest_jsonl import JSONLManifest, failed_chunks, read_manifest
from ..adapters.parquet_sink import ParquetEventSink
from ..adapters.rpc_httpx import HttpxRPC, open_rpc
from ..application.fetching import IncompleteFetchError
from ..application.retry import RetryExecutor, RetryPolicy
from ..application.use_cases import (
    Services, fetch_schema, find_creation_block, find_events, find_roles, get_proxy_admin,
    open_services, read_slot, resolve_block_span,
)
from ..config import ExplorerConfig, Settings, load_settings
from ..domain.errors import RolescopeError
from ..domain.models import FetchReport
from ..domain.schema import EventSchema
from ..domain.value_types import Address
from ..ports.explorer import ExplorerClient

app = typer.Typer(help="rolescope: EVM event and AccessControl role inspector.", no_args_is_help=True)
console = Console()


@dataclass
class State:
    network: Optional[str] = "mainnet"
    rpc_url: Optional[str] = None
    fallback_rpc_url: Optional[str] = None
    concurrency: Optional[int] = None
    timeout_s: Optional[float] = None
    max_block_range: Optional[int] = None
    manifest: str = ""
    out_dir: str = "."


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback()
def main(
    ctx: typer.Context,
    network: str = typer.Option("mainnet", "--network", "-n", help="Known network name"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Primary RPC endpoint (overrides RPC_URL)"),
    fallback_rpc_url: Optional[str] = typer.Option(None, "--fallback-rpc-url", help="Alternative RPC endpoint"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Max parallel chunk queries"),
    timeout_s: Optional[float] = typer.Option(None, "--timeout", help="Per-request timeout (seconds)"),
    max_block_range: Optional[int] = typer.Option(None, "--max-block-range", min=1,
                                                  help="Override the provider's eth_getLogs span limit"),
    manifest: str = typer.Option("", "--manifest", help="JSONL file receiving one record per fetched chunk"),
    out_dir: str = typer.Option(".", "--out-dir", help="Where result files are written"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    setup_logging(verbose)
    ctx.obj = State(network, rpc_url, fallback_rpc_url, concurrency, timeout_s, max_block_range, manifest, out_dir)


# ---------- wiring -------------------------------------------------------------

def _settings(state: State) -> Settings:
    try:
        return load_settings(
            state.network,
            rpc_url=state.rpc_url,
            fallback_rpc_url=state.fallback_rpc_url,
            concurrency=state.concurrency,
            timeout_s=state.timeout_s,
            max_block_range=state.max_block_range,
            manifest_path=state.manifest,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_explorers(cfg: ExplorerConfig) -> list[tuple[str, ExplorerClient]]:
    """Explorer clients in the order they are tried."""
    out: list[tuple[str, ExplorerClient]] = []
    if cfg.api_key:
        out.append(("etherscan-v2", EtherscanExplorer(cfg.api_url, cfg.api_key, cfg.chain_id, cfg.timeout_s)))
        if cfg.legacy_api_url:
            out.append(("etherscan-legacy", EtherscanExplorer(cfg.legacy_api_url, cfg.api_key, None, cfg.timeout_s)))
    if cfg.blockscout_url:
        out.append(("blockscout", EtherscanExplorer(f"{cfg.blockscout_url.rstrip('/')}/api", None, None, cfg.timeout_s)))
    return out


def _services(settings: Settings):
    f = settings.fetch
    rpc = HttpxRPC(f.rpc_url, timeout_s=f.timeout_s)
    retry = RetryExecutor(
        lambda url, *, timeout_s=None: open_rpc(url, timeout_s=f.timeout_s if timeout_s is None else timeout_s),
        RetryPolicy(delay_s=f.retry_delay_s, extended_timeout_factor=f.extended_timeout_factor),
    )
    return open_services(
        rpc, retry,
        fallback_url=f.fallback_rpc_url,
        explorers=build_explorers(settings.explorer),
        manifest=JSONLManifest(f.manifest_path) if f.manifest_path else None,
        concurrency=f.concurrency,
        max_block_range=f.max_block_range,
    )


def _address(value: str) -> Address:
    if not is_address(value):
        raise typer.BadParameter(f"not an EVM address: {value}")
    return Address(to_checksum_address(value))


async def _schema(services: Services, address: Address, abi_path: Optional[str]) -> EventSchema:
    if abi_path:
        return EventSchema.from_abi(load_abi_file(abi_path))
    return await fetch_schema(services, address)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except IncompleteFetchError as e:
        _print_report("chunks", e.report)
        console.print(f"[red]error[/]: {e}")
        raise typer.Exit(code=2)
    except RolescopeError as e:
        console.print(f"[red]error[/]: {e}")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]invalid input[/]: {e}")
        raise typer.Exit(code=2)


def _print_report(label: str, report: FetchReport) -> None:
    style = "green" if report.complete else "yellow"
    console.print(f"[{style}]{label}[/]: {report.describe()}")
    if report.failed_ranges:
        console.print("  missing block ranges: " + ", ".join(str(r) for r in report.failed_ranges))


# ---------- commands -----------------------------------------------------------

@app.command("find-events")
def find_events_cmd(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Contract address"),
    event: str = typer.Argument(..., help="Event name as declared in the ABI"),
    from_block: Optional[str] = typer.Option(None, "--from-block", help="Default: contract creation block"),
    to_block: Optional[str] = typer.Option(None, "--to-block", help="Default: latest finalized block"),
    abi: Optional[str] = typer.Option(None, "--abi", help="ABI JSON file instead of the explorer"),
    parquet: bool = typer.Option(False, "--parquet", help="Also write a parquet file"),
    require_complete: bool = typer.Option(False, "--require-complete", help="Fail instead of writing partial results"),
):
    """Fetch and decode every EVENT emitted by ADDRESS."""
    state: State = ctx.obj
    addr = _address(address)
    settings = _settings(state)

    async def run():
        async with _services(settings) as services:
            schema = await _schema(services, addr, abi)
            span = await resolve_block_span(services, addr, from_block, to_block)
            res = await find_events(services, addr, event, span, schema, require_complete=require_complete)

        path = JSONEventSink(os.path.join(state.out_dir, events_filename(addr, event))).write_events(res.records)
        console.print(f"Found {len(res.records)} {event} event(s) in blocks {span} • saved to [bold]{path}[/]")
        if parquet:
            pq_path = ParquetEventSink(str(path.with_suffix(".parquet"))).write_events(res.records)
            console.print(f"parquet: [bold]{pq_path}[/]")
        if res.missing_context:
            console.print(f"[yellow]{res.missing_context} log(s) dropped for missing tx/block data[/]")
        _print_report(event, res.report)

    _run(run())


@app.command("find-roles")
def find_roles_cmd(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="AccessControl contract address"),
    from_block: Optional[str] = typer.Option(None, "--from-block", help="Default: contract creation block"),
    to_block: Optional[str] = typer.Option(None, "--to-block", help="Default: latest finalized block"),
    abi: Optional[str] = typer.Option(None, "--abi", help="ABI JSON file instead of the explorer"),
    require_complete: bool = typer.Option(False, "--require-complete", help="Fail instead of writing partial results"),
):
    """Current role holders, rebuilt from RoleGranted/RoleRevoked history."""
    state: State = ctx.obj
    addr = _address(address)
    settings = _settings(state)

    async def run():
        async with _services(settings) as services:
            schema = await _schema(services, addr, abi)
            span = await resolve_block_span(services, addr, from_block, to_block)
            res = await find_roles(services, addr, span, schema, require_complete=require_complete)

        doc = res.to_output()
        path = JSONResultSink(os.path.join(state.out_dir, roles_filename(addr))).write_result(doc)

        table = Table(title=f"Roles of {addr}")
        table.add_column("role")
        table.add_column("holders")
        for role, holders in doc["roles"].items():
            table.add_row(role, "\n".join(holders))
        console.print(table)
        style = "green" if res.complete else "yellow"
        console.print(Panel(f"[{style}]{res.describe()}[/] • saved to [bold]{path}[/]", expand=False))
        _print_report("RoleGranted", res.grants.report)
        _print_report("RoleRevoked", res.revokes.report)

    _run(run())


@app.command("find-creation-block")
def find_creation_block_cmd(ctx: typer.Context, address: str = typer.Argument(..., help="Contract address")):
    """Block and transaction that deployed ADDRESS."""
    addr = _address(address)
    settings = _settings(ctx.obj)

    async def run():
        async with _services(settings) as services:
            info = await find_creation_block(services, addr)
        console.print_json(json.dumps({
            "contractAddress": addr, "creationBlock": info.block_number,
            "creationTxHash": info.tx_hash, "creator": info.creator,
        }))

    _run(run())


@app.command("read-slot")
def read_slot_cmd(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Contract address"),
    slot: str = typer.Argument(..., help="Storage slot, decimal or 0x-hex"),
):
    """Raw storage word at SLOT with common interpretations."""
    addr = _address(address)
    settings = _settings(ctx.obj)

    async def run():
        async with _services(settings) as services:
            res = await read_slot(services, addr, slot)
        console.print_json(json.dumps(res))

    _run(run())


@app.command("get-proxy-admin")
def get_proxy_admin_cmd(ctx: typer.Context, address: str = typer.Argument(..., help="Proxy address")):
    """EIP-1967 admin and implementation of a proxy."""
    addr = _address(address)
    settings = _settings(ctx.obj)

    async def run():
        async with _services(settings) as services:
            res = await get_proxy_admin(services, addr)
        if res is None:
            console.print(f"[yellow]No admin found for proxy {addr}[/] (not an EIP-1967 transparent proxy?)")
            return
        console.print_json(json.dumps(res))

    _run(run())


@app.command("failed-chunks")
def failed_chunks_cmd(manifest: str = typer.Argument(..., help="JSONL chunk manifest written by --manifest")):
    """Block ranges whose latest manifest record is a failure; exits 1 if there are any."""
    records = read_manifest(manifest)
    ranges = failed_chunks(records)
    if not ranges:
        console.print(f"[green]no failed chunks[/] in {len(records)} record(s)")
        return

    last = {(r.from_block, r.to_block): r for r in records}
    table = Table(title=f"Failed chunks in {manifest}")
    table.add_column("from", justify="right")
    table.add_column("to", justify="right")
    table.add_column("failure")
    table.add_column("error", overflow="fold")
    for fb, tb in ranges:
        rec = last[(fb, tb)]
        table.add_row(str(fb), str(tb), rec.failure or "-", rec.error or "")
    console.print(table)
    console.print(f"[yellow]{len(ranges)} failed chunk(s)[/]; re-run the fetch with --from-block/--to-block to fill them")
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
