"""Operator command-line interface for storeledger."""

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from storeledger import __version__
from storeledger.common.models import BucketClass, ObjectStatus, StorageTier
from storeledger.server.config import load_settings, parse_size
from storeledger.server.core import StorageCore

app = typer.Typer(
    name="storeledger",
    help="storeledger - storage accounting operations",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Config file path (auto-discovered if not set)",
)


def format_size(size: int) -> str:
    """Format size in human-readable format."""
    value = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(value) < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} PB"


def parse_duration(value: str) -> timedelta:
    """Parse ``30m``, ``24h``, ``7d`` or plain seconds."""
    value = value.strip().lower()
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    if value and value[-1] in units:
        return timedelta(seconds=float(value[:-1]) * units[value[-1]])
    return timedelta(seconds=float(value))


def print_error(message: str) -> None:
    console.print(f"[bold red]✗[/bold red] {message}")


def print_success(message: str) -> None:
    console.print(f"[bold green]✓[/bold green] {message}")


def _run(config: Optional[Path], fn: Callable[[StorageCore], Awaitable[T]]) -> T:
    """Build the core from config, run *fn* against it, and close it."""

    async def _main() -> Any:
        async with StorageCore(load_settings(config)) as core:
            return await fn(core)

    return asyncio.run(_main())  # type: ignore[no-any-return]


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"storeledger {__version__}")


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="Account id"),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Show an account's storage usage against its tier ceiling."""
    result = _run(config, lambda core: core.storage_usage(user_id))
    if result is None:
        print_error(f"No storage account for {user_id}")
        raise typer.Exit(1)

    table = Table(title=f"Storage usage: {user_id}", show_header=False)
    table.add_row("Tier", result.tier.value)
    table.add_row("Used", format_size(result.used_bytes))
    table.add_row("Limit", format_size(result.total_bytes))
    table.add_row("Available", format_size(result.available_bytes))
    table.add_row("Usage", f"{result.usage_percent:.2f}%")
    console.print(table)


@app.command()
def objects(
    user_id: str = typer.Argument(..., help="Account id"),
    status: Optional[ObjectStatus] = typer.Option(None, "--status", "-s", help="Only rows in this status"),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """List ledger rows of an account."""
    statuses = [status] if status else None
    rows = _run(config, lambda core: core.ledger.list_by_user(user_id, statuses=statuses))
    if not rows:
        console.print("[dim]No storage objects[/dim]")
        return

    table = Table(title=f"Storage objects: {user_id}")
    table.add_column("Key", overflow="fold")
    table.add_column("Status")
    table.add_column("Size", justify="right")
    table.add_column("Charged", justify="right")
    table.add_column("Updated")
    for row in rows:
        table.add_row(
            row.object_key,
            row.status,
            format_size(row.size_bytes),
            format_size(row.committed_bytes),
            row.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def reconcile(
    user_id: str = typer.Argument(..., help="Account id"),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Recompute an account's used bytes from the ledger."""
    previous, actual = _run(config, lambda core: core.reconcile_usage(user_id))
    if previous == actual:
        print_success(f"{user_id}: usage consistent ({format_size(actual)})")
    else:
        print_success(f"{user_id}: corrected {format_size(previous)} -> {format_size(actual)}")


@app.command("reap-pending")
def reap_pending(
    older_than: Optional[str] = typer.Option(
        None, "--older-than", help="Age threshold, e.g. 30m, 24h, 7d (default: from config)"
    ),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Confirm or tombstone pending uploads nobody confirmed."""
    max_age = parse_duration(older_than) if older_than else None
    report = _run(config, lambda core: core.reap_stale_pending(max_age))

    table = Table(title="Stale pending reap", show_header=False)
    table.add_row("Checked", str(report.checked))
    table.add_row("Confirmed", str(report.confirmed))
    table.add_row("Tombstoned", str(report.tombstoned))
    table.add_row("Errors", str(report.errors))
    table.add_row("Usage delta", format_size(report.delta_bytes))
    console.print(table)
    if report.errors:
        raise typer.Exit(1)


@app.command("set-tier")
def set_tier(
    user_id: str = typer.Argument(..., help="Account id"),
    tier: StorageTier = typer.Argument(..., help="New tier"),
    create: bool = typer.Option(False, "--create", help="Create the account if missing"),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Change an account's tier."""

    async def _apply(core: StorageCore) -> Any:
        if create:
            await core.accounts.ensure_account(user_id, tier)
        return await core.accounts.set_tier(user_id, tier)

    result = _run(config, _apply)
    if result is None:
        print_error(f"No storage account for {user_id} (use --create)")
        raise typer.Exit(1)
    print_success(f"{user_id}: tier {result.tier.value}, used {format_size(result.used_bytes)}")


@app.command("check-size")
def check_size(
    user_id: str = typer.Argument(..., help="Account id"),
    size: str = typer.Argument(..., help="Upload size, e.g. 50MB"),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Dry-run the upload policy for a persistent upload of SIZE."""
    size_bytes = parse_size(size)
    result = _run(config, lambda core: core.guard.check_policy(user_id, size_bytes, BucketClass.PERSISTENT))
    if result.allowed:
        print_success(f"{format_size(size_bytes)} upload allowed for {user_id}")
    else:
        print_error(result.reason or "Upload not allowed")
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
