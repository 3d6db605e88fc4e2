"""
CLI for the local store.

Commands:
    localstore info - Show schema version and record counts
    localstore sweep - Remove expired cache entries
    localstore clear PARTITION - Delete every record in a partition
    localstore reset - Delete the whole store
    localstore config - Show current configuration
    localstore version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any, Coroutine, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from localstore import __version__
from localstore.cache.expiring import ExpiringCache
from localstore.config import Settings, clear_settings_cache, get_settings
from localstore.engine import StoreEngine
from localstore.exceptions import StoreError
from localstore.logging import setup_logging
from localstore.schema import CACHE_PARTITION

app = typer.Typer(
    name="localstore",
    help="Local store - partitioned persistence with TTL caching",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

T = TypeVar("T")

StorePathOption = Annotated[
    Optional[Path],
    typer.Option("--store", "-s", help="Database file (defaults to STORE_PATH)"),
]


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _engine(store: Path | None) -> StoreEngine:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'localstore config' to see the current values."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE, console_output=False)
    return StoreEngine(store) if store is not None else StoreEngine.from_settings(settings)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except StoreError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def info(store: StorePathOption = None) -> None:
    """Show schema version and record counts per partition."""
    engine = _engine(store)

    async def collect() -> tuple[int, list[tuple[str, str, str, int]]]:
        async with engine:
            rows = []
            for spec in await engine.partitions():
                indexes = ", ".join(
                    f"{i.name}{' (unique)' if i.unique else ''}" for i in spec.indexes
                )
                rows.append((spec.name, spec.key_path, indexes, await engine.count(spec.name)))
            return await engine.version(), rows

    version_number, rows = _run(collect())

    table = Table(title=f"Store {engine.path} (schema v{version_number})", show_header=True)
    table.add_column("Partition", style="cyan")
    table.add_column("Key path")
    table.add_column("Indexes", style="dim")
    table.add_column("Records", justify="right", style="green")
    for name, key_path, indexes, count in rows:
        table.add_row(name, key_path, indexes or "-", str(count))

    console.print(table)


@app.command()
def sweep(
    store: StorePathOption = None,
    partition: Annotated[
        str, typer.Option("--partition", "-p", help="Cache partition to sweep")
    ] = CACHE_PARTITION,
) -> None:
    """Remove expired entries from a cache partition."""
    engine = _engine(store)

    async def run() -> int:
        async with engine:
            return await ExpiringCache(engine, partition).clear_expired_cache()

    removed = _run(run())
    console.print(f"Removed [bold]{removed}[/bold] expired entries from {partition}")


@app.command()
def clear(
    partition: Annotated[str, typer.Argument(help="Partition to empty")],
    store: StorePathOption = None,
) -> None:
    """Delete every record in a partition."""
    engine = _engine(store)

    async def run() -> int:
        async with engine:
            count = await engine.count(partition)
            await engine.clear(partition)
            return count

    removed = _run(run())
    console.print(f"Cleared [bold]{removed}[/bold] records from {partition}")


@app.command()
def reset(
    store: StorePathOption = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")
    ] = False,
) -> None:
    """Delete the whole store, all partitions included."""
    engine = _engine(store)
    if not yes:
        typer.confirm(f"Delete {engine.path} and all its data?", abort=True)

    _run(engine.delete_all())
    console.print(
        Panel(f"Deleted [bold]{engine.path}[/bold]", title="Reset", border_style="red")
    )


@app.command()
def config() -> None:
    """Show current configuration."""
    console.print()
    console.print("[bold]Local Store Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print("Check STORE_PATH and the *_TTL_SECONDS variables")
        error_console.print("(TTLs must be >= 0) in the environment or .env file.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.display_values().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"localstore version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
