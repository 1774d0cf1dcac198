#!/usr/bin/env python3
"""
dbtaps CLI

Command-line interface for replicating databases through a dbtaps server.

Usage:
    dbtaps server DATABASE_URL                 # Serve a database
    dbtaps push DATABASE_URL REMOTE_URL        # Send a local database
    dbtaps pull DATABASE_URL REMOTE_URL        # Receive a remote database
    dbtaps copy SOURCE_URL DESTINATION_URL     # Copy between two local databases
    dbtaps tables DATABASE_URL                 # List tables and row counts
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler

from . import __version__
from .client import HttpSessionTransport, LocalSessionTransport, SessionTransport
from .config import Config, load_config
from .errors import DbTapsError, ServerError, TransferCancelled
from .storage import Database
from .transfer import TransferOrchestrator, TransferProgress
from .utils import format_number, safe_url

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def apply_chunk_options(config: Config, chunk_size: Optional[int],
                        max_chunk_size: Optional[int], max_retries: Optional[int]):
    if chunk_size is not None:
        config.chunk_size = chunk_size
    if max_chunk_size is not None:
        config.max_chunk_size = max_chunk_size
    if max_retries is not None:
        config.max_chunk_retries = max_retries


def chunk_options(f):
    """Options shared by every command that moves data."""
    f = click.option('--max-retries', type=click.IntRange(min=0),
                     help='Give up on a chunk after this many resends')(f)
    f = click.option('--max-chunk-size', type=click.IntRange(min=1),
                     help='Upper bound for adaptive chunk growth')(f)
    f = click.option('--chunk-size', '-c', type=click.IntRange(min=1),
                     help='Initial rows per chunk')(f)
    return f


@click.group()
@click.version_option(__version__, prog_name='dbtaps')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """dbtaps - replicate relational databases over HTTP."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('database_url', required=False)
@click.option('--host', help='Interface to bind')
@click.option('--port', '-p', type=int, help='Port to listen on')
@click.option('--login', help='Basic auth login clients must present')
@click.option('--password', help='Basic auth password clients must present')
@click.pass_context
def server(ctx, database_url, host, port, login, password):
    """Serve a database to dbtaps clients."""
    config = ctx.obj['config']
    config.database_url = database_url or config.database_url
    config.host = host or config.host
    config.port = port or config.port
    config.login = login if login is not None else config.login
    config.password = password if password is not None else config.password

    if not config.database_url:
        console.print("[red]No database URL given (argument or DBTAPS_DATABASE_URL)[/red]")
        sys.exit(1)

    console.print(Panel.fit(
        f"[bold green]dbtaps server v{__version__}[/bold green]\n\n"
        f"Database: [cyan]{safe_url(config.database_url)}[/cyan]\n"
        f"Listening: [yellow]http://{config.host}:{config.port}[/yellow]\n"
        f"Auth: [blue]{'basic (' + config.login + ')' if config.login else 'none'}[/blue]",
        title="Server Info"
    ))

    from .api import run_server

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.argument('database_url')
@click.argument('remote_url')
@chunk_options
@click.pass_context
def push(ctx, database_url, remote_url, chunk_size, max_chunk_size, max_retries):
    """Send a local database to a dbtaps server."""
    config = ctx.obj['config']
    apply_chunk_options(config, chunk_size, max_chunk_size, max_retries)

    async def run():
        async with Database(database_url) as db:
            async with HttpSessionTransport(remote_url) as transport:
                return await run_transfer(db, transport, config, 'send')

    show_result(run)


@cli.command()
@click.argument('database_url')
@click.argument('remote_url')
@chunk_options
@click.pass_context
def pull(ctx, database_url, remote_url, chunk_size, max_chunk_size, max_retries):
    """Receive a database from a dbtaps server into a local one."""
    config = ctx.obj['config']
    apply_chunk_options(config, chunk_size, max_chunk_size, max_retries)

    async def run():
        async with Database(database_url) as db:
            async with HttpSessionTransport(remote_url) as transport:
                return await run_transfer(db, transport, config, 'receive')

    show_result(run)


@cli.command()
@click.argument('source_url')
@click.argument('destination_url')
@chunk_options
@click.pass_context
def copy(ctx, source_url, destination_url, chunk_size, max_chunk_size, max_retries):
    """Copy a database into another without a server in between."""
    config = ctx.obj['config']
    apply_chunk_options(config, chunk_size, max_chunk_size, max_retries)

    async def run():
        async with Database(source_url) as source, Database(destination_url) as destination:
            async with LocalSessionTransport(destination) as transport:
                return await run_transfer(source, transport, config, 'send')

    show_result(run)


@cli.command()
@click.argument('database_url')
def tables(database_url):
    """List tables and row counts."""

    async def run():
        async with Database(database_url) as db:
            return await db.table_inventory()

    try:
        inventory = asyncio.run(run())
    except DbTapsError as e:
        report_error(e)
        sys.exit(1)

    if not len(inventory):
        console.print("[yellow]No tables[/yellow]")
        return

    table = Table(title=safe_url(database_url))
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="yellow")
    for descriptor in inventory.descriptors():
        table.add_row(descriptor.name, format_number(descriptor.row_count))
    console.print(table)
    console.print(f"[dim]{len(inventory)} tables, "
                  f"{format_number(inventory.total_rows)} rows[/dim]")


async def run_transfer(db: Database, transport: SessionTransport, config: Config,
                       direction: str) -> TransferProgress:
    """Run one transfer with a progress bar on the console."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Connecting...", total=None)

        def update_progress(p: TransferProgress):
            current = p.table
            if p.phase == 'data' and current is not None:
                progress.update(
                    task,
                    total=max(p.total_rows, 1),
                    completed=p.transferred_rows,
                    description=f"{current.table_name} "
                                f"({format_number(current.transferred_rows)}"
                                f"/{format_number(current.total_rows)} rows, "
                                f"chunk {current.chunk_size})"
                )
            else:
                progress.update(task, description=f"{p.phase.capitalize()}...")

        orchestrator = TransferOrchestrator(db, transport, config,
                                            progress_callback=update_progress)
        if direction == 'send':
            result = await orchestrator.send()
        else:
            result = await orchestrator.receive()

        progress.update(task, description="Done!")
    return result


def show_result(run):
    """Run a transfer coroutine and report how it ended."""
    try:
        result = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except TransferCancelled as e:
        console.print(f"\n[yellow]{e}[/yellow]")
        sys.exit(1)
    except DbTapsError as e:
        report_error(e)
        sys.exit(1)

    console.print(Panel.fit(
        f"[bold green]Transfer Complete[/bold green]\n\n"
        f"Tables: [cyan]{result.total_tables}[/cyan]\n"
        f"Rows: [yellow]{format_number(result.transferred_rows)}[/yellow]\n"
        f"Retried chunks: [yellow]{result.retries}[/yellow]\n"
        f"Time: [blue]{result.elapsed_seconds:.1f}s[/blue] "
        f"([blue]{result.rows_per_sec:,.0f} rows/s[/blue])",
        title="Summary"
    ))


def report_error(error: DbTapsError):
    if isinstance(error, ServerError):
        console.print("[red]!!! Caught Server Exception[/red]")
        console.print(f"[red]HTTP CODE: {error.status}[/red]")
        console.print(error.body, markup=False, highlight=False)
    else:
        console.print(f"[red]✗ {error}[/red]")


if __name__ == '__main__':
    cli()
