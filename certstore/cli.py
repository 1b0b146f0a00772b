"""CLI entry point for CertStore."""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from certstore.core.config import DSN_ENV_VAR, StorageConfig
from certstore.core.exceptions import CertStoreError, DatabaseError
from certstore.core.models import KeyInfo
from certstore.core.storage import CertStorage

app = typer.Typer(
    name="certstore",
    help="SQLite-backed certificate storage with advisory locks.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.WARNING)
    if sys.stderr.isatty():
        logging.basicConfig(
            level=numeric, format="%(message)s", handlers=[RichHandler(console=err_console)]
        )
    else:
        logging.basicConfig(level=numeric, format=_LOG_FORMAT)


@app.callback()
def main(
    ctx: typer.Context,
    dsn: Annotated[
        str | None, typer.Option("--dsn", envvar=DSN_ENV_VAR, help="SQLite database path")
    ] = None,
    query_timeout: Annotated[
        float | None, typer.Option("--query-timeout", help="Per-query timeout in seconds")
    ] = None,
    lock_timeout: Annotated[
        float | None, typer.Option("--lock-timeout", help="Lock lease duration in seconds")
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = "WARNING",
) -> None:
    """Manage a certificate store."""
    _configure_logging(log_level)
    ctx.obj = StorageConfig.from_env(
        dsn=dsn, query_timeout=query_timeout, lock_timeout=lock_timeout
    )


@contextmanager
def open_store(ctx: typer.Context) -> Iterator[CertStorage]:
    """Open the configured store, turning storage errors into exit codes."""
    try:
        with CertStorage.from_config(ctx.obj) as storage:
            yield storage
    except DatabaseError as exc:
        err_console.print(f"[red]Database error:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    except CertStoreError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def info_to_dict(info: KeyInfo) -> dict[str, object]:
    """Convert a KeyInfo to a JSON-serializable dict."""
    return {
        "key": info.key,
        "size": info.size,
        "modified": info.modified.isoformat() if info.modified else None,
        "is_terminal": info.is_terminal,
    }


@app.command()
def init(ctx: typer.Context) -> None:
    """Create the storage tables if they do not exist."""
    with open_store(ctx) as storage:
        console.print(f"[green]Schema ready[/green] at {storage.config.dsn}")


@app.command()
def put(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to store")],
    value: Annotated[str | None, typer.Argument(help="Value (defaults to stdin)")] = None,
    file: Annotated[
        Path | None,
        typer.Option(
            "--file",
            "-f",
            exists=True,
            dir_okay=False,
            readable=True,
            help="Read the value from a file",
        ),
    ] = None,
) -> None:
    """Store a value at a key."""
    if file is not None:
        data = file.read_bytes()
    elif value is not None:
        data = value.encode("utf-8")
    else:
        data = sys.stdin.buffer.read()

    with open_store(ctx) as storage:
        storage.store(key, data)
        console.print(f"Stored {len(data)} bytes at [cyan]{key}[/cyan]")


@app.command()
def get(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to load")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write the value to a file")
    ] = None,
) -> None:
    """Print the value stored at a key."""
    with open_store(ctx) as storage:
        data = storage.load(key)

    if output is not None:
        output.write_bytes(data)
    else:
        typer.echo(data, nl=False)


@app.command()
def rm(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to delete")],
) -> None:
    """Delete a key."""
    with open_store(ctx) as storage:
        storage.delete(key)
        console.print(f"Deleted [cyan]{key}[/cyan]")


@app.command()
def exists(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to check")],
) -> None:
    """Check whether a key exists (exit code 1 when it does not)."""
    with open_store(ctx) as storage:
        found = storage.exists(key)

    console.print("yes" if found else "no")
    if not found:
        raise typer.Exit(code=1)


@app.command()
def ls(
    ctx: typer.Context,
    prefix: Annotated[str, typer.Argument(help="Key prefix")] = "",
    recursive: Annotated[
        bool, typer.Option("--recursive", "-r", help="Walk nested keys (unsupported)")
    ] = False,
    output_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List keys starting with a prefix."""
    with open_store(ctx) as storage:
        keys = storage.list(prefix, recursive)

    if output_json:
        print(json.dumps(keys))
        return
    if not keys:
        console.print(f"No keys with prefix '[cyan]{prefix}[/cyan]'")
        return
    for key in keys:
        console.print(key, markup=False, highlight=False)


@app.command()
def stat(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to describe")],
    output_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show size and modification time of a key."""
    with open_store(ctx) as storage:
        info = storage.stat(key)

    if output_json:
        print(json.dumps(info_to_dict(info)))
    else:
        console.print(f"[cyan]{info.key}[/cyan]")
        console.print(f"  Size: {info.size}")
        console.print(f"  Modified: {info.modified}")


@app.command()
def lock(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to lock")],
) -> None:
    """Acquire the lease on a key."""
    with open_store(ctx) as storage:
        storage.lock(key)
        console.print(
            f"Locked [cyan]{key}[/cyan] for {storage.config.lock_timeout:g}s"
        )


@app.command()
def unlock(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Key to unlock")],
) -> None:
    """Release the lease on a key."""
    with open_store(ctx) as storage:
        storage.unlock(key)
        console.print(f"Unlocked [cyan]{key}[/cyan]")


@app.command()
def locks(
    ctx: typer.Context,
    output_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List lock rows, live and expired."""
    with open_store(ctx) as storage:
        records = storage.locks.list_locks()

    if output_json:
        result = [
            {
                "key": r.key,
                "key_hash": r.key_hash,
                "expires": r.expires.isoformat() if r.expires else None,
                "live": r.live,
            }
            for r in records
        ]
        print(json.dumps(result))
        return
    if not records:
        console.print("[dim]No locks[/]")
        return

    table = Table("Key", "Expires", "State")
    for record in records:
        state = "[green]live[/]" if record.live else "[dim]expired[/]"
        table.add_row(record.key, str(record.expires), state)
    console.print(table)


@app.command()
def stats(
    ctx: typer.Context,
    output_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show store statistics."""
    with open_store(ctx) as storage:
        result = storage.get_stats()

    if output_json:
        print(json.dumps(result.to_dict()))
    else:
        console.print(f"Records: {result.records}")
        console.print(f"Locks: {result.locks} ({result.active_locks} live)")
        if result.last_modified:
            console.print(f"Last modified: {result.last_modified}")


if __name__ == "__main__":
    app()
