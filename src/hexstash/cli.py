"""Typer CLI for hexstash - hex editor with chunked key-value persistence."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from hexstash.config import Settings, load_settings
from hexstash.errors import Corrupted, NotFound, StorageError, StoreError
from hexstash.session import Session, parse_hex_address
from hexstash.storage import SqliteStorage
from hexstash.store import ChunkedStore
from hexstash.viewport import (
    BYTES_PER_ROW,
    Row,
    format_address,
    format_bytes,
    rows_to_render,
)

app = typer.Typer(
    help="View and edit binary files as hex, stored in a chunked key-value store.",
    add_completion=False,
)

# ── Helpers ────────────────────────────────────────────────────────


def _settings() -> Settings:
    try:
        return load_settings()
    except (TypeError, ValueError) as e:
        typer.secho(f"Error: bad configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def _open_store(settings: Settings | None = None) -> ChunkedStore:
    settings = settings or _settings()
    try:
        storage = SqliteStorage(settings.db_path, quota=settings.quota)
    except StorageError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return ChunkedStore(storage, journal=settings.journal)


def _format_row(row: Row, active: int | None = None) -> str:
    cells = []
    for addr, cell in zip(row.addresses(), row.hex_cells()):
        text = cell or "  "
        cells.append(f"[{text}]" if addr == active else f" {text} ")
    left = "".join(cells[: len(cells) // 2])
    right = "".join(cells[len(cells) // 2 :])
    return f"{format_address(row.start_address)}  {left} {right}  |{row.ascii()}|"


def _print_session(session: Session) -> None:
    for row in session.rows():
        typer.echo(_format_row(row, session.active_address))
    typer.echo(session.range_text())


def _read_disk_file(name: str) -> bytes | None:
    path = Path(name).expanduser()
    if not path.is_file():
        return None
    return path.read_bytes()


# ── Commands ───────────────────────────────────────────────────────


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def serve(
    port: int = typer.Option(8002, help="Port to serve on"),
    no_open: bool = typer.Option(False, "--no-open", help="Don't open browser automatically"),
    cors: bool = typer.Option(False, "--cors", help="Enable CORS headers for cross-origin access"),
) -> None:
    """Start the hex editor web server."""
    import hexstash.server as _server

    settings = _settings()
    if cors:
        _server.CORS_ENABLED = True
    _server.configure(_server.build_session(settings))

    url = f"http://127.0.0.1:{port}"
    typer.echo(f"Serving hex editor at {url}")
    typer.echo(f"  DB: {settings.db_path}")
    if cors:
        typer.echo("  CORS: enabled")
    typer.echo("  Stop: Ctrl+C")

    if not no_open:
        threading.Timer(0.5, _server.open_browser, args=(url,)).start()

    _server.app.run(host="127.0.0.1", port=port, quiet=True, server="wsgiref")


@app.command("ls")
def list_cmd() -> None:
    """List saved files."""
    from rich.console import Console
    from rich.table import Table

    store = _open_store()
    try:
        records = store.list()
    except StorageError as e:
        typer.secho(f"Error listing saved files: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if not records:
        typer.secho("No saved files.", fg=typer.colors.YELLOW, err=True)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Modified")
    table.add_column("Type", style="dim")
    for r in records:
        try:
            chunks = store.chunk_count(r.name)
        except Corrupted:
            chunks = None
        modified = datetime.fromtimestamp(r.last_modified / 1000).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(
            r.name,
            format_bytes(r.size),
            "?" if chunks is None else str(chunks),
            modified,
            r.mime_type,
        )
    Console().print(table)


@app.command()
def put(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Store under this name"),
) -> None:
    """Save a file from disk into the store."""
    store = _open_store()
    key = name or path.name
    data = path.read_bytes()
    try:
        record = store.save(key, data)
    except StoreError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    chunks = store.chunk_count(key)
    typer.secho(f"File saved: {key} ({record.size} bytes, {chunks} chunks)", fg=typer.colors.GREEN)


@app.command()
def get(
    name: str = typer.Argument(...),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output path (default: ./<name>)"),
) -> None:
    """Restore a saved file to disk."""
    store = _open_store()
    try:
        data, record = store.load(name)
    except (NotFound, Corrupted) as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if record is None:
        typer.secho(f"Warning: {name} has no metadata", fg=typer.colors.YELLOW, err=True)
    dest = output or Path(Path(name).name)
    dest.write_bytes(data)
    typer.echo(f"Wrote {len(data)} bytes to {dest}")


@app.command("rm")
def remove_cmd(name: str = typer.Argument(...)) -> None:
    """Delete a saved file (missing names are not an error)."""
    store = _open_store()
    try:
        store.delete(name)
    except StoreError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.echo(f"File deleted: {name}")


@app.command()
def dump(
    name: str = typer.Argument(...),
    offset_row: int = typer.Option(0, "--offset-row", help="First row to show"),
    rows: int = typer.Option(20, "--rows", help="Number of rows"),
) -> None:
    """Print a saved file as a hex dump."""
    store = _open_store()
    try:
        data, _ = store.load(name)
    except (NotFound, Corrupted) as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    for row in rows_to_render(max(offset_row, 0), rows, len(data), BYTES_PER_ROW, data.__getitem__):
        typer.echo(_format_row(row))


_SHELL_HELP = (
    "Shell: view, goto <addr>, scroll <rows>, type <hex> (replaces pending value),"
    " commit, cancel, back, fwd"
)


@app.command()
def shell(
    path: Optional[Path] = typer.Argument(None, help="File to open (disk path or saved name)"),
) -> None:
    """Interactive command line over one editing session."""
    settings = _settings()
    session = Session(
        _open_store(settings),
        settings.bytes_per_row,
        settings.visible_rows,
        opener=_read_disk_file,
    )
    if path is not None:
        session.execute(f"load {path}")
    typer.echo(session.status)

    while not session.exit_requested:
        try:
            line = typer.prompt("hexstash", prompt_suffix="> ", default="", show_default=False)
        except typer.Abort:
            break
        if _shell_command(session, line.strip()):
            _print_session(session)
        typer.echo(session.status)


def _shell_command(session: Session, line: str) -> bool:
    """Handle shell-only navigation verbs. Returns True if the grid should be redrawn."""
    verb, _, arg = line.partition(" ")
    verb = verb.lower()
    arg = arg.strip()
    if verb in ("view", "v"):
        if not session.loaded:
            session.status = "No file loaded"
            return False
        return True
    if verb == "goto":
        address = parse_hex_address(arg)
        if address is None:
            session.status = "Invalid address format. Use hexadecimal (e.g., 0x100 or 100)"
            return False
        session.set_active_address(address)
        session.status = f"Address: 0x{format_address(session.active_address)}"
        return True
    if verb == "scroll":
        try:
            session.scroll(int(arg or "1"))
        except ValueError:
            session.status = "Usage: scroll <rows>"
            return False
        return True
    if verb == "type":
        if session.editing:
            session.edit.clear()  # type: ignore[union-attr]
        for ch in arg:
            session.append_hex_digit(ch)
        pending = session.edit.pending_text if session.edit and session.editing else ""
        session.status = f"Pending value: {pending or '(empty)'}"
        return False
    if verb == "commit" and not arg:
        session.commit()
        return True
    if verb == "cancel" and not arg:
        session.cancel()
        return True
    if verb == "back":
        session.status = session.history_prev() or "(start of history)"
        return False
    if verb == "fwd":
        session.status = session.history_next() or "(end of history)"
        return False
    if verb == "help" and arg == "shell":
        session.status = _SHELL_HELP
        return False
    before = session.buffer
    session.execute(line)
    return session.loaded and (session.buffer is not before or session.editing)


def main() -> None:
    app()
