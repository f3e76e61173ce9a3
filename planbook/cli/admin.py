"""Admin CLI: serve the app and inspect or move planbook data."""

from __future__ import annotations

import json
import logging
import os
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from planbook.auth import hash_password
from planbook.core.config import CONFIG_ENV_VAR, AppConfig, load_app_config
from planbook.core.journal import SyncJournal
from planbook.core.models import Snapshot
from planbook.runtime import PlanbookRuntime

app = typer.Typer(help="Manage the planbook web app and its data.")
console = Console()

LOGGER = logging.getLogger("planbook.cli")


def _config(ctx: typer.Context) -> AppConfig:
    return ctx.obj["config"]


def _runtime(ctx: typer.Context, *, load: bool = True) -> PlanbookRuntime:
    runtime = PlanbookRuntime.from_config(_config(ctx))
    if load:
        runtime.start()
    else:
        runtime.db.initialize_schema()
    return runtime


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        show_default=False,
        help=f"YAML config path (defaults to ${CONFIG_ENV_VAR} or config/planbook.yaml).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        loaded = load_app_config(config)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc
    ctx.obj = {"config": loaded, "config_path": config}


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, min=1, max=65535, help="Port to listen on."),
) -> None:
    """Run the web app with uvicorn."""

    import uvicorn

    config_path = ctx.obj.get("config_path")
    if config_path is not None:
        os.environ[CONFIG_ENV_VAR] = str(Path(config_path).expanduser().resolve())
    uvicorn.run("apps.web.main:app", host=host, port=port)


@app.command()
def status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """Load the data and report where it came from and how much there is."""

    runtime = _runtime(ctx)
    try:
        payload = {
            "loaded_from": runtime.loaded_from,
            "online": runtime.state.is_online,
            "remote_configured": runtime.config.remote.configured,
            "last_error": runtime.db.last_error,
            "local_store": str(runtime.config.storage.local_path),
            "counts": runtime.state.snapshot.counts(),
        }
    finally:
        runtime.close()
    if as_json:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    state_label = "[green]online[/green]" if payload["online"] else "[red]offline[/red]"
    console.print(f"[bold]Data source:[/bold] {payload['loaded_from']} ({state_label})")
    console.print(f"[dim]Local store: {payload['local_store']}[/dim]")
    if payload["last_error"]:
        console.print(f"[yellow]Last backend error:[/yellow] {payload['last_error']}")
    table = Table("Entity", "Count")
    for name, count in payload["counts"].items():
        table.add_row(name, str(count))
    console.print(table)


@app.command("export")
def export_data(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        show_default=False,
        help="Destination file (defaults to cuaderno-profesor-backup-<date>.json).",
    ),
) -> None:
    """Write a backup of the current data."""

    runtime = _runtime(ctx)
    try:
        snapshot = runtime.state.snapshot
    finally:
        runtime.close()
    target = output or Path(f"cuaderno-profesor-backup-{date.today().isoformat()}.json")
    target.write_text(json.dumps(snapshot.to_backup(), ensure_ascii=False, indent=2), encoding="utf-8")
    console.print(f"[green]Backup written to {target}[/green]")


@app.command("import")
def import_data(
    ctx: typer.Context,
    backup: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup JSON to restore."),
) -> None:
    """Replace all data with a backup file."""

    try:
        snapshot = Snapshot.from_backup(json.loads(backup.read_text(encoding="utf-8")))
    except ValueError as exc:
        console.print(f"[red]Cannot import {backup}: {exc}[/red]")
        raise typer.Exit(code=1)
    runtime = _runtime(ctx, load=False)
    try:
        runtime.sync.replace_snapshot(snapshot)
    finally:
        runtime.close()
    counts = ", ".join(f"{name}={count}" for name, count in snapshot.counts().items())
    console.print(f"[green]Imported {backup}[/green] ({counts})")
    if not runtime.state.is_online:
        console.print("[yellow]Backend unavailable; the data was stored in the local cache only.[/yellow]")


@app.command()
def migrate(ctx: typer.Context) -> None:
    """Copy the local cache to the backend."""

    runtime = _runtime(ctx, load=False)
    try:
        if not runtime.db.is_remote_available():
            console.print("[red]No reachable backend configured; nothing to migrate to.[/red]")
            raise typer.Exit(code=1)
        cached = runtime.cache.load_snapshot()
        if cached is None or not cached.has_data():
            console.print("[yellow]The local cache is empty.[/yellow]")
            return
        if not runtime.sync.push_snapshot(cached):
            console.print(f"[red]Migration failed: {runtime.db.last_error}[/red]")
            raise typer.Exit(code=1)
    finally:
        runtime.close()
    console.print("[green]Local cache migrated to the backend.[/green]")


@app.command()
def journal(
    ctx: typer.Context,
    limit: int = typer.Option(20, min=1, help="Number of recent events to show."),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Show recent sync journal events."""

    events = SyncJournal(_config(ctx).storage.journal_path).tail(limit)
    if as_json:
        typer.echo(json.dumps([event.model_dump(mode="json") for event in events], indent=2, ensure_ascii=False))
        return
    if not events:
        console.print("[dim]No sync events recorded yet.[/dim]")
        return
    table = Table("Time", "Stage", "Entity", "Message")
    for event in events:
        table.add_row(event.timestamp.isoformat(timespec="seconds"), event.stage, event.entity or "", event.message)
    console.print(table)


@app.command("hash-password")
def hash_password_command(password: str = typer.Argument(..., help="Password to hash.")) -> None:
    """Print the SHA-256 digest to store as auth.password_hash or PLANBOOK_PASSWORD_HASH."""

    typer.echo(hash_password(password))


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
