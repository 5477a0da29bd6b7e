import asyncio
import logging
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from fieldsync.config import SETTING_INITIAL_SYNC, SETTING_LAST_SYNC_PREFIX, Settings, SyncConfig
from fieldsync.db import LocalStore, SettingsStore
from fieldsync.errors import FieldSyncError
from fieldsync.observability import configure_logging, get_registry
from fieldsync.remote import HttpConnectivityProbe, RestRemoteStore
from fieldsync.sync import Outbox, PendingChangesMonitor, SyncOrchestrator, SyncState

app = typer.Typer(help="fieldsync - offline-first field visit data sync")
console = Console()
logger = logging.getLogger("fieldsync.cli")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON log lines"),
):
    """Configure logging from options, falling back to FIELDSYNC_* variables."""
    settings = Settings.from_env()
    configure_logging(level=log_level or settings.log_level, json_format=log_json or settings.log_json)


def _remote_options(remote_url: Optional[str], api_key: Optional[str], probe_url: Optional[str]):
    settings = Settings.from_env()
    remote_url = remote_url or settings.remote_url
    if not remote_url:
        console.print("[red]No remote configured. Pass --remote or set FIELDSYNC_REMOTE_URL.[/red]")
        raise typer.Exit(code=2)
    return remote_url, api_key or settings.remote_key, probe_url or settings.probe_url or remote_url


async def _with_orchestrator(db_path: str, remote_url: str, api_key: Optional[str], probe_url: str, action):
    config = SyncConfig()
    remote = RestRemoteStore(remote_url, api_key=api_key, timeout=config.http_timeout)
    probe = HttpConnectivityProbe(probe_url)
    with LocalStore(db_path) as store:
        orchestrator = SyncOrchestrator(store, remote, probe, config=config)
        try:
            return await action(orchestrator)
        finally:
            orchestrator.close()
            await remote.close()


@app.command()
def init(db_path: str = typer.Argument(..., help="Path to the local SQLite database")):
    """Create the local schema and seed default reference data."""
    with LocalStore(db_path) as store:
        users = store.scalar("SELECT COUNT(*) FROM users WHERE deleted_at IS NULL")
    console.print(f"[green]Initialized {db_path}[/green] ({users} users)")


@app.command()
def status(db_path: str = typer.Argument(..., help="Path to the local SQLite database")):
    """Show pending outbox entries and sync checkpoints."""
    with LocalStore(db_path) as store:
        settings = SettingsStore(store)
        outbox = Outbox(store)
        snapshot = PendingChangesMonitor(outbox, settings).snapshot()

        table = Table(title="Pending Changes")
        table.add_column("Table", style="cyan")
        table.add_column("Unsynced", style="magenta", justify="right")
        for name, count in snapshot.by_table.items():
            table.add_row(name, str(count))
        table.add_row("[bold]total[/bold]", f"[bold]{snapshot.total}[/bold]")
        console.print(table)

        if snapshot.quarantined:
            console.print(f"[yellow]{snapshot.quarantined} entries reached the retry cap:[/yellow]")
            for entry in outbox.quarantined():
                console.print(f"  #{entry.id} {entry.operation.value} {entry.table_name}:{entry.record_id} - {entry.error}")

        checkpoints = Table(title="Checkpoints")
        checkpoints.add_column("Key", style="cyan")
        checkpoints.add_column("Value", style="magenta")
        checkpoints.add_row(SETTING_INITIAL_SYNC, settings.get(SETTING_INITIAL_SYNC, "-"))
        for key, value in settings.items(SETTING_LAST_SYNC_PREFIX).items():
            checkpoints.add_row(key, value)
        console.print(checkpoints)


@app.command()
def sync(
    db_path: str = typer.Argument(..., help="Path to the local SQLite database"),
    remote_url: Optional[str] = typer.Option(None, "--remote", "-r", help="Remote base URL"),
    api_key: Optional[str] = typer.Option(None, "--key", "-k", help="Remote API key"),
    probe_url: Optional[str] = typer.Option(None, "--probe-url", help="URL used to check connectivity"),
    show_metrics: bool = typer.Option(False, "--metrics", help="Print metrics after the run"),
):
    """Run a full sync session: download, then upload."""
    remote_url, api_key, probe_url = _remote_options(remote_url, api_key, probe_url)
    console.print(f"Syncing {db_path} with {remote_url}...")

    async def run(orchestrator: SyncOrchestrator):
        orchestrator.subscribe(lambda s: console.print(f"[dim]{s.state.value}[/dim] {s.message}"))
        return await orchestrator.sync_now()

    result = asyncio.run(_with_orchestrator(db_path, remote_url, api_key, probe_url, run))
    if show_metrics:
        console.print(get_registry().export_prometheus())
    if result.state is SyncState.COMPLETE:
        console.print(f"[green]{result.message}[/green]")
    elif result.state is SyncState.OFFLINE:
        console.print("[yellow]Remote unreachable; local changes stay queued.[/yellow]")
        raise typer.Exit(code=1)
    else:
        console.print(f"[red]Sync failed: {result.error or result.message}[/red]")
        raise typer.Exit(code=1)


@app.command()
def upload(
    db_path: str = typer.Argument(..., help="Path to the local SQLite database"),
    remote_url: Optional[str] = typer.Option(None, "--remote", "-r", help="Remote base URL"),
    api_key: Optional[str] = typer.Option(None, "--key", "-k", help="Remote API key"),
    probe_url: Optional[str] = typer.Option(None, "--probe-url", help="URL used to check connectivity"),
):
    """Upload pending outbox entries only."""
    remote_url, api_key, probe_url = _remote_options(remote_url, api_key, probe_url)

    async def run(orchestrator: SyncOrchestrator):
        return await orchestrator.upload_engine.upload_pending()

    result = asyncio.run(_with_orchestrator(db_path, remote_url, api_key, probe_url, run))
    if result.skipped:
        console.print(f"[yellow]Upload skipped: {result.skipped}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Uploaded {result.synced} entries[/green], {result.failed} failed, {result.purged} purged")
    for entry_id, error in result.errors.items():
        console.print(f"  [red]#{entry_id}[/red] {error}")


@app.command()
def download(
    db_path: str = typer.Argument(..., help="Path to the local SQLite database"),
    remote_url: Optional[str] = typer.Option(None, "--remote", "-r", help="Remote base URL"),
    api_key: Optional[str] = typer.Option(None, "--key", "-k", help="Remote API key"),
    probe_url: Optional[str] = typer.Option(None, "--probe-url", help="URL used to check connectivity"),
):
    """Download the remote active set into the local store."""
    remote_url, api_key, probe_url = _remote_options(remote_url, api_key, probe_url)

    async def run(orchestrator: SyncOrchestrator):
        return await orchestrator.download_engine.download_all()

    try:
        result = asyncio.run(_with_orchestrator(db_path, remote_url, api_key, probe_url, run))
    except FieldSyncError as e:
        console.print(f"[red]Download failed: {e}[/red]")
        raise typer.Exit(code=1)
    if result.skipped:
        console.print(f"[yellow]Download skipped: {result.skipped}[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title="Downloaded Rows")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", style="magenta", justify="right")
    for name, count in result.counts.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command("serve-remote")
def serve_remote(
    db_path: str = typer.Argument(..., help="Path to the remote SQLite database"),
    host: str = typer.Option("127.0.0.1", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
):
    """Start the reference remote backend."""
    from fieldsync.remote.server import create_app

    console.print(f"[bold green]Starting reference remote on http://{host}:{port}[/bold green]")
    uvicorn.run(create_app(db_path), host=host, port=port)


if __name__ == "__main__":
    app()
