"""Command-line interface for poemsync.

Built with Typer for commands and Rich for output.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import Config, get_config
from .db import get_db
from .db.schemas import ConflictStrategy, GroupCreate, RequestCreate, ResponseCreate, SyncStatus
from .logging_config import setup_logging

# Create the main app
app = typer.Typer(
    name="poemsync",
    help="Write poems offline and keep them in sync.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def _load_config() -> Config:
    config = get_config()
    problems = config.validate()
    if problems:
        for problem in problems:
            print_error(problem)
        raise typer.Exit(1)
    return config


def _build_gateway(config: Config):
    """Remote store from config: HTTP for http(s) URLs, otherwise a JSON file."""
    from .gateway import FileRemoteGateway, HttpRemoteGateway

    if not config.has_remote_config():
        return FileRemoteGateway(config.state_file.parent / "remote_store.json")
    if config.remote_url.startswith(("http://", "https://")):
        return HttpRemoteGateway(
            config.remote_url,
            token=config.remote_token,
            timeout=config.request_timeout,
        )
    return FileRemoteGateway(Path(config.remote_url).expanduser())


def _build_ledger():
    from .revisions import RevisionLedger

    return RevisionLedger(get_db())


def _build_engine(config: Optional[Config] = None):
    from .sync import ChangeTokenStore, SyncEngine

    config = config or _load_config()
    ledger = _build_ledger() if config.enable_revision_history else None
    return SyncEngine(
        db=get_db(),
        gateway=_build_gateway(config),
        token_store=ChangeTokenStore(config.state_file),
        config=config,
        ledger=ledger,
    )


def _build_manager():
    from .poems import PoemManager

    config = _load_config()
    return PoemManager(
        db=get_db(),
        ledger=_build_ledger(),
        enable_revisions=config.enable_revision_history,
    )


def _short(text: Optional[str], width: int = 50) -> str:
    if not text:
        return "-"
    text = text.replace("\n", " / ")
    return text if len(text) <= width else text[: width - 3] + "..."


STATUS_STYLES = {
    SyncStatus.PENDING.value: "yellow",
    SyncStatus.SYNCING.value: "blue",
    SyncStatus.SYNCED.value: "green",
    SyncStatus.CONFLICT.value: "magenta",
    SyncStatus.ERROR.value: "red",
}


def _status_text(status: str) -> Text:
    return Text(status, style=STATUS_STYLES.get(status, "white"))


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Write poems offline and keep them in sync."""
    level = "DEBUG" if verbose else get_config().log_level
    setup_logging(level)


# ============================================================================
# Sync Commands
# ============================================================================


@app.command()
def status() -> None:
    """Show sync status."""
    engine = _build_engine()
    counts = engine.db.count_by_status()

    last = engine.last_sync_date
    remote = engine.config.remote_url if engine.config.has_remote_config() else "local file store"
    lines = [
        f"State: [bold]{engine.state.value}[/bold]",
        f"Last sync: {last.isoformat(timespec='seconds') if last else 'never'}",
        f"Pending changes: [bold]{engine.pending_changes_count}[/bold]",
        f"Remote: {remote}",
    ]
    console.print(Panel("\n".join(lines), title="Sync Status"))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Status")
    table.add_column("Records", justify="right")
    for name, count in counts.items():
        table.add_row(_status_text(name), str(count))
    console.print(table)


@app.command()
def sync(
    check: bool = typer.Option(False, "--check", help="Check remote availability first"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show progress bar"),
) -> None:
    """Push local changes, then pull remote changes."""
    engine = _build_engine()

    if check and not engine.check_remote_availability():
        print_error(engine.errors[0].describe())
        raise typer.Exit(1)

    pending = engine.pending_changes_count
    if pending == 0:
        print_info("No pending local changes.")

    result = engine.sync_now(show_progress=progress)
    if result.skipped_in_progress:
        print_warning("A sync is already running.")
        return

    console.print("\n" + "=" * 40)
    console.print("[bold]Sync Complete[/bold]" if result.completed else "[bold]Sync Incomplete[/bold]")
    console.print("=" * 40)
    console.print(f"  Pushed: {result.pushed}")
    console.print(f"  Pulled: {result.pulled}")
    if result.remote_deleted or result.local_deleted:
        console.print(f"  Deleted: {result.remote_deleted} remote, {result.local_deleted} local")
    if result.conflicts:
        console.print(f"  Conflicts resolved: {result.conflicts - result.unresolved}")
    if result.unresolved:
        print_warning(f"{result.unresolved} conflicts need attention (see 'poemsync conflicts')")

    if result.errors:
        print_error(f"{len(result.errors)} errors occurred")
        for error in result.errors[:5]:
            console.print(f"  [red]- {error.describe()}[/red]")
        raise typer.Exit(1)
    console.print("\n[green]✓ Sync successful![/green]")


@app.command()
def errors() -> None:
    """Show records whose last sync attempt failed."""
    db = get_db()
    failed = db.fetch_records([SyncStatus.ERROR])
    deletions = [d for d in db.get_pending_deletions() if d.last_error]

    if not failed and not deletions:
        console.print("[green]✓[/green] No sync errors.")
        return

    table = Table(title="Sync Errors", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Error", style="red")
    for record in failed:
        table.add_row(record.id, record.record_type.value, record.last_sync_error or "-")
    for deletion in deletions:
        table.add_row(deletion.record_id, f"{deletion.record_type} (delete)", deletion.last_error)
    console.print(table)


@app.command()
def conflicts() -> None:
    """List records waiting for manual conflict resolution."""
    db = get_db()
    records = db.fetch_records([SyncStatus.CONFLICT])
    if not records:
        console.print("[green]✓[/green] No conflicts.")
        return

    table = Table(title="Conflicts", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Modified")
    for record in records:
        table.add_row(
            record.id,
            record.record_type.value,
            record.last_modified.isoformat(timespec="seconds"),
        )
    console.print(table)
    print_info("Resolve with: poemsync resolve RECORD_ID [--strategy merge]")


@app.command()
def resolve(
    record_id: str = typer.Argument(..., help="Record ID"),
    strategy: Optional[ConflictStrategy] = typer.Option(
        None, "--strategy", "-s", help="Resolution strategy (prompts if omitted)"
    ),
) -> None:
    """Resolve a sync conflict for one record."""
    from .sync import resolve_conflict_interactive

    engine = _build_engine()
    if engine.db.get_record(record_id) is None:
        print_error(f"Record not found: {record_id}")
        raise typer.Exit(1)

    if strategy is None:
        conflict = engine.resolver.describe_conflict(record_id)
        strategy = resolve_conflict_interactive(conflict)

    outcome = engine.resolve_conflict(record_id, strategy)
    if outcome is None:
        print_error(engine.errors[0].describe())
        raise typer.Exit(1)
    print_success(f"{record_id}: {outcome.strategy.value} -> {outcome.status.value}")


@app.command("reset-token")
def reset_token(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Forget the change token so the next sync fetches everything."""
    from .sync import ChangeTokenStore, TokenPersistenceError

    config = _load_config()
    if not yes and not typer.confirm("Next sync will re-download all records. Continue?"):
        print_info("Cancelled.")
        raise typer.Exit(0)
    try:
        ChangeTokenStore(config.state_file).reset()
    except TokenPersistenceError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success("Change token reset.")


# ============================================================================
# Poem Commands
# ============================================================================


@app.command()
def new(
    user_input: str = typer.Argument(..., help="What to write about"),
    topic: Optional[str] = typer.Option(None, "--topic", "-t", help="Topic"),
    poem_type: Optional[str] = typer.Option(None, "--type", help="Poem type (e.g. haiku)"),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Generation temperature"),
    content: Optional[str] = typer.Option(None, "--content", "-c", help="Poem text"),
    content_file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read poem text from file"),
    group: Optional[str] = typer.Option(None, "--group", "-g", help="Add to group ID"),
) -> None:
    """Create a poem request, optionally with its poem text."""
    manager = _build_manager()

    try:
        request = manager.create_request(
            RequestCreate(
                user_input=user_input,
                user_topic=topic or user_input,
                poem_type=poem_type,
                temperature=temperature,
                group_id=group,
            )
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Created request {request.id}")

    text = _read_content(content, content_file)
    if text is None:
        return
    result = manager.save_response(ResponseCreate(request_id=request.id, content=text))
    print_success(f"Saved poem {result.response.id}")
    if result.revision_error:
        print_warning(f"History not recorded: {result.revision_error}")


def _read_content(content: Optional[str], content_file: Optional[Path]) -> Optional[str]:
    if content_file is not None:
        try:
            return content_file.read_text(encoding="utf-8")
        except OSError as e:
            print_error(f"Cannot read {content_file}: {e}")
            raise typer.Exit(1)
    return content


@app.command()
def edit(
    response_id: str = typer.Argument(..., help="Poem (response) ID"),
    content: Optional[str] = typer.Option(None, "--content", "-c", help="New poem text"),
    content_file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read new text from file"),
    note: Optional[str] = typer.Option(None, "--note", "-n", help="Change note"),
    regenerated: bool = typer.Option(False, "--regenerated", help="Text was regenerated"),
) -> None:
    """Replace a poem's text and record a revision."""
    text = _read_content(content, content_file)
    if text is None:
        print_error("Provide --content or --file")
        raise typer.Exit(1)

    manager = _build_manager()
    try:
        if regenerated:
            result = manager.regenerate_response(response_id, text, note)
        else:
            result = manager.edit_response_content(response_id, text, note)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.revision:
        print_success(f"Saved revision #{result.revision.revision_number}")
    elif result.revision_error:
        print_warning(f"Saved, but history not recorded: {result.revision_error}")
    else:
        print_info("No changes.")


@app.command()
def favorite(
    response_id: str = typer.Argument(..., help="Poem (response) ID"),
) -> None:
    """Toggle a poem's favorite flag."""
    manager = _build_manager()
    try:
        response = manager.toggle_favorite(response_id)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)
    state = "★ favorite" if response.is_favorite else "☆ not favorite"
    print_success(f"{response_id}: {state}")


@app.command()
def group(
    topic: str = typer.Argument(..., help="Group topic"),
    request_ids: Optional[list[str]] = typer.Argument(None, help="Request IDs to include"),
) -> None:
    """Group related poem requests."""
    manager = _build_manager()
    try:
        created = manager.create_group(
            GroupCreate(original_topic=topic, request_ids=request_ids or [])
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Created group {created.id} with {len(created.get_request_ids())} requests")


@app.command()
def delete(
    request_id: str = typer.Argument(..., help="Request ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a poem request and its poem."""
    manager = _build_manager()
    if not yes and not typer.confirm(f"Delete {request_id}?"):
        print_info("Cancelled.")
        raise typer.Exit(0)
    if not manager.delete_request(request_id):
        print_error(f"Request not found: {request_id}")
        raise typer.Exit(1)
    print_success(f"Deleted {request_id}")


@app.command("list")
def list_poems(
    poem_type: Optional[str] = typer.Option(None, "--type", help="Filter by poem type"),
    favorites: bool = typer.Option(False, "--favorites", help="Only favorites"),
    limit: int = typer.Option(20, "--limit", "-l", help="Max rows"),
) -> None:
    """List poems."""
    manager = _build_manager()
    db = manager.db

    table = Table(title="Poems", show_header=True, header_style="bold magenta")
    table.add_column("Request", style="dim")
    table.add_column("Topic", style="cyan", max_width=30)
    table.add_column("Type", style="green")
    table.add_column("Poem", max_width=50)
    table.add_column("★", justify="center")
    table.add_column("Sync")

    if favorites:
        rows = []
        for response in manager.favorite_responses()[:limit]:
            request = db.get_snapshot(response.request_id) if response.request_id else None
            rows.append((request, db.get_snapshot(response.id)))
    else:
        rows = []
        for request in manager.list_requests(poem_type=poem_type, limit=limit):
            req = db.get_snapshot(request.id)
            resp = db.get_snapshot(request.response_id) if request.response_id else None
            rows.append((req, resp))

    for req, resp in rows:
        req_fields = req.remote.fields if req else {}
        resp_fields = resp.remote.fields if resp else {}
        table.add_row(
            req.id if req else "-",
            _short(req_fields.get("user_topic"), 30),
            req_fields.get("poem_type") or "-",
            _short(resp_fields.get("content")),
            "★" if resp_fields.get("is_favorite") else "",
            _status_text((resp or req).sync_status.value) if (resp or req) else "-",
        )

    if not rows:
        print_info("No poems yet.")
        return
    console.print(table)


# ============================================================================
# History Commands
# ============================================================================


@app.command()
def history(
    document_id: str = typer.Argument(..., help="Poem document ID (request ID)"),
) -> None:
    """Show a poem's revision history."""
    _load_config()
    ledger = _build_ledger()
    revisions = ledger.get_revisions(document_id)
    if not revisions:
        print_info(f"No revisions for {document_id}.")
        return

    table = Table(title=f"History of {document_id}", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("+/-/~", justify="center")
    table.add_column("Words", justify="right")
    table.add_column("Note")
    table.add_column("Created")
    for rev in revisions:
        marker = " [green]●[/green]" if rev.is_current_version else ""
        table.add_row(
            f"{rev.revision_number}{marker}",
            rev.id,
            rev.change_type,
            f"{rev.lines_added}/{rev.lines_removed}/{rev.lines_modified}",
            str(rev.word_count),
            _short(rev.change_note, 40),
            rev.created_at.isoformat(timespec="seconds") if rev.created_at else "-",
        )
    console.print(table)


@app.command()
def restore(
    revision_id: str = typer.Argument(..., help="Revision ID to restore"),
) -> None:
    """Make an earlier revision current again."""
    manager = _build_manager()
    try:
        result = manager.restore_revision(revision_id)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.revision_error:
        print_warning(f"Text restored, but history not recorded: {result.revision_error}")
        return
    print_success(f"Restored as revision #{result.revision.revision_number}")


@app.command()
def diff(
    old_id: str = typer.Argument(..., help="Older revision ID"),
    new_id: str = typer.Argument(..., help="Newer revision ID"),
) -> None:
    """Show line differences between two revisions."""
    from .revisions import DiffType, RevisionError

    _load_config()
    ledger = _build_ledger()
    try:
        segments = ledger.diff_revisions(old_id, new_id)
    except RevisionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    styles = {DiffType.UNCHANGED: "", DiffType.ADDED: "green", DiffType.DELETED: "red strike"}
    prefixes = {DiffType.UNCHANGED: "  ", DiffType.ADDED: "+ ", DiffType.DELETED: "- "}
    for segment in segments:
        for line in segment.text.splitlines():
            console.print(Text(prefixes[segment.type] + line, style=styles[segment.type]))


# ============================================================================
# Version Command
# ============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"poemsync version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
