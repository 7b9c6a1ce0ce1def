"""null-space CLI - encrypted notes in password-protected vaults."""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Coroutine, List, Optional, TypeVar

import typer
from rich.markup import escape
from rich.table import Table

from ..utils.logging import console

if TYPE_CHECKING:
    from ..models import Vault
    from ..vault import ImportExportManager, NoteStore, VaultStore

T = TypeVar("T")

app = typer.Typer(
    name="null-space",
    help="Encrypted, tagged notes in password-protected vaults.",
    no_args_is_help=True,
)
vault_app = typer.Typer(help="Create, list, rename and delete vaults.", no_args_is_help=True)
note_app = typer.Typer(help="Add, list, show, edit and delete notes.", no_args_is_help=True)
app.add_typer(vault_app, name="vault")
app.add_typer(note_app, name="note")

PASSWORD_HELP = "Vault password (prompted if omitted)"


@dataclass
class Services:
    """Stores wired to the configured data directory."""

    vaults: "VaultStore"
    notes: "NoteStore"
    archives: "ImportExportManager"


def _services() -> Services:
    from ..config import get_settings
    from ..search import SearchIndex
    from ..vault import (
        CryptoEngine,
        FileStorage,
        ImportExportManager,
        NoteStore,
        SessionManager,
        VaultStore,
    )

    settings = get_settings()
    storage = FileStorage(settings.data_dir)
    crypto = CryptoEngine(settings.kdf_iterations)
    vaults = VaultStore(storage, crypto, SessionManager(settings.session_timeout_minutes))
    notes = NoteStore(storage, crypto, SearchIndex(storage))
    return Services(vaults=vaults, notes=notes, archives=ImportExportManager(vaults, notes))


def _run(coro: Coroutine[None, None, T]) -> T:
    """Run a command body; library errors become a red message and exit code 1."""
    from ..exceptions import NullSpaceError

    try:
        return asyncio.run(coro)
    except NullSpaceError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


async def _find_vault(services: Services, ref: str) -> "Vault":
    """Look a vault up by id, unique id prefix, or name."""
    vaults = await services.vaults.list_vaults()
    for vault in vaults:
        if vault.id == ref:
            return vault

    matches = [v for v in vaults if v.id.startswith(ref)] or [v for v in vaults if v.name == ref]
    if not matches:
        console.print(f"[red]Error: No vault matches '{ref}'[/red]")
        raise typer.Exit(1)
    if len(matches) > 1:
        console.print(f"[red]Error: '{ref}' matches {len(matches)} vaults; use the vault id[/red]")
        raise typer.Exit(1)
    return matches[0]


async def _open_vault(services: Services, ref: str, password: str) -> "Vault":
    """Find and unlock a vault, exiting on a wrong password."""
    from ..vault import UnlockOutcome

    vault = await _find_vault(services, ref)
    outcome = await services.vaults.try_unlock(vault, password)
    if outcome is UnlockOutcome.UNAUTHORIZED:
        console.print("[red]Error: Wrong password[/red]")
        raise typer.Exit(1)
    if outcome is UnlockOutcome.CORRUPTED:
        console.print(f"[red]Error: Vault {vault.id} has damaged key material[/red]")
        raise typer.Exit(1)
    return vault


def _format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


@app.callback()
def configure_cli(
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir", "-d",
        help="Application data directory (default: ~/.null_space)",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
):
    """Load settings from the environment and set up logging."""
    from dotenv import load_dotenv

    from ..config import Settings, configure
    from ..utils.logging import setup_logging

    load_dotenv()
    settings = Settings.from_env()
    if data_dir is not None:
        settings.data_dir = data_dir.expanduser()
    if log_level is not None:
        settings.log_level = log_level
    configure(settings)
    setup_logging(settings.log_level, settings.log_file)


# ===================
# Vaults
# ===================


@vault_app.command("create")
def vault_create(
    name: str = typer.Argument(..., help="Vault name"),
    description: str = typer.Option("", "--description", help="Vault description"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True, help=PASSWORD_HELP
    ),
):
    """Create a new vault."""

    async def _create():
        services = _services()
        return await services.vaults.create_vault(name, description, password)

    vault = _run(_create())
    console.print(f"[green]Created vault '{escape(vault.name)}'[/green]")
    console.print(f"Vault ID: {vault.id}")


@vault_app.command("list")
def vault_list():
    """List registered vaults."""
    vaults = _run(_services().vaults.list_vaults())

    if not vaults:
        console.print("[dim]No vaults yet.[/dim]")
        return

    table = Table(title=f"Vaults ({len(vaults)})")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Updated", justify="right")

    for vault in vaults:
        table.add_row(vault.id[:8], escape(vault.name), escape(vault.description), _format_time(vault.updated_at))

    console.print(table)


@vault_app.command("rename")
def vault_rename(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    new_name: str = typer.Argument(..., help="New vault name"),
    description: Optional[str] = typer.Option(None, "--description", help="New description"),
):
    """Rename a vault or change its description."""

    async def _rename():
        services = _services()
        vault = await _find_vault(services, vault_ref)
        return await services.vaults.update_vault(vault.id, name=new_name, description=description)

    vault = _run(_rename())
    console.print(f"[green]Vault renamed to '{escape(vault.name)}'[/green]")


@vault_app.command("delete")
def vault_delete(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a vault and all of its notes."""
    services = _services()
    vault = _run(_find_vault(services, vault_ref))

    if not yes and not typer.confirm(f"Delete vault '{vault.name}' and all of its notes?"):
        console.print("Cancelled.")
        raise typer.Exit(0)

    _run(services.vaults.delete_vault(vault.id))
    console.print(f"[green]Deleted vault '{escape(vault.name)}'[/green]")


# ===================
# Notes
# ===================


def _read_content(content: Optional[str], content_file: Optional[Path]) -> Optional[str]:
    if content_file is None:
        return content
    if not content_file.exists():
        console.print(f"[red]Error: File not found: {content_file}[/red]")
        raise typer.Exit(1)
    return content_file.read_text(encoding="utf-8")


@note_app.command("add")
def note_add(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    title: str = typer.Option(..., "--title", "-t", help="Note title"),
    content: str = typer.Option("", "--content", "-c", help="Note content (Markdown)"),
    content_file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read content from a file"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Hierarchical tag, e.g. work/project (repeatable)"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help=PASSWORD_HELP),
):
    """Add a note to a vault."""
    from ..exceptions import NoteIndexError
    from ..vault import vault_path

    body = _read_content(content, content_file)

    async def _add():
        services = _services()
        vault = await _open_vault(services, vault_ref, password)
        try:
            return await services.notes.create_note(
                title, body, tags or [], vault_path(vault.id), password, vault.salt
            )
        except NoteIndexError as e:
            console.print(f"[yellow]Warning: {e}. Run 'null-space reindex' to repair.[/yellow]")
            return e.note

    note = _run(_add())
    console.print(f"[green]Added note '{escape(note.title)}'[/green]")
    console.print(f"Note ID: {note.id}")


@note_app.command("edit")
def note_edit(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    note_id: str = typer.Argument(..., help="Note id"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="New title"),
    content: Optional[str] = typer.Option(None, "--content", "-c", help="New content"),
    content_file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read new content from a file"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Replace tags (repeatable)"),
    clear_tags: bool = typer.Option(False, "--clear-tags", help="Remove all tags"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help=PASSWORD_HELP),
):
    """Edit a note; its version goes up by one."""
    from ..exceptions import NoteIndexError
    from ..vault import vault_path

    body = _read_content(content, content_file)

    async def _edit():
        services = _services()
        vault = await _open_vault(services, vault_ref, password)
        base = vault_path(vault.id)
        note = await services.notes.load_note_by_id(note_id, base, password, vault.salt)
        if note is None:
            console.print(f"[red]Error: Note not found: {note_id}[/red]")
            raise typer.Exit(1)
        new_tags = list(tags or []) if clear_tags or tags else None
        edited = note.with_changes(title=title, content=body, tags=new_tags)
        try:
            return await services.notes.update_note(edited, base, password, vault.salt)
        except NoteIndexError as e:
            console.print(f"[yellow]Warning: {e}. Run 'null-space reindex' to repair.[/yellow]")
            return e.note

    note = _run(_edit())
    console.print(f"[green]Updated note '{escape(note.title)}' (version {note.version})[/green]")


@note_app.command("list")
def note_list(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    tag: Optional[str] = typer.Option(None, "--tag", help="Only notes under this tag"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help=PASSWORD_HELP),
):
    """List the notes in a vault."""
    from ..vault import vault_path

    async def _list():
        services = _services()
        vault = await _open_vault(services, vault_ref, password)
        return vault, await services.notes.load_notes_report(vault_path(vault.id), password, vault.salt)

    vault, report = _run(_list())
    notes = [note for note in report.notes if tag is None or note.has_tag(tag)]
    notes.sort(key=lambda note: note.updated_at, reverse=True)

    if report.failures:
        console.print(f"[yellow]Warning: {len(report.failures)} note file(s) could not be read[/yellow]")

    if not notes:
        console.print("[dim]No notes.[/dim]")
        return

    table = Table(title=f"{vault.name} ({len(notes)} notes)")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan")
    table.add_column("Tags")
    table.add_column("Ver", justify="right")
    table.add_column("Updated", justify="right")

    for note in notes:
        table.add_row(
            note.id[:8],
            escape(note.title),
            escape(", ".join(note.tags)),
            str(note.version),
            _format_time(note.updated_at),
        )

    console.print(table)


@note_app.command("show")
def note_show(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    note_id: str = typer.Argument(..., help="Note id"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help=PASSWORD_HELP),
):
    """Show a note."""
    from ..vault import vault_path

    async def _show():
        services = _services()
        vault = await _open_vault(services, vault_ref, password)
        return await services.notes.load_note_by_id(note_id, vault_path(vault.id), password, vault.salt)

    note = _run(_show())
    if note is None:
        console.print(f"[red]Error: Note not found: {note_id}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]{escape(note.title)}[/bold]")
    if note.tags:
        console.print(f"Tags: {', '.join(note.tags)}", markup=False)
    console.print(f"Version {note.version}, updated {_format_time(note.updated_at)}\n")
    console.print(note.content, markup=False, highlight=False)


@note_app.command("delete")
def note_delete(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    note_id: str = typer.Argument(..., help="Note id"),
):
    """Delete a note. No password is needed."""
    from ..vault import vault_path

    async def _delete():
        services = _services()
        vault = await _find_vault(services, vault_ref)
        await services.notes.delete_note(note_id, vault_path(vault.id))

    _run(_delete())
    console.print(f"[green]Deleted note {note_id}[/green]")


# ===================
# Search and maintenance
# ===================


@app.command()
def search(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    query: str = typer.Argument(..., help="Search terms"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum results"),
):
    """Full-text search over a vault's notes."""
    from ..config import get_settings
    from ..vault import vault_path

    async def _search():
        services = _services()
        vault = await _find_vault(services, vault_ref)
        return await services.notes.search(vault_path(vault.id), query, limit or get_settings().search_limit)

    results = _run(_search())
    if not results:
        console.print("[dim]No matches.[/dim]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Note", style="dim", no_wrap=True)
    table.add_column("Score", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Excerpt")

    for result in results:
        table.add_row(
            result.note_id[:8],
            f"{result.score:.2f}",
            _highlight(result.title_snippet),
            _highlight(result.content_snippet),
        )

    console.print(table)


def _highlight(snippet: str) -> str:
    """Turn index highlight tags into rich markup."""
    from ..search.index import HIGHLIGHT_CLOSE, HIGHLIGHT_OPEN

    return escape(snippet).replace(HIGHLIGHT_OPEN, "[bold yellow]").replace(HIGHLIGHT_CLOSE, "[/bold yellow]")


@app.command()
def reindex(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help=PASSWORD_HELP),
):
    """Rebuild a vault's search index from its notes."""
    from ..vault import vault_path

    async def _reindex():
        services = _services()
        vault = await _open_vault(services, vault_ref, password)
        return await services.notes.rebuild_index(vault_path(vault.id), password, vault.salt)

    count = _run(_reindex())
    console.print(f"[green]Indexed {count} notes[/green]")


@app.command("export")
def export_vault(
    vault_ref: str = typer.Argument(..., help="Vault id, id prefix or name"),
    output: Path = typer.Argument(..., help="Archive file to write (.zip)"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help=PASSWORD_HELP),
):
    """Export a vault and its notes to an encrypted archive."""
    from ..vault import vault_path

    async def _export():
        services = _services()
        vault = await _open_vault(services, vault_ref, password)
        report = await services.notes.load_notes_report(vault_path(vault.id), password, vault.salt)
        if report.failures:
            console.print(f"[yellow]Warning: {len(report.failures)} unreadable note(s) left out[/yellow]")
        path = await services.archives.export_vault(vault, report.notes, output, password)
        return path, len(report.notes)

    path, count = _run(_export())
    console.print(f"[green]Exported {count} notes[/green]")
    console.print(f"Archive: {path}")


@app.command("import")
def import_vault(
    archive: Path = typer.Argument(..., help="Archive file to import"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help="Archive password"),
):
    """Import a vault from an archive."""
    if not archive.exists():
        console.print(f"[red]Error: File not found: {archive}[/red]")
        raise typer.Exit(1)

    vault, notes = _run(_services().archives.import_vault(archive, password))
    console.print(f"[green]Imported vault '{escape(vault.name)}' with {len(notes)} notes[/green]")
    console.print(f"Vault ID: {vault.id}")


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    console.print(f"null-space v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
