"""
Command-line interface for the document store.

Commands:
    shell        Interactive INSERT / SELECT / CLEAR / COUNT / EXIT loop
    collections  List collections in a store directory

The CLI is thin: every command maps onto Store / CollectionHandle calls.
"""

from __future__ import annotations

import json
import os
import shlex
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from embedded_docstore import __version__
from embedded_docstore.config import StoreSettings, get_settings
from embedded_docstore.database import CollectionHandle, Store
from embedded_docstore.errors import DocStoreError, StoreIOError, ValidationError
from embedded_docstore.logging import setup_logging

app = typer.Typer(
    name="docstore",
    help="Embedded append-only document store.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

PROMPT = "docstore > "
HELP_TEXT = (
    "Commands:\n"
    "  INSERT <value1> <value2> ...   one record per value: {\"name\": value},\n"
    "                                 or a quoted JSON object literal\n"
    "  SELECT                         show all records\n"
    "  COUNT                          number of records\n"
    "  CLEAR                          remove all records\n"
    "  EXIT                           quit"
)

RootOption = Annotated[
    Optional[Path],
    typer.Option(
        "--root",
        "-r",
        help="Store directory (default: DOCSTORE_ROOT_DIR or the current directory).",
    ),
]


def version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]docstore[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Embedded append-only document store."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)


def _open_store(root: Optional[Path]) -> Store:
    settings: StoreSettings = get_settings()
    path = root if root is not None else settings.root_dir
    try:
        store = Store.open(path, settings=settings)
    except StoreIOError as e:
        console.print(f"[red]Cannot open store:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    if not os.access(store.path, os.W_OK):
        store.close()
        console.print(f"[red]Store directory is not writable:[/red] {store.path}")
        raise typer.Exit(code=1)
    return store


def parse_insert_values(tokens: List[str]) -> List[Dict[str, Any]]:
    """
    Turn INSERT arguments into records. `Ronak` becomes {"name": "Ronak"};
    a token starting with '{' is parsed as a JSON object.
    """
    records: List[Dict[str, Any]] = []
    for tok in tokens:
        if tok.startswith("{"):
            try:
                obj = json.loads(tok)
            except ValueError as e:
                raise ValidationError(f"invalid JSON object {tok!r}: {e}") from e
            if not isinstance(obj, dict):
                raise ValidationError(f"not a JSON object: {tok!r}")
            records.append(obj)
        else:
            records.append({"name": tok})
    return records


def render_records(coll: CollectionHandle) -> Table:
    rows = list(coll.scan())
    columns: List[str] = []
    for _rid, rec in rows:
        for k in rec:
            if k not in columns:
                columns.append(k)
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", justify="right")
    for col in columns:
        table.add_column(col.upper())
    for rid, rec in rows:
        cells = []
        for col in columns:
            v = rec.get(col)
            text = "" if v is None else (v if isinstance(v, str) else json.dumps(v, ensure_ascii=False))
            cells.append(escape(text))
        table.add_row(str(rid), *cells)
    return table


def execute(coll: CollectionHandle, line: str) -> bool:
    """Run one shell command. Returns False when the shell should exit."""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        console.print(f"[red]Parse error:[/red] {escape(str(e))}")
        return True
    if not parts:
        return True
    cmd = parts[0].upper()

    if cmd == "EXIT":
        return False
    if cmd == "INSERT":
        if len(parts) < 2:
            console.print("Usage: INSERT <value1> <value2> ...")
            return True
        records = parse_insert_values(parts[1:])
        ids = coll.insert_many(records)
        console.print(f"{len(ids)} record(s) inserted.")
    elif cmd == "SELECT":
        console.print(render_records(coll))
    elif cmd == "COUNT":
        console.print(str(coll.count()))
    elif cmd == "CLEAR":
        removed = coll.clear()
        console.print(f"Collection cleared ({removed} record(s) removed).")
    elif cmd == "HELP":
        console.print(HELP_TEXT, highlight=False)
    else:
        console.print("Unknown command. Type HELP for the list of commands.")
    return True


@app.command()
def shell(
    root: RootOption = None,
    collection: Annotated[
        str,
        typer.Option("--collection", "-c", help="Collection the commands operate on."),
    ] = "users",
) -> None:
    """
    Interactive console over one collection.

    Example:
        $ docstore shell --root ./data --collection users
    """
    store = _open_store(root)
    with store:
        try:
            coll = store.collection(collection)
        except DocStoreError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(code=1)

        console.print(f"[bold]docstore[/bold] started ({store.path}, collection [cyan]{coll.name}[/cyan])")
        console.print(HELP_TEXT, highlight=False)
        while True:
            try:
                line = console.input(PROMPT)
            except EOFError:
                break
            try:
                if not execute(coll, line.strip()):
                    break
            except DocStoreError as e:
                console.print(f"[red]Error:[/red] {escape(str(e))}")
    console.print("docstore closed")


@app.command("collections")
def list_collections(root: RootOption = None) -> None:
    """List the collections of a store with their record counts."""
    store = _open_store(root)
    with store:
        names = store.collections()
        if not names:
            console.print("[dim]No collections found.[/dim]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("Collection", style="cyan")
        table.add_column("Records", justify="right")
        table.add_column("Last ID", justify="right")
        table.add_column("Bytes", justify="right")
        for name in names:
            coll = store.collection(name)
            table.add_row(name, str(len(coll)), str(coll.last_id), str(coll.size_bytes))
        console.print(table)


if __name__ == "__main__":
    app()
