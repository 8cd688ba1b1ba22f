"""
Command-line interface for Librarian.
Runs ingestion jobs, classifies single books and manages ingestion state.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import settings
from .catalog import CatalogStore
from .classifier import classify_book, is_classification_enabled
from .ingest import LibraryIngestor
from .models import BookMetadata, JobStatus
from .storage import StorageUploader
from .taxonomy import PRIMARY_GENRES, SUB_GENRES

app = typer.Typer(
    name="librarian",
    help="Ingest and classify public-domain books",
    add_completion=False
)
state_app = typer.Typer(help="Inspect and control the ingestion state")
app.add_typer(state_app, name="state")

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
) -> None:
    """Configure logging for every command."""
    level = logging.DEBUG if verbose else getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _open_catalog(db_path: Optional[Path]) -> CatalogStore:
    return CatalogStore(db_path or settings.CATALOG_DB_PATH)


@app.command()
def ingest(
    batch_size: int = typer.Option(
        settings.DEFAULT_BATCH_SIZE, "--batch-size", min=1, max=settings.MAX_BATCH_SIZE,
        help="Books to fetch from the archive"
    ),
    page: Optional[int] = typer.Option(
        None, "--page", min=1,
        help="Result page (default: continue from stored state)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be ingested without side effects"),
    backfill: bool = typer.Option(False, "--backfill", help="Reprocess catalog records that have no genres"),
    db_path: Optional[Path] = typer.Option(None, "--db-path", help="Catalog database path"),
    storage_root: Optional[Path] = typer.Option(None, "--storage-root", help="PDF storage directory"),
) -> None:
    """Run one ingestion job."""
    catalog = _open_catalog(db_path)
    try:
        ingestor = LibraryIngestor(catalog, StorageUploader(storage_root))
        result = ingestor.run_ingestion_job(batch_size=batch_size, page=page, dry_run=dry_run, backfill=backfill)
    finally:
        catalog.close()

    color = {JobStatus.COMPLETED: "green", JobStatus.PARTIAL: "yellow", JobStatus.PAUSED: "yellow",
             JobStatus.ALREADY_RUNNING: "yellow"}.get(result.status, "red")
    summary = (
        f"Job: {result.job_id}\n"
        f"Page: {result.page}{' (dry run)' if result.dry_run else ''}\n"
        f"Processed: {result.processed}  Added: {result.added}  Skipped: {result.skipped}  "
        f"Filtered: {result.filtered}  Failed: {result.failed}"
    )
    console.print(Panel(summary, title=f"Ingestion {result.status.value}", border_style=color))

    for error in result.errors:
        console.print(f"[red]{error.identifier}:[/] {error.error}")

    if result.status == JobStatus.FAILED:
        sys.exit(1)


@app.command()
def classify(
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Option("Unknown Author", "--author", help="Book author"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
    description: Optional[str] = typer.Option(None, "--description", help="Book description"),
) -> None:
    """Classify a single book and print the result as JSON."""
    if not is_classification_enabled():
        console.print("[yellow]Warning:[/] classification is disabled or no API key is configured")

    result = classify_book(BookMetadata(title=title, author=author, year=year, description=description))
    if result is None:
        console.print("[red]No classification[/]")
        sys.exit(1)

    console.print_json(json.dumps(result.dict()))


@app.command()
def genres() -> None:
    """List the genre taxonomy."""
    table = Table(title="Genre taxonomy")
    table.add_column("Primary genres")
    table.add_column("Sub-genres")
    for i in range(max(len(PRIMARY_GENRES), len(SUB_GENRES))):
        table.add_row(
            PRIMARY_GENRES[i] if i < len(PRIMARY_GENRES) else "",
            SUB_GENRES[i] if i < len(SUB_GENRES) else "",
        )
    console.print(table)


def _print_state(catalog: CatalogStore) -> None:
    state = catalog.get_state()
    console.print_json(state.json())


@state_app.command("show")
def state_show(db_path: Optional[Path] = typer.Option(None, "--db-path")) -> None:
    """Show the ingestion state."""
    catalog = _open_catalog(db_path)
    try:
        _print_state(catalog)
    finally:
        catalog.close()


@state_app.command("pause")
def state_pause(
    by: str = typer.Option("admin", "--by", help="Who is pausing, for the audit trail"),
    db_path: Optional[Path] = typer.Option(None, "--db-path"),
) -> None:
    """Pause ingestion; scheduled runs become no-ops."""
    catalog = _open_catalog(db_path)
    try:
        catalog.pause(paused_by=by)
        _print_state(catalog)
    finally:
        catalog.close()


@state_app.command("resume")
def state_resume(db_path: Optional[Path] = typer.Option(None, "--db-path")) -> None:
    """Resume a paused ingestion."""
    catalog = _open_catalog(db_path)
    try:
        catalog.resume()
        _print_state(catalog)
    finally:
        catalog.close()


@state_app.command("reset")
def state_reset(db_path: Optional[Path] = typer.Option(None, "--db-path")) -> None:
    """Start paging from the first archive page again."""
    catalog = _open_catalog(db_path)
    try:
        catalog.reset_state()
        _print_state(catalog)
    finally:
        catalog.close()


if __name__ == "__main__":
    app()
