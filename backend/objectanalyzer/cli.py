"""ObjectAnalyzer worker CLI: runs the aggregation pipeline as batch jobs.

Commands:
  init-db            create tables
  import-csv         stage every CSV in the import drop directory
  process-imports    merge staged objects into intel records
  load-trusted       load every CSV in the trusted drop directory
  mark-trusted       flag intel records matched by the trusted list
  update-scores      recompute stale risk scores
  run-all            all of the above, in order
  status             queue depth and table sizes
  lookup             show one intel record
  top                most frequently reported objects
  generate-api-key   print a fresh 64-character key
  serve              run the HTTP API
"""
from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from objectanalyzer.config import settings
from objectanalyzer.exceptions import PipelineStageError

app = typer.Typer(
    name="objectanalyzer",
    help="Threat-intel aggregation and risk scoring.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_NO_DB_COMMANDS = ("generate-api-key",)


@app.callback()
def main(ctx: typer.Context):
    logging.basicConfig(level=settings.LOG_LEVEL)
    if settings.API_KEY is not None and len(settings.API_KEY) < settings.API_KEY_MIN_LENGTH:
        console.print(
            f"[yellow]API_KEY is shorter than {settings.API_KEY_MIN_LENGTH} characters. "
            f"Consider using:[/yellow] {secrets.token_hex(32)}"
        )
    if ctx.invoked_subcommand not in _NO_DB_COMMANDS:
        from objectanalyzer.database import init_db

        init_db()


def _fail(exc: PipelineStageError) -> None:
    console.print(f"[red]{exc.stage} stage failed:[/red] {escape(str(exc.cause))}")
    if exc.summary:
        console.print(f"  Committed before failure: {escape(str(exc.summary))}")
    raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------


def _import_csv(directory: Path, archive_dir: Path) -> dict:
    from objectanalyzer.database import unit_of_work
    from objectanalyzer.modules.csv_loader import load_import_directory

    with unit_of_work() as uow:
        result = load_import_directory(uow, directory, archive_dir)
    console.print(f"[green]Staged {result['rows']} objects[/green] from {result['files']} files")
    for name in result["failed"]:
        console.print(f"  [yellow]Left in place (unreadable):[/yellow] {name}")
    return result


def _process_imports(limit: Optional[int]) -> dict:
    from objectanalyzer.database import unit_of_work
    from objectanalyzer.modules.intel_merge import process_pending_imports

    with console.status("[bold]Merging staged objects..."):
        with unit_of_work() as uow:
            result = process_pending_imports(uow, limit=limit)
    console.print(
        f"[green]Merged {result['merged']}[/green], rejected {result['rejected']} "
        f"({result['remaining']} still staged)"
    )
    return result


def _load_trusted(directory: Path, archive_dir: Path) -> dict:
    from objectanalyzer.database import unit_of_work
    from objectanalyzer.modules.csv_loader import load_trusted_directory

    with unit_of_work() as uow:
        result = load_trusted_directory(uow, directory, archive_dir)
    console.print(f"[green]Loaded {result['rows']} trusted entries[/green] from {result['files']} files")
    for name in result["failed"]:
        console.print(f"  [yellow]Left in place (invalid):[/yellow] {name}")
    return result


def _mark_trusted() -> dict:
    from objectanalyzer.database import unit_of_work
    from objectanalyzer.modules.trust_matcher import mark_trusted_objects

    with unit_of_work() as uow:
        result = mark_trusted_objects(uow)
    console.print(
        f"[green]Marked {result['exact_marked'] + result['range_marked']} trusted[/green] "
        f"({result['exact_marked']} exact, {result['range_marked']} via {result['ranges_applied']} ranges)"
    )
    return result


def _update_scores(limit: Optional[int]) -> dict:
    from objectanalyzer.database import unit_of_work
    from objectanalyzer.modules.risk_scoring import update_risk_scores

    with console.status("[bold]Scoring stale records..."):
        with unit_of_work() as uow:
            result = update_risk_scores(uow, limit=limit)
    console.print(
        f"[green]Scored {result['scored']} of {result['candidates']} candidates[/green] "
        f"({result['buckets_present']} of 4 weekly buckets present)"
    )
    return result


@app.command("init-db")
def init_db_command():
    """Create the database tables (safe to re-run)."""
    from sqlalchemy.engine import make_url

    url = make_url(settings.DATABASE_URL).render_as_string(hide_password=True)
    console.print(f"[green]Database ready[/green] at {escape(url)}")


@app.command("import-csv")
def import_csv(
    directory: Path = typer.Option(Path(settings.IMPORT_CSV_DIR), "--dir", help="Directory of import CSVs"),
    archive_dir: Path = typer.Option(Path(settings.ARCHIVE_CSV_DIR), "--archive-dir", help="Where loaded files are moved"),
):
    """Stage every CSV in the import directory."""
    try:
        _import_csv(directory, archive_dir)
    except PipelineStageError as exc:
        _fail(exc)


@app.command("process-imports")
def process_imports(
    limit: Optional[int] = typer.Option(None, "--limit", help="Max staged rows per batch"),
):
    """Merge staged objects into intel records."""
    try:
        _process_imports(limit)
    except PipelineStageError as exc:
        _fail(exc)


@app.command("load-trusted")
def load_trusted(
    directory: Path = typer.Option(Path(settings.TRUSTED_CSV_DIR), "--dir", help="Directory of trusted CSVs"),
    archive_dir: Path = typer.Option(Path(settings.ARCHIVE_CSV_DIR), "--archive-dir", help="Where loaded files are moved"),
):
    """Load every CSV in the trusted directory."""
    try:
        _load_trusted(directory, archive_dir)
    except PipelineStageError as exc:
        _fail(exc)


@app.command("mark-trusted")
def mark_trusted():
    """Flag intel records matched by trusted objects and ranges."""
    try:
        _mark_trusted()
    except PipelineStageError as exc:
        _fail(exc)


@app.command("update-scores")
def update_scores(
    limit: Optional[int] = typer.Option(None, "--limit", help="Max candidates per run"),
):
    """Recompute risk scores for stale, untrusted ipv4 records."""
    try:
        _update_scores(limit)
    except PipelineStageError as exc:
        _fail(exc)


@app.command("run-all")
def run_all():
    """Import CSVs, merge, load trusted CSVs, mark trusted, score."""
    try:
        _import_csv(Path(settings.IMPORT_CSV_DIR), Path(settings.ARCHIVE_CSV_DIR))
        _process_imports(None)
        _load_trusted(Path(settings.TRUSTED_CSV_DIR), Path(settings.ARCHIVE_CSV_DIR))
        _mark_trusted()
        _update_scores(None)
    except PipelineStageError as exc:
        _fail(exc)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@app.command("status")
def status():
    """Show queue depth, table sizes and weekly buckets."""
    from objectanalyzer.database import SessionLocal, store_lock
    from objectanalyzer.modules.reports import pipeline_status

    db = SessionLocal()
    try:
        with store_lock.shared():
            info = pipeline_status(db)
    finally:
        db.close()

    console.print("[bold]Pipeline[/bold]")
    console.print(f"  Staged: {info['pending']:,}")
    console.print(f"  Intel records: {info['intel_records']:,}")
    console.print(f"    trusted: {info['trusted_records']:,}  scored: {info['scored_records']:,}")
    console.print(f"  Trusted list entries: {info['trusted_list']:,}")
    if info["buckets"]:
        console.print(f"  Weekly buckets: {', '.join(info['buckets'])}")
    else:
        console.print("  Weekly buckets: [dim]none yet[/dim]")


@app.command("lookup")
def lookup(obj: str = typer.Argument(..., metavar="OBJECT", help="Object as reported")):
    """Show the intel record for one object."""
    from objectanalyzer.database import SessionLocal, store_lock
    from objectanalyzer.modules.reports import get_intel

    db = SessionLocal()
    try:
        with store_lock.shared():
            record = get_intel(db, obj)
        if record is None:
            console.print(f"[yellow]No intel record for {obj}[/yellow]")
            raise typer.Exit(1)
        table = Table(title=obj, show_header=False)
        for field in (
            "object_type", "ip_decimal", "occurrence_count", "first_seen", "last_seen",
            "risk_score", "risk_score_last_updated", "trusted", "confirmed_risk",
            "fidelity", "notes", "geo_country", "geo_org",
        ):
            table.add_row(field, escape(str(getattr(record, field))))
        console.print(table)
    finally:
        db.close()


@app.command("top")
def top(
    limit: int = typer.Option(settings.REPORT_LIMIT, "--limit", help="Rows to show"),
    min_occurrences: int = typer.Option(1, "--min-occurrences", help="Hide objects seen fewer times"),
):
    """List the most frequently reported objects."""
    from objectanalyzer.database import SessionLocal, store_lock
    from objectanalyzer.modules.reports import top_objects

    db = SessionLocal()
    try:
        with store_lock.shared():
            rows = top_objects(db, limit, min_occurrences)
        if not rows:
            console.print("[dim]No intel records yet[/dim]")
            return
        table = Table(title="Top reported objects")
        table.add_column("Object")
        table.add_column("Type")
        table.add_column("Seen", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("Trusted")
        for r in rows:
            table.add_row(
                escape(r.object),
                r.object_type,
                str(r.occurrence_count),
                "" if r.risk_score is None else str(r.risk_score),
                "yes" if r.trusted else "",
            )
        console.print(table)
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@app.command("generate-api-key")
def generate_api_key():
    """Print a random 64-character key suitable for API_KEY."""
    console.print(secrets.token_hex(32))


@app.command("serve")
def serve(
    host: str = typer.Option(settings.HOST, "--host"),
    port: int = typer.Option(settings.PORT, "--port"),
):
    """Run the HTTP API."""
    import uvicorn

    console.print(f"API listening on [cyan]http://{host}:{port}[/cyan], press Ctrl+C to stop")
    uvicorn.run("objectanalyzer.main:app", host=host, port=port)
