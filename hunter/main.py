"""Main CLI entry point for Opportunity Hunter."""

import asyncio
import json
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import PipelineConfig
from .contracts import validate
from .errors import ContractViolation, MissingIdentifier, ReviewEntryNotFound
from .logging_config import setup_logging
from .models.records import Decision
from .pipeline import open_pipeline
from .review import ManualReviewService
from .storage import PipelineDatabase

console = Console()

app = typer.Typer(
    name="hunter",
    help="Business-opportunity extraction, verification and review pipeline.",
    add_completion=False,
)

_DECISION_STYLES = {
    Decision.APPROVED: "green",
    Decision.REJECTED: "red",
    Decision.MANUAL_REVIEW: "yellow",
}


def _config(db_path: str | None) -> PipelineConfig:
    config = PipelineConfig.from_env()
    if db_path:
        config.db_path = db_path
    return config


def _load_documents(path: Path) -> list[dict]:
    """A JSON object, a JSON array, or JSON Lines."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    return data if isinstance(data, list) else [data]


async def _with_db(config: PipelineConfig, work):
    db = PipelineDatabase(config.db_path)
    await db.connect()
    try:
        return await work(db)
    finally:
        await db.close()


@app.command()
def run(
    source: Path = typer.Argument(..., help="JSON / JSONL file of candidate documents", exists=True),
    db_path: str | None = typer.Option(None, "--db", "-d", help="Path to SQLite database file"),
):
    """Run candidate documents through the pipeline.

    Each document needs text, sourceURL and sourceDomain. Decisions are
    printed once every branch has reported; joins still waiting are shown
    as pending and will be completed by a later sweep.

    Examples:
        hunter run articles.jsonl
        hunter run article.json --db data/hunter.db
    """
    config = _config(db_path)
    documents = _load_documents(source)

    console.print()
    console.print(Panel(
        f"[bold]Opportunity Hunter[/bold]\n{len(documents)} document(s) from {source}",
        border_style="blue",
    ))

    async def _run():
        async with open_pipeline(config, sweep=False) as pipeline:
            keys = []
            for document in documents:
                try:
                    document = validate(document, "candidate_document")
                    await pipeline.submit(document)
                    keys.append(document.source_url)
                except ContractViolation as e:
                    console.print(f"[red]Skipped invalid document:[/red] {e}")
            await pipeline.bus.drain()

            table = Table(title="Decisions")
            table.add_column("Source")
            table.add_column("Company")
            table.add_column("Confidence", justify="right")
            table.add_column("Quality", justify="right")
            table.add_column("Decision")
            for key in keys:
                stored = await pipeline.db.get_final_record(key)
                if stored is None:
                    table.add_row(key, "-", "-", "-", "[dim]pending[/dim]")
                    continue
                record = stored.record
                style = _DECISION_STYLES[record.decision]
                table.add_row(
                    key,
                    record.company_name,
                    str(record.verification.confidence_score),
                    str(record.qc.quality_score),
                    f"[{style}]{record.decision.value}[/{style}]",
                )
            console.print(table)

            if pipeline.bus.dead_letters:
                console.print(f"[red]{len(pipeline.bus.dead_letters)} message(s) dead-lettered, see log[/red]")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Exiting...[/yellow]")
        sys.exit(0)


@app.command()
def reviews(
    db_path: str | None = typer.Option(None, "--db", "-d", help="Path to SQLite database file"),
):
    """List entries waiting for manual review."""
    config = _config(db_path)
    entries = asyncio.run(_with_db(config, lambda db: ManualReviewService(db).list_entries()))

    if not entries:
        console.print("[dim]Manual review queue is empty.[/dim]")
        return

    table = Table(title=f"Manual review ({len(entries)})")
    table.add_column("Entry ID", style="cyan")
    table.add_column("Company")
    table.add_column("Source")
    table.add_column("Confidence", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Queued")
    for entry in entries:
        table.add_row(
            entry.id,
            entry.company_name,
            entry.source_url,
            str(entry.verification.confidence_score),
            str(entry.qc.quality_score),
            entry.queued_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def correct(
    entry_id: str = typer.Argument(..., help="Manual review entry id"),
    analysis: Path = typer.Argument(..., help="JSON file with the corrected analysis", exists=True),
    db_path: str | None = typer.Option(None, "--db", "-d", help="Path to SQLite database file"),
):
    """Submit a human correction and resolve the review entry."""
    config = _config(db_path)
    payload = json.loads(analysis.read_text(encoding="utf-8"))
    payload["entryId"] = entry_id

    try:
        correction = asyncio.run(
            _with_db(config, lambda db: ManualReviewService(db).submit_correction(payload))
        )
    except MissingIdentifier as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)
    except ReviewEntryNotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    except ContractViolation as e:
        console.print(f"[red]Invalid correction:[/red] {e.message}")
        raise typer.Exit(code=1)

    console.print(f"[green]Correction recorded for {correction.source_url}[/green]")


@app.command()
def corrections(
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSONL here instead of stdout"),
    db_path: str | None = typer.Option(None, "--db", "-d", help="Path to SQLite database file"),
):
    """Export the labelled corrections dataset as JSON Lines."""
    config = _config(db_path)
    records = asyncio.run(_with_db(config, lambda db: ManualReviewService(db).list_corrections()))
    lines = [json.dumps(record.to_wire()) for record in records]

    if output:
        output.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
        console.print(f"[green]Wrote {len(lines)} correction(s) to {output}[/green]")
    else:
        for line in lines:
            typer.echo(line)


@app.command()
def sweep(
    db_path: str | None = typer.Option(None, "--db", "-d", help="Path to SQLite database file"),
):
    """Run one join-timeout sweep and report what it did."""
    config = _config(db_path)

    async def _sweep():
        async with open_pipeline(config, sweep=False) as pipeline:
            return await pipeline.join.sweep()

    report = asyncio.run(_sweep())
    console.print(
        f"Timed out: {len(report.timed_out)}  "
        f"Recovered: {len(report.recovered)}  "
        f"Purged: {report.purged}  "
        f"Failed: {len(report.failed)}"
    )
    for key in report.timed_out:
        console.print(f"  [yellow]partial[/yellow] {key}")
    for key in report.failed:
        console.print(f"  [red]failed[/red] {key} (retried next sweep)")


@app.command()
def stats(
    db_path: str | None = typer.Option(None, "--db", "-d", help="Path to SQLite database file"),
):
    """Show join states, decision counts and queue sizes."""
    config = _config(db_path)
    data = asyncio.run(_with_db(config, lambda db: db.get_pipeline_stats()))

    table = Table(title="Pipeline")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    for state, count in sorted(data["join_states"].items()):
        table.add_row(f"join: {state}", str(count))
    for decision, count in sorted(data["decisions"].items()):
        table.add_row(f"decision: {decision}", str(count))
    table.add_row("partial decisions", str(data["partial_decisions"]))
    table.add_row("pending reviews", str(data["pending_reviews"]))
    table.add_row("corrections", str(data["corrections"]))
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", "-p", help="Port for API server (default: 8080)"),
):
    """Start the HTTP API (documents, decisions, manual review, corrections)."""
    import uvicorn

    console.print(f"[dim]API: http://{host}:{port}[/dim]")
    console.print(f"[dim]API Docs: http://{host}:{port}/docs[/dim]")
    uvicorn.run("api.server:app", host=host, port=port)


def cli():
    """Entry point."""
    setup_logging()
    app()


if __name__ == "__main__":
    cli()
