"""Price intelligence CLI.

Commands:
- init: Initialize database schema
- ingest: Ingest historical offer documents (PDF/XLSX/XLS/TXT/GAEB)
- assess: Assess a customer request with optional documents
- index: Browse the market price index
- recommend: Recommend a price for one position
- compare: Compare a stored offer with the market
- stats: Show price database statistics
- proposals: List, approve or reject pricebook update proposals
- web serve: Run the JSON API
"""

from __future__ import annotations

import asyncio
import mimetypes
from decimal import Decimal
from pathlib import Path
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from priceintel.analysis.analyzer import AssessmentContext, OfferAnalyzer
from priceintel.analysis.generator import OpenAIStructuredGenerator
from priceintel.config import get_config
from priceintel.core.logging import configure_logging
from priceintel.db.connection import close_db, get_session, get_session_factory, init_db
from priceintel.db.documents import get_offer_record, get_price_database_stats
from priceintel.errors import NotFoundError, PriceIntelError, ProposalStateError, ValidationError
from priceintel.extraction.extractors import extract_text
from priceintel.extraction.validator import RawUpload, validate_upload
from priceintel.ingestion.pipeline import IngestionPipeline, market_source_loader
from priceintel.models import Decision, ProposalStatus, RecommendationQuery
from priceintel.pricing.comparison import compare_offer_to_market
from priceintel.pricing.index import MarketIndex, MarketIndexHolder
from priceintel.pricing.recommender import recommend as recommend_price
from priceintel.workflow.service import PricebookWorkflow

app = typer.Typer(
    name="priceintel",
    help="Price intelligence for offers, bills of quantities and pricebooks",
    no_args_is_help=True,
)
proposals_cli = typer.Typer(help="Pricebook update proposals")
app.add_typer(proposals_cli, name="proposals")

web_cli = typer.Typer(help="JSON API")
app.add_typer(web_cli, name="web")

console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    configure_logging("DEBUG" if verbose else None)


def _read_upload(path: Path) -> RawUpload:
    content_type, _ = mimetypes.guess_type(path.name)
    return RawUpload(filename=path.name, content=path.read_bytes(), content_type=content_type)


async def _load_index() -> MarketIndex:
    config = get_config()
    holder = MarketIndexHolder()
    return await holder.rebuild(market_source_loader(get_session_factory()), config.pricing)


def _analyzer(config) -> OfferAnalyzer:
    try:
        generator = OpenAIStructuredGenerator(config.llm)
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)
    return OfferAnalyzer(generator, config.ingestion.max_analysis_chars)


def _money(value: Decimal | None) -> str:
    return "-" if value is None else f"{value:,.2f}"


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        if drop:
            console.print("[yellow]Dropping existing tables...[/yellow]")
        console.print("[green]Creating tables...[/green]")
        try:
            await init_db(drop=drop)
        finally:
            await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def ingest(
    files: list[Path] = typer.Argument(..., help="Offer documents (PDF/XLSX/XLS/TXT/X80-X84)"),
    no_proposals: bool = typer.Option(False, "--no-proposals", help="Skip pricebook proposals"),
):
    """Ingest historical offers into the price database."""
    config = get_config()
    if no_proposals:
        config.ingestion.propose_updates = False

    uploads = [_read_upload(path) for path in files]
    analyzer = _analyzer(config)
    console.print(f"[bold]Ingesting {len(uploads)} document(s)[/bold]")

    async def _ingest():
        pipeline = IngestionPipeline(
            get_session_factory(),
            analyzer,
            config.ingestion,
            config.pricing,
            index_holder=MarketIndexHolder(),
        )
        try:
            return await pipeline.ingest_batch(uploads)
        finally:
            await close_db()

    try:
        result = asyncio.run(_ingest())
    except PriceIntelError as e:
        console.print(f"[red]✗[/red] Ingestion failed: {e}")
        raise typer.Exit(1)

    table = Table(title="Ingestion")
    table.add_column("File", style="cyan")
    table.add_column("Outcome")
    table.add_column("Positions", justify="right")
    table.add_column("Proposals", justify="right")
    for outcome in result.outcomes:
        style = "green" if outcome.ok else "red"
        table.add_row(
            outcome.filename,
            f"[{style}]{outcome.outcome}[/{style}]",
            str(len(outcome.record.positions)) if outcome.record else "-",
            str(len(outcome.proposals)) if outcome.ok else "-",
        )
    console.print(table)

    if result.index is not None:
        console.print(f"Market index: {len(result.index)} entries")
    if result.failed:
        raise typer.Exit(1)


@app.command()
def assess(
    message: str = typer.Argument(..., help="Customer request"),
    files: list[Path] = typer.Option([], "--file", "-f", help="Supporting documents"),
    budget: str | None = typer.Option(None, "--budget", help="Budget"),
    timeline: str | None = typer.Option(None, "--timeline", help="Timeline"),
    urgency: str | None = typer.Option(None, "--urgency", help="Urgency"),
):
    """Assess a customer request (lead qualification)."""
    config = get_config()

    texts = []
    for path in files:
        upload = _read_upload(path)
        try:
            validate_upload(upload, config.ingestion)
        except ValidationError as e:
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(1)
        extraction = extract_text(upload)
        if not extraction.ok:
            console.print(f"[yellow]⚠[/yellow] {path.name}: {extraction.error}")
        texts.append(extraction.text)

    analyzer = _analyzer(config)
    try:
        result = asyncio.run(
            analyzer.assess(message, texts, AssessmentContext(budget=budget, timeline=timeline, urgency=urgency))
        )
    except PriceIntelError as e:
        console.print(f"[red]✗[/red] Assessment failed: {e}")
        raise typer.Exit(1)

    console.print(f"[bold]{result.project_type}[/bold]")
    console.print(
        f"Estimated value: {_money(result.estimated_value)} {config.pricing.currency} | "
        f"complexity: {result.complexity.value} | urgency: {result.urgency.value}"
    )

    if result.suggested_positions:
        table = Table(title="Suggested positions")
        table.add_column("Code", style="cyan")
        table.add_column("Title")
        table.add_column("Qty", justify="right")
        table.add_column("Unit")
        table.add_column("Price", justify="right", style="green")
        for pos in result.suggested_positions:
            table.add_row(pos.code, pos.title, f"{pos.quantity}", pos.unit, _money(pos.estimated_price))
        console.print(table)

    for title, lines in (
        ("Requirements", result.key_requirements),
        ("Risks", result.risk_factors),
        ("Recommendations", result.recommendations),
    ):
        if lines:
            console.print(f"\n[bold]{title}[/bold]")
            for line in lines:
                console.print(f"  • {line}")


@app.command()
def index(
    trade: str | None = typer.Option(None, "--trade", help="Trade category"),
    unit: str | None = typer.Option(None, "--unit", help="Unit"),
    query: str | None = typer.Option(None, "--query", "-q", help="Description contains"),
    region: str | None = typer.Option(None, "--region", help="Region"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
):
    """Browse the market price index."""

    async def _index():
        try:
            return await _load_index()
        finally:
            await close_db()

    market = asyncio.run(_index())
    entries = market.search(trade_category=trade, unit=unit, query=query, region=region, limit=limit)

    table = Table(title=f"Market index ({len(entries)} of {len(market)})")
    table.add_column("Description", style="cyan")
    table.add_column("Unit")
    table.add_column("Trade")
    table.add_column("Min", justify="right")
    table.add_column("Avg", justify="right", style="green")
    table.add_column("Max", justify="right")
    table.add_column("Conf.", justify="right")
    table.add_column("Sources", justify="right")
    for entry in entries:
        table.add_row(
            entry.description,
            entry.unit,
            entry.trade_category,
            _money(entry.price_range.min),
            _money(entry.price_range.avg),
            _money(entry.price_range.max),
            f"{entry.confidence:.2f}",
            str(entry.source_count),
        )
    console.print(table)


@app.command()
def recommend(
    description: str = typer.Argument(..., help="Position description"),
    unit: str = typer.Option(..., "--unit", help="Unit"),
    trade: str = typer.Option(..., "--trade", help="Trade category"),
    region: str | None = typer.Option(None, "--region", help="Region"),
    proposed_price: float | None = typer.Option(None, "--price", help="Proposed unit price"),
):
    """Recommend a unit price for a position."""
    config = get_config()

    async def _index():
        try:
            return await _load_index()
        finally:
            await close_db()

    query = RecommendationQuery(
        description=description,
        unit=unit,
        trade_category=trade,
        region=region,
        proposed_price=Decimal(str(proposed_price)) if proposed_price is not None else None,
    )
    result = recommend_price(query, asyncio.run(_index()), config.pricing)

    if not result.has_market_data:
        console.print(f"[yellow]⚠[/yellow] {result.message}")
        raise typer.Exit(1)

    console.print(
        f"[bold green]{_money(result.recommended_price)} {config.pricing.currency}[/bold green] "
        f"(range {_money(result.price_range.min)}-{_money(result.price_range.max)}, "
        f"confidence {result.confidence:.2f}, {result.source_count} source(s))"
    )
    if result.safety_margin_applied:
        console.print(f"  includes {config.pricing.safety_margin_pct}% safety margin")
    if result.market_trend is not None:
        console.print(f"  proposed price is {result.market_trend.value.replace('_', ' ')}")


@app.command()
def compare(offer_id: str = typer.Argument(..., help="Extracted offer ID")):
    """Compare a stored offer reconstruction with the market index."""
    config = get_config()

    async def _compare():
        try:
            async with get_session() as session:
                record = await get_offer_record(session, UUID(offer_id))
            if record is None:
                return None
            return compare_offer_to_market(record, await _load_index(), config.pricing)
        finally:
            await close_db()

    result = asyncio.run(_compare())
    if result is None:
        console.print(f"[red]✗[/red] Offer {offer_id} not found")
        raise typer.Exit(1)

    table = Table(title=f"Market comparison: {result.offer_title}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Positions", str(result.total_positions))
    table.add_row("Analyzed", str(result.analyzed_positions))
    table.add_row("Matched", str(result.matched_positions))
    table.add_row("New", str(result.new_positions))
    table.add_row("Avg. markup %", _money(result.average_markup_pct))
    table.add_row("Trend", result.price_trend.value if result.price_trend else "-")
    table.add_row("Competitive score", f"{result.competitive_score:.2f}")
    table.add_row("Data quality", f"{result.data_quality_score:.2f}")
    table.add_row("Completeness %", f"{result.completeness_pct:.1f}")
    console.print(table)

    for adjustment in result.price_adjustments:
        console.print(
            f"  {adjustment.position_code}: {_money(adjustment.current_price)} → "
            f"{_money(adjustment.suggested_price)} ({adjustment.reason})"
        )
    for line in result.recommendations:
        console.print(f"  • {line}")


@app.command()
def stats():
    """Show price database statistics."""

    async def _stats():
        try:
            async with get_session() as session:
                return await get_price_database_stats(session)
        finally:
            await close_db()

    result = asyncio.run(_stats())

    table = Table(title="Price Database")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Uploaded documents", str(result.total_documents))
    table.add_row("Analyzed documents", str(result.analyzed_documents))
    table.add_row("Failed documents", str(result.failed_documents))
    table.add_row("Extracted prices", str(result.extracted_prices))
    table.add_row("Active pricebook items", str(result.active_pricebook_items))
    table.add_row("Pending proposals", str(result.pending_proposals))
    table.add_row("Total offer value", _money(result.total_offer_value))
    table.add_row("Analysis rate %", f"{result.analysis_rate_pct:.1f}")
    console.print(table)


@proposals_cli.command("list")
def proposals_list(
    status: ProposalStatus | None = typer.Option(ProposalStatus.PENDING, "--status", help="Status filter"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
):
    """List pricebook update proposals."""
    config = get_config()

    async def _list():
        try:
            workflow = PricebookWorkflow(get_session_factory(), config.pricing)
            return await workflow.list_proposals(status, limit)
        finally:
            await close_db()

    proposals = asyncio.run(_list())

    table = Table(title=f"Proposals ({status.value if status else 'all'})")
    table.add_column("ID", style="dim")
    table.add_column("Type")
    table.add_column("Description", style="cyan")
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Δ %", justify="right")
    table.add_column("Match")
    table.add_column("Status")
    for p in proposals:
        table.add_row(
            str(p.id),
            p.update_type.value,
            p.description or "-",
            _money(p.old_price),
            _money(p.new_price),
            _money(p.price_change_pct),
            p.match_method or "-",
            p.status.value,
        )
    console.print(table)


def _resolve(proposal_id: str, decision: Decision, resolved_by: str | None, note: str | None) -> None:
    config = get_config()

    async def _apply():
        try:
            workflow = PricebookWorkflow(get_session_factory(), config.pricing)
            return await workflow.apply_proposal(UUID(proposal_id), decision, resolved_by, note)
        finally:
            await close_db()

    try:
        proposal = asyncio.run(_apply())
    except (NotFoundError, ProposalStateError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Proposal {proposal.id} {proposal.status.value}")


@proposals_cli.command("approve")
def proposals_approve(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    resolved_by: str | None = typer.Option(None, "--by", help="Reviewer"),
    note: str | None = typer.Option(None, "--note", help="Note"),
):
    """Approve a proposal and apply it to the pricebook."""
    _resolve(proposal_id, Decision.APPROVE, resolved_by, note)


@proposals_cli.command("reject")
def proposals_reject(
    proposal_id: str = typer.Argument(..., help="Proposal ID"),
    resolved_by: str | None = typer.Option(None, "--by", help="Reviewer"),
    note: str | None = typer.Option(None, "--note", help="Note"),
):
    """Reject a proposal; the pricebook stays untouched."""
    _resolve(proposal_id, Decision.REJECT, resolved_by, note)


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8001, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the FastAPI JSON API."""
    import uvicorn

    typer.echo(f"Starting API on http://{host}:{port}")
    uvicorn.run("priceintel.web.app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
