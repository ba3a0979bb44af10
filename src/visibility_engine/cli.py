"""Command-line interface using Typer."""

import json
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from visibility_engine import __version__
from visibility_engine.logging import setup_logging

# Setup logging
setup_logging()

app = typer.Typer(
    name="visibility-engine",
    help="AI Visibility Engine - job queue, engine authority and scoring CLI",
    add_completion=False,
)

# Subcommand groups
engines_app = typer.Typer(help="Engine authority commands")
scores_app = typer.Typer(help="Visibility score commands")
configs_app = typer.Typer(help="Scoring config commands")
app.add_typer(engines_app, name="engines")
app.add_typer(scores_app, name="scores")
app.add_typer(configs_app, name="configs")

console = Console()

STATUS_STYLES = {
    "completed": "green",
    "retry_scheduled": "yellow",
    "dead_letter": "red",
    "skipped": "dim",
    "healthy": "green",
    "degraded": "yellow",
    "unavailable": "red",
    "maintenance": "blue",
}


def _styled(value: str) -> str:
    style = STATUS_STYLES.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"AI Visibility Engine v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """AI Visibility Engine - track answer engines and score brand visibility."""
    pass


# =============================================================================
# Job queue
# =============================================================================


@app.command()
def process(
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Jobs per run"),
) -> None:
    """Claim and run one batch of due jobs."""
    from visibility_engine.services.job_queue import JobQueue

    batch = JobQueue().process_batch(batch_size)

    if not batch.results:
        console.print("[dim]No due jobs.[/dim]")
        return

    table = Table(title=f"Processed {batch.processed_count} job(s)")
    table.add_column("Job ID", style="cyan")
    table.add_column("Type")
    table.add_column("Outcome")
    table.add_column("Error")
    for outcome in batch.results:
        table.add_row(
            str(outcome.job_id),
            outcome.job_type,
            _styled(outcome.status.value),
            (outcome.error or "")[:60],
        )
    console.print(table)


@app.command()
def reclaim(
    older_than: Optional[int] = typer.Option(
        None, "--older-than", help="Minutes in processing before a job is stale"
    ),
) -> None:
    """Fail jobs stuck in processing past the staleness timeout."""
    from datetime import timedelta

    from visibility_engine.services.job_queue import JobQueue

    outcomes = JobQueue().reclaim_stale(timedelta(minutes=older_than) if older_than else None)
    if not outcomes:
        console.print("[dim]No stale jobs.[/dim]")
        return
    for outcome in outcomes:
        console.print(f"{outcome.job_id} ({outcome.job_type}): {_styled(outcome.status.value)}")


@app.command()
def enqueue(
    job_type: str = typer.Argument(..., help="Job type, e.g. analyze_prompt"),
    owner_id: UUID = typer.Option(..., "--owner", "-o", help="Owner notified on failure"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    priority: int = typer.Option(0, "--priority", help="Higher runs first"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Retry budget"),
) -> None:
    """Add a job to the queue."""
    from visibility_engine.domain.errors import PermanentError
    from visibility_engine.services.job_queue import JobQueue

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]Invalid JSON payload: {e}[/bold red]")
        raise typer.Exit(code=1)

    try:
        job = JobQueue().enqueue(
            job_type, data, owner_id=owner_id, priority=priority, max_retries=max_retries
        )
    except PermanentError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Job enqueued: {job.id}[/green]")


@app.command()
def stats() -> None:
    """Show job counts per status."""
    from visibility_engine.services.job_queue import JobQueue

    counts = JobQueue().stats()
    table = Table(title="Job Queue")
    table.add_column("Status", style="cyan")
    table.add_column("Jobs", justify="right")
    for job_status, count in counts.items():
        table.add_row(job_status, str(count))
    table.add_row("[bold]total[/bold]", f"[bold]{sum(counts.values())}[/bold]")
    console.print(table)


@app.command()
def replay(
    job_id: UUID = typer.Argument(..., help="Dead-lettered job to replay"),
) -> None:
    """Return a dead-lettered job to the queue."""
    from visibility_engine.domain.errors import InvalidStateError, JobNotFoundError
    from visibility_engine.services.job_queue import JobQueue

    try:
        job = JobQueue().replay_dead_letter(job_id)
    except (JobNotFoundError, InvalidStateError) as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Job {job.id} requeued ({job.job_type})[/green]")


# =============================================================================
# Engines
# =============================================================================


@engines_app.command("list")
def engines_list() -> None:
    """List engines by authority weight."""
    from visibility_engine.services.authority import AuthorityRegistry

    table = Table(title="Engine Authority")
    table.add_column("Engine", style="cyan")
    table.add_column("Status")
    table.add_column("Weight", justify="right")
    table.add_column("Reliability", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Queries", justify="right")

    for authority in AuthorityRegistry().list_authorities():
        table.add_row(
            authority.engine,
            _styled(authority.status.value),
            f"{authority.authority_weight:.2f}",
            f"{authority.reliability_score:.1f}%",
            str(authority.consecutive_failures),
            str(authority.total_queries),
        )
    console.print(table)


@engines_app.command("show")
def engines_show(
    engine: str = typer.Argument(..., help="Engine name, e.g. chatgpt"),
) -> None:
    """Explain an engine's authority."""
    from visibility_engine.domain.errors import MissingAuthorityError
    from visibility_engine.services.authority import AuthorityRegistry

    registry = AuthorityRegistry()
    try:
        explanation = registry.explain(engine)
    except MissingAuthorityError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    lines = [
        f"Weight: {explanation.authority_weight:.2f} ({explanation.trust_level.value} trust)",
        explanation.compared_to_others,
    ]
    lines += [f"[green]+[/green] {reason}" for reason in explanation.why_trustworthy]
    lines += [f"[yellow]-[/yellow] {reason}" for reason in explanation.why_cautious]
    console.print(Panel("\n".join(lines), title=explanation.display_name))

    outages = registry.outage_history(engine, limit=5)
    if outages:
        table = Table(title="Recent Outages")
        table.add_column("Started")
        table.add_column("Ended")
        table.add_column("Queries", justify="right")
        for outage in outages:
            table.add_row(
                outage.started_at.isoformat(),
                outage.ended_at.isoformat() if outage.ended_at else "[red]open[/red]",
                str(outage.affected_queries),
            )
        console.print(table)


@engines_app.command("maintenance")
def engines_maintenance(
    engine: str = typer.Argument(..., help="Engine name"),
    enable: bool = typer.Option(True, "--on/--off", help="Enter or leave maintenance"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Status message"),
) -> None:
    """Put an engine into or out of maintenance."""
    from visibility_engine.domain.errors import MissingAuthorityError
    from visibility_engine.services.authority import AuthorityRegistry

    try:
        authority = AuthorityRegistry().set_maintenance(engine, enable, message)
    except MissingAuthorityError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"{authority.engine}: {_styled(authority.status.value)}")


@engines_app.command("seed")
def engines_seed() -> None:
    """Insert the known engines that are missing."""
    from visibility_engine.services.authority import AuthorityRegistry

    inserted = AuthorityRegistry().seed_defaults()
    console.print(f"[green]Seeded {inserted} engine(s)[/green]")


@engines_app.command("snapshot")
def engines_snapshot(
    engine: Optional[str] = typer.Argument(
        None, help="Engine name; every available engine when omitted"
    ),
    snapshot_type: str = typer.Option(
        "manual", "--type", "-t", help="hourly, daily, weekly or manual"
    ),
) -> None:
    """Store a snapshot of engine metrics."""
    from visibility_engine.domain.enums import SnapshotType
    from visibility_engine.domain.errors import MissingAuthorityError
    from visibility_engine.services.authority import AuthorityRegistry

    try:
        kind = SnapshotType(snapshot_type)
    except ValueError:
        console.print(f"[bold red]Error: unknown snapshot type {snapshot_type!r}[/bold red]")
        raise typer.Exit(code=1)

    registry = AuthorityRegistry()
    try:
        if engine:
            snapshots = [registry.create_snapshot(engine, kind)]
        else:
            snapshots = registry.snapshot_all(kind)
    except MissingAuthorityError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    for snapshot in snapshots:
        console.print(
            f"{snapshot.engine}: {kind.value} snapshot at reliability "
            f"{snapshot.reliability_score:.1f}% ({_styled(snapshot.status.value)})"
        )


@engines_app.command("audit")
def engines_audit(
    engine: str = typer.Argument(..., help="Engine name"),
    days: int = typer.Option(7, "--days", "-d", min=1, help="Look-back window in days"),
) -> None:
    """Show recent changes to an engine's authority."""
    from visibility_engine.domain.errors import MissingAuthorityError
    from visibility_engine.services.authority import AuthorityRegistry

    try:
        trail = AuthorityRegistry().audit_trail(engine, days)
    except MissingAuthorityError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(trail.summary)
    if not trail.entries:
        return

    table = Table(title=f"{engine} authority changes")
    table.add_column("When")
    table.add_column("Change")
    table.add_column("Weight", justify="right")
    table.add_column("By")
    table.add_column("Explanation")
    for entry in trail.entries:
        table.add_row(
            entry.created_at.isoformat() if entry.created_at else "",
            entry.change_type.value,
            f"{entry.previous_authority_weight:.2f} -> {entry.new_authority_weight:.2f}",
            entry.triggered_by.value,
            entry.explanation,
        )
    console.print(table)


# =============================================================================
# Scores & configs
# =============================================================================


@scores_app.command("show")
def scores_show(
    prompt_id: UUID = typer.Argument(..., help="Prompt ID"),
) -> None:
    """Show the stored score for a prompt."""
    from visibility_engine.services.scoring import ScoringService

    result = ScoringService().get_score(prompt_id)
    if result is None:
        console.print("[yellow]No score stored for this prompt.[/yellow]")
        raise typer.Exit(code=1)

    summary = (
        f"AI Visibility Score: [bold]{result.ai_visibility_score:.2f}[/bold] "
        f"(unweighted {result.unweighted_avs:.2f})\n"
        f"Confidence: {result.confidence:.0f} ({result.confidence_level})\n"
        f"Citation score: {result.citation_score:.2f}  "
        f"Share of voice: {result.share_of_voice:.2f}%\n"
        f"Scoring version: {result.scoring_version}"
    )
    if result.is_estimated or result.degraded_engines:
        summary += (
            "\n[yellow]Estimated - degraded engines: "
            f"{', '.join(result.degraded_engines)}[/yellow]"
        )
    console.print(Panel(summary, title=str(prompt_id)))

    table = Table(title="Breakdown")
    table.add_column("Engine", style="cyan")
    table.add_column("Score", justify="right")
    for entry in result.breakdown:
        table.add_row(entry.engine, f"{entry.score:.2f}")
    console.print(table)


@configs_app.command("list")
def configs_list() -> None:
    """List scoring config versions."""
    from visibility_engine.services.scoring import ScoringConfigStore

    table = Table(title="Scoring Configs")
    table.add_column("Version", style="cyan")
    table.add_column("Active")
    table.add_column("Description")
    for config in ScoringConfigStore().list():
        table.add_row(config.version, "[green]✓[/green]" if config.is_active else "", config.description or "")
    console.print(table)


@configs_app.command("activate")
def configs_activate(
    version: str = typer.Argument(..., help="Config version to activate"),
) -> None:
    """Make a scoring config the active one."""
    from visibility_engine.domain.errors import MissingConfigError
    from visibility_engine.services.scoring import ScoringConfigStore

    try:
        ScoringConfigStore().activate(version)
    except MissingConfigError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Activated scoring config {version}[/green]")


if __name__ == "__main__":
    app()
