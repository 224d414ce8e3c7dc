"""Stored content maintenance commands."""

from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.table import Table

from encyclopedia.app.dependencies import get_content_fixer, get_database, get_settings, get_telemetry
from encyclopedia.app.errors import NotFoundError, ValidationError
from encyclopedia.app.repositories.article_repository import ArticleRepository
from encyclopedia.app.repositories.submission_repository import SubmissionRepository
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyRepository
from encyclopedia.app.services.content_html_fixer import ContentHtmlFixer
from encyclopedia.app.services.seed_service import SeedService

console = Console()


@click.command(name="fix-content-html")
@click.option("--dry-run", is_flag=True, help="Report what would change without writing.")
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Records normalized at once.")
@click.option("--timeout", type=click.FloatRange(min=0.1), default=None, help="Per-record timeout in seconds.")
def fix_content_html(dry_run: bool, concurrency: int | None, timeout: float | None):
    """Re-normalize content_html for every submission and article."""
    fixer = get_content_fixer()
    if concurrency is not None or timeout is not None:
        settings = get_settings()
        database = get_database()
        fixer = ContentHtmlFixer(
            submission_repository=SubmissionRepository(database),
            article_repository=ArticleRepository(database),
            telemetry=get_telemetry(),
            concurrency=concurrency or settings.content_fix_concurrency,
            item_timeout_seconds=timeout or settings.content_fix_item_timeout_seconds,
        )

    report = fixer.fix_all(dry_run=dry_run)

    label = "would update" if dry_run else "updated"
    console.print(
        f"[bold]{report.total}[/bold] records, [green]{report.updated} {label}[/green], "
        f"[red]{report.failed} failed[/red]"
    )
    if report.errors:
        table = Table(title="Failures")
        table.add_column("id")
        table.add_column("error")
        for item in report.errors:
            table.add_row(item["id"], item["error"])
        console.print(table)
    if report.failed:
        raise click.exceptions.Exit(1)


@click.command(name="preview-content-html")
@click.argument("record_id")
def preview_content_html(record_id: str):
    """Show the HTML a repair would store for one submission or article."""
    try:
        preview = get_content_fixer().preview(record_id)
    except NotFoundError as exc:
        raise click.ClickException(exc.message) from exc

    console.print(f"[bold]{preview.kind}[/bold] {preview.record_id} {preview.title or ''}")
    if preview.error is not None:
        console.print(f"[red]cannot normalize:[/red] {preview.error}")
        raise click.exceptions.Exit(1)
    console.print(preview.generated_html, markup=False, highlight=False)
    status = "[yellow]would change[/yellow]" if preview.would_change else "[green]unchanged[/green]"
    console.print(status)


@click.command(name="verify-content-html")
@click.argument("record_id")
def verify_content_html(record_id: str):
    """Check that one record's stored content_html is current."""
    try:
        result = get_content_fixer().verify(record_id)
    except NotFoundError as exc:
        raise click.ClickException(exc.message) from exc

    table = Table(title=f"{result.kind} {result.record_id}")
    table.add_column("check")
    table.add_column("value")
    table.add_row("has content", str(result.has_content))
    table.add_row("has content_html", str(result.has_content_html))
    table.add_row("content length", str(result.content_length))
    table.add_row("content_html length", str(result.html_length))
    table.add_row("up to date", str(result.up_to_date))
    if result.error is not None:
        table.add_row("error", result.error)
    console.print(table)
    if not result.up_to_date:
        raise click.exceptions.Exit(1)


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def seed(path: Path):
    """Load tags, categories and articles from a YAML fixture."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise click.ClickException("Seed file must contain a mapping at the top level")

    database = get_database()
    service = SeedService(
        article_repository=ArticleRepository(database),
        taxonomy_repository=TaxonomyRepository(database),
    )
    try:
        report = service.seed(data)
    except ValidationError as exc:
        details = f" ({'; '.join(exc.errors)})" if exc.errors else ""
        raise click.ClickException(f"{exc.message}{details}") from exc

    console.print(f"[green]Seeded[/green] {report.tags} tags, {report.categories} categories")
    console.print(
        f"Articles: [green]{report.articles_created} created[/green], "
        f"{report.articles_skipped} already present"
    )
