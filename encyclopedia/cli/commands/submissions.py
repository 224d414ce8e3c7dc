"""Submission workflow commands."""

import click
from rich.console import Console
from rich.table import Table

from encyclopedia.app.dependencies import get_submission_service
from encyclopedia.app.errors import DomainError
from encyclopedia.app.models.verbete_types import VERBETE_TYPES
from encyclopedia.app.services.submission_service import Actor
from encyclopedia.app.services.submission_states import ReviewAction

console = Console()


@click.command(name="verbete-types")
def verbete_types():
    """List entry types and the metadata fields each one accepts."""
    table = Table(title="Verbete types")
    table.add_column("key", style="cyan")
    table.add_column("title")
    table.add_column("required")
    table.add_column("optional")
    for verbete in VERBETE_TYPES.values():
        optional = [spec.name for spec in verbete.fields if not spec.required]
        table.add_row(
            verbete.key,
            verbete.title,
            ", ".join(verbete.required_fields) or "-",
            ", ".join(optional) or "-",
        )
    console.print(table)


@click.command()
@click.argument("submission_id")
@click.argument("action", type=click.Choice([action.value for action in ReviewAction]))
@click.option("--reviewer", "-r", required=True, help="Reviewer user id recorded on the submission.")
@click.option("--note", "-n", default=None, help="Review note shown to the owner.")
def review(submission_id: str, action: str, reviewer: str, note: str | None):
    """Apply a reviewer action to a submission."""
    service = get_submission_service()
    try:
        submission = service.review(
            submission_id,
            Actor(user_id=reviewer, is_reviewer=True),
            action,
            note,
        )
    except DomainError as exc:
        raise click.ClickException(f"{exc.message} ({exc.status_code})") from exc

    console.print(f"[green]{submission.submission_id}[/green] is now [bold]{submission.status}[/bold]")
    if submission.article_id:
        console.print(f"Published as article [cyan]{submission.article_id}[/cyan]")
