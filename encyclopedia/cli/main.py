"""Admin CLI for the encyclopedia backend."""

import click

from encyclopedia.app.logging_config import configure_cli_logging

from .commands import content, submissions


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default="WARNING", show_default=True, help="Console log level (stderr).")
def main(log_level: str):
    """Encyclopedia - content maintenance and review from the terminal."""
    configure_cli_logging(log_level)


# Content commands
main.add_command(content.fix_content_html)
main.add_command(content.preview_content_html)
main.add_command(content.verify_content_html)
main.add_command(content.seed)

# Submission commands
main.add_command(submissions.verbete_types)
main.add_command(submissions.review)


if __name__ == "__main__":
    main()
