"""CLI entry point."""

from __future__ import annotations

import rich_click as click

from switchyard.core.logging_config import configure_logging
from switchyard.frontends.cli.run import run, validate
from switchyard.frontends.cli.snapshot import snapshot
from switchyard.frontends.cli.state import state
from switchyard.frontends.cli.utils import load_env

# Configure rich-click styling
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.ERRORS_EPILOGUE = ""
click.rich_click.MAX_WIDTH = 100


# =============================================================================
# Root CLI
# =============================================================================
@click.group()
@click.version_option(package_name="switchyard")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Switchyard - programmable DAG task orchestration.

    Run pipelines defined in Python modules, step through them node by
    node, and manage the state they persist.

    **Pipelines:**

        switchyard run        Execute a pipeline

        switchyard validate   Check a pipeline's graph

    **Persistence:**

        switchyard state      Inspect persisted state

        switchyard snapshot   Capture and restore state snapshots
    """
    configure_logging(level="DEBUG" if verbose else None, force=verbose)


cli.add_command(run)
cli.add_command(validate)
cli.add_command(state)
cli.add_command(snapshot)


def main() -> None:
    """Main entry point for the CLI."""
    load_env()
    cli()


if __name__ == "__main__":
    main()
