"""CLI frontend for switchyard.

Commands:
    switchyard run        Execute a pipeline (fully, N steps, or until a node)
    switchyard validate   Check a pipeline's graph
    switchyard state      Inspect persisted state
    switchyard snapshot   Create and restore state snapshots

Example:
    $ switchyard run myflows.etl:pipeline --dry-run
    $ switchyard run myflows.etl:pipeline --step 2
    $ switchyard snapshot create before-migration
"""

from switchyard.frontends.cli.main import main

__all__ = ["main"]
