"""
Main entry point for the trackstream application.
This module handles top-level exception handling and CLI invocation.
"""

import logging
import sys

import typer
from rich.console import Console

from trackstream.cli.app import app
from trackstream.exceptions import TrackStreamError


def main() -> None:
    """Main entry point function."""
    log = logging.getLogger("trackstream")
    console = Console()

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Server stopped.[/yellow]")
        sys.exit(0)
    except TrackStreamError as e:
        console.print(f"\n[bold red]{type(e).__name__}: {e}[/bold red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Unexpected error: {e}[/bold red]")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
