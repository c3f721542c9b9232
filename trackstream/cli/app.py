"""
Defines the command-line interface for running and maintaining the server using Typer.
"""

import logging
import os
from pathlib import Path

import typer
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from trackstream import __version__
from trackstream.exceptions import TrackStreamError
from trackstream.models.config import ServerConfig
from trackstream.storage.cache import AudioCache
from trackstream.storage.config_manager import ConfigManager
from trackstream.utils.formatting import format_size, mask_secret

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("trackstream")

app = typer.Typer(
    name="trackstream",
    help="Stream Spotify tracks as byte ranges, backed by a local audio cache.",
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "trackstream"


CONFIG_FILE = get_config_dir() / "config.ini"

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help=f"Path to an INI config file (default: {CONFIG_FILE}).",
)


def _load_config(config_path: Path | None, **overrides) -> ServerConfig:
    try:
        return ConfigManager(config_path or CONFIG_FILE).load_config(overrides)
    except TrackStreamError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e


def _open_cache(config_path: Path | None) -> AudioCache:
    """Cache maintenance does not need Spotify credentials, only the cache root."""
    try:
        cache_dir = ConfigManager(config_path or CONFIG_FILE).load_cache_dir()
    except TrackStreamError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    return AudioCache(cache_dir)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """trackstream server"""
    if version:
        console.print(f"[bold]trackstream[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("trackstream").setLevel("DEBUG" if verbose >= 1 else "INFO")

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def serve(
    config_path: Path | None = ConfigOption,
    host: str | None = typer.Option(None, "--host", help="Interface to bind."),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on."),
):
    """Run the HTTP server."""
    from trackstream.web.app import create_app

    config = _load_config(config_path, host=host, port=port)
    console.print(
        f"[bold cyan]🎵 trackstream {__version__} listening on "
        f"{config.host}:{config.port}[/bold cyan]"
    )
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,
    )


@app.command()
def validate(config_path: Path | None = ConfigOption):
    """Validate and display the current configuration."""
    config = _load_config(config_path)

    table = Table(title="Configuration", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in config.model_dump().items():
        if key in ("client_id", "client_secret"):
            value = mask_secret(value)
        table.add_row(key, str(value))
    console.print(table)
    console.print("[green]✓ Configuration is valid.[/green]")


@app.command(name="cache-info")
def cache_info(config_path: Path | None = ConfigOption):
    """Show how much audio is cached."""
    cache = _open_cache(config_path)
    entries = cache.entries()
    console.print(f"Cache directory: [dim]{cache.cache_dir}[/dim]")
    console.print(
        f"{len(entries)} tracks, {format_size(sum(e.size for e in entries))}"
    )


@app.command(name="clear-cache")
def clear_cache(
    config_path: Path | None = ConfigOption,
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Delete all cached audio."""
    cache = _open_cache(config_path)
    if not force and not typer.confirm(
        f"Delete all cached audio in '{cache.cache_dir}'?"
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    size = cache.total_size()
    removed = cache.clear()
    console.print(
        f"[green]✓ Cache cleared ({removed} tracks, {format_size(size)} freed).[/green]"
    )
