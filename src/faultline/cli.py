"""faultline Command Line Interface."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from faultline.errors import ConfigurationError
from faultline.logging import get_logger

app = typer.Typer(
    name="faultline",
    help="faultline: error classification, recovery and operational signals",
    no_args_is_help=True,
)
console = Console()
logger = get_logger(__name__, component="cli")


def _load(config_path: Optional[Path]):
    from faultline.config import load_config

    try:
        return load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        for line in e.details.get("errors", []):
            console.print(f"  [dim]{line}[/dim]")
        raise typer.Exit(code=1) from e


@app.command()
def version():
    """Show version information."""
    from faultline import __version__

    console.print(f"faultline version {__version__}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """Start the HTTP API."""
    import uvicorn

    from faultline.api import create_app

    config = _load(config_path)
    logger.info("serve_starting", host=host, port=port, config=str(config_path) if config_path else None)
    console.print(f"[bold green]Starting faultline API[/bold green] on {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.logging.level.lower())


@app.command()
def config(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """Validate and show the effective configuration."""
    cfg = _load(config_path)

    table = Table(title="faultline configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for section, values in cfg.model_dump(mode="json").items():
        if not isinstance(values, dict):
            table.add_row(section, str(values))
            continue
        for key, value in values.items():
            if key == "csrf_secret" and value:
                value = "********"
            table.add_row(f"{section}.{key}", str(value))

    console.print(table)
    console.print("[green]✓ Configuration is valid[/green]")
