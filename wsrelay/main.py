"""CLI interface for WS-Relay.

Provides commands to run the relay server and to inspect its configuration.
"""

import sys
from typing import Optional

import click
from aiohttp import web
from rich.panel import Panel
from rich.table import Table
from rich import box

from wsrelay import __version__
from wsrelay.core.config import RelayConfig, load_config
from wsrelay.core.exceptions import ConfigurationError
from wsrelay.server import create_app
from wsrelay.protocol.codec import trojan_digest
from wsrelay.utils.logging import setup_logging, console, mask_secret


BANNER = r"""
[bold cyan]
 __      _____ ___      _
 \ \    / / __| _ \___ | |__ _ _  _
  \ \/\/ /\__ \   / -_)| / _` | || |
   \_/\_/ |___/_|_\___||_\__,_|\_, |
                               |__/
[/bold cyan]
[dim]WebSocket to TCP tunnel relay (VLESS / Trojan)[/dim]
"""


def print_banner():
    """Print the tool banner."""
    console.print(BANNER)


def _load_or_exit(config_path: Optional[str]) -> RelayConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e.message}")
        for error in e.errors:
            console.print(f"  [red]•[/red] {error}")
        sys.exit(2)
    except OSError as e:
        console.print(f"[red]Cannot read configuration:[/red] {e}")
        sys.exit(2)


def _config_table(config: RelayConfig) -> Table:
    table = Table(title="Relay Configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Listen", f"{config.server.host}:{config.server.port}")
    table.add_row("Identifier", config.trust.identifier)
    table.add_row("Shared secret", mask_secret(config.trust.shared_secret))
    table.add_row("Echo endpoint", config.server.echo_path or "disabled")
    table.add_row("Fallback domains", ", ".join(config.server.fallback_domains))
    timeout = config.upstream.connect_timeout
    table.add_row("Connect timeout", f"{timeout}s" if timeout else "none")
    table.add_row("Chunk size", str(config.upstream.chunk_size))
    table.add_row("Log level", config.log_level.upper())
    return table


@click.group()
@click.version_option(version=__version__, prog_name="wsrelay")
def cli():
    """WS-Relay: tunnel TCP traffic over WebSocket.

    Accepts VLESS-style and Trojan-style headers on the first WebSocket frame
    and relays the connection to the requested destination.
    """
    pass


@cli.command()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file (credentials default to the environment)"
)
@click.option("--host", type=str, default=None, help="Listen address")
@click.option("--port", "-p", type=int, default=None, help="Listen port")
@click.option(
    "--connect-timeout",
    type=float,
    default=None,
    help="Upstream connect timeout in seconds (default: none)"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level"
)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.option("--quiet", "-q", is_flag=True, help="Quiet mode (no console output)")
def serve(
    config_path: Optional[str],
    host: Optional[str],
    port: Optional[int],
    connect_timeout: Optional[float],
    log_level: Optional[str],
    json_logs: bool,
    log_file: Optional[str],
    quiet: bool,
):
    """Run the relay server.

    Credentials are read from the datasetId (UUID) and apiKey (Trojan
    password) environment variables unless the configuration file sets them.

    Examples:

      wsrelay serve --port 8080

      wsrelay serve -c relay.yaml --log-level DEBUG
    """
    config = _load_or_exit(config_path)

    # Command line overrides
    if host:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if connect_timeout is not None:
        config.upstream.connect_timeout = connect_timeout
    if log_level:
        config.log_level = log_level
    if json_logs:
        config.json_logs = True
    if log_file:
        config.log_file = log_file

    errors = config.validate()
    if errors:
        console.print(f"[red]Configuration error:[/red] {'; '.join(errors)}")
        sys.exit(2)

    setup_logging(
        level=config.log_level,
        json_output=config.json_logs,
        log_file=config.log_file,
        quiet=quiet,
    )

    if not quiet:
        print_banner()
        console.print(_config_table(config))

    app = create_app(config)
    web.run_app(
        app,
        host=config.server.host,
        port=config.server.port,
        print=None if quiet else console.print,
    )


@cli.command()
@click.argument("secret")
def digest(secret: str):
    """Print the Trojan credential digest for SECRET."""
    click.echo(trojan_digest(secret))


@cli.command(name="check-config")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file"
)
def check_config(config_path: Optional[str]):
    """Validate configuration and print it with secrets masked."""
    config = _load_or_exit(config_path)
    console.print(_config_table(config))
    console.print(Panel("[success]Configuration OK[/success]", box=box.ROUNDED))


if __name__ == "__main__":
    cli()
