"""CLI commands for lcapbridge.

Top-level commands (demo, check-name, relay, serve-demo, call) plus the config group.
"""

import asyncio
import json
from typing import Any

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lcapbridge import __logo__, __version__
from lcapbridge.cli.config_commands import register_config_commands
from lcapbridge.cli.logging_utils import configure_console_logging, ensure_rotating_log_file
from lcapbridge.config.access import get_config
from lcapbridge.errors import BridgeError

app = typer.Typer(
    name="lcapbridge",
    help=f"{__logo__} lcapbridge - call platform functions through a popup bridge",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} lcapbridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """lcapbridge - call platform functions through a popup bridge."""
    pass


register_config_commands(app, console)


def _load_config_or_exit():
    try:
        return get_config()
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# ============================================================================
# Demo
# ============================================================================


@app.command()
def demo(
    verbose: bool = typer.Option(False, "--verbose", help="Print bridge logs while the demo runs"),
):
    """Run an in-memory client/server round trip against a sample _RB namespace."""
    from lcapbridge.cli.demo import run_demo

    config = _load_config_or_exit()
    if verbose:
        logger.enable("lcapbridge")
        configure_console_logging(config.logging.level, verbose=True)
    else:
        logger.disable("lcapbridge")

    table = Table(title="lcapbridge demo")
    table.add_column("Call", style="cyan")
    table.add_column("Outcome")

    def _on_line(label: str, value: Any) -> None:
        if isinstance(value, BridgeError):
            table.add_row(label, f"[red]{value.code}[/red] {escape(value.message)}")
        else:
            table.add_row(label, escape(json.dumps(value, ensure_ascii=False, default=str)))

    try:
        asyncio.run(run_demo(config, on_line=_on_line))
    except BridgeError as e:
        console.print(table)
        console.print(f"[red]Demo failed:[/red] {e}")
        raise typer.Exit(1)
    console.print(table)


# ============================================================================
# Allow-list check
# ============================================================================


@app.command("check-name")
def check_name(
    name: str = typer.Argument(..., help="Fully qualified function name, e.g. _RB.selectQuery"),
):
    """Check whether the configured allow-list admits NAME."""
    from lcapbridge.server.registry import AllowList

    config = _load_config_or_exit()
    allow_list = AllowList.of(config.server.allowed_roots)
    if allow_list.allows(name):
        console.print(f"[green]✓[/green] {name} is allowed")
        return
    console.print(f"[red]✗[/red] {name} is not allowed (roots: {', '.join(allow_list.roots)})")
    raise typer.Exit(1)


# ============================================================================
# Relay hub
# ============================================================================


@app.command()
def relay(
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run a websocket relay hub connecting contexts in separate processes."""
    from lcapbridge.host.relay import RelayHub

    config = _load_config_or_exit()
    host = host or config.relay.host
    port = port if port is not None else config.relay.port
    configure_console_logging(config.logging.level, verbose=verbose)
    if config.logging.file:
        log_path = ensure_rotating_log_file("relay", level="DEBUG" if verbose else config.logging.level)
        console.print(f"[dim]Logs: {log_path}[/dim]")

    console.print(f"{__logo__} Starting relay hub on ws://{host}:{port} ...")
    try:
        asyncio.run(RelayHub().serve_forever(host, port))
    except KeyboardInterrupt:
        console.print("\n[yellow]Relay stopped[/yellow]")
    except OSError as e:
        console.print(f"[red]Cannot listen on {host}:{port}:[/red] {e}")
        raise typer.Exit(1) from e


# ============================================================================
# Cross-process calls over a relay
# ============================================================================


def _parse_arg(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@app.command("serve-demo")
def serve_demo(
    relay_url: str = typer.Option(None, "--relay-url", help="Relay hub URL (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Join a relay hub as the platform context and serve the sample _RB namespace."""
    from lcapbridge.cli.demo import with_platform
    from lcapbridge.cli.remote import serve_platform

    config = with_platform(_load_config_or_exit())
    relay_url = relay_url or config.relay.url
    configure_console_logging(config.logging.level, verbose=verbose)
    console.print(
        f"{__logo__} Serving sample functions as {config.client.window_name} "
        f"(trusting {config.server.trusted_origin}) on {relay_url}"
    )
    try:
        asyncio.run(serve_platform(config, relay_url))
    except KeyboardInterrupt:
        console.print("\n[yellow]Platform endpoint stopped[/yellow]")
    except BridgeError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(1) from e


@app.command()
def call(
    name: str = typer.Argument(..., help="Fully qualified function name, e.g. _RB.countRows"),
    args: list[str] = typer.Argument(None, help="Arguments, parsed as JSON when possible, else passed as strings"),
    relay_url: str = typer.Option(None, "--relay-url", help="Relay hub URL (default from config)"),
    app_name: str = typer.Option("app", "--as", help="Endpoint name of this caller on the relay"),
):
    """Call NAME on a platform endpoint already joined to the relay and print the result as JSON."""
    from lcapbridge.cli.remote import call_remote

    config = _load_config_or_exit()
    relay_url = relay_url or config.relay.url
    logger.disable("lcapbridge")
    try:
        result = asyncio.run(call_remote(config, relay_url, name, [_parse_arg(a) for a in args or []], app_name=app_name))
    except BridgeError as e:
        console.print_json(data=e.to_dict())
        raise typer.Exit(1) from e
    console.print_json(data=result, default=str)


if __name__ == "__main__":
    app()
