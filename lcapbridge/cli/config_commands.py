"""Config command group."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.table import Table

from lcapbridge.config.loader import convert_to_camel, get_config_path, load_config, save_config
from lcapbridge.config.schema import BridgeConfig


def register_config_commands(app: typer.Typer, console: Console) -> None:
    """Register the config show/init commands."""
    config_app = typer.Typer(help="Show or create the lcapbridge config file")
    app.add_typer(config_app, name="config")

    @config_app.command("show")
    def config_show(
        as_json: bool = typer.Option(False, "--json", help="Print the camelCase JSON as stored"),
    ) -> None:
        """Show the effective configuration."""
        path = get_config_path()
        try:
            cfg = load_config()
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        if as_json:
            console.print(json.dumps(convert_to_camel(cfg.model_dump()), indent=2, ensure_ascii=False))
            return
        table = Table(title=f"lcapbridge config ({path if path.exists() else 'defaults'})")
        table.add_column("Section", style="cyan")
        table.add_column("Key")
        table.add_column("Value")
        for section, values in cfg.model_dump().items():
            for key, value in values.items():
                table.add_row(section, key, json.dumps(value, ensure_ascii=False))
        console.print(table)

    @config_app.command("init")
    def config_init(
        force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config file"),
        platform_url: str = typer.Option("", "--platform-url", help="Platform page that loads the listener"),
        trusted_origin: str = typer.Option("", "--trusted-origin", help="Origin of the client app"),
    ) -> None:
        """Write a config file with defaults."""
        path = get_config_path()
        if path.exists() and not force:
            console.print(f"[yellow]Config already exists:[/yellow] {path} (use --force to overwrite)")
            raise typer.Exit(1)
        cfg = BridgeConfig()
        if platform_url:
            from lcapbridge.host.context import origin_of

            cfg.client.platform_url = platform_url
            cfg.client.target_origin = origin_of(platform_url)
        if trusted_origin:
            cfg.server.trusted_origin = trusted_origin
        saved = save_config(cfg)
        console.print(f"[green]✓[/green] Wrote {saved}")
