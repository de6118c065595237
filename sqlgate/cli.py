# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Command-line interface for sqlgate."""

import base64
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from sqlgate import __version__
from sqlgate.core.config import Config, EndpointConfig
from sqlgate.core.errors import DiscoveryError

console = Console()

SAMPLE_CONFIG = """\
# sqlgate configuration
server:
  host: 127.0.0.1
  port: 3000
  docs_path: /api-docs

connections:
  - endpoint: api
    server: localhost
    port: 1433
    database: Products
    username: ${MSSQL_USER}
    password: ${MSSQL_PASSWORD}
    include:
      tables: ["^tbl"]
      views: ["vw_%"]
      procedures: ["^usp_"]
      functions: ["^fn_"]
    advanced: false
"""


def _load(config: str) -> Config:
    try:
        return Config.from_yaml(config)
    except Exception as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="sqlgate")
def cli():
    """sqlgate - REST endpoints for SQL Server objects.

    Discovers tables, views, procedures and functions matching configured
    name patterns and serves them over HTTP with an OpenAPI description.

    \b
    Quick start:
        sqlgate init
        sqlgate discover -c config.yaml
        sqlgate serve -c config.yaml
    """
    pass


@cli.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to config YAML file.",
)
@click.option(
    "--port", "-p",
    type=int,
    default=None,
    help="Port to bind the server to (overrides config).",
)
@click.option(
    "--host", "-h",
    default=None,
    help="Host address to bind the server to (overrides config).",
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload for development.",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging, including synthesized SQL.",
)
def serve(config: Optional[str], port: Optional[int], host: Optional[str], reload: bool, debug: bool):
    """Start the API server.

    \b
    Examples:
        sqlgate serve -c config.yaml
        sqlgate serve -c config.yaml --port 8080
        sqlgate serve -c config.yaml --debug
    """
    import uvicorn

    cfg = _load(config) if config else Config()

    overrides = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    server_config = cfg.server.model_copy(update=overrides)

    if debug:
        logging.getLogger("sqlgate").setLevel(logging.DEBUG)
    log_level = "debug" if debug else "info"

    console.print("[bold]Starting sqlgate API server[/bold]")
    console.print(f"  URL: {server_config.base_url}")
    console.print(f"  Docs: {server_config.base_url}{server_config.docs_path}")
    console.print(f"  Config: {config or '(default)'}")
    console.print(f"  Endpoints: {', '.join(c.endpoint for c in cfg.connections) or '(none)'}")
    console.print()

    if reload:
        # The reloader imports the app itself, so the config path travels by env
        if config:
            os.environ["SQLGATE_CONFIG"] = config
        uvicorn.run(
            "sqlgate.server.app:get_app",
            factory=True,
            host=server_config.host,
            port=server_config.port,
            reload=True,
            log_level=log_level,
        )
    else:
        from sqlgate.server.app import create_app

        app = create_app(cfg, server_config)
        uvicorn.run(app, host=server_config.host, port=server_config.port, log_level=log_level)


def _operations(obj) -> str:
    from sqlgate.catalog.models import ObjectKind

    if obj.kind is ObjectKind.TABLE:
        return "list, get, create, update, delete" if obj.is_writable else "list (read-only)"
    if obj.kind is ObjectKind.VIEW:
        return "list"
    return "execute"


def _print_discovery(endpoint_config: EndpointConfig, result) -> None:
    table = Table(title=f"Endpoint '{endpoint_config.endpoint}'", show_header=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Object")
    table.add_column("Route")
    table.add_column("Operations", style="dim")

    for obj in result.all_objects():
        table.add_row(
            obj.kind.label,
            obj.qualified_name,
            f"/{endpoint_config.endpoint}/{obj.kind.value}/{obj.name}",
            _operations(obj),
        )
    if endpoint_config.advanced:
        table.add_row("advanced", "-", f"/{endpoint_config.endpoint}/a", "execute (read-only)")

    console.print(table)
    counts = result.counts()
    console.print(
        f"[dim]{counts['tables']} tables, {counts['views']} views, "
        f"{counts['procedures']} procedures, {counts['functions']} functions[/dim]\n"
    )


@cli.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    required=True,
    help="Path to config YAML file.",
)
@click.option(
    "--endpoint", "-e",
    default=None,
    help="Only discover this endpoint.",
)
def discover(config: str, endpoint: Optional[str]):
    """Connect, run discovery and show the routes that would be exposed.

    \b
    Examples:
        sqlgate discover -c config.yaml
        sqlgate discover -c config.yaml -e api
    """
    from sqlgate.server.gateway import Gateway

    cfg = _load(config)
    targets = cfg.connections
    if endpoint:
        target = cfg.get_endpoint(endpoint)
        if target is None:
            console.print(f"[red]Unknown endpoint:[/red] {endpoint}")
            sys.exit(1)
        targets = [target]

    gateway = Gateway(cfg)
    failures = 0
    for endpoint_config in targets:
        with console.status(f"Discovering [bold]{endpoint_config.endpoint}[/bold]..."):
            try:
                engine, result = gateway.discover(endpoint_config)
            except DiscoveryError as e:
                console.print(f"[red]FAIL[/red] {e.message}")
                failures += 1
                continue
        engine.dispose()
        _print_discovery(endpoint_config, result)

    if failures:
        sys.exit(1)


@cli.command()
@click.argument("template", type=click.Path(exists=True, dir_okay=False))
def encode(template: str):
    """Print the base64 ``data`` value for an advanced query template.

    \b
    Examples:
        sqlgate encode report.sql
    """
    content = Path(template).read_bytes()
    click.echo(base64.b64encode(content).decode("ascii"))


@cli.command()
def init():
    """Create a sample config file.

    Generates config.yaml in the current directory with example settings.
    """
    config_path = Path("config.yaml")
    if config_path.exists():
        console.print("[yellow]config.yaml already exists[/yellow]")
        return

    config_path.write_text(SAMPLE_CONFIG)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\n[dim]Edit the file to configure your connections and include patterns.[/dim]")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
