#!/usr/bin/env python3
"""
ForgeServe CLI - Command Line Interface for the dev server

Usage:
    forgeserve dev [--config FILE] [--port PORT] [--open]   # Start development server
    forgeserve config validate [--config FILE]              # Validate configuration

Examples:
    forgeserve dev --root ./site --port 3000 --open
    forgeserve dev --config forgeserve.yaml --strict-port
    forgeserve config validate --config forgeserve.yaml
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..core.compiler import StaticDirectoryCompiler
from ..core.config import UserConfig, load_user_config, normalize_dev_server_options
from ..dev.server import run_dev_server
from ..exceptions.base import ConfigurationError, ForgeServeError
from ..utils.logging import setup_logging
from ..version import __version__

console = Console()

DEFAULT_CONFIG_FILE = "forgeserve.yaml"


def load_config(config_path: Optional[str], root: Optional[str] = None) -> UserConfig:
    """Load the config file if there is one, then apply --root"""
    if config_path:
        user_config = load_user_config(config_path)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        user_config = load_user_config(DEFAULT_CONFIG_FILE)
    else:
        user_config = UserConfig()

    if root:
        user_config.root = str(Path(root).resolve())
    return user_config


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx):
    """ForgeServe - development server for web builds"""
    ctx.ensure_object(dict)


@cli.group()
def config():
    """Configuration management"""
    pass


@cli.command("dev")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="Config file (YAML)")
@click.option("--root", "-r", type=click.Path(file_okay=False), help="Project root")
@click.option("--port", "-p", type=int, help="Server port")
@click.option("--host", "-h", help="Bind address")
@click.option("--open/--no-open", "open_browser", default=None, help="Open a browser once ready")
@click.option("--strict-port/--no-strict-port", default=None, help="Fail instead of trying the next port")
@click.option("--write-to-disk/--no-write-to-disk", default=None, help="Flush compiled resources to disk")
@click.option("--hmr/--no-hmr", default=None, help="Enable hot module reload")
@click.option("--log-level", "-l", default=None, help="Log level")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
def dev_server(config_path, root, port, host, open_browser, strict_port, write_to_disk, hmr, log_level, json_logs):
    """Start development server"""
    try:
        user_config = load_config(config_path, root)
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    server = user_config.server
    if port is not None:
        server.port = port
    if host is not None:
        server.host = host
    if open_browser is not None:
        server.open = open_browser
    if strict_port is not None:
        server.strict_port = strict_port
    if write_to_disk is not None:
        server.write_to_disk = write_to_disk
    if hmr is False or (hmr is True and server.hmr is False):
        # --hmr only switches HMR on; configured HMR options are kept
        server.hmr = hmr

    setup_logging(log_level, json_logs, context={"root": user_config.root})
    compiler = StaticDirectoryCompiler(user_config.root, user_config.compilation.output.path)
    console.print(f"🚀 Starting ForgeServe development server for [bold]{user_config.root}[/bold]")

    try:
        asyncio.run(run_dev_server(compiler, user_config))
    except KeyboardInterrupt:
        console.print("\n👋 Development server stopped")
    except ForgeServeError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)


@config.command("validate")
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG_FILE, help="Config file (YAML)")
def validate_config(config_path):
    """Validate ForgeServe configuration"""
    console.print("🔍 Validating ForgeServe configuration...")

    try:
        user_config = load_user_config(config_path)
        normalized = normalize_dev_server_options(user_config.server)
    except ConfigurationError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title="Server configuration")
    table.add_column("Option", style="cyan")
    table.add_column("Value")
    for key, value in normalized.to_dict().items():
        table.add_row(key, escape(str(value)))
    table.add_row("root", user_config.root)
    table.add_row("public_path", str(user_config.compilation.output.public_path or "/"))

    console.print(table)
    console.print("✅ Configuration is valid")


def main():
    """Entry point for the CLI"""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n👋 Goodbye!")
        sys.exit(0)


if __name__ == "__main__":
    main()
