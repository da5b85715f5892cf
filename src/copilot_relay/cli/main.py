"""
Copilot relay CLI — `copilot-relay` command.

Commands:
  copilot-relay run       Start the chat relay (long polling)
  copilot-relay dirs      Show the working directories chats can pick
  copilot-relay models    Show the model catalogue
"""

import asyncio
import json
import logging
import signal
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from copilot_relay import __version__
from copilot_relay.assistant import load_client_factory
from copilot_relay.config import Settings, load_settings
from copilot_relay.directories import DirectoryResolver
from copilot_relay.errors import ConfigError

console = Console()


def _settings(env_file: Optional[str]) -> Settings:
    try:
        return load_settings(env_file)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option(__version__)
def main():
    """Copilot relay — drive an assistant session from a chat."""


@main.command("run")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Path to a .env file")
@click.option("--log-level", default=None, help="Override RELAY_LOG_LEVEL")
def run_cmd(env_file: Optional[str], log_level: Optional[str]):
    """Start the relay bot."""
    from copilot_relay.bot import RelayBot
    from copilot_relay.transport.telegram import TelegramTransport

    settings = _settings(env_file)
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.telegram_token:
        console.print("[red]TELEGRAM_BOT_TOKEN is not set.[/red]")
        raise SystemExit(1)
    try:
        factory = load_client_factory(settings.client_factory)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)

    directories = DirectoryResolver(settings.directory_patterns).list_directories()
    console.print(f"[green]Copilot relay starting[/green] (model: {settings.default_model})")
    console.print(f"[dim]{len(directories)} working directories available[/dim]")

    async def _serve():
        transport = TelegramTransport(settings.telegram_token)
        bot = RelayBot(settings, transport, factory)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, bot.stop)
            except NotImplementedError:
                pass
        try:
            await bot.run()
        finally:
            await transport.close()

    _run(_serve())


@main.command("dirs")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False))
@click.option("--json-output", "--json", is_flag=True)
def dirs_cmd(env_file: Optional[str], json_output: bool):
    """List the working directories resolved from the configured patterns."""
    settings = _settings(env_file)
    directories = DirectoryResolver(settings.directory_patterns).list_directories()
    if json_output:
        click.echo(json.dumps(directories, indent=2))
        return
    if not directories:
        console.print("[yellow]No directories configured. Set DIRECTORY_PATTERNS or edit directories.json.[/yellow]")
        return
    table = Table(title=f"Working directories ({len(directories)})")
    table.add_column("#", style="bold")
    table.add_column("Path")
    for i, directory in enumerate(directories, start=1):
        table.add_row(str(i), directory)
    console.print(table)


@main.command("models")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False))
def models_cmd(env_file: Optional[str]):
    """Show the model catalogue."""
    settings = _settings(env_file)
    table = Table(title="Models")
    table.add_column("#", style="bold")
    table.add_column("Model")
    for i, model in enumerate(settings.models, start=1):
        marker = " [green](default)[/green]" if model == settings.default_model else ""
        table.add_row(str(i), f"{model}{marker}")
    console.print(table)


if __name__ == "__main__":
    main()
