"""Command line helpers for guildbank."""

from __future__ import annotations

import argparse
import asyncio
import sys

from rich.console import Console
from rich.table import Table

from .app import LedgerApp
from .config import GuildBankConfig
from .validators import validate_config

console = Console()


def run_validate() -> None:
    parser = argparse.ArgumentParser(description="guildbank configuration validator")
    parser.add_argument("--show", action="store_true", help="Print the resolved configuration")
    args = parser.parse_args()

    try:
        config = GuildBankConfig.from_env()
    except ValueError as exc:
        console.print(f"Invalid environment: {exc}", style="red")
        sys.exit(1)

    if args.show:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Section")
        table.add_column("Value")
        table.add_row("storage", f"{config.storage.backend} ({config.storage.resolve_dsn() or '-'})")
        table.add_row("coordination", f"{config.coordination.backend} ({config.coordination.redis_url})")
        table.add_row("bank", f"default_max={config.bank.default_max}, min_increase={config.bank.min_increase}")
        table.add_row("loans", ", ".join(option.option_id for option in config.loans.options))
        console.print(table)

    issues = validate_config(config)
    if issues:
        console.print("Configuration errors:", style="red")
        for issue in issues:
            console.print(f"- {issue}")
        sys.exit(1)
    console.print("[bold green]Configuration is valid[/bold green]")


def run_init_db() -> None:
    parser = argparse.ArgumentParser(description="Create guildbank tables")
    parser.add_argument("--dsn", help="Async SQLAlchemy DSN; defaults to GUILDBANK_STORAGE_DSN")
    args = parser.parse_args()

    config = GuildBankConfig.from_env()
    config.storage.backend = "sqlalchemy"
    if args.dsn:
        config.storage.dsn = args.dsn

    async def _init() -> None:
        app = LedgerApp(config)
        try:
            await app.init_backend()
        finally:
            await app.close()

    asyncio.run(_init())
    console.print(f"[bold green]Tables created[/bold green] at {config.storage.resolve_dsn()}")
