"""Fetch and migrate commands for the Mintable CLI."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from mintable.config import (
    Config,
    default_fetch_window,
    get_config_path,
    load_config,
    migrate_config,
    save_config,
)
from mintable.errors import ConfigError
from mintable.fetch import sync

logger = logging.getLogger(__name__)

DATE_FORMATS = ["%Y-%m-%d"]


def fetch_command(
    start_date: Annotated[
        datetime | None,
        typer.Option(
            "--start-date",
            formats=DATE_FORMATS,
            help="First day to fetch (YYYY-MM-DD). Default: start of the month two months ago",
        ),
    ] = None,
    end_date: Annotated[
        datetime | None,
        typer.Option(
            "--end-date",
            formats=DATE_FORMATS,
            help="Last day to fetch (YYYY-MM-DD). Default: today",
        ),
    ] = None,
) -> None:
    """Fetch balances and transactions from every account and update the sinks.

    Exits with status 1 when any account or sink step failed.
    """
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(1) from e

    default_start, default_end = default_fetch_window(config)
    start = start_date.date() if start_date else default_start
    end = end_date.date() if end_date else default_end

    if start > end:
        raise typer.BadParameter(
            f"Start date {start} is after end date {end}", param_hint="--start-date"
        )

    summary = sync(config, start, end)

    if not summary.ok:
        for failure in summary.failures:
            logger.error(f"  - {failure}")
        raise typer.Exit(1)


def migrate_command(
    source: Annotated[
        Path | None,
        typer.Option(
            "--source",
            "-s",
            help="Legacy config to convert. Default: the config file itself",
        ),
    ] = None,
) -> None:
    """Convert a config file written by an older Mintable release."""
    destination = get_config_path()
    source = source or destination

    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        logger.error(f"❌ Config file not found: {source}")
        raise typer.Exit(1) from e
    except json.JSONDecodeError as e:
        logger.error(f"❌ {source} is not valid JSON: {e}")
        raise typer.Exit(1) from e

    try:
        config = Config.model_validate(migrate_config(raw))
    except ValidationError as e:
        logger.error(f"❌ Could not migrate {source}: {e}")
        raise typer.Exit(1) from e

    save_config(config, destination)
    logger.info(f"✅ Migrated {len(config.accounts)} account(s) into {destination}")
