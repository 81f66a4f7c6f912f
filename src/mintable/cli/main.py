"""Main CLI application for Mintable.

Every command is top level (``mintable fetch``, ``mintable plaid-setup``, ...).
Global options select the config file and enable debug logging.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from ..config import set_config_path
from ..logging import setup_logging
from .commands import accounts, fetch, setup

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="mintable",
    help="Mintable: pull balances and transactions into a spreadsheet",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose debug logging",
        ),
    ] = False,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to the config file. Default: ~/.mintable/config.json",
            envvar="MINTABLE_CONFIG_FILE",
        ),
    ] = None,
) -> None:
    """Global options for the Mintable CLI."""
    # LOG_* and MINTABLE_* variables may come from a local .env file
    load_dotenv()
    setup_logging(cli_mode=True, verbose=verbose)
    set_config_path(config)

    if config is not None:
        logger.debug(f"Using config file {config}")


app.command("fetch")(fetch.fetch_command)
app.command("migrate")(fetch.migrate_command)

app.command("setup")(setup.setup_wizard)
app.command("plaid-setup")(setup.plaid_setup)
app.command("google-setup")(setup.google_setup)
app.command("mx-setup")(setup.mx_setup)
app.command("finicity-setup")(setup.finicity_setup)
app.command("csv-import-setup")(setup.csv_import_setup)
app.command("csv-export-setup")(setup.csv_export_setup)

app.command("plaid-account-setup")(accounts.plaid_account_setup)
app.command("mx-account-setup")(accounts.mx_account_setup)
app.command("finicity-account-setup")(accounts.finicity_account_setup)
app.command("remove-account")(accounts.remove_account)


def main() -> None:
    """Entry point for the Mintable CLI application."""
    app()


if __name__ == "__main__":
    main()
