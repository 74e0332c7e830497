# ruff: noqa: I001
"""CLI for the ``spend_ledger`` package.

A Typer-based console interface over :mod:`spend_ledger.api`. Environment
variables (``DATABASE_URL``, ``OPENAI_API_KEY`` and the ``SPEND_LEDGER_*``
settings) are loaded from a local ``.env`` using ``python-dotenv`` before any
command runs. Business logic lives in ``spend_ledger.api`` and the modules it
wires together; commands only print counts and error messages.
"""

from __future__ import annotations

import csv
import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import Settings
from .errors import CategorizationError, ConfigurationError
from .logging_setup import configure_logging
from .models import CategorizationResult, NormalizationResult


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e


def _print_normalization(result: NormalizationResult) -> None:
    print(f"Run: {result.processing_run_id}")
    for s in result.sources:
        print(
            f"{s.source_id}\trows={s.total_rows}\tnormalized={s.normalized}"
            f"\tduplicates={s.duplicates}\terrors={s.errors}"
        )
    print(
        f"Total: rows={result.total_rows} normalized={result.total_normalized} "
        f"duplicates={result.total_duplicates} errors={result.total_errors}"
    )
    for s in result.sources:
        for msg in s.error_messages:
            print(f"Error: {msg}", file=sys.stderr)


def _print_categorization(result: CategorizationResult) -> None:
    print(f"Run: {result.processing_run_id}")
    print(
        f"Processed: {result.processed} categorized={result.categorized} "
        f"failed={result.failed} skipped={result.skipped}"
    )
    for msg in result.error_messages:
        print(f"Error: {msg}", file=sys.stderr)


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Normalize bank exports into one ledger and categorize transactions with "
        "OpenAI (Responses API). Loads settings from a local .env before running."
    ),
)


# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to a bank CSV export",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files
    readable=True,
)
JSON_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--json-path",
    help="Path to a JSON list of categories",
    dir_okay=False,
    file_okay=True,
    exists=False,
)


@app.command("init-db")
def init_db_cmd() -> None:
    """Create the ledger tables when they do not exist."""

    from db.client import init_schema

    settings = _settings()
    try:
        init_schema(database_url=settings.require_database_url())
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    print("Database schema is ready.")


@app.command("seed-categories")
def seed_categories_cmd(json_path: Annotated[Path, JSON_PATH_OPTION]) -> None:
    """Insert or update categories from a JSON file."""

    from .categories import load_categories_from_json
    from .storage import SqlLedgerStore

    settings = _settings()
    try:
        categories = load_categories_from_json(json_path)
        count = SqlLedgerStore(settings.require_database_url()).upsert_categories(categories)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    except (OSError, ValueError) as e:
        print(f"Error: failed to load categories from '{json_path}': {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    print(f"Seeded {count} categories.")


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    source: str = typer.Option(..., help="Bank source id (monzo, revolut, yonder)."),
) -> None:
    """Stage the rows of a bank CSV export for normalization."""

    from .normalizers import get_bank_source
    from .storage import SqlLedgerStore

    settings = _settings()
    try:
        bank = get_bank_source(source)
        store = SqlLedgerStore(settings.require_database_url())
    except (ConfigurationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e

    try:
        with open(csv_path, encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                raise csv.Error(f"CSV appears to have no header row: {csv_path}")
            count = store.append_source_rows(bank.id, reader)
    except FileNotFoundError as e:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        raise typer.Exit(1) from e
    except PermissionError as e:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        raise typer.Exit(1) from e
    except csv.Error as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    print(f"Staged {count} rows for {bank.id}.")


@app.command("normalize")
def normalize_cmd() -> None:
    """Normalize staged rows of every enabled bank source."""

    from .api import run_normalization

    try:
        result = run_normalization(_settings())
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    _print_normalization(result)


@app.command("categorize")
def categorize_cmd() -> None:
    """Categorize NORMALISED transactions that have no category yet."""

    from .api import run_categorization

    try:
        result = run_categorization(_settings())
    except (ConfigurationError, CategorizationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    _print_categorization(result)


@app.command("recategorize")
def recategorize_cmd() -> None:
    """Re-run AI categorization, skipping manually overridden transactions."""

    from .api import recategorize_all

    try:
        result = recategorize_all(_settings())
    except (ConfigurationError, CategorizationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    _print_categorization(result)


@app.command("override")
def override_cmd(
    *,
    transaction_id: str = typer.Option(..., help="Internal transaction id."),
    category: str = typer.Option(
        "", help="Category name; an empty value clears the manual override."
    ),
) -> None:
    """Set or clear the manual category of one transaction."""

    from .api import apply_manual_override

    try:
        result = apply_manual_override(_settings(), transaction_id, category)
    except (ConfigurationError, KeyError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e

    if result.warning:
        print(f"Warning: {result.warning}", file=sys.stderr)
    if result.cleared:
        print(f"{result.transaction_id}\t(cleared)")
    else:
        print(f"{result.transaction_id}\t{result.category_name}\t{result.category_id or ''}")


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m spend_ledger.cli`
    app()
