"""Command-line entry point for the recurring batch job.

Meant to be fired by cron, a cloud scheduler or a systemd timer shortly
after the daily cutover. Running it more often is harmless.
"""

import asyncio
import json
from pathlib import Path

import click
from pydantic import ValidationError

from recurring_ledger.audit import configure_logging
from recurring_ledger.clock import SystemClock
from recurring_ledger.config import get_settings, validate_all_settings
from recurring_ledger.orchestrator import create_app_components
from recurring_ledger.scheduling import Cutover
from recurring_ledger.services.storage import FatalConnectivityError, InMemoryTemplateStore


def _load_seed(template_store: InMemoryTemplateStore, user_id: str, path: str) -> int:
    """Load template records from a JSON file into an in-memory store."""
    records = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(records, dict):
        records = [records]
    for record in records:
        template_store.add_record(user_id, record)
    return len(records)


def _build(ctx: click.Context, user_id: str, templates_file: str | None):
    use_storage = templates_file is None
    try:
        scheduler, template_store, ledger_store = create_app_components(
            use_storage=use_storage
        )
    except (FatalConnectivityError, ValidationError) as e:
        click.echo(f"Error: storage not configured: {e}", err=True)
        ctx.exit(1)
    if templates_file is not None:
        loaded = _load_seed(template_store, user_id, templates_file)
        click.echo(f"Loaded {loaded} template(s) from {templates_file} (in-memory run)")
    return scheduler, ledger_store


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Structured log level (overrides LOG_LEVEL environment variable)",
)
def cli(log_level: str | None):
    """Recurring Ledger - post recurring payments to the ledger.

    Each due occurrence of an active template becomes exactly one
    transaction, no matter how often the job runs.
    """
    configure_logging(log_level or get_settings().app.log_level)


@cli.command("run")
@click.option("--user-id", required=True, help="User whose templates to process")
@click.option(
    "--templates-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file of template records; runs against in-memory stores instead of Google Sheets",
)
@click.pass_context
def run_command(ctx, user_id: str, templates_file: str | None):
    """Run one batch pass and print the stats."""
    scheduler, ledger_store = _build(ctx, user_id, templates_file)

    try:
        stats = asyncio.run(scheduler.run_batch(user_id))
    except FatalConnectivityError as e:
        click.echo(f"Error: batch aborted: {e}", err=True)
        ctx.exit(1)

    click.echo(
        f"created={stats.created} skipped={stats.skipped} errors={stats.errors}"
    )
    if templates_file is not None:
        for txn in asyncio.run(ledger_store.list_transactions(user_id)):
            click.echo(
                f"  {txn.transaction_date.isoformat()}  {txn.title:<30} "
                f"{txn.kind.value:<8} ₹{txn.amount}"
            )
    if stats.errors:
        ctx.exit(2)


@cli.command("upcoming")
@click.option("--user-id", required=True, help="User whose templates to preview")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Look-ahead window in days (0 means today only)",
)
@click.option(
    "--templates-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file of template records (in-memory preview)",
)
@click.pass_context
def upcoming_command(ctx, user_id: str, days: int | None, templates_file: str | None):
    """List occurrences that will post within the next few days."""
    window = days
    if window is None:
        window = get_settings().scheduler.upcoming_window_days
    scheduler, _ = _build(ctx, user_id, templates_file)

    try:
        upcoming = asyncio.run(scheduler.upcoming(user_id, within_days=window))
    except FatalConnectivityError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    if not upcoming:
        click.echo(f"Nothing due in the next {window} day(s).")
        return
    for template, due_date in upcoming:
        click.echo(
            f"{due_date.isoformat()}  {template.name:<30} "
            f"{template.frequency.value:<8} ₹{template.amount}"
        )


@cli.command("next-cutover")
def next_cutover_command():
    """Print the next daily cutover instant."""
    cutover = Cutover.from_settings(get_settings().scheduler)
    click.echo(cutover.next_after(SystemClock().now()).isoformat())


@cli.command("check-config")
@click.pass_context
def check_config_command(ctx):
    """Report which configuration groups load."""
    results = validate_all_settings()
    ok = True
    for name, value in results.items():
        if name.endswith("_error"):
            continue
        status = "ok" if value else f"FAILED ({results.get(f'{name}_error')})"
        ok = ok and bool(value)
        click.echo(f"{name}: {status}")
    if not ok:
        ctx.exit(1)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
