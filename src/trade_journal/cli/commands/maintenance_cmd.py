from __future__ import annotations

from typing import List

import typer

from trade_journal.operations import maintenance
from trade_journal.operations.common import dump_counts
from trade_journal.operations.normalize_broker import normalize_broker_labels
from trade_journal.store.factory import open_ledger_store


def backfill_open_dates(
    broker: List[str] = typer.Option([], "--broker", help="Limit to these broker families (repeatable)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Copy earlier open dates from CSV-imported rows onto the matching API rows.
    """
    typer.echo(dump_counts(maintenance.backfill_open_dates(store=open_ledger_store(), brokers=broker, dry_run=dry_run)))


def clear_last_add_date(
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Blank Last Add Date where it equals Trade Date.
    """
    typer.echo(dump_counts(maintenance.clear_last_add_date(store=open_ledger_store(), dry_run=dry_run)))


def cleanup_zero_qty(
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Archive Position rows with an empty or zero quantity.
    """
    typer.echo(dump_counts(maintenance.cleanup_zero_qty(store=open_ledger_store(), dry_run=dry_run)))


def normalize_fidelity_broker(
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Rewrite Fidelity label variants to "Fidelity" / "Fidelity (CSV)".
    """
    typer.echo(dump_counts(normalize_broker_labels(store=open_ledger_store(), family="Fidelity", dry_run=dry_run)))
