from __future__ import annotations

from typing import Optional

import typer

from trade_journal.operations.common import dump_counts
from trade_journal.operations.hybrid_reconcile import hybrid_reconcile as hybrid_reconcile_fn
from trade_journal.operations.rebuild_broker import rebuild_broker as rebuild_broker_fn, sync_broker as sync_broker_fn
from trade_journal.store.factory import open_ledger_store


def rebuild_broker(
    broker: str = typer.Argument(..., help="fidelity | robinhood | public | public-history | public-pdf"),
    as_of: Optional[str] = typer.Option(None, help="Expire options before this date (default today)."),
    keep_files: bool = typer.Option(False, "--keep-files", help="Leave raw exports in place."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Archive every row of a broker and recreate them from its exports (strategy/tags carried over).
    """
    counts = rebuild_broker_fn(broker, store=open_ledger_store(), as_of=as_of, dry_run=dry_run, move_files=not keep_files)
    typer.echo(dump_counts(counts))


def sync_broker(
    broker: str = typer.Argument(..., help="fidelity | robinhood | public | public-history | public-pdf"),
    as_of: Optional[str] = typer.Option(None, help="Expire options before this date (default today)."),
    keep_files: bool = typer.Option(False, "--keep-files", help="Leave raw exports in place."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Non-destructive import of a broker's exports (create / update / archive only what changed).
    """
    counts = sync_broker_fn(broker, store=open_ledger_store(), as_of=as_of, dry_run=dry_run, move_files=not keep_files)
    typer.echo(dump_counts(counts))


def hybrid_reconcile(
    api_broker: str = typer.Option("Fidelity", help="Broker label written by the live API."),
    csv_broker: str = typer.Option("Fidelity (CSV)", help="Broker label written by the CSV importer."),
    cutoff: Optional[str] = typer.Option(None, help="YYYY-MM-DD (default FIDELITY_CSV_CUTOFF_DATE)."),
    tolerance_days: int = typer.Option(2, help="Close-date tolerance for closed pairs."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Collapse CSV rows onto the API rows of the same broker, keeping the earliest open date.
    """
    counts = hybrid_reconcile_fn(
        store=open_ledger_store(),
        api_broker=api_broker,
        csv_broker=csv_broker,
        cutoff=cutoff,
        tolerance_days=tolerance_days,
        dry_run=dry_run,
    )
    typer.echo(dump_counts(counts))
