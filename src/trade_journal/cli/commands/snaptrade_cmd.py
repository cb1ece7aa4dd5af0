from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from trade_journal.operations.common import dump_counts
from trade_journal.operations.reconcile_open import reconcile_open as reconcile_open_fn, reconcile_open_from_files
from trade_journal.operations.sync_orders import rebuild_positions as rebuild_positions_fn, sync_orders as sync_orders_fn
from trade_journal.sources.snaptrade import snaptrade_client
from trade_journal.store.factory import open_ledger_store


def sync_orders(
    days: Optional[int] = typer.Option(None, help="Order history window in days (default SNAPTRADE_DAYS)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Import filled orders from the aggregation API as Trade rows.
    """
    counts = sync_orders_fn(store=open_ledger_store(), client=snaptrade_client(), days=days, dry_run=dry_run)
    typer.echo(dump_counts(counts))


def rebuild_positions(
    days: Optional[int] = typer.Option(None, help="Order history window in days (default SNAPTRADE_DAYS)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Replay API orders into Position rows and sync them per brokerage.
    """
    counts = rebuild_positions_fn(store=open_ledger_store(), client=snaptrade_client(), days=days, dry_run=dry_run)
    typer.echo(dump_counts(counts))


def reconcile_open(
    fidelity_positions: List[Path] = typer.Option(
        [], "--fidelity-positions", help="Use Fidelity positions CSV snapshot(s) instead of the API.", exists=True, dir_okay=False
    ),
    days: Optional[int] = typer.Option(None, help="Order window used to date openings."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be written."),
) -> None:
    """
    Align OPEN rows with currently held positions.
    """
    store = open_ledger_store()
    if fidelity_positions:
        counts = reconcile_open_from_files(fidelity_positions, store=store, dry_run=dry_run)
    else:
        counts = reconcile_open_fn(store=store, client=snaptrade_client(), days=days, dry_run=dry_run)
    typer.echo(dump_counts(counts))
