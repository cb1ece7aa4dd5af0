from __future__ import annotations

from functools import partial
from typing import Optional

import typer

from trade_journal.config.config import assert_weekly_review_config, settings
from trade_journal.operations.audit_journal import audit_journal
from trade_journal.operations.common import dump_counts
from trade_journal.operations.daily_summary import daily_summary as daily_summary_fn
from trade_journal.operations.freshness import freshness as freshness_fn
from trade_journal.operations.robinhood_audit import robinhood_audit as robinhood_audit_fn
from trade_journal.operations.weekly_review import weekly_review as weekly_review_fn
from trade_journal.store.factory import open_ledger_store, open_notion_store


def freshness(
    threshold_hours: Optional[float] = typer.Option(None, help="Default FRESHNESS_THRESHOLD_HOURS."),
    lookback_days: Optional[int] = typer.Option(None, help="Default FRESHNESS_LOOKBACK_DAYS."),
) -> None:
    """
    Check that the journal received trades recently. Exits 1 when stale.
    """
    counts = freshness_fn(store=open_ledger_store(), threshold_hours=threshold_hours, lookback_days=lookback_days)
    typer.echo(dump_counts(counts))
    if counts["stale"]:
        raise typer.Exit(code=1)


def audit(
    row_type: str = typer.Option("Position", help="Position | Trade"),
) -> None:
    """
    Report rows with missing or inconsistent fields.
    """
    typer.echo(dump_counts(audit_journal(store=open_ledger_store(), row_type=row_type)))


def daily_summary(
    start: Optional[str] = typer.Option(None, help="First close date (YYYY-MM-DD)."),
    end: Optional[str] = typer.Option(None, help="Last close date (YYYY-MM-DD)."),
) -> None:
    """
    Realized P/L per close date.
    """
    typer.echo(dump_counts(daily_summary_fn(store=open_ledger_store(), start=start, end=end)))


def weekly_review(
    end: Optional[str] = typer.Option(None, help="Last day of the week (YYYY-MM-DD). Default today."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build the review without creating the page."),
) -> None:
    """
    Seven-day P/L review, published as a page under NOTION_WEEKLY_REVIEWS_PAGE_ID.
    """
    publish = None
    if not dry_run:
        assert_weekly_review_config(settings)
        publish = partial(open_notion_store(settings).create_child_page, str(settings.notion_weekly_reviews_page_id))
    typer.echo(dump_counts(weekly_review_fn(store=open_ledger_store(), end=end, publish=publish)))


def robinhood_audit(
    tolerance: Optional[float] = typer.Option(None, help="Default ROBINHOOD_PL_TOLERANCE."),
) -> None:
    """
    Compare lifetime P/L replayed from Robinhood exports with the journal's Robinhood (CSV) rows.
    """
    typer.echo(dump_counts(robinhood_audit_fn(store=open_ledger_store(), tolerance=tolerance)))
