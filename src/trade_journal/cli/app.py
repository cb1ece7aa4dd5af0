from __future__ import annotations

import typer

from trade_journal.cli.commands import broker_cmd, maintenance_cmd, report_cmd, snaptrade_cmd

app = typer.Typer(
    name="trade-journal",
    help="Trade Journal CLI: broker imports, position rebuilds, reconciliation, journal health.",
    no_args_is_help=True,
)

# aggregation API
app.command("sync-orders")(snaptrade_cmd.sync_orders)
app.command("rebuild-positions")(snaptrade_cmd.rebuild_positions)
app.command("reconcile-open")(snaptrade_cmd.reconcile_open)

# file exports
app.command("rebuild-broker")(broker_cmd.rebuild_broker)
app.command("sync-broker")(broker_cmd.sync_broker)
app.command("hybrid-reconcile")(broker_cmd.hybrid_reconcile)

# maintenance
app.command("backfill-open-dates")(maintenance_cmd.backfill_open_dates)
app.command("clear-last-add-date")(maintenance_cmd.clear_last_add_date)
app.command("cleanup-zero-qty")(maintenance_cmd.cleanup_zero_qty)
app.command("normalize-fidelity-broker")(maintenance_cmd.normalize_fidelity_broker)

# health / reporting
app.command("freshness")(report_cmd.freshness)
app.command("audit")(report_cmd.audit)
app.command("daily-summary")(report_cmd.daily_summary)
app.command("weekly-review")(report_cmd.weekly_review)
app.command("robinhood-audit")(report_cmd.robinhood_audit)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
