from __future__ import annotations

from typing import Dict

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.ledger.reconcile import CLOSE_DATE_TOLERANCE_DAYS, plan_hybrid_reconcile
from trade_journal.operations.common import print_counts
from trade_journal.store.ledger_store import LedgerStore, positions_for_brokers, safe_archive, safe_update


def hybrid_reconcile(
    *,
    store: LedgerStore,
    api_broker: str = "Fidelity",
    csv_broker: str = "Fidelity (CSV)",
    cutoff: str | None = None,
    tolerance_days: int = CLOSE_DATE_TOLERANCE_DAYS,
    s: Settings = default_settings,
    dry_run: bool = False,
) -> Dict[str, int]:
    """
    Collapse CSV-imported rows onto the live-API rows of the same broker.
    Open dates are backfilled before anything is archived.
    """
    cutoff = cutoff or s.fidelity_csv_cutoff_date
    records = positions_for_brokers(store, [api_broker, csv_broker])
    print(f"[hybrid] api={api_broker!r} csv={csv_broker!r} cutoff={cutoff} rows={len(records)} dry_run={dry_run}")

    plan = plan_hybrid_reconcile(
        records,
        api_broker=api_broker,
        csv_broker=csv_broker,
        cutoff=cutoff,
        tolerance_days=tolerance_days,
    )

    backfilled = 0
    archived = 0
    if dry_run:
        for rid, d in plan.open_date_backfills.items():
            print(f"[hybrid] DRY RUN would set Trade Date={d} on {rid}")
        for rid in plan.archives:
            print(f"[hybrid] DRY RUN would archive {rid}")
    else:
        for rid, d in plan.open_date_backfills.items():
            backfilled += int(safe_update(store, rid, {"trade_date": d}))
        for rid in plan.archives:
            archived += int(safe_archive(store, rid))

    counts = dict(plan.counts)
    counts.update({"archived": archived, "backfilled": backfilled})
    print_counts("HYBRID RECONCILE", counts)
    return counts
