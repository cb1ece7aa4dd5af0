from __future__ import annotations

from typing import Dict, List, Sequence

from trade_journal.core.contracts import broker_family
from trade_journal.core.schemas import LedgerRecord
from trade_journal.ledger.reconcile import plan_open_date_backfill
from trade_journal.operations.common import all_positions
from trade_journal.store.ledger_store import LedgerStore, safe_archive, safe_update


# ----------------------------
# Open-date backfill
# ----------------------------
def _is_csv_label(broker: str) -> bool:
    return "(" in (broker or "")


def backfill_open_dates(*, store: LedgerStore, brokers: Sequence[str] = (), dry_run: bool = False) -> Dict[str, int]:
    """
    For each API-sourced row, pull the earliest Trade Date from a file-imported row of
    the same broker family with the same account/contract.
    """
    rows = all_positions(store)
    families = {broker_family(b) for b in brokers} if brokers else None

    by_family: Dict[str, tuple[List[LedgerRecord], List[LedgerRecord]]] = {}
    for r in rows:
        fam = broker_family(r.broker)
        if families is not None and fam not in families:
            continue
        api, csv = by_family.setdefault(fam, ([], []))
        (csv if _is_csv_label(r.broker) else api).append(r)

    updated = 0
    candidates = 0
    for fam, (api, csv) in sorted(by_family.items()):
        plan = plan_open_date_backfill(api, csv)
        candidates += len(plan)
        for rid, d in plan.items():
            if dry_run:
                print(f"[backfill] DRY RUN {fam} {rid} -> {d}")
                continue
            updated += int(safe_update(store, rid, {"trade_date": d}))

    return {"rows": len(rows), "candidates": candidates, "updated": updated}


# ----------------------------
# Last Add Date cleanup
# ----------------------------
def clear_last_add_date(*, store: LedgerStore, dry_run: bool = False) -> Dict[str, int]:
    """Blank Last Add Date where it just repeats Trade Date."""
    rows = all_positions(store)
    hits = [r for r in rows if r.id and r.last_add_date and r.last_add_date == r.trade_date]
    cleared = 0
    for r in hits:
        if dry_run:
            print(f"[last-add] DRY RUN would clear {r.id} ({r.contract_key} {r.trade_date})")
            continue
        cleared += int(safe_update(store, str(r.id), {"last_add_date": None}))
    return {"rows": len(rows), "matched": len(hits), "cleared": cleared}


# ----------------------------
# Zero-quantity cleanup
# ----------------------------
def cleanup_zero_qty(*, store: LedgerStore, dry_run: bool = False) -> Dict[str, int]:
    rows = all_positions(store)
    hits = [r for r in rows if r.id and (r.qty is None or abs(r.qty) <= 0)]
    archived = 0
    for r in hits:
        if dry_run:
            print(f"[zero-qty] DRY RUN would archive {r.id} ({r.broker} {r.contract_key})")
            continue
        archived += int(safe_archive(store, str(r.id)))
    return {"rows": len(rows), "matched": len(hits), "archived": archived}
