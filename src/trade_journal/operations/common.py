from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from trade_journal.core.schemas import LedgerRecord
from trade_journal.ledger.reconcile import SyncPlan
from trade_journal.store.ledger_store import Eq, LedgerStore, safe_archive, safe_update


def today_iso(tz: str = "America/New_York") -> str:
    return pd.Timestamp.now(tz=tz).date().isoformat()


def all_positions(store: LedgerStore) -> List[LedgerRecord]:
    return list(store.query(Eq("row_type", "Position")))


def other_label_rows(rows: Sequence[LedgerRecord], broker: str) -> List[LedgerRecord]:
    """Rows written under any other broker label, including siblings like "Public" for "Public (CSV)"."""
    return [r for r in rows if r.broker != broker]


def apply_sync_plan(store: LedgerStore, plan: SyncPlan, *, dry_run: bool, tag: str) -> Dict[str, int]:
    """
    Writes archives first, then updates, then creates. Archive conflicts from an
    eventually-consistent listing are tolerated; anything else propagates.
    """
    written = {"archived": 0, "updated": 0, "created": 0}
    if dry_run:
        for rid in plan.archives:
            print(f"[{tag}] DRY RUN would archive {rid}")
        for rid, fields in plan.updates:
            print(f"[{tag}] DRY RUN would update {rid}: {sorted(fields)}")
        for r in plan.creates:
            print(f"[{tag}] DRY RUN would create {r.account} {r.contract_key} {r.status} opened={r.trade_date}")
        return written

    for rid in plan.archives:
        if safe_archive(store, rid):
            written["archived"] += 1
    for rid, fields in plan.updates:
        if safe_update(store, rid, fields):
            written["updated"] += 1
    for r in plan.creates:
        store.create(r)
        written["created"] += 1
    return written


def print_counts(title: str, counts: Dict[str, Any]) -> None:
    print(f"\n=== {title} ===")
    width = max((len(k) for k in counts), default=0) + 1
    for k, v in counts.items():
        print(f"{(k + ':').ljust(width)} {v}")


def dump_counts(counts: Dict[str, Any], *, indent: Optional[int] = 2) -> str:
    return json.dumps(counts, indent=indent, default=str)
