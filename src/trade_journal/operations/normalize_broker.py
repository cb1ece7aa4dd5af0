from __future__ import annotations

from typing import Dict

from trade_journal.core.contracts import canonical_broker_label
from trade_journal.store.ledger_store import LedgerStore, safe_update


def normalize_broker_labels(*, store: LedgerStore, family: str = "Fidelity", dry_run: bool = False) -> Dict[str, int]:
    """
    Rewrite spelling variants of one broker's labels ('FIDELITY', 'Fidelity Investments',
    'fidelity (csv)') to the canonical 'Fidelity' / 'Fidelity (CSV)'. Position and Trade rows alike.
    """
    rows = list(store.query())
    matched = 0
    changes = 0
    updated = 0
    for r in rows:
        target = canonical_broker_label(r.broker, family)
        if target is None:
            continue
        matched += 1
        if target == r.broker or not r.id:
            continue
        changes += 1
        if dry_run:
            print(f"[normalize-broker] DRY RUN {r.id} {r.broker!r} -> {target!r}")
            continue
        updated += int(safe_update(store, str(r.id), {"broker": target}))

    print(f"[normalize-broker] family={family} rows={len(rows)} matched={matched} changes={changes} updated={updated} dry_run={dry_run}")
    return {"rows": len(rows), "matched": matched, "changes": changes, "updated": updated}
