from __future__ import annotations

from typing import Any, Callable, Dict, List

from trade_journal.core.schemas import LedgerRecord
from trade_journal.store.ledger_store import LedgerStore

SAMPLE_SIZE = 25


def _sample(r: LedgerRecord) -> Dict[str, Any]:
    return {
        "id": r.id,
        "broker": r.broker,
        "account": r.account,
        "contractKey": r.contract_key,
        "status": r.status,
        "tradeDate": r.trade_date,
        "closeDate": r.close_date,
        "qty": r.qty,
        "fillPrice": r.fill_price,
        "pl": r.pl,
    }


CHECKS: Dict[str, Callable[[LedgerRecord], bool]] = {
    "closedMissingPL": lambda r: r.status == "CLOSED" and r.pl is None,
    "openWithCloseDate": lambda r: r.status == "OPEN" and bool(r.close_date),
    "missingContractKey": lambda r: not (r.contract_key or "").strip(),
    "invalidQtyOrFillPrice": lambda r: r.qty is None or r.qty <= 0 or r.fill_price is None or r.fill_price <= 0,
}


def audit_journal(*, store: LedgerStore, row_type: str = "Position", sample_size: int = SAMPLE_SIZE) -> Dict[str, Any]:
    rows = [r for r in store.query() if r.row_type == row_type]
    counts: Dict[str, Any] = {"rows": len(rows)}
    samples: Dict[str, List[Dict[str, Any]]] = {}
    for name, check in CHECKS.items():
        hits = [r for r in rows if check(r)]
        counts[name] = len(hits)
        samples[name] = [_sample(r) for r in hits[:sample_size]]
    counts["samples"] = samples
    return counts
