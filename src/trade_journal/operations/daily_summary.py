from __future__ import annotations

from typing import Any, Dict, List, Optional

from trade_journal.ledger.engine import round2
from trade_journal.store.ledger_store import Eq, LedgerStore, all_of


def daily_summary(
    *,
    store: LedgerStore,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> Dict[str, Any]:
    """Closed positions grouped by close date."""
    rows = store.query(all_of(Eq("row_type", "Position"), Eq("status", "CLOSED")))

    days: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        d = r.close_date
        if not d or (start and d < start) or (end and d > end):
            continue
        day = days.setdefault(d, {"date": d, "dayPL": 0.0, "closedTrades": 0, "winCount": 0, "lossCount": 0})
        pl = float(r.pl or 0.0)
        day["dayPL"] += pl
        day["closedTrades"] += 1
        if pl > 0:
            day["winCount"] += 1
        elif pl < 0:
            day["lossCount"] += 1

    out: List[Dict[str, Any]] = []
    for d in sorted(days):
        day = days[d]
        day["dayPL"] = round2(day["dayPL"])
        out.append(day)

    total = round2(sum(x["dayPL"] for x in out)) if out else 0.0
    return {"days": out, "totalPL": total, "closedTrades": sum(x["closedTrades"] for x in out)}
