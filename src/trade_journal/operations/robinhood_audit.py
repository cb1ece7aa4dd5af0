from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.core.contracts import canonical_contract_key
from trade_journal.core.schemas import LedgerRecord, PositionState, TradeEvent
from trade_journal.ledger.engine import is_flat, replay_lifetime, round2
from trade_journal.operations.rebuild_broker import source_files
from trade_journal.sources import robinhood_csv
from trade_journal.sources.common import parse_files
from trade_journal.store.ledger_store import LedgerStore, positions_for_broker

SAMPLE_SIZE = 25


def _journal_by_contract(rows: Sequence[LedgerRecord]) -> Dict[str, Dict[str, Any]]:
    """contract -> {"status", "pl"}; OPEN if any episode is open, pl summed over closed episodes."""
    out: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        k = canonical_contract_key(r.contract_key)
        if not k:
            continue
        cur = out.setdefault(k, {"status": "CLOSED", "pl": None})
        if r.status == "OPEN":
            cur["status"] = "OPEN"
        elif r.pl is not None:
            cur["pl"] = float(cur["pl"] or 0.0) + float(r.pl)
    return out


def robinhood_audit(
    *,
    store: LedgerStore,
    s: Settings = default_settings,
    files: Optional[Sequence[Path]] = None,
    tolerance: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Replay every Robinhood export as one lifetime position per contract and compare
    status and realized P/L with the journal's Robinhood (CSV) rows. Read-only.
    """
    source = robinhood_csv.make_source(s.robinhood_start_date)
    tol = float(s.robinhood_pl_tolerance if tolerance is None else tolerance)
    raw: List[Path] = []
    processed: List[Path] = []
    if files is None:
        raw, processed = source_files(source)
        files = processed + raw
    print(f"[robinhood-audit] files={len(files)} start={s.robinhood_start_date} tolerance={tol}")

    parsed = parse_files(source, files)
    by_contract: Dict[str, List[TradeEvent]] = {}
    for e in parsed.events:
        by_contract.setdefault(canonical_contract_key(e.contract_key), []).append(e)

    lifetime: Dict[str, PositionState] = {}
    for k, evs in by_contract.items():
        p = replay_lifetime(evs, model=source.model)
        if p is not None:
            lifetime[k] = p

    journal = _journal_by_contract(positions_for_broker(store, source.label))

    pl_mismatches: List[Dict[str, Any]] = []
    status_mismatches: List[Dict[str, Any]] = []
    missing: List[str] = []
    for k in sorted(lifetime):
        p = lifetime[k]
        row = journal.get(k)
        if row is None:
            missing.append(k)
            continue
        csv_status = "CLOSED" if is_flat(p) else "OPEN"
        if row["status"] != csv_status:
            status_mismatches.append({"contractKey": k, "csvStatus": csv_status, "journalStatus": row["status"]})
        if csv_status == "CLOSED":
            csv_pl = round2(p.realized_pl)
            journal_pl = None if row["pl"] is None else round2(row["pl"])
            delta = round2(csv_pl - (journal_pl or 0.0))
            if journal_pl is None or abs(delta) > tol:
                pl_mismatches.append({"contractKey": k, "csvPl": csv_pl, "journalPl": journal_pl, "delta": delta})

    extra = sorted(k for k in journal if k not in lifetime)
    closed = sum(1 for p in lifetime.values() if is_flat(p))

    counts: Dict[str, Any] = {
        "files": {"raw": len(raw), "processed": len(processed), "total": len(files)},
        "parsedRows": parsed.parsed_rows,
        "uniqueEvents": len(parsed.events),
        "csvContracts": len(lifetime),
        "csvClosedContracts": closed,
        "csvOpenContracts": len(lifetime) - closed,
        "csvTotalRealizedPl": round2(sum(p.realized_pl for p in lifetime.values())),
        "journalContracts": len(journal),
        "plMismatchCount": len(pl_mismatches),
        "statusMismatchCount": len(status_mismatches),
        "missingInJournalCount": len(missing),
        "extraInJournalCount": len(extra),
        "samples": {
            "plMismatches": pl_mismatches[:SAMPLE_SIZE],
            "statusMismatches": status_mismatches[:SAMPLE_SIZE],
            "missingInJournal": missing[:SAMPLE_SIZE],
            "extraInJournal": extra[:SAMPLE_SIZE],
        },
    }
    print(
        f"[robinhood-audit] contracts={len(lifetime)} pl_mismatches={len(pl_mismatches)} "
        f"status_mismatches={len(status_mismatches)} missing={len(missing)} extra={len(extra)}"
    )
    return counts
