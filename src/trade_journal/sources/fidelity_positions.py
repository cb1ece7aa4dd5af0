from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from trade_journal.core.contracts import canonical_account, canonical_contract_key, is_option_key, ticker_from_contract_key
from trade_journal.core.schemas import PositionSnapshot
from trade_journal.ledger.engine import round2
from trade_journal.sources.common import read_csv_rows, to_number

BROKER = "Fidelity"
HEADER_MARKER = "Account Number,Account Name,Symbol"

_SKIP_SYMBOLS = ("SPAXX", "PENDING")
_DESC_TICKER_RE = re.compile(r"\b([A-Z.\-]{1,10})\b")


def snapshot_from_row(row: Dict[str, str]) -> Optional[PositionSnapshot]:
    account = row.get("Account Name") or ""
    symbol = (row.get("Symbol") or "").strip()
    if not account or not symbol or any(s in symbol.upper() for s in _SKIP_SYMBOLS):
        return None

    qty = to_number(row.get("Quantity"))
    avg = to_number(row.get("Average Cost Basis"))
    if qty is None or avg is None or abs(qty) <= 0:
        return None

    key = canonical_contract_key(symbol)
    if is_option_key(key):
        ticker = ticker_from_contract_key(key)
        avg = avg * 100
    else:
        m = _DESC_TICKER_RE.search(row.get("Description") or "")
        ticker = key or (m.group(1) if m else "")

    return PositionSnapshot(
        account=canonical_account(account),
        contract_key=key,
        ticker=ticker,
        units=abs(qty),
        average_price=round2(avg),
        price=to_number(row.get("Last Price")),
        side="SHORT" if qty < 0 else "LONG",
    )


def parse_files(files: Sequence[Path]) -> tuple[List[PositionSnapshot], int]:
    """Latest file wins per (account, contract)."""
    by_key: Dict[str, PositionSnapshot] = {}
    parsed = 0
    for f in files:
        rows = read_csv_rows(f, header_marker=HEADER_MARKER)
        parsed += len(rows)
        for row in rows:
            s = snapshot_from_row(row)
            if s is not None:
                by_key[f"{s.account}|{s.contract_key}"] = s
    return list(by_key.values()), parsed
