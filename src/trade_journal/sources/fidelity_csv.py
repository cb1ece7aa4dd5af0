from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from trade_journal.core.contracts import (
    canonical_account,
    canonical_contract_key,
    multiplier_for,
    normalize_ticker,
    ticker_from_contract_key,
    trade_type_for,
)
from trade_journal.core.schemas import TradeEvent
from trade_journal.sources.common import FileSource, mdy_to_iso, read_csv_rows, row_key, to_number

LABEL = "Fidelity (CSV)"
HEADER_MARKER = "Run Date,Account"

DEDUPE_COLUMNS = (
    "Run Date",
    "Account",
    "Action",
    "Symbol",
    "Quantity",
    "Price ($)",
    "Amount ($)",
    "Settlement Date",
)

_PAREN_TICKER_RE = re.compile(r"\(([A-Z.\-]+)\)")


def _action(action_text: str, qty_raw: float) -> Optional[str]:
    a = action_text.upper()
    if "YOU BOUGHT" in a:
        return "BUY"
    if "YOU SOLD" in a:
        return "SELL"
    if "EXPIRED" in a:
        # long expiries remove contracts (negative qty); short expiries add them back
        return "SELL" if qty_raw < 0 else "BUY"
    return None


def event_from_row(row: Dict[str, str]) -> Optional[TradeEvent]:
    date = mdy_to_iso(row.get("Run Date"))
    if not date:
        return None

    account = row.get("Account") or ""
    action_text = row.get("Action") or ""
    symbol = row.get("Symbol") or ""
    qty_raw = to_number(row.get("Quantity"))
    if not account or not symbol or qty_raw is None or qty_raw == 0:
        return None

    action = _action(action_text, qty_raw)
    if action is None:
        return None

    price = to_number(row.get("Price ($)"))
    if price is None:
        if "EXPIRED" not in action_text.upper():
            return None
        price = 0.0

    contract_key = canonical_contract_key(symbol)
    if trade_type_for(contract_key) == "Stock":
        m = _PAREN_TICKER_RE.search(action_text.upper()) or _PAREN_TICKER_RE.search((row.get("Description") or "").upper())
        ticker = m.group(1) if m else normalize_ticker(symbol)
    else:
        ticker = ticker_from_contract_key(contract_key)

    return TradeEvent(
        account=canonical_account(account),
        date=date,
        action=action,  # type: ignore[arg-type]
        contract_key=contract_key,
        ticker=ticker,
        trade_type=trade_type_for(contract_key),
        qty=abs(qty_raw),
        price=abs(price),
        multiplier=multiplier_for(contract_key),
        dedupe_key=row_key(row, DEDUPE_COLUMNS),
    )


def parse_file(path: Path) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    rows = read_csv_rows(path, header_marker=HEADER_MARKER)
    out: List[Tuple[str, TradeEvent]] = []
    for row in rows:
        e = event_from_row(row)
        if e is not None:
            out.append((e.dedupe_key, e))
    return out, len(rows)


SOURCE = FileSource(
    name="fidelity",
    label=LABEL,
    model="direction",
    suffixes=(".csv",),
    parse_file=parse_file,
)
