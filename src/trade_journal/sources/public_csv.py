from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from trade_journal.core.contracts import canonical_account, option_contract_key
from trade_journal.core.schemas import TradeEvent
from trade_journal.ledger.engine import resolve_action, resolve_effect
from trade_journal.sources.common import FileSource, iso_date, parse_qty, read_csv_rows, row_key, to_number

LABEL = "Public (CSV)"
ACCOUNT = "Brokerage Account"

DEDUPE_COLUMNS = ("Trade Date", "Settle Date", "Symbol", "Trade Action", "Qty", "Price", "Net Amount")

# "NFLX 20260417C 82" / "NFLX 20260417C 82.5"
_OPTION_RE = re.compile(r"^([A-Z.\-]+)\s+(\d{4})(\d{2})(\d{2})([CP])\s+([\d.]+)$")
_SYMBOL_STRIP_RE = re.compile(r"[^A-Z0-9.\- ]")


def option_from_symbol(symbol: str) -> Optional[Tuple[str, str, str]]:
    """(contract_key, ticker, trade_type) for option symbols, else None."""
    m = _OPTION_RE.match(" ".join(symbol.split()))
    if not m:
        return None
    ticker, yyyy, mm, dd, cp, strike = m.groups()
    try:
        key = option_contract_key(ticker, year=int(yyyy), month=int(mm), day=int(dd), cp=cp, strike=float(strike))
    except ValueError:
        return None
    return key, ticker, "Call" if cp == "C" else "Put"


def event_from_row(row: Dict[str, str]) -> Optional[TradeEvent]:
    row_type = (row.get("Type") or "").strip().upper()
    if row_type and row_type != "TRADES":
        return None

    date = iso_date(row.get("Trade Date"))
    if not date:
        return None

    trade_action = row.get("Trade Action") or ""
    action = resolve_action(trade_action)
    if action is None:
        return None

    qty = parse_qty(row.get("Qty"))
    price = to_number(row.get("Price"))
    if qty is None or price is None:
        return None

    symbol = _SYMBOL_STRIP_RE.sub("", (row.get("Symbol") or "").strip().upper())
    if not symbol:
        return None

    option = option_from_symbol(symbol)
    if option is not None:
        contract_key, ticker, trade_type = option
        multiplier = 100
        effect = resolve_effect(trade_action)
    else:
        contract_key = ticker = symbol.replace(" ", "")
        trade_type, multiplier, effect = "Stock", 1, None

    return TradeEvent(
        account=canonical_account(ACCOUNT),
        date=date,
        action=action,  # type: ignore[arg-type]
        effect=effect,
        contract_key=contract_key,
        ticker=ticker,
        trade_type=trade_type,  # type: ignore[arg-type]
        qty=qty,
        price=abs(price),
        multiplier=multiplier,
        dedupe_key=row_key(row, DEDUPE_COLUMNS),
    )


def parse_file(path: Path) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    rows = read_csv_rows(path)
    out: List[Tuple[str, TradeEvent]] = []
    for row in rows:
        e = event_from_row(row)
        if e is not None:
            out.append((e.dedupe_key, e))
    return out, len(rows)


SOURCE = FileSource(
    name="public",
    label=LABEL,
    model="intent",
    suffixes=(".csv",),
    parse_file=parse_file,
    auto_expire=True,
)
