from __future__ import annotations

import re
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from trade_journal.core.contracts import canonical_account, normalize_ticker, option_contract_key, trade_type_for
from trade_journal.core.schemas import TradeEvent
from trade_journal.sources.common import FileSource, mdy_to_iso, parse_qty, read_csv_rows, row_key, to_number

LABEL = "Robinhood (CSV)"
ACCOUNT = "Brokerage Account"

DEDUPE_COLUMNS = (
    "Activity Date",
    "Process Date",
    "Settle Date",
    "Instrument",
    "Description",
    "Trans Code",
    "Quantity",
    "Price",
    "Amount",
)

# "AAPL 1/17/2025 Call $150.00"
_OPTION_RE = re.compile(r"^(?:OPTION EXPIRATION FOR\s+)?([A-Z.\-]+)\s+(\d{1,2})/(\d{1,2})/(\d{2,4})\s+(CALL|PUT)\s+\$?([\d.,]+)$")

EXPIRY_CODES = ("OEXP", "OCA")


def _action(code: str, quantity_raw: str) -> Optional[str]:
    c = code.strip().upper()
    if not c:
        return None
    if c in EXPIRY_CODES:
        # expirations carry direction as a quantity suffix: "2S" closed a long
        return "SELL" if quantity_raw.strip().upper().endswith("S") else "BUY"
    if c.startswith("B"):
        return "BUY"
    if c.startswith("S"):
        return "SELL"
    return None


def option_from_description(description: str, instrument: str) -> Optional[Tuple[str, str]]:
    """(contract_key, ticker) for option descriptions, else None."""
    d = " ".join(description.upper().split())
    m = _OPTION_RE.match(d)
    if not m:
        return None
    ticker, mm, dd, yy, cp, strike = m.groups()
    ticker = ticker or instrument
    try:
        key = option_contract_key(
            ticker,
            year=int(yy),
            month=int(mm),
            day=int(dd),
            cp=cp[0],
            strike=float(strike.replace(",", "")),
        )
    except ValueError:
        return None
    return key, normalize_ticker(ticker)


def event_from_row(row: Dict[str, str], *, start_date: Optional[str] = None) -> Optional[TradeEvent]:
    date = mdy_to_iso(row.get("Activity Date"))
    if not date or (start_date and date < start_date):
        return None

    code = row.get("Trans Code") or ""
    quantity_raw = row.get("Quantity") or ""
    action = _action(code, quantity_raw)
    if action is None:
        return None

    instrument = normalize_ticker(row.get("Instrument"))
    if not instrument:
        return None

    qty = parse_qty(quantity_raw)
    if qty is None:
        return None

    price = to_number(row.get("Price"))
    if price is None:
        if code.strip().upper() not in EXPIRY_CODES:
            return None
        price = 0.0

    option = option_from_description(row.get("Description") or "", instrument)
    if option is not None:
        contract_key, ticker = option
        trade_type = trade_type_for(contract_key)
        multiplier = 100
    else:
        contract_key, ticker, trade_type, multiplier = instrument, instrument, "Stock", 1

    return TradeEvent(
        account=canonical_account(ACCOUNT),
        date=date,
        action=action,  # type: ignore[arg-type]
        contract_key=contract_key,
        ticker=ticker,
        trade_type=trade_type,  # type: ignore[arg-type]
        qty=qty,
        price=abs(price),
        multiplier=multiplier,
        dedupe_key=row_key(row, DEDUPE_COLUMNS),
    )


def parse_file(path: Path, *, start_date: Optional[str] = None) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    rows = read_csv_rows(path)
    out: List[Tuple[str, TradeEvent]] = []
    for row in rows:
        e = event_from_row(row, start_date=start_date)
        if e is not None:
            out.append((e.dedupe_key, e))
    return out, len(rows)


def make_source(start_date: Optional[str] = None) -> FileSource:
    return FileSource(
        name="robinhood",
        label=LABEL,
        model="direction",
        suffixes=(".csv",),
        parse_file=partial(parse_file, start_date=start_date),
    )
