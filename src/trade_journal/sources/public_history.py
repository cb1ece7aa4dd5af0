from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple

from trade_journal.core.contracts import (
    canonical_contract_key,
    is_option_key,
    normalize_ticker,
    trade_type_for,
)
from trade_journal.core.schemas import TradeEvent
from trade_journal.ledger.engine import resolve_effect
from trade_journal.sources.common import FileSource, mdy_to_iso, to_number

LABEL = "Public (History)"

_LINE_RE = re.compile(r"^\d{2}-[A-Z0-9]+")
_SIDE_RE = re.compile(r"^(B|S|BTO|STO|BTC|STC|BOT|SLD|EXPIRED)$", re.IGNORECASE)
_HHMMSS_RE = re.compile(r"^(\d{2})(\d{2})(\d{2})$")
_OPTION_TICKER_RE = re.compile(r"-\s*([A-Z.\-]+)\s+[A-Z]{3}\s+'?\d{2}\s+@\s*[\d.]+\s+(?:CALL|PUT)")
_EQUITY_TICKER_RE = re.compile(r"^([A-Z.\-]{1,10})\s+-")
_LEADING_TICKER_RE = re.compile(r"^([A-Z.\-]{1,10})")


def hhmmss_to_time(value: str) -> Optional[str]:
    """'143005' -> '2:30 PM'."""
    m = _HHMMSS_RE.match(value.strip())
    if not m:
        return None
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        return None
    period = "PM" if hh >= 12 else "AM"
    h12 = 12 if hh % 12 == 0 else hh % 12
    return f"{h12}:{mm:02d} {period}"


def _ticker(symbol_text: str) -> str:
    upper = symbol_text.upper().strip()
    for rx in (_OPTION_TICKER_RE, _EQUITY_TICKER_RE, _LEADING_TICKER_RE):
        m = rx.search(upper)
        if m:
            return m.group(1)
    return normalize_ticker(upper)


def _action(side: str) -> Optional[str]:
    s = side.upper().strip()
    if s.startswith("B"):
        return "BUY"
    if s.startswith("S") or "EXPIRE" in s:
        return "SELL"
    return None


def event_from_line(line: str) -> Optional[TradeEvent]:
    """
    Tab-separated statement row:
      acct, ..., trade date (col 4), exec time hhmmss (col 5), ..., trade number (col 8),
      ..., side, symbol text, cusip/option symbol, qty, price, ...
    """
    cols = [c.strip() for c in line.split("\t")]
    if len(cols) < 14:
        return None

    account_number = cols[0]
    side_idx = next((i for i, c in enumerate(cols) if _SIDE_RE.match(c)), -1)
    if side_idx < 0 or side_idx + 4 >= len(cols):
        return None

    side, symbol_text, cusip, qty_raw, price_raw = cols[side_idx:side_idx + 5]
    action = _action(side)
    date = mdy_to_iso(cols[4])
    if not account_number or not symbol_text or action is None or date is None:
        return None

    qty = to_number(qty_raw)
    price = to_number(price_raw)
    if qty is None or qty == 0 or price is None:
        return None

    ticker = _ticker(symbol_text)
    if not ticker:
        return None

    key = canonical_contract_key(cusip) if cusip else ""
    if not is_option_key(key):
        key = ticker

    trade_number = cols[8] if len(cols) > 8 else ""
    dedupe = f"{account_number}|{trade_number}" if trade_number else line.strip()

    return TradeEvent(
        account=f"Public {account_number}",
        date=date,
        time=hhmmss_to_time(cols[5]),
        action=action,  # type: ignore[arg-type]
        effect=resolve_effect(side) if is_option_key(key) else None,
        contract_key=key,
        ticker=ticker,
        trade_type=trade_type_for(key),
        qty=abs(qty),
        price=abs(price),
        multiplier=100 if is_option_key(key) else 1,
        dedupe_key=dedupe,
    )


def parse_text(text: str) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    """Trade numbers are unique per account, so a repeated one is the same fill listed twice."""
    out: List[Tuple[str, TradeEvent]] = []
    keys: set[str] = set()
    seen = 0
    for line in text.splitlines():
        if "\t" not in line or not _LINE_RE.match(line):
            continue
        seen += 1
        e = event_from_line(line)
        if e is None or e.dedupe_key in keys:
            continue
        keys.add(e.dedupe_key)
        out.append((e.dedupe_key, e))
    return out, seen


def parse_file(path: Path) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    return parse_text(Path(path).read_text(encoding="utf-8"))


SOURCE = FileSource(
    name="public-history",
    label=LABEL,
    model="intent",
    suffixes=(".txt", ".tsv"),
    parse_file=parse_file,
    auto_expire=True,
)
