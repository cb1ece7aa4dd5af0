from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple

import pdfplumber

from trade_journal.core.contracts import option_contract_key, trade_type_for
from trade_journal.core.schemas import TradeEvent
from trade_journal.sources.common import FileSource, mdy_to_iso, to_number

LABEL = "Public (PDF)"

# BOUGHT 05/01/25 M CALL UAL 09/19/25 85 1 $4.10 $409.99
_TRADE_RE = re.compile(
    r"^(BOUGHT|SOLD)\s+(\d{2}/\d{2}/\d{2})(?:\s+\d{2}/\d{2}/\d{2})?\s+M\s+(.+?)\s+"
    r"(-?\d[\d,.\-]*)\s+\$?(-?\d[\d,.\-]*)\s+\$?(-?\d[\d,.\-]*)$"
)
# EXPIRED 01/16/26 M CALL AAPL 01/16/26 285 -2
_EXPIRED_RE = re.compile(r"^EXPIRED\s+(\d{2}/\d{2}/\d{2})(?:\s+\d{2}/\d{2}/\d{2})?\s+M\s+(.+?)\s+(-?\d[\d,.\-]*)$")
_OPTION_DESC_RE = re.compile(r"\b(CALL|PUT)\s+([A-Z.\-]+)\s+(\d{2})/(\d{2})/(\d{2})\s+([\d.]+)")
_ACCOUNT_RE = re.compile(r"ACCOUNT NUMBER\s+([A-Z0-9\- ]+)\n")


def extract_text(path: Path) -> str:
    parts: List[str] = []
    with pdfplumber.open(str(path)) as pdf:
        for page in pdf.pages:
            parts.append(page.extract_text() or "")
    return "\n".join(parts)


def account_label(text: str) -> str:
    m = _ACCOUNT_RE.search(text)
    number = " ".join(m.group(1).split()) if m else "Unknown"
    return f"Public Statement {number}"


def option_from_description(desc: str) -> Optional[Tuple[str, str]]:
    m = _OPTION_DESC_RE.search(" ".join(desc.upper().split()))
    if not m:
        return None
    cp, ticker, mm, dd, yy, strike = m.groups()
    try:
        key = option_contract_key(ticker, year=int(yy), month=int(mm), day=int(dd), cp=cp[0], strike=float(strike))
    except ValueError:
        return None
    return key, ticker


def _event(account: str, date: str, action: str, desc: str, qty: float, price: float) -> Optional[TradeEvent]:
    option = option_from_description(desc)
    if option is None:
        return None
    key, ticker = option
    qty = abs(qty)
    if qty <= 0:
        return None
    return TradeEvent(
        account=account,
        date=date,
        action=action,  # type: ignore[arg-type]
        contract_key=key,
        ticker=ticker,
        trade_type=trade_type_for(key),
        qty=qty,
        price=abs(price),
        multiplier=100,
        dedupe_key=f"{account}|{date}|{action}|{key}|{qty}|{price}",
    )


def parse_text(text: str) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    account = account_label(text)
    out: List[Tuple[str, TradeEvent]] = []
    seen = 0
    for raw in text.splitlines():
        line = " ".join(raw.split())
        if not line:
            continue

        m = _TRADE_RE.match(line)
        if m:
            seen += 1
            verb, d, desc, qty_raw, price_raw, _amount = m.groups()
            date = mdy_to_iso(d)
            qty = to_number(qty_raw)
            price = to_number(price_raw)
            if date and qty is not None and price is not None:
                e = _event(account, date, "BUY" if verb == "BOUGHT" else "SELL", desc, qty, price)
                if e is not None:
                    out.append((e.dedupe_key, e))
            continue

        m = _EXPIRED_RE.match(line)
        if m:
            seen += 1
            d, desc, qty_raw = m.groups()
            date = mdy_to_iso(d)
            qty = to_number(qty_raw)
            if date and qty is not None:
                # negative qty removes a long; positive removes a short
                e = _event(account, date, "SELL" if qty < 0 else "BUY", desc, qty, 0.0)
                if e is not None:
                    out.append((e.dedupe_key, e))
    return out, seen


def parse_file(path: Path) -> Tuple[List[Tuple[str, TradeEvent]], int]:
    return parse_text(extract_text(path))


SOURCE = FileSource(
    name="public-pdf",
    label=LABEL,
    model="direction",
    suffixes=(".pdf",),
    parse_file=parse_file,
)
