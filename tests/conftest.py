from __future__ import annotations

from typing import Optional

import pytest

from trade_journal.core.contracts import canonical_contract_key, multiplier_for, ticker_from_contract_key, trade_type_for
from trade_journal.core.schemas import LedgerRecord, TradeEvent
from trade_journal.store.ledger_store import InMemoryLedgerStore


def ev(
    action: str,
    qty: float,
    price: float,
    date: str,
    key: str = "AAPL",
    *,
    account: str = "Brokerage Account",
    effect: Optional[str] = None,
    time: Optional[str] = None,
    dedupe_key: str = "",
) -> TradeEvent:
    ck = canonical_contract_key(key)
    return TradeEvent(
        account=account,
        date=date,
        time=time,
        action=action,  # type: ignore[arg-type]
        effect=effect,  # type: ignore[arg-type]
        contract_key=ck,
        ticker=ticker_from_contract_key(ck),
        trade_type=trade_type_for(ck),
        qty=qty,
        price=price,
        multiplier=multiplier_for(ck),
        dedupe_key=dedupe_key or f"{date}|{action}|{ck}|{qty}|{price}|{time}",
    )


def rec(
    *,
    broker: str = "Public (CSV)",
    account: str = "BROKERAGE ACCOUNT",
    contract_key: str = "AAPL",
    status: str = "OPEN",
    qty: float = 10.0,
    fill_price: float = 5.0,
    trade_date: str = "2025-01-02",
    close_date: Optional[str] = None,
    pl: Optional[float] = None,
    **kw,
) -> LedgerRecord:
    ck = canonical_contract_key(contract_key)
    return LedgerRecord(
        title=ticker_from_contract_key(ck),
        ticker=ticker_from_contract_key(ck),
        contract_key=ck,
        account=account,
        broker=broker,
        status=status,  # type: ignore[arg-type]
        trade_type=trade_type_for(ck),
        side="LONG",
        qty=qty,
        fill_price=fill_price,
        trade_date=trade_date,
        close_date=close_date,
        pl=pl,
        **kw,
    )


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore(page_size=3)
