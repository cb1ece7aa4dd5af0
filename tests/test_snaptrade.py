from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import List

import pytest
import requests

from trade_journal.core.schemas import SourceAccount
from trade_journal.sources.snaptrade import (
    SnapTradeClient,
    SnapTradeError,
    holdings_to_snapshots,
    local_date_time,
    order_symbol_key,
    order_to_event,
    orders_to_events,
)

ACCOUNT = SourceAccount(id="acc-1", name="Roth IRA", number="X1", brokerage="Fidelity")


def _order(oid: str, action: str = "BUY", **kw) -> dict:
    base = {
        "brokerage_order_id": oid,
        "status": "EXECUTED",
        "action": action,
        "universal_symbol": {"symbol": "AAPL", "raw_symbol": "AAPL"},
        "filled_quantity": "10",
        "execution_price": 150.0,
        "time_placed": "2025-01-02T15:30:00Z",
    }
    base.update(kw)
    return base


OPTION_SYMBOL = {"ticker": "NFLX  260417C00082000", "underlying_symbol": {"ticker": "NFLX"}}


def test_local_date_time_converts_timezone():
    assert local_date_time("2025-01-02T15:30:00Z", "America/New_York") == ("2025-01-02", "10:30 AM")
    assert local_date_time("2025-01-03T02:15:00Z", "America/New_York") == ("2025-01-02", "9:15 PM")
    assert local_date_time(None, "America/New_York") == (None, None)


def test_symbol_keys():
    assert order_symbol_key(_order("a")) == "AAPL"
    assert order_symbol_key(_order("b", option_symbol=OPTION_SYMBOL)) == "NFLX 260417C00082000"
    assert order_symbol_key({"symbol": None}) is None


def test_order_to_event_equity():
    e = order_to_event(_order("A1"), ACCOUNT)
    assert e is not None
    assert e.account == "IRA ROTH"
    assert (e.action, e.qty, e.price) == ("BUY", 10.0, 150.0)
    assert (e.date, e.time) == ("2025-01-02", "10:30 AM")
    assert e.order_id == "A1"
    assert e.effect is None
    assert e.multiplier == 1


def test_order_to_event_option_effect():
    e = order_to_event(_order("A2", "SELL_CLOSE", option_symbol=OPTION_SYMBOL, filled_quantity=1, execution_price=4.1), ACCOUNT)
    assert e is not None
    assert e.action == "SELL"
    assert e.effect == "SELL_TO_CLOSE"
    assert e.ticker == "NFLX"
    assert e.trade_type == "Call"
    assert e.multiplier == 100


def test_order_filters_and_fallbacks():
    assert order_to_event(_order("C1", status="CANCELED"), ACCOUNT) is None
    assert order_to_event(_order("C1", status="CANCELED"), ACCOUNT, include_all=True) is not None
    assert order_to_event(_order("Z", filled_quantity=0), ACCOUNT) is None

    e = order_to_event(_order("F1", filled_quantity=None, total_quantity=3, execution_price=None, limit_price=9.5), ACCOUNT)
    assert e is not None
    assert (e.qty, e.price) == (3.0, 9.5)


def test_orders_to_events_dedupes_and_respects_start_date():
    orders = [
        _order("A1"),
        _order("A1"),
        _order("A0", time_placed="2024-12-01T15:00:00Z"),
        _order("X", status="PENDING"),
    ]
    events = orders_to_events(orders, ACCOUNT, start_date="2025-01-01")
    assert [e.order_id for e in events] == ["A1"]


def test_holdings_prefer_rows_with_average_price():
    positions = [
        {"symbol": {"symbol": {"symbol": "AAPL", "raw_symbol": "AAPL"}}, "units": 10, "average_purchase_price": None, "price": 230},
        {"symbol": {"symbol": {"symbol": "AAPL", "raw_symbol": "AAPL"}}, "units": 10, "average_purchase_price": 150.0, "price": 230},
        {"symbol": {"symbol": {"symbol": "ZERO", "raw_symbol": "ZERO"}}, "units": 0, "average_purchase_price": 1.0},
    ]
    options = [
        {"symbol": {"option_symbol": OPTION_SYMBOL}, "units": -1, "average_purchase_price": 410.0, "price": 500},
    ]
    snaps = {s.contract_key: s for s in holdings_to_snapshots(ACCOUNT, positions, options)}
    assert set(snaps) == {"AAPL", "NFLX 260417C00082000"}
    assert snaps["AAPL"].average_price == 150.0
    assert snaps["AAPL"].account == "IRA ROTH"
    assert snaps["NFLX 260417C00082000"].ticker == "NFLX"
    assert snaps["NFLX 260417C00082000"].units == 1
    assert snaps["NFLX 260417C00082000"].side == "SHORT"


# ----------------------------
# Signed client
# ----------------------------
class FakeResponse:
    def __init__(self, status_code: int, body):
        self.status_code = status_code
        self._body = body
        self.text = json.dumps(body)

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}", response=self)


class FakeSession:
    def __init__(self, responses: List[FakeResponse]):
        self.responses = list(responses)
        self.calls: List[tuple[str, dict]] = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        return self.responses.pop(0)


def _client(session) -> SnapTradeClient:
    return SnapTradeClient(session, client_id="CID", consumer_key="secret-key", user_id="u1", user_secret="us")


def test_client_signs_requests():
    session = FakeSession([FakeResponse(200, [{"id": "acc-1", "name": "Roth IRA", "institution_name": "Fidelity"}])])
    accounts = _client(session).list_accounts()
    assert accounts == [SourceAccount(id="acc-1", name="Roth IRA", number=None, brokerage="Fidelity")]

    url, headers = session.calls[0]
    assert url.startswith("https://api.snaptrade.com/api/v1/accounts?")
    query = url.split("?", 1)[1]
    assert "clientId=CID" in query and "userSecret=us" in query

    payload = json.dumps({"content": None, "path": "/api/v1/accounts", "query": query}, separators=(",", ":"), sort_keys=True)
    expected = base64.b64encode(hmac.new(b"secret-key", payload.encode("utf-8"), hashlib.sha256).digest()).decode("utf-8")
    assert headers["Signature"] == expected


def test_client_orders_pass_window_and_raise_on_error():
    session = FakeSession([FakeResponse(200, [_order("A1")]), FakeResponse(500, {"detail": "boom"})])
    client = _client(session)
    assert len(client.list_orders("acc-1", days=7)) == 1
    assert "days=7" in session.calls[0][0]
    assert "/accounts/acc-1/orders" in session.calls[0][0]
    with pytest.raises(SnapTradeError):
        client.list_positions("acc-1")
