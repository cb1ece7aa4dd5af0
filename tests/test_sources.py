from __future__ import annotations

from pathlib import Path

import pytest

from trade_journal.ledger.engine import build_ledger_records
from trade_journal.sources import fidelity_csv, fidelity_positions, public_csv, public_history, public_pdf, robinhood_csv
from trade_journal.sources.common import dedupe_across_files, mdy_to_iso, parse_files, parse_qty, read_csv_rows, to_number
from trade_journal.sources.registry import file_sources, get_source

from conftest import ev


def _write(tmp_path: Path, name: str, text: str) -> Path:
    p = tmp_path / name
    p.write_text(text.lstrip("\n"), encoding="utf-8")
    return p


# ----------------------------
# Field helpers
# ----------------------------
def test_field_helpers():
    assert to_number("$1,234.50") == 1234.5
    assert to_number("($12.00)") == -12.0
    assert to_number("") is None
    assert to_number("n/a") is None
    assert parse_qty("2S") == 2.0
    assert parse_qty("-3") == 3.0
    assert parse_qty("0") is None
    assert to_number("inf") is None
    assert to_number("-inf") is None
    assert parse_qty("inf") is None
    assert mdy_to_iso("1/7/25") == "2025-01-07"
    assert mdy_to_iso("01/07/2025") == "2025-01-07"
    assert mdy_to_iso("13/45/2025") is None


def test_read_csv_rows_skips_preamble(tmp_path):
    p = _write(tmp_path, "a.csv", """
Brokerage export
Generated today

Run Date,Account,Action
01/02/2025,Individual,YOU BOUGHT
""")
    rows = read_csv_rows(p, header_marker="Run Date,Account")
    assert rows == [{"Run Date": "01/02/2025", "Account": "Individual", "Action": "YOU BOUGHT"}]
    assert read_csv_rows(p, header_marker="Nope,Header") == []


def test_dedupe_keeps_max_count_per_file():
    x = ev("BUY", 1, 10, "2025-01-02", dedupe_key="x")
    y = ev("BUY", 1, 11, "2025-01-03", dedupe_key="y")
    out = dedupe_across_files([
        [("x", x), ("x", x)],
        [("x", x), ("y", y)],
    ])
    assert out == [x, x, y]


# ----------------------------
# Fidelity activity CSV
# ----------------------------
FIDELITY = """
Brokerage

Run Date,Account,Action,Symbol,Description,Type,Quantity,Price ($),Commission ($),Fees ($),Amount ($),Settlement Date
01/02/2025,Individual Z123,YOU BOUGHT APPLE INC (AAPL) (Cash),AAPL,APPLE INC,Cash,10,150.00,,,-1500.00,01/03/2025
01/10/2025,Individual Z123,YOU SOLD APPLE INC (AAPL) (Cash),AAPL,APPLE INC,Cash,-4,160.00,,,640.00,01/13/2025
01/02/2025,Individual Z123,YOU BOUGHT OPENING TRANSACTION CALL (XYZ) JAN 17 25 $10 (100 SHS) (Cash),-XYZ250117C10,CALL (XYZ),Cash,2,1.50,,,-300.00,01/03/2025
01/17/2025,Individual Z123,EXPIRED CALL (XYZ) JAN 17 25 $10 (100 SHS) (Cash),-XYZ250117C10,CALL (XYZ),Cash,-2,,,,,
01/20/2025,Individual Z123,DIVIDEND RECEIVED APPLE INC (AAPL) (Cash),AAPL,APPLE INC,Cash,0,,,,2.50,
"""


def test_fidelity_csv(tmp_path):
    p = _write(tmp_path, "fid.csv", FIDELITY)
    result = parse_files(fidelity_csv.SOURCE, [p])
    assert result.parsed_rows == 5
    assert result.dropped_rows == 1
    assert len(result.events) == 4

    expiry = next(e for e in result.events if e.price == 0)
    assert expiry.action == "SELL"
    assert expiry.contract_key == "XYZ 250117C00010000"
    assert expiry.ticker == "XYZ"
    assert expiry.account == "INDIVIDUAL Z123"

    records = build_ledger_records(result.events, broker=fidelity_csv.LABEL)
    by_key = {r.contract_key: r for r in records}
    assert by_key["AAPL"].status == "OPEN"
    assert by_key["AAPL"].qty == 10
    assert by_key["XYZ 250117C00010000"].status == "CLOSED"
    assert by_key["XYZ 250117C00010000"].pl == pytest.approx(-300)
    assert by_key["XYZ 250117C00010000"].fill_price == pytest.approx(150)


def test_fidelity_overlapping_exports_do_not_double_count(tmp_path):
    a = _write(tmp_path, "a.csv", FIDELITY)
    b = _write(tmp_path, "b.csv", FIDELITY)
    assert len(parse_files(fidelity_csv.SOURCE, [a, b]).events) == 4


# ----------------------------
# Robinhood CSV
# ----------------------------
ROBINHOOD = """
"Activity Date","Process Date","Settle Date","Instrument","Description","Trans Code","Quantity","Price","Amount"
"1/6/2025","1/6/2025","1/7/2025","TSLA","TSLA 1/17/2025 Call $400.00","BTO","2","$12.50","($2,500.00)"
"1/17/2025","1/17/2025","1/17/2025","TSLA","Option Expiration for TSLA 1/17/2025 Call $400.00","OEXP","2S","",""
"12/30/2024","12/30/2024","12/31/2024","AAPL","Apple","Buy","1","$250.00","($250.00)"
"1/8/2025","1/8/2025","1/9/2025","AAPL","Apple","Buy","5","$240.00","($1,200.00)"
"1/9/2025","1/9/2025","1/10/2025","AAPL","Apple","Sell","2","$245.00","$490.00"
"1/10/2025","1/10/2025","1/10/2025","","ACH Deposit","ACH","","","$100.00"
"""


def test_robinhood_csv(tmp_path):
    p = _write(tmp_path, "rh.csv", ROBINHOOD)
    source = robinhood_csv.make_source("2025-01-01")
    result = parse_files(source, [p])
    assert result.parsed_rows == 6
    assert len(result.events) == 4

    expiry = next(e for e in result.events if e.price == 0)
    assert expiry.action == "SELL"
    assert expiry.contract_key == "TSLA 250117C00400000"
    assert expiry.trade_type == "Call"

    records = {r.contract_key: r for r in build_ledger_records(result.events, broker=robinhood_csv.LABEL)}
    assert records["TSLA 250117C00400000"].pl == pytest.approx(-2500)
    assert records["AAPL"].qty == 5
    assert records["AAPL"].account == "BROKERAGE ACCOUNT"


# ----------------------------
# Public CSV (intent)
# ----------------------------
PUBLIC = """
Type,Trade Date,Settle Date,Symbol,Trade Action,Qty,Price,Net Amount
TRADES,2025-01-02,2025-01-03,NFLX 20260417C 82,BUY_TO_OPEN,2,4.10,-820.00
TRADES,2025-01-05,2025-01-06,NFLX 20260417C 82,SELL_TO_CLOSE,3,5.00,1000.00
DIVIDEND,2025-01-07,2025-01-07,AAPL,,,,1.25
TRADES,2025-01-02,2025-01-03,AAPL,BUY,5,100,-500.00
"""


def test_public_csv_intent_caps_close(tmp_path):
    p = _write(tmp_path, "public.csv", PUBLIC)
    result = parse_files(public_csv.SOURCE, [p])
    assert len(result.events) == 3
    opt = [e for e in result.events if e.trade_type == "Call"]
    assert {e.effect for e in opt} == {"BUY_TO_OPEN", "SELL_TO_CLOSE"}

    records = {
        r.contract_key: r
        for r in build_ledger_records(result.events, broker=public_csv.LABEL, model=public_csv.SOURCE.model)
    }
    nflx = records["NFLX 260417C00082000"]
    assert nflx.status == "CLOSED"
    assert nflx.qty == 2
    assert nflx.pl == pytest.approx(180)
    assert records["AAPL"].status == "OPEN"


def test_public_row_with_non_finite_price_is_dropped():
    row = {"Type": "TRADES", "Trade Date": "2025-01-02", "Symbol": "AAPL", "Trade Action": "BUY", "Qty": "5", "Price": "inf"}
    assert public_csv.event_from_row(row) is None
    assert public_csv.event_from_row({**row, "Price": "100"}).price == 100


def test_public_option_symbol():
    assert public_csv.option_from_symbol("NFLX 20260417C 82.5") == ("NFLX 260417C00082500", "NFLX", "Call")
    assert public_csv.option_from_symbol("AAPL") is None


# ----------------------------
# Public history text
# ----------------------------
def _line(*cols: str) -> str:
    return "\t".join(cols)


HISTORY = "\n".join([
    _line("Account", "x", "ccy", "mkt", "date", "time", "settle", "n", "trade", "side", "symbol", "cusip", "qty", "price", "amount"),
    _line("12-AB3456", "X", "USD", "M", "01/02/2025", "143005", "01/03/2025", "1", "T100", "BTO", "CALL - NFLX APR 26 @ 82 CALL", "NFLX260417C82", "2", "4.10", "820.00"),
    _line("12-AB3456", "X", "USD", "M", "01/09/2025", "093000", "01/10/2025", "1", "T101", "STC", "CALL - NFLX APR 26 @ 82 CALL", "NFLX260417C82", "2", "5.00", "1000.00"),
    _line("12-AB3456", "X", "USD", "M", "01/02/2025", "143005", "01/03/2025", "1", "T100", "BTO", "CALL - NFLX APR 26 @ 82 CALL", "NFLX260417C82", "2", "4.10", "820.00"),
    _line("12-AB3456", "X", "USD", "M", "01/03/2025", "100000", "01/06/2025", "1", "T102", "B", "AAPL - APPLE INC", "037833100", "3", "240.00", "720.00"),
])


def test_public_history_text():
    pairs, seen = public_history.parse_text(HISTORY)
    assert seen == 4
    assert len(pairs) == 3

    events = [e for _, e in pairs]
    first = events[0]
    assert first.account == "Public 12-AB3456"
    assert first.time == "2:30 PM"
    assert first.effect == "BUY_TO_OPEN"
    assert first.contract_key == "NFLX 260417C00082000"
    assert first.ticker == "NFLX"

    equity = events[2]
    assert equity.contract_key == "AAPL"
    assert equity.effect is None
    assert equity.action == "BUY"

    records = {r.contract_key: r for r in build_ledger_records(events, broker=public_history.LABEL, model="intent")}
    assert records["NFLX 260417C00082000"].pl == pytest.approx(180)
    assert records["NFLX 260417C00082000"].trade_time == "2:30 PM"


def test_hhmmss():
    assert public_history.hhmmss_to_time("000500") == "12:05 AM"
    assert public_history.hhmmss_to_time("120000") == "12:00 PM"
    assert public_history.hhmmss_to_time("250000") is None


# ----------------------------
# Public PDF statement
# ----------------------------
STATEMENT = """
PUBLIC INVESTING MONTHLY STATEMENT
ACCOUNT NUMBER 5PX-12345
BOUGHT 05/01/25 M CALL UAL 09/19/25 85 1 $4.10 $409.99
SOLD 06/02/25 M CALL UAL 09/19/25 85 1 $6.00 $599.98
EXPIRED 01/16/26 M CALL AAPL 01/16/26 285 -2
Some footer text
"""


def test_public_pdf_text():
    pairs, seen = public_pdf.parse_text(STATEMENT)
    assert seen == 3
    events = [e for _, e in pairs]
    assert {e.account for e in events} == {"Public Statement 5PX-12345"}

    buy, sell, expired = events
    assert buy.contract_key == "UAL 250919C00085000"
    assert (buy.action, buy.qty, buy.price) == ("BUY", 1, 4.10)
    assert sell.date == "2025-06-02"
    assert (expired.action, expired.qty, expired.price) == ("SELL", 2, 0.0)
    assert expired.contract_key == "AAPL 260116C00285000"

    records = {r.contract_key: r for r in build_ledger_records(events, broker=public_pdf.LABEL)}
    assert records["UAL 250919C00085000"].pl == pytest.approx(190)


# ----------------------------
# Fidelity positions snapshot
# ----------------------------
POSITIONS = """
Account Number,Account Name,Symbol,Description,Quantity,Last Price,Average Cost Basis
Z123,Individual,SPAXX**,HELD IN MONEY MARKET,,,
Z123,Individual,AAPL,APPLE INC,10,$230.00,$150.00
Z123,Individual, -NFLX260417C82,NFLX APR 17 2026 $82 CALL,2,$5.00,$4.10
Z123,Individual,Pending Activity,,,,
"""


def test_fidelity_positions_snapshot(tmp_path):
    p = _write(tmp_path, "positions.csv", POSITIONS)
    snaps, parsed = fidelity_positions.parse_files([p])
    assert parsed == 4
    by_key = {s.contract_key: s for s in snaps}
    assert set(by_key) == {"AAPL", "NFLX 260417C00082000"}
    assert by_key["AAPL"].average_price == 150.0
    assert by_key["NFLX 260417C00082000"].average_price == pytest.approx(410.0)
    assert by_key["NFLX 260417C00082000"].ticker == "NFLX"
    assert by_key["AAPL"].account == "INDIVIDUAL"


# ----------------------------
# Registry
# ----------------------------
def test_registry():
    sources = file_sources()
    assert set(sources) == {"fidelity", "robinhood", "public", "public-history", "public-pdf"}
    assert get_source("Public").model == "intent"
    assert get_source("public-pdf").suffixes == (".pdf",)
    with pytest.raises(ValueError):
        get_source("schwab")
