from __future__ import annotations

import pytest

from trade_journal.core.contracts import (
    api_broker_label,
    base_key,
    broker_family,
    canonical_broker_label,
    canonical_account,
    canonical_contract_key,
    contract_fingerprint,
    exact_fingerprint,
    is_option_key,
    manual_key,
    manual_loose_key,
    multiplier_for,
    num_key,
    option_contract_key,
    option_expiry_date,
    parse_option_key,
    ticker_from_contract_key,
    trade_type_for,
)


@pytest.mark.parametrize(
    "raw",
    [
        "NFLX260417C82",
        "NFLX 260417C00082000",
        "-NFLX 260417C00082000",
        "nflx 260417c82.0",
        " NFLX260417C00082000 ",
    ],
)
def test_option_spellings_share_one_key(raw):
    assert canonical_contract_key(raw) == "NFLX 260417C00082000"


def test_fractional_strike():
    assert canonical_contract_key("SPY250321P582.5") == "SPY 250321P00582500"


def test_equity_key_is_bare_ticker():
    assert canonical_contract_key(" aapl ") == "AAPL"
    assert canonical_contract_key("BRK.B") == "BRK.B"
    assert canonical_contract_key("") == ""
    assert canonical_contract_key(None) == ""


def test_option_contract_key_builder():
    assert option_contract_key("nflx", year=2026, month=4, day=17, cp="Call", strike=82) == "NFLX 260417C00082000"
    with pytest.raises(ValueError):
        option_contract_key("NFLX", year=2026, month=4, day=17, cp="X", strike=82)


def test_option_parts():
    parts = parse_option_key("NFLX260417P82.5")
    assert parts is not None
    assert (parts.ticker, parts.yymmdd, parts.cp, parts.strike) == ("NFLX", "260417", "P", 82.5)
    assert option_expiry_date("NFLX 260417C00082000") == "2026-04-17"
    assert option_expiry_date("AAPL") is None


def test_type_helpers():
    assert is_option_key("NFLX260417C82")
    assert not is_option_key("AAPL")
    assert trade_type_for("NFLX260417C82") == "Call"
    assert trade_type_for("NFLX260417P82") == "Put"
    assert trade_type_for("AAPL") == "Stock"
    assert multiplier_for("NFLX260417C82") == 100
    assert multiplier_for("AAPL") == 1
    assert ticker_from_contract_key("NFLX 260417C00082000") == "NFLX"
    assert ticker_from_contract_key("msft") == "MSFT"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Roth IRA", "IRA ROTH"),
        ("IRA - ROTH", "IRA ROTH"),
        ("Traditional IRA", "IRA TRADITIONAL"),
        ("Fun Account", "TAXABLE FUN"),
        ("brokerage   account", "BROKERAGE ACCOUNT"),
        ("Individual (Z123)", "INDIVIDUAL Z123"),
    ],
)
def test_canonical_account(raw, expected):
    assert canonical_account(raw) == expected


def test_broker_family_ignores_suffix_and_case():
    assert broker_family("Public (CSV)") == "PUBLIC"
    assert broker_family("public") == "PUBLIC"
    assert broker_family("Fidelity (PDF)") == broker_family("Fidelity")


def test_broker_labels():
    assert api_broker_label("Fidelity (CSV)") == "Fidelity"
    assert api_broker_label("Public") == "Public"
    assert canonical_broker_label("fidelity investments (csv)", "Fidelity") == "Fidelity (CSV)"
    assert canonical_broker_label("FIDELITY", "Fidelity") == "Fidelity"
    assert canonical_broker_label("Fidelity ( csv )", "Fidelity") == "Fidelity (CSV)"
    assert canonical_broker_label("Public (CSV)", "Fidelity") is None
    assert canonical_broker_label("", "Fidelity") is None


def test_num_key_rounds_to_cents():
    assert num_key(4.999) == "5.00"
    assert num_key(409.994) == "409.99"
    assert num_key(None) == ""


def test_exact_fingerprint_normalizes_inputs():
    a = exact_fingerprint("Roth IRA", "NFLX260417C82", "2025-01-02", 2, 410.001)
    b = exact_fingerprint("IRA ROTH", "NFLX 260417C00082000", "2025-01-02", 2.0, 410.0)
    assert a == b
    assert a != exact_fingerprint("IRA ROTH", "NFLX 260417C00082000", "2025-01-03", 2.0, 410.0)


def test_contract_fingerprint_uses_decimal_strike():
    assert contract_fingerprint("Roth", "NFLX260417C82") == "IRA ROTH|NFLX|260417|C|82"
    assert contract_fingerprint("Roth", "SPY250321P582.5") == "IRA ROTH|SPY|250321|P|582.5"
    assert contract_fingerprint("Roth", "aapl") == "IRA ROTH|AAPL"


def test_manual_keys():
    assert base_key("roth", "NFLX260417C82") == "IRA ROTH|NFLX 260417C00082000"
    assert manual_key("roth", "NFLX260417C82", "2025-01-02") == "IRA ROTH|NFLX 260417C00082000|2025-01-02"
    assert manual_loose_key("roth", "NFLX260417C82") == base_key("roth", "NFLX260417C82")
