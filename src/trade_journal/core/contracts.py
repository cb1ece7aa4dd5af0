from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from trade_journal.core.schemas import TradeType

# ----------------------------
# Patterns
# ----------------------------
# TICKER + YYMMDD + C/P + strike (any scaling: "82", "82.5", "00082000")
_OPTION_LOOSE_RE = re.compile(r"^([A-Z.\-]+)(\d{6})([CP])([0-9.]+)$")
_OPTION_CANON_RE = re.compile(r"^([A-Z.\-]+) (\d{6})([CP])(\d{8})$")
_TICKER_STRIP_RE = re.compile(r"[^A-Z0-9.\-]")
_BROKER_SUFFIX_RE = re.compile(r"\s*\(.*\)\s*$")
_BROKER_SUFFIX_TEXT_RE = re.compile(r"\(\s*([^)]*?)\s*\)\s*$")

OPTION_MULTIPLIER = 100


@dataclass(frozen=True)
class OptionParts:
    ticker: str
    yymmdd: str
    cp: str             # "C" or "P"
    strike: float       # dollars


# ----------------------------
# Identifiers
# ----------------------------
def normalize_ticker(value: Optional[str]) -> str:
    return _TICKER_STRIP_RE.sub("", str(value or "").strip().upper())


def canonical_account(value: Optional[str]) -> str:
    upper = str(value or "").strip().upper()
    # historical naming variants of the same account collapse onto one label
    if "FUN" in upper:
        return "TAXABLE FUN"
    if "ROTH" in upper:
        return "IRA ROTH"
    if "TRADITIONAL" in upper or "TRAD" in upper:
        return "IRA TRADITIONAL"
    upper = upper.replace("(", " ").replace(")", " ")
    return " ".join(upper.split())


def _strike_digits(raw: str) -> str:
    if "." in raw:
        try:
            digits = str(int(round(float(raw) * 1000)))
        except ValueError:
            digits = raw
    elif len(raw) <= 3:
        # shorthand whole-dollar strike: "C82" means 82.000
        digits = f"{raw}000"
    else:
        digits = raw

    digits = re.sub(r"\D", "", digits)
    if len(digits) < 8:
        digits = digits.zfill(8)
    if len(digits) > 8:
        digits = digits[-8:]
    return digits


def canonical_contract_key(value: Optional[str]) -> str:
    """
    Canonical instrument identifier.

    Options:  "NFLX260417C82", "-NFLX 260417C00082000", "nflx 260417c82.0"
              -> "NFLX 260417C00082000"
    Equities: bare uppercase ticker with whitespace removed.
    """
    s = str(value or "").strip()
    if s[:1] in ("-", "+"):
        s = s[1:]
    compact = "".join(s.split()).upper()
    if not compact:
        return ""

    m = _OPTION_LOOSE_RE.match(compact)
    if not m:
        return compact

    ticker, yymmdd, cp, strike_raw = m.groups()
    return f"{ticker} {yymmdd}{cp}{_strike_digits(strike_raw)}"


def option_contract_key(
    ticker: str,
    *,
    year: int,
    month: int,
    day: int,
    cp: str,
    strike: float,
) -> str:
    cp = str(cp).strip().upper()[:1]
    if cp not in ("C", "P"):
        raise ValueError(f"call/put must be C or P (got {cp!r})")
    yy = int(year) % 100
    strike8 = str(int(round(float(strike) * 1000))).zfill(8)[-8:]
    return f"{normalize_ticker(ticker)} {yy:02d}{int(month):02d}{int(day):02d}{cp}{strike8}"


def parse_option_key(value: Optional[str]) -> Optional[OptionParts]:
    key = canonical_contract_key(value)
    m = _OPTION_CANON_RE.match(key)
    if not m:
        return None
    ticker, yymmdd, cp, strike8 = m.groups()
    return OptionParts(ticker=ticker, yymmdd=yymmdd, cp=cp, strike=int(strike8) / 1000.0)


def is_option_key(value: Optional[str]) -> bool:
    return parse_option_key(value) is not None


def option_expiry_date(value: Optional[str]) -> Optional[str]:
    parts = parse_option_key(value)
    if parts is None:
        return None
    yy, mm, dd = parts.yymmdd[:2], parts.yymmdd[2:4], parts.yymmdd[4:]
    return f"20{yy}-{mm}-{dd}"


def ticker_from_contract_key(value: Optional[str]) -> str:
    parts = parse_option_key(value)
    if parts is not None:
        return parts.ticker
    return canonical_contract_key(value)


def trade_type_for(value: Optional[str]) -> TradeType:
    parts = parse_option_key(value)
    if parts is None:
        return "Stock"
    return "Call" if parts.cp == "C" else "Put"


def multiplier_for(value: Optional[str]) -> int:
    return OPTION_MULTIPLIER if is_option_key(value) else 1


def broker_family(label: Optional[str]) -> str:
    """'Public (CSV)', 'public', 'PUBLIC (PDF)' -> 'PUBLIC'."""
    return _BROKER_SUFFIX_RE.sub("", str(label or "").strip()).upper()


def api_broker_label(label: Optional[str]) -> str:
    """'Fidelity (CSV)' -> 'Fidelity': the live-API label of the same broker, case kept."""
    return _BROKER_SUFFIX_RE.sub("", str(label or "").strip())


def canonical_broker_label(label: Optional[str], family: str) -> Optional[str]:
    """
    'fidelity investments (csv)' -> 'Fidelity (CSV)' for family 'Fidelity'.
    None when the label belongs to another broker.
    """
    raw = str(label or "").strip()
    words = api_broker_label(raw).upper().split()
    if not words or words[0] != family.upper():
        return None
    m = _BROKER_SUFFIX_TEXT_RE.search(raw)
    suffix = m.group(1).upper() if m else ""
    return f"{family} ({suffix})" if suffix else family


# ----------------------------
# Comparison keys
# ----------------------------
def num_key(x: Optional[float]) -> str:
    if x is None:
        return ""
    return f"{round(float(x), 2):.2f}"


def base_key(account: Optional[str], contract_key: Optional[str]) -> str:
    return f"{canonical_account(account)}|{canonical_contract_key(contract_key)}"


def exact_fingerprint(
    account: Optional[str],
    contract_key: Optional[str],
    open_date: Optional[str],
    qty: Optional[float],
    fill_price: Optional[float],
) -> str:
    """Same economic position regardless of which source (or broker label) produced it."""
    return "|".join([
        canonical_contract_key(contract_key),
        canonical_account(account),
        str(open_date or ""),
        num_key(qty),
        num_key(fill_price),
    ])


def contract_fingerprint(account: Optional[str], contract_key: Optional[str]) -> str:
    """Looser match: survives strike formatting differences ("82" vs "82.5" vs 8-digit)."""
    acct = canonical_account(account)
    parts = parse_option_key(contract_key)
    if parts is None:
        return f"{acct}|{canonical_contract_key(contract_key)}"
    return f"{acct}|{parts.ticker}|{parts.yymmdd}|{parts.cp}|{_strike_text(parts.strike)}"


def _strike_text(strike: float) -> str:
    # 82.0 -> "82", 82.5 -> "82.5"
    return f"{strike:.3f}".rstrip("0").rstrip(".")


def manual_key(account: Optional[str], contract_key: Optional[str], open_date: Optional[str]) -> str:
    return f"{base_key(account, contract_key)}|{open_date or ''}"


def manual_loose_key(account: Optional[str], contract_key: Optional[str]) -> str:
    return base_key(account, contract_key)
