from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import re
import time
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode, urlparse

import pandas as pd
import requests

from trade_journal.config.config import Settings, assert_snaptrade_config, settings as default_settings
from trade_journal.core.contracts import (
    canonical_account,
    canonical_contract_key,
    multiplier_for,
    normalize_ticker,
    ticker_from_contract_key,
    trade_type_for,
)
from trade_journal.core.schemas import PositionSnapshot, SourceAccount, TradeEvent
from trade_journal.ledger.engine import resolve_action, resolve_effect

SNAPTRADE_API = "https://api.snaptrade.com/api/v1"
FILLED_STATUSES = ("EXECUTED", "PARTIAL")
DEFAULT_ACCOUNT_NAME = "Brokerage Account"

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


class SnapTradeError(RuntimeError):
    pass


# ----------------------------
# Client
# ----------------------------
class SnapTradeClient:
    """
    Minimal signed REST client. Every request carries clientId/timestamp/userId/userSecret
    in the query and an HMAC-SHA256 Signature header over {content, path, query}.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        client_id: str,
        consumer_key: str,
        user_id: str,
        user_secret: str,
        base_url: str = SNAPTRADE_API,
        timeout: int = 30,
    ):
        self.session = session
        self.client_id = client_id
        self.consumer_key = consumer_key
        self.user_id = user_id
        self.user_secret = user_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _sign(self, path: str, query: str, body: Optional[dict]) -> str:
        sig_object = {"content": body, "path": path, "query": query}
        payload = json.dumps(sig_object, separators=(",", ":"), sort_keys=True)
        digest = hmac.new(self.consumer_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("utf-8")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = urlencode({
            "clientId": self.client_id,
            "timestamp": str(int(time.time())),
            "userId": self.user_id,
            "userSecret": self.user_secret,
            **(params or {}),
        })
        url = f"{self.base_url}{path}?{query}"
        sign_path = urlparse(self.base_url).path + path
        headers = {"Signature": self._sign(sign_path, query, None), "Accept": "application/json"}
        r = self.session.get(url, headers=headers, timeout=self.timeout)
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            raise SnapTradeError(f"SnapTrade GET {path} failed ({r.status_code}): {r.text[:300]}") from e
        return r.json()

    def list_accounts(self) -> List[SourceAccount]:
        data = self._get("/accounts") or []
        return [
            SourceAccount(
                id=str(a.get("id")),
                name=a.get("name"),
                number=a.get("number"),
                brokerage=a.get("institution_name") or a.get("brokerage"),
            )
            for a in data
        ]

    def list_orders(self, account_id: str, *, days: int) -> List[dict]:
        return list(self._get(f"/accounts/{account_id}/orders", {"state": "all", "days": int(days)}) or [])

    def list_positions(self, account_id: str) -> List[dict]:
        return list(self._get(f"/accounts/{account_id}/positions") or [])

    def list_option_holdings(self, account_id: str) -> List[dict]:
        return list(self._get(f"/accounts/{account_id}/options") or [])


# ----------------------------
# Orders -> events
# ----------------------------
def _num(x: Any) -> Optional[float]:
    if x is None or x == "":
        return None
    n = pd.to_numeric(x, errors="coerce")
    if pd.isna(n) or not math.isfinite(float(n)):
        return None
    return float(n)


def _dig(d: Any, *path: str) -> Any:
    for p in path:
        if not isinstance(d, dict):
            return None
        d = d.get(p)
    return d


def _clean_symbol(value: str) -> str:
    first = value.strip().split()[0] if value.strip() else ""
    return re.sub(r"[^A-Za-z0-9.\-]", "", first).upper()


def order_symbol_key(order: dict) -> Optional[str]:
    candidates = [
        _dig(order, "option_symbol", "underlying_symbol", "ticker"),
        _dig(order, "universal_symbol", "symbol"),
        _dig(order, "universal_symbol", "raw_symbol"),
        _dig(order, "option_symbol", "ticker"),
        order.get("symbol") if isinstance(order.get("symbol"), str) else None,
    ]
    candidates = [c for c in candidates if isinstance(c, str) and c]
    resolved = next((c for c in candidates if not _UUID_RE.match(c)), candidates[0] if candidates else None)

    raw = (
        _dig(order, "option_symbol", "ticker")
        or _dig(order, "universal_symbol", "raw_symbol")
        or _dig(order, "universal_symbol", "symbol")
        or (order.get("symbol") if isinstance(order.get("symbol"), str) else None)
        or resolved
    )
    if not raw:
        return None
    return canonical_contract_key(str(raw))


def local_date_time(ts: Optional[str], tz: str) -> tuple[Optional[str], Optional[str]]:
    """ISO timestamp -> ('YYYY-MM-DD', 'h:mm AM') in the journal timezone."""
    if not ts:
        return None, None
    t = pd.to_datetime(ts, errors="coerce", utc=True)
    if pd.isna(t):
        return None, None
    local = t.tz_convert(tz)
    h12 = local.hour % 12 or 12
    return local.date().isoformat(), f"{h12}:{local.minute:02d} {'PM' if local.hour >= 12 else 'AM'}"


def order_fill(order: dict) -> tuple[Optional[float], Optional[float]]:
    status = str(order.get("status") or "").upper()
    filled = status in FILLED_STATUSES
    units = _num(order.get("filled_quantity"))
    if units is None and filled:
        units = _num(order.get("total_quantity"))
    price = _num(order.get("execution_price"))
    if price is None and filled:
        price = _num(order.get("limit_price"))
    return units, price


def order_to_event(
    order: dict,
    account: SourceAccount,
    *,
    tz: str = "America/New_York",
    include_all: bool = False,
) -> Optional[TradeEvent]:
    status = str(order.get("status") or "").upper()
    if not include_all and status not in FILLED_STATUSES:
        return None

    action = resolve_action(order.get("action"))
    if action is None:
        return None

    units, price = order_fill(order)
    if units is None or units <= 0 or price is None or price < 0:
        return None

    key = order_symbol_key(order)
    if not key:
        return None

    date, tm = local_date_time(order.get("time_executed") or order.get("time_placed") or order.get("time_updated"), tz)
    if date is None:
        return None

    order_id = order.get("brokerage_order_id") or order.get("id")
    return TradeEvent(
        account=canonical_account(account.name or DEFAULT_ACCOUNT_NAME),
        date=date,
        time=tm,
        action=action,  # type: ignore[arg-type]
        effect=resolve_effect(order.get("action")) if trade_type_for(key) != "Stock" else None,
        contract_key=key,
        ticker=ticker_from_contract_key(key),
        trade_type=trade_type_for(key),
        qty=abs(units),
        price=price,
        multiplier=multiplier_for(key),
        dedupe_key=str(order_id or f"{account.id}|{date}|{action}|{key}|{units}|{price}"),
        order_id=str(order_id) if order_id else None,
    )


def orders_to_events(
    orders: Iterable[dict],
    account: SourceAccount,
    *,
    tz: str = "America/New_York",
    include_all: bool = False,
    start_date: Optional[str] = None,
) -> List[TradeEvent]:
    """Unique by brokerage order id; the API re-reports partially filled orders."""
    uniq: Dict[str, TradeEvent] = {}
    for o in orders:
        e = order_to_event(o, account, tz=tz, include_all=include_all)
        if e is None or (start_date and e.date < start_date):
            continue
        uniq.setdefault(e.dedupe_key, e)
    return list(uniq.values())


# ----------------------------
# Holdings -> snapshots
# ----------------------------
def _snapshot(account: SourceAccount, raw_key: Optional[str], ticker_hint: Optional[str], units: Any, avg: Any, price: Any) -> Optional[PositionSnapshot]:
    u = _num(units)
    if u is None or abs(u) <= 0 or not raw_key:
        return None
    key = canonical_contract_key(raw_key)
    if not key:
        return None
    ticker = _clean_symbol(ticker_hint or "") or ticker_from_contract_key(key)
    return PositionSnapshot(
        account=canonical_account(account.name or DEFAULT_ACCOUNT_NAME),
        contract_key=key,
        ticker=normalize_ticker(ticker),
        units=abs(u),
        average_price=_num(avg),
        price=_num(price),
        side="SHORT" if u < 0 else "LONG",
    )


def holdings_to_snapshots(account: SourceAccount, positions: Iterable[dict], options: Iterable[dict] = ()) -> List[PositionSnapshot]:
    """Equity + option holdings, one per contract; rows carrying an average price win."""
    out: List[PositionSnapshot] = []
    for p in positions:
        sym = p.get("symbol") or {}
        raw = _dig(sym, "symbol", "raw_symbol") or _dig(sym, "symbol", "symbol") or sym.get("local_id") or sym.get("description")
        s = _snapshot(account, raw, _dig(sym, "symbol", "symbol"), p.get("units") if p.get("units") is not None else p.get("fractional_units"), p.get("average_purchase_price"), p.get("price"))
        if s is not None:
            out.append(s)
    for p in options:
        sym = p.get("symbol") or {}
        raw = _dig(sym, "option_symbol", "ticker") or _dig(sym, "symbol", "raw_symbol") or _dig(sym, "symbol", "symbol") or sym.get("description")
        s = _snapshot(account, raw, _dig(sym, "option_symbol", "underlying_symbol", "ticker"), p.get("units"), p.get("average_purchase_price"), p.get("price"))
        if s is not None:
            out.append(s)

    merged: Dict[str, PositionSnapshot] = {}
    for s in out:
        k = f"{s.account}|{s.contract_key}"
        prev = merged.get(k)
        if prev is None or (prev.average_price is None and s.average_price is not None):
            merged[k] = s
    return list(merged.values())


def snaptrade_client(s: Settings = default_settings) -> SnapTradeClient:
    """Client from settings; raises ConfigError before any request when credentials are missing."""
    assert_snaptrade_config(s)
    return SnapTradeClient(
        requests.Session(),
        client_id=str(s.snaptrade_client_id),
        consumer_key=str(s.snaptrade_consumer_key),
        user_id=str(s.snaptrade_user_id),
        user_secret=str(s.snaptrade_user_secret),
    )


def broker_label(account: SourceAccount) -> str:
    return (account.brokerage or "SnapTrade").strip() or "SnapTrade"
