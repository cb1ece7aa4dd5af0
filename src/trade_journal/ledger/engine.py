from __future__ import annotations

import re
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from trade_journal.core.contracts import (
    canonical_account,
    canonical_contract_key,
    option_expiry_date,
)
from trade_journal.core.schemas import (
    EffectModel,
    LedgerRecord,
    PositionState,
    TradeEffect,
    TradeEvent,
)

# ----------------------------
# Numeric stability helpers
# ----------------------------
QTY_EPS = 1e-9


def _snap(x: float, eps: float = QTY_EPS) -> float:
    return 0.0 if abs(float(x)) < eps else float(x)


def round2(x: Optional[float]) -> Optional[float]:
    if x is None:
        return None
    return round(float(x) * 100.0) / 100.0


# ----------------------------
# Effect resolution
# ----------------------------
_EFFECT_ALIASES: Dict[str, TradeEffect] = {
    "BUY_TO_OPEN": "BUY_TO_OPEN",
    "BTO": "BUY_TO_OPEN",
    "SELL_TO_CLOSE": "SELL_TO_CLOSE",
    "STC": "SELL_TO_CLOSE",
    "SELL_TO_OPEN": "SELL_TO_OPEN",
    "STO": "SELL_TO_OPEN",
    "BUY_TO_CLOSE": "BUY_TO_CLOSE",
    "BTC": "BUY_TO_CLOSE",
    # aggregation-API spellings
    "BUY_OPEN": "BUY_TO_OPEN",
    "SELL_CLOSE": "SELL_TO_CLOSE",
    "SELL_OPEN": "SELL_TO_OPEN",
    "BUY_CLOSE": "BUY_TO_CLOSE",
}

_INVERSE_EFFECT: Dict[TradeEffect, TradeEffect] = {
    "BUY_TO_OPEN": "SELL_TO_CLOSE",
    "SELL_TO_CLOSE": "BUY_TO_OPEN",
    "SELL_TO_OPEN": "BUY_TO_CLOSE",
    "BUY_TO_CLOSE": "SELL_TO_OPEN",
}

OPENING_EFFECTS = frozenset({"BUY_TO_OPEN", "SELL_TO_OPEN"})
CLOSING_EFFECTS = frozenset({"SELL_TO_CLOSE", "BUY_TO_CLOSE"})


def _clean_code(raw: str) -> str:
    return re.sub(r"[\s\-]+", "_", str(raw or "").strip().upper())


def resolve_effect(raw_action: Optional[str]) -> Optional[TradeEffect]:
    """
    Map a broker action code onto an explicit open/close effect.

    "BUY_TO_OPEN"/"BTO"/"Buy to open" -> BUY_TO_OPEN, ...
    A CANCEL_ prefix inverts the mapped effect (a cancelled open is a close).
    Plain BUY/SELL carry no intent -> None.
    """
    code = _clean_code(raw_action or "")
    cancel = False
    if code.startswith("CANCEL_"):
        cancel = True
        code = code[len("CANCEL_"):]

    effect = _EFFECT_ALIASES.get(code)
    if effect is None:
        return None
    return _INVERSE_EFFECT[effect] if cancel else effect


def resolve_action(raw_action: Optional[str]) -> Optional[str]:
    """Literal direction of a broker action code, honoring CANCEL_ inversion."""
    code = _clean_code(raw_action or "")
    effect = resolve_effect(code)
    if effect is not None:
        return effect_action(effect)

    cancel = code.startswith("CANCEL_")
    if "BUY" in code:
        side = "BUY"
    elif "SELL" in code:
        side = "SELL"
    else:
        return None
    if cancel:
        side = "SELL" if side == "BUY" else "BUY"
    return side


def effect_action(effect: TradeEffect) -> str:
    return "BUY" if effect.startswith("BUY") else "SELL"


# ----------------------------
# Per-event mutations
# ----------------------------
def _add_to_side(p: PositionState, e: TradeEvent, qty: float, sign: int) -> None:
    """Open or extend exposure in direction `sign` (+1 long, -1 short)."""
    cur = abs(p.open_qty)
    new_qty = cur + qty
    p.avg_open_price = (cur * p.avg_open_price + qty * e.price) / new_qty if new_qty > 0 else 0.0

    if cur > QTY_EPS and p.open_date and e.date != p.open_date:
        p.last_add_date = e.date

    p.open_qty = sign * new_qty
    p.total_opened_qty += qty
    p.total_opened_notional += qty * e.price
    if p.side is None:
        p.side = "LONG" if sign > 0 else "SHORT"
    if not p.open_date:
        p.open_date = e.date
        p.open_time = e.time


def _close_against(p: PositionState, e: TradeEvent, qty: float) -> None:
    """Reduce current exposure by `qty` (caller guarantees qty <= |open_qty|)."""
    if p.open_qty > 0:
        p.realized_pl += (e.price - p.avg_open_price) * qty * e.multiplier
        p.open_qty -= qty
    else:
        p.realized_pl += (p.avg_open_price - e.price) * qty * e.multiplier
        p.open_qty += qty

    p.total_closed_qty += qty
    p.total_closed_notional += qty * e.price
    p.open_qty = _snap(p.open_qty)
    if p.open_qty == 0.0:
        p.avg_open_price = 0.0
        p.close_date = e.date
        p.close_time = e.time


def apply_direction(p: PositionState, e: TradeEvent) -> None:
    """BUY/SELL model: same-direction adds, opposite-direction closes, oversize flips."""
    sign = 1 if e.action == "BUY" else -1
    q = float(e.qty)

    if p.open_qty == 0.0 or (p.open_qty > 0) == (sign > 0):
        _add_to_side(p, e, q, sign)
        return

    closing = min(q, abs(p.open_qty))
    _close_against(p, e, closing)

    remainder = _snap(q - closing)
    if remainder > 0.0:
        # flip: the remainder is a fresh lot at this fill
        p.open_qty = sign * remainder
        p.avg_open_price = float(e.price)
        p.total_opened_qty += remainder
        p.total_opened_notional += remainder * e.price
        p.side = "LONG" if sign > 0 else "SHORT"
        p.open_date = e.date
        p.open_time = e.time
        p.close_date = None
        p.close_time = None


def apply_intent(p: PositionState, e: TradeEvent) -> None:
    """
    Explicit open/close model.

    BTO/STO open or add. STC/BTC close against the opposite side, capped at what is
    open; the excess is dropped, never flipped into a new lot.
    """
    effect = e.effect
    if effect in OPENING_EFFECTS:
        sign = 1 if effect == "BUY_TO_OPEN" else -1
        if p.open_qty != 0.0 and (p.open_qty > 0) != (sign > 0):
            # opposite side is open: net it like a plain BUY/SELL would
            apply_direction(p, e)
            return
        _add_to_side(p, e, float(e.qty), sign)
        return

    if effect == "SELL_TO_CLOSE":
        available = max(0.0, p.open_qty)
    else:
        available = max(0.0, -p.open_qty)
    closing = min(float(e.qty), available)
    if closing > QTY_EPS:
        _close_against(p, e, closing)


EffectResolver = Callable[[PositionState, TradeEvent], None]


def resolver_for(model: EffectModel, e: TradeEvent) -> EffectResolver:
    # stocks and effect-less option events always fall back to direction
    if model == "intent" and e.trade_type != "Stock" and e.effect is not None:
        return apply_intent
    return apply_direction


def apply_event(p: PositionState, e: TradeEvent, model: EffectModel = "direction") -> None:
    resolver_for(model, e)(p, e)


def is_closing_event(p: PositionState, e: TradeEvent, model: EffectModel = "direction") -> bool:
    if resolver_for(model, e) is apply_intent:
        return e.effect in CLOSING_EFFECTS
    if p.open_qty == 0.0:
        return False
    return (p.open_qty > 0) != (e.action == "BUY")


def is_flat(p: PositionState) -> bool:
    return abs(p.open_qty) < QTY_EPS


# ----------------------------
# Ordering
# ----------------------------
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AP]M)?$", re.IGNORECASE)


def time_sort_key(t: Optional[str]) -> int:
    """'9:41 AM' / '14:05' / '14:05:09' -> seconds since midnight; unknown sorts first."""
    m = _TIME_RE.match(str(t or "").strip())
    if not m:
        return -1
    hh, mm, ss, ampm = m.groups()
    h = int(hh) % 24
    if ampm:
        h = int(hh) % 12 + (12 if ampm.upper() == "PM" else 0)
    return h * 3600 + int(mm) * 60 + int(ss or 0)


def event_sort_key(e: TradeEvent) -> Tuple[str, int, str, int, str]:
    # opens before closes on the same timestamp
    open_pri = 1 if e.effect in CLOSING_EFFECTS else 0
    return (
        e.date,
        time_sort_key(e.time),
        f"{canonical_account(e.account)}|{canonical_contract_key(e.contract_key)}",
        open_pri,
        e.action,
    )


def sort_events(events: Iterable[TradeEvent]) -> List[TradeEvent]:
    return sorted(events, key=event_sort_key)


# ----------------------------
# Replay
# ----------------------------
def _new_state(e: TradeEvent) -> PositionState:
    return PositionState(
        account=canonical_account(e.account),
        contract_key=canonical_contract_key(e.contract_key),
        ticker=e.ticker,
        trade_type=e.trade_type,
        multiplier=int(e.multiplier),
    )


def _expiry_event(p: PositionState, expiry: str) -> TradeEvent:
    long_side = p.open_qty > 0
    return TradeEvent(
        account=p.account,
        date=expiry,
        action="SELL" if long_side else "BUY",
        effect="SELL_TO_CLOSE" if long_side else "BUY_TO_CLOSE",
        contract_key=p.contract_key,
        ticker=p.ticker,
        trade_type=p.trade_type,
        qty=abs(p.open_qty),
        price=0.0,
        multiplier=p.multiplier,
        dedupe_key=f"EXPIRED|{p.account}|{p.contract_key}|{expiry}",
    )


def replay_contract(
    events: Iterable[TradeEvent],
    *,
    model: EffectModel = "direction",
    expire_as_of: Optional[str] = None,
    close_cutoff: Optional[str] = None,
) -> List[PositionState]:
    """
    Replay one (account, contract) stream, splitting into episodes.

    A new PositionState starts when an event arrives after the previous episode went
    flat with a close date. Intra-event flips stay on the same accumulator.
    """
    episodes: List[PositionState] = []
    p: Optional[PositionState] = None

    for e in sort_events(events):
        if p is None:
            p = _new_state(e)
            episodes.append(p)
        elif is_flat(p) and p.close_date is not None and not is_closing_event(p, e, model):
            p = _new_state(e)
            episodes.append(p)

        if close_cutoff and e.date > close_cutoff and is_closing_event(p, e, model):
            continue
        apply_event(p, e, model)

    if expire_as_of and p is not None and not is_flat(p):
        expiry = option_expiry_date(p.contract_key)
        if expiry and expiry < expire_as_of:
            apply_event(p, _expiry_event(p, expiry), model)

    return episodes


def replay_positions(
    events: Iterable[TradeEvent],
    *,
    model: EffectModel = "direction",
    expire_as_of: Optional[str] = None,
    close_cutoff: Optional[str] = None,
) -> List[PositionState]:
    by_key: Dict[Tuple[str, str], List[TradeEvent]] = {}
    for e in events:
        k = (canonical_account(e.account), canonical_contract_key(e.contract_key))
        by_key.setdefault(k, []).append(e)

    out: List[PositionState] = []
    for k in sorted(by_key):
        out.extend(
            replay_contract(
                by_key[k],
                model=model,
                expire_as_of=expire_as_of,
                close_cutoff=close_cutoff,
            )
        )
    return out


def replay_lifetime(events: Iterable[TradeEvent], *, model: EffectModel = "direction") -> Optional[PositionState]:
    """One accumulator over every event of a contract; realized_pl is the lifetime total."""
    ordered = sort_events(events)
    if not ordered:
        return None
    p = _new_state(ordered[0])
    for e in ordered:
        apply_event(p, e, model)
    return p


# ----------------------------
# Display boundary
# ----------------------------
def position_status(p: PositionState) -> str:
    return "CLOSED" if is_flat(p) and p.close_date else "OPEN"


def to_ledger_record(p: PositionState, *, broker: str, account_label: Optional[str] = None) -> Optional[LedgerRecord]:
    """
    Display-scaled ledger row for one episode, or None for a degenerate one
    (closes seen without any recorded open).
    """
    if p.total_opened_qty <= 0 or not p.open_date:
        return None

    status = position_status(p)
    fill = p.total_opened_notional / p.total_opened_qty * p.multiplier
    close_price = None
    if status == "CLOSED" and p.total_closed_qty > 0:
        close_price = round2(p.total_closed_notional / p.total_closed_qty * p.multiplier)

    last_add = p.last_add_date if p.last_add_date and p.last_add_date != p.open_date else None

    return LedgerRecord(
        title=p.ticker,
        ticker=p.ticker,
        contract_key=p.contract_key,
        account=account_label or p.account,
        broker=broker,
        row_type="Position",
        status=status,  # type: ignore[arg-type]
        trade_type=p.trade_type,
        side=p.side,
        qty=round2(p.total_opened_qty),
        fill_price=round2(fill),
        trade_date=p.open_date,
        trade_time=p.open_time,
        last_add_date=last_add,
        close_date=p.close_date if status == "CLOSED" else None,
        close_time=p.close_time if status == "CLOSED" else None,
        close_price=close_price,
        pl=round2(p.realized_pl) if status == "CLOSED" else None,
    )


def build_ledger_records(
    events: Iterable[TradeEvent],
    *,
    broker: str,
    model: EffectModel = "direction",
    expire_as_of: Optional[str] = None,
    close_cutoff: Optional[str] = None,
) -> List[LedgerRecord]:
    states = replay_positions(events, model=model, expire_as_of=expire_as_of, close_cutoff=close_cutoff)
    out: List[LedgerRecord] = []
    for p in states:
        rec = to_ledger_record(p, broker=broker)
        if rec is not None:
            out.append(rec)
    return out


def with_manual(rec: LedgerRecord, strategy: Optional[str], tags: Iterable[str]) -> LedgerRecord:
    return replace(rec, strategy=strategy, tags=tuple(tags))
