from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.core.schemas import LedgerRecord, SourceAccount, TradeEvent
from trade_journal.ledger.engine import QTY_EPS, _snap, build_ledger_records, round2, sort_events
from trade_journal.ledger.reconcile import build_manual_index, plan_sync
from trade_journal.operations.common import all_positions, apply_sync_plan, other_label_rows
from trade_journal.sources.snaptrade import SnapTradeClient, broker_label, orders_to_events
from trade_journal.store.ledger_store import Eq, LedgerStore

# (qty_remaining, unit_cost)
Lot = Tuple[float, float]


# ----------------------------
# Fetch
# ----------------------------
def fetch_account_events(
    client: SnapTradeClient,
    *,
    s: Settings = default_settings,
    days: Optional[int] = None,
) -> List[Tuple[SourceAccount, List[TradeEvent]]]:
    days = int(days or s.snaptrade_days)
    out: List[Tuple[SourceAccount, List[TradeEvent]]] = []
    for acc in client.list_accounts():
        orders = client.list_orders(acc.id, days=days)
        events = orders_to_events(
            orders,
            acc,
            tz=s.timezone,
            include_all=s.snaptrade_include_all,
            start_date=s.snaptrade_start_date,
        )
        print(f"[snaptrade] account={acc.name!r} brokerage={acc.brokerage!r} orders={len(orders)} usable={len(events)}")
        out.append((acc, events))
    return out


# ----------------------------
# Trade rows with FIFO realized P/L at fill
# ----------------------------
def fifo_realized(events: Iterable[TradeEvent]) -> Dict[str, Optional[float]]:
    """
    dedupe_key -> realized P/L for each SELL, matched first-in against prior BUY lots
    of the same account/contract. SELLs with nothing to match get None.
    """
    lots: Dict[str, Deque[Lot]] = {}
    out: Dict[str, Optional[float]] = {}
    for e in sort_events(events):
        q = lots.setdefault(f"{e.account}:{e.contract_key}", deque())
        if e.action == "BUY":
            q.append((float(e.qty), float(e.price)))
            continue

        remaining = float(e.qty)
        realized = 0.0
        matched = False
        while remaining > QTY_EPS and q:
            lot_qty, cost = q[0]
            used = min(lot_qty, remaining)
            realized += (float(e.price) - cost) * used * e.multiplier
            remaining = _snap(remaining - used)
            left = _snap(lot_qty - used)
            matched = True
            if left == 0.0:
                q.popleft()
            else:
                q[0] = (left, cost)
        out[e.dedupe_key] = round2(realized) if matched else None
    return out


def trade_record(e: TradeEvent, *, broker: str, pl: Optional[float]) -> LedgerRecord:
    return LedgerRecord(
        title=e.ticker,
        ticker=e.ticker,
        contract_key=e.contract_key,
        account=e.account,
        broker=broker,
        row_type="Trade",
        trade_type=e.trade_type,
        side=e.action,
        qty=round2(e.qty),
        fill_price=round2(e.price * e.multiplier),
        trade_date=e.date,
        trade_time=e.time,
        pl=pl,
        order_id=e.order_id,
        snaptrade_id=e.dedupe_key,
    )


def sync_orders(
    *,
    store: LedgerStore,
    client: SnapTradeClient,
    s: Settings = default_settings,
    days: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, int]:
    """Import filled orders as Trade rows; orders already journaled are skipped."""
    existing = list(store.query(Eq("row_type", "Trade")))
    seen = {r.snaptrade_id for r in existing if r.snaptrade_id} | {r.order_id for r in existing if r.order_id}

    counts = {"accounts": 0, "orders": 0, "created": 0, "skipped": 0}
    for acc, events in fetch_account_events(client, s=s, days=days):
        counts["accounts"] += 1
        counts["orders"] += len(events)
        realized = fifo_realized(events)
        label = broker_label(acc)
        for e in sort_events(events):
            if e.dedupe_key in seen or (e.order_id and e.order_id in seen):
                counts["skipped"] += 1
                continue
            rec = trade_record(e, broker=label, pl=realized.get(e.dedupe_key))
            if dry_run:
                print(f"[orders] DRY RUN would create {rec.side} {rec.qty} {rec.contract_key} @ {rec.fill_price} ({rec.trade_date})")
            else:
                store.create(rec)
            seen.add(e.dedupe_key)
            counts["created"] += 1
    return counts


# ----------------------------
# Position rows from orders
# ----------------------------
def rebuild_positions(
    *,
    store: LedgerStore,
    client: SnapTradeClient,
    s: Settings = default_settings,
    days: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, int]:
    """Replay API orders through the engine and sync Position rows per brokerage label."""
    by_label: Dict[str, List[TradeEvent]] = {}
    for acc, events in fetch_account_events(client, s=s, days=days):
        by_label.setdefault(broker_label(acc), []).extend(events)

    rows = all_positions(store)
    totals: Dict[str, int] = {"brokers": len(by_label), "events": 0, "positions": 0}
    for label, events in sorted(by_label.items()):
        records = build_ledger_records(events, broker=label, model="direction")
        existing = [r for r in rows if r.broker == label]
        plan = plan_sync(
            records,
            existing,
            others=other_label_rows(rows, label),
            manual=build_manual_index(existing),
        )
        print(f"[positions] broker={label!r} events={len(events)} positions={len(records)} plan={plan.counts()}")
        apply_sync_plan(store, plan, dry_run=dry_run, tag="positions")

        totals["events"] += len(events)
        totals["positions"] += len(records)
        for k, v in plan.counts().items():
            totals[k] = totals.get(k, 0) + v
    return totals
