from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.core.contracts import canonical_contract_key, trade_type_for
from trade_journal.core.schemas import LedgerRecord, PositionSnapshot, TradeEvent
from trade_journal.ledger.engine import OPENING_EFFECTS, round2, sort_events
from trade_journal.ledger.reconcile import SyncPlan
from trade_journal.operations.common import apply_sync_plan, today_iso
from trade_journal.operations.sync_orders import fetch_account_events
from trade_journal.sources import fidelity_positions
from trade_journal.sources.snaptrade import SnapTradeClient, broker_label, holdings_to_snapshots
from trade_journal.store.ledger_store import Eq, LedgerStore, all_of


def open_key(broker: str, account: str, contract_key: str) -> str:
    return f"{broker}|{account}|{canonical_contract_key(contract_key)}"


def _opening_side(e: TradeEvent) -> Optional[str]:
    """LONG/SHORT for an event that opens exposure, None for an explicit close."""
    if e.effect is not None and e.effect not in OPENING_EFFECTS:
        return None
    return "LONG" if e.action == "BUY" else "SHORT"


def opening_dates(events: Iterable[TradeEvent]) -> Dict[str, Tuple[str, Optional[str]]]:
    """account|contract|side -> (first opening date, last opening date if different)."""
    firsts: Dict[str, str] = {}
    lasts: Dict[str, str] = {}
    for e in sort_events(events):
        side = _opening_side(e)
        if side is None:
            continue
        k = f"{e.account}|{canonical_contract_key(e.contract_key)}|{side}"
        firsts.setdefault(k, e.date)
        lasts[k] = e.date
    return {k: (d, lasts[k] if lasts[k] != d else None) for k, d in firsts.items()}


def plan_open_reconcile(
    snapshots: Sequence[PositionSnapshot],
    existing_open: Sequence[LedgerRecord],
    *,
    broker: str,
    events: Iterable[TradeEvent] = (),
    today: str,
) -> SyncPlan:
    """
    Holdings are the truth for what is open right now: create missing OPEN rows,
    refresh qty/avg on matched ones, archive OPEN rows no longer held.
    """
    plan = SyncPlan()
    dates = opening_dates(events)

    by_key: Dict[str, LedgerRecord] = {}
    for r in existing_open:
        if r.archived or not r.id:
            continue
        k = open_key(r.broker, r.account, r.contract_key)
        if k in by_key:
            plan.archives.append(str(r.id))
            continue
        by_key[k] = r

    seen: set[str] = set()
    for snap in snapshots:
        k = open_key(broker, snap.account, snap.contract_key)
        if k in seen:
            continue
        seen.add(k)
        first, last_add = dates.get(f"{snap.account}|{canonical_contract_key(snap.contract_key)}|{snap.side}", (None, None))
        avg = round2(snap.average_price)

        hit = by_key.get(k)
        if hit is None:
            plan.creates.append(
                LedgerRecord(
                    title=snap.ticker,
                    ticker=snap.ticker,
                    contract_key=canonical_contract_key(snap.contract_key),
                    account=snap.account,
                    broker=broker,
                    row_type="Position",
                    status="OPEN",
                    trade_type=trade_type_for(snap.contract_key),
                    side=snap.side,
                    qty=round2(snap.units),
                    fill_price=avg,
                    trade_date=first or today,
                    last_add_date=last_add,
                )
            )
            continue

        changes: Dict[str, object] = {}
        if hit.qty != round2(snap.units):
            changes["qty"] = round2(snap.units)
        if avg is not None and hit.fill_price != avg:
            changes["fill_price"] = avg
        if hit.status != "OPEN":
            changes["status"] = "OPEN"
        if first and (not hit.trade_date or first < hit.trade_date):
            changes["trade_date"] = first
        if last_add and hit.last_add_date != last_add:
            changes["last_add_date"] = last_add
        if changes:
            plan.updates.append((str(hit.id), changes))
        else:
            plan.skipped += 1

    for k, r in by_key.items():
        if k not in seen:
            plan.archives.append(str(r.id))
    return plan


def _open_rows(store: LedgerStore, broker: str) -> List[LedgerRecord]:
    return list(store.query(all_of(Eq("row_type", "Position"), Eq("status", "OPEN"), Eq("broker", broker))))


def reconcile_open(
    *,
    store: LedgerStore,
    client: SnapTradeClient,
    s: Settings = default_settings,
    days: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, int]:
    """Align OPEN rows with live holdings, per brokerage reported by the aggregation API."""
    snaps_by_label: Dict[str, List[PositionSnapshot]] = {}
    events_by_label: Dict[str, List[TradeEvent]] = {}
    for acc, events in fetch_account_events(client, s=s, days=days):
        label = broker_label(acc)
        snaps = holdings_to_snapshots(acc, client.list_positions(acc.id), client.list_option_holdings(acc.id))
        snaps_by_label.setdefault(label, []).extend(snaps)
        events_by_label.setdefault(label, []).extend(events)

    today = today_iso(s.timezone)
    totals: Dict[str, int] = {"brokers": len(snaps_by_label), "holdings": 0}
    for label in sorted(snaps_by_label):
        plan = plan_open_reconcile(
            snaps_by_label[label],
            _open_rows(store, label),
            broker=label,
            events=events_by_label.get(label, []),
            today=today,
        )
        print(f"[open] broker={label!r} holdings={len(snaps_by_label[label])} plan={plan.counts()}")
        apply_sync_plan(store, plan, dry_run=dry_run, tag="open")
        totals["holdings"] += len(snaps_by_label[label])
        for k, v in plan.counts().items():
            totals[k] = totals.get(k, 0) + v
    return totals


def reconcile_open_from_files(
    files: Sequence[Path],
    *,
    store: LedgerStore,
    s: Settings = default_settings,
    dry_run: bool = False,
) -> Dict[str, int]:
    """Same alignment, driven by Fidelity 'Portfolio Positions' CSV snapshots."""
    snaps, parsed = fidelity_positions.parse_files(files)
    broker = fidelity_positions.BROKER
    plan = plan_open_reconcile(snaps, _open_rows(store, broker), broker=broker, today=today_iso(s.timezone))
    print(f"[open] broker={broker!r} files={len(files)} rows={parsed} holdings={len(snaps)} plan={plan.counts()}")
    apply_sync_plan(store, plan, dry_run=dry_run, tag="open")
    counts = {"files": len(files), "parsedRows": parsed, "holdings": len(snaps)}
    counts.update(plan.counts())
    return counts
