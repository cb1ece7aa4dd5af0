from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from trade_journal.core.contracts import (
    base_key,
    broker_family,
    contract_fingerprint,
    exact_fingerprint,
    manual_key,
    manual_loose_key,
)
from trade_journal.core.schemas import ENGINE_FIELDS, LedgerRecord, ManualStrategyTags
from trade_journal.ledger.engine import with_manual

CLOSE_DATE_TOLERANCE_DAYS = 2


# ----------------------------
# Record keys
# ----------------------------
def record_base_key(r: LedgerRecord) -> str:
    return base_key(r.account, r.contract_key)


def record_fingerprint(r: LedgerRecord) -> str:
    return exact_fingerprint(r.account, r.contract_key, r.trade_date, r.qty, r.fill_price)


def record_contract_fingerprint(r: LedgerRecord) -> str:
    return contract_fingerprint(r.account, r.contract_key)


def episode_key(r: LedgerRecord) -> str:
    return f"{broker_family(r.broker)}|{record_base_key(r)}|{r.trade_date or ''}"


def days_between(a: Optional[str], b: Optional[str]) -> Optional[int]:
    if not a or not b:
        return None
    try:
        da = dt.date.fromisoformat(str(a)[:10])
        db = dt.date.fromisoformat(str(b)[:10])
    except ValueError:
        return None
    return abs((da - db).days)


# ----------------------------
# Manual strategy/tags carry-forward
# ----------------------------
def merge_manual(a: Optional[ManualStrategyTags], b: Optional[ManualStrategyTags]) -> Optional[ManualStrategyTags]:
    """First non-null strategy wins; tags are unioned in first-seen order."""
    if a is None:
        return b
    if b is None:
        return a
    tags = list(a.tags)
    for t in b.tags:
        if t not in tags:
            tags.append(t)
    return ManualStrategyTags(strategy=a.strategy or b.strategy, tags=tuple(tags))


@dataclass
class ManualIndex:
    exact: Dict[str, ManualStrategyTags] = field(default_factory=dict)
    loose: Dict[str, ManualStrategyTags] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.exact)

    def add(self, r: LedgerRecord) -> None:
        entry = ManualStrategyTags(strategy=r.strategy or None, tags=tuple(t for t in r.tags if t))
        if entry.is_empty():
            return
        ek = manual_key(r.account, r.contract_key, r.trade_date)
        lk = manual_loose_key(r.account, r.contract_key)
        self.exact[ek] = merge_manual(self.exact.get(ek), entry)  # type: ignore[assignment]
        self.loose[lk] = merge_manual(self.loose.get(lk), entry)  # type: ignore[assignment]

    def lookup(self, account: str, contract_key: str, open_date: Optional[str]) -> Optional[ManualStrategyTags]:
        """
        Exact (account, contract, open date) entry merged with the contract-level one.

        The contract-level entry is always merged, so tags set on one episode of a
        contract reach every episode of it after a rebuild; the exact entry's strategy
        still wins over the contract-level one.
        """
        hit = self.exact.get(manual_key(account, contract_key, open_date))
        loose = self.loose.get(manual_loose_key(account, contract_key))
        merged = merge_manual(hit, loose)
        if merged is None or merged.is_empty():
            return None
        return merged

    def apply(self, r: LedgerRecord) -> Tuple[LedgerRecord, bool]:
        m = self.lookup(r.account, r.contract_key, r.trade_date)
        if m is None:
            return r, False
        return with_manual(r, m.strategy, m.tags), True


def build_manual_index(records: Iterable[LedgerRecord]) -> ManualIndex:
    idx = ManualIndex()
    for r in records:
        idx.add(r)
    return idx


# ----------------------------
# Non-destructive sync
# ----------------------------
@dataclass
class SyncPlan:
    creates: List[LedgerRecord] = field(default_factory=list)
    updates: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    archives: List[str] = field(default_factory=list)
    skipped: int = 0
    duplicates: int = 0
    superseded: int = 0
    manual_carried: int = 0

    def counts(self) -> Dict[str, int]:
        return {
            "created": len(self.creates),
            "updated": len(self.updates),
            "archived": len(self.archives),
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "superseded": self.superseded,
            "manualCarried": self.manual_carried,
        }


@dataclass
class Supersession:
    """
    Candidate episodes a live-API broker already covers, and the earlier open dates
    those candidates would hand to the API rows.
    """
    episodes: Set[str] = field(default_factory=set)
    open_date_backfills: Dict[str, str] = field(default_factory=dict)


def diff_engine_fields(existing: LedgerRecord, candidate: LedgerRecord) -> Dict[str, Any]:
    """Engine-owned fields that differ. An earlier open date on the existing row is kept."""
    out: Dict[str, Any] = {}
    for name in ENGINE_FIELDS:
        new = getattr(candidate, name)
        old = getattr(existing, name)
        if new == old:
            continue
        if name == "trade_date" and old and new and old < new:
            continue
        out[name] = new
    return out


def plan_sync(
    candidates: Sequence[LedgerRecord],
    existing: Sequence[LedgerRecord],
    *,
    others: Sequence[LedgerRecord] = (),
    manual: Optional[ManualIndex] = None,
    supersession: Optional[Supersession] = None,
) -> SyncPlan:
    """
    Decide create / update / skip / archive for one source.

    `existing` are the live rows already written by this source. `others` may hold any
    rows; those under a different broker label suppress candidates with the same
    fingerprint. Candidates in `supersession` are never created.
    """
    plan = SyncPlan()

    live = [r for r in existing if not r.archived and r.id]
    by_episode: Dict[str, LedgerRecord] = {}
    for r in live:
        k = episode_key(r)
        if k in by_episode:
            plan.archives.append(str(r.id))
            continue
        by_episode[k] = r

    matched: Set[str] = set()
    unmatched: List[LedgerRecord] = []
    for c in candidates:
        hit = by_episode.get(episode_key(c))
        if hit is None:
            unmatched.append(c)
            continue
        matched.add(str(hit.id))
        _plan_update(plan, hit, c)

    # second pass: same contract, same close state, open date moved (e.g. backfilled)
    pending: List[LedgerRecord] = []
    for c in unmatched:
        hit = next(
            (
                r for r in by_episode.values()
                if str(r.id) not in matched
                and record_base_key(r) == record_base_key(c)
                and r.status == c.status
                and (r.close_date or "") == (c.close_date or "")
            ),
            None,
        )
        if hit is not None:
            matched.add(str(hit.id))
            _plan_update(plan, hit, c)
            continue
        pending.append(c)

    dupes = {c for c, _ in find_cross_source_duplicates(pending, others)}
    for c in pending:
        if c in dupes:
            plan.duplicates += 1
            continue
        if supersession is not None and episode_key(c) in supersession.episodes:
            plan.superseded += 1
            continue
        if manual is not None:
            c, carried = manual.apply(c)
            if carried:
                plan.manual_carried += 1
        plan.creates.append(c)

    if supersession is not None:
        for rid, d in supersession.open_date_backfills.items():
            plan.updates.append((rid, {"trade_date": d}))

    for r in by_episode.values():
        if str(r.id) not in matched:
            plan.archives.append(str(r.id))

    return plan


def _plan_update(plan: SyncPlan, existing: LedgerRecord, candidate: LedgerRecord) -> None:
    fields = diff_engine_fields(existing, candidate)
    if fields:
        plan.updates.append((str(existing.id), fields))
    else:
        plan.skipped += 1


def find_cross_source_duplicates(
    candidates: Sequence[LedgerRecord],
    others: Sequence[LedgerRecord],
) -> List[Tuple[LedgerRecord, LedgerRecord]]:
    """Pairs (candidate, other) that fingerprint to the same economic position under different labels."""
    by_fp: Dict[str, List[LedgerRecord]] = {}
    for r in others:
        if r.archived:
            continue
        by_fp.setdefault(record_fingerprint(r), []).append(r)
    out: List[Tuple[LedgerRecord, LedgerRecord]] = []
    for c in candidates:
        o = next((r for r in by_fp.get(record_fingerprint(c), []) if r.broker != c.broker), None)
        if o is not None:
            out.append((c, o))
    return out


# ----------------------------
# API vs CSV winner selection
# ----------------------------
def pick_closed_winner(api: LedgerRecord, csv: LedgerRecord) -> str:
    """
    "API" or "CSV".

    Larger qty wins (more lots captured), then the earlier open date (longer history),
    then the live API row.
    """
    if api.qty is not None and csv.qty is not None:
        if csv.qty > api.qty:
            return "CSV"
        if api.qty > csv.qty:
            return "API"
    if api.trade_date and csv.trade_date:
        if csv.trade_date < api.trade_date:
            return "CSV"
        if api.trade_date < csv.trade_date:
            return "API"
    return "API"


def close_dates_compatible(a: LedgerRecord, b: LedgerRecord, tolerance_days: int = CLOSE_DATE_TOLERANCE_DAYS) -> bool:
    if not a.close_date or not b.close_date:
        return True
    if a.close_date == b.close_date:
        return True
    d = days_between(a.close_date, b.close_date)
    return d is not None and d <= tolerance_days


@dataclass
class HybridPlan:
    archives: List[str] = field(default_factory=list)
    open_date_backfills: Dict[str, str] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)


def plan_hybrid_reconcile(
    records: Sequence[LedgerRecord],
    *,
    api_broker: str,
    csv_broker: str,
    cutoff: str,
    tolerance_days: int = CLOSE_DATE_TOLERANCE_DAYS,
) -> HybridPlan:
    """
    Collapse CSV-imported rows onto the live-API rows of the same broker.

    1) CSV OPEN that the API also holds OPEN -> archive CSV.
    2) any CSV row active on/after `cutoff` whose contract the API knows -> archive CSV.
    3) CLOSED pairs (close dates within tolerance) -> keep the more complete row.
    Earlier CSV open dates are always backfilled onto the surviving API row.
    """
    plan = HybridPlan()
    archived: Set[str] = set()
    open_dates: Dict[str, Optional[str]] = {}

    api_open: Dict[str, LedgerRecord] = {}
    api_closed: Dict[str, List[LedgerRecord]] = {}
    csv_open: List[LedgerRecord] = []
    csv_closed: Dict[str, List[LedgerRecord]] = {}
    csv_rows: List[LedgerRecord] = []

    api_keys: Set[str] = set()
    csv_keys: Set[str] = set()
    api_fps: Set[str] = set()
    csv_fps: Set[str] = set()

    for r in records:
        if r.archived or not r.id:
            continue
        k = record_base_key(r)
        fp = record_contract_fingerprint(r)
        if r.broker == api_broker:
            open_dates[str(r.id)] = r.trade_date
            api_keys.add(k)
            api_fps.add(fp)
            if r.status == "OPEN":
                api_open[k] = r
            else:
                api_closed.setdefault(k, []).append(r)
        elif r.broker == csv_broker:
            csv_rows.append(r)
            csv_keys.add(k)
            csv_fps.add(fp)
            if r.status == "OPEN":
                csv_open.append(r)
            else:
                csv_closed.setdefault(k, []).append(r)

    def _backfill(api: LedgerRecord, csv: LedgerRecord) -> None:
        cur = open_dates.get(str(api.id))
        if csv.trade_date and (not cur or csv.trade_date < cur):
            open_dates[str(api.id)] = csv.trade_date
            plan.open_date_backfills[str(api.id)] = csv.trade_date

    def _archive(r: LedgerRecord) -> None:
        rid = str(r.id)
        if rid not in archived:
            archived.add(rid)
            plan.archives.append(rid)

    overlap_open = 0
    for r in csv_open:
        api = api_open.get(record_base_key(r))
        if api is None:
            continue
        _backfill(api, r)
        _archive(r)
        overlap_open += 1

    def _after_cutoff(d: Optional[str]) -> bool:
        return bool(d and d >= cutoff)

    after_cutoff = 0
    for r in csv_rows:
        if str(r.id) in archived:
            continue
        if not (_after_cutoff(r.trade_date) or _after_cutoff(r.close_date)):
            continue
        k = record_base_key(r)
        if k not in api_keys:
            continue
        rep = api_open.get(k) or (api_closed.get(k) or [None])[0]
        if rep is not None:
            _backfill(rep, r)
        _archive(r)
        after_cutoff += 1

    closed_pairs = 0
    closed_archived_csv = 0
    closed_archived_api = 0
    for k, rows in csv_closed.items():
        api_rows = api_closed.get(k) or []
        if not api_rows:
            continue
        for csv in rows:
            if str(csv.id) in archived:
                continue
            candidates = [
                a for a in api_rows
                if str(a.id) not in archived and close_dates_compatible(csv, a, tolerance_days)
            ]
            if not candidates:
                continue
            closed_pairs += 1
            api = min(
                candidates,
                key=lambda a: days_between(csv.close_date, a.close_date) if csv.close_date and a.close_date else 0,
            )
            if pick_closed_winner(api, csv) == "API":
                _backfill(api, csv)
                _archive(csv)
                closed_archived_csv += 1
            else:
                if api.trade_date and (not csv.trade_date or api.trade_date < csv.trade_date):
                    plan.open_date_backfills[str(csv.id)] = api.trade_date
                _archive(api)
                closed_archived_api += 1

    # a backfill onto a row that ended up archived is moot
    for rid in list(plan.open_date_backfills):
        if rid in archived:
            del plan.open_date_backfills[rid]

    plan.counts = {
        "apiRows": sum(1 for r in records if r.broker == api_broker and not r.archived),
        "csvRows": len(csv_rows),
        "overlapOpen": overlap_open,
        "overlapClosedArchivedCsv": closed_archived_csv,
        "overlapClosedArchivedApi": closed_archived_api,
        "overlapClosedPairs": closed_pairs,
        "updatedApiOpenDates": len(plan.open_date_backfills),
        "archivedCsvAnyAfterCutoff": after_cutoff,
        "baseIntersection": len(csv_keys & api_keys),
        "fingerprintIntersection": len(csv_fps & api_fps),
    }
    return plan


def plan_supersession(
    candidates: Sequence[LedgerRecord],
    api_rows: Sequence[LedgerRecord],
    *,
    api_broker: str,
    csv_broker: str,
    cutoff: str,
    tolerance_days: int = CLOSE_DATE_TOLERANCE_DAYS,
) -> Supersession:
    """
    Candidates that plan_hybrid_reconcile would archive if they were written now.
    Keeps a sync of the lower-priority source from recreating rows the hybrid pass removes.
    """
    out = Supersession()
    if not api_rows:
        return out

    staged: Dict[str, LedgerRecord] = {}
    for i, c in enumerate(candidates):
        staged[f"candidate:{i}"] = replace(c, id=f"candidate:{i}", broker=csv_broker, archived=False)

    plan = plan_hybrid_reconcile(
        [r for r in api_rows if r.broker == api_broker] + list(staged.values()),
        api_broker=api_broker,
        csv_broker=csv_broker,
        cutoff=cutoff,
        tolerance_days=tolerance_days,
    )
    for rid in plan.archives:
        if rid in staged:
            out.episodes.add(episode_key(staged[rid]))
    out.open_date_backfills = {
        rid: d for rid, d in plan.open_date_backfills.items() if rid not in staged
    }
    return out


def plan_open_date_backfill(
    targets: Sequence[LedgerRecord],
    sources: Sequence[LedgerRecord],
) -> Dict[str, str]:
    """record id -> earliest open date seen in `sources` for the same account/contract."""
    earliest: Dict[str, str] = {}
    for r in sources:
        if r.archived or not r.trade_date:
            continue
        k = record_base_key(r)
        if k not in earliest or r.trade_date < earliest[k]:
            earliest[k] = r.trade_date

    out: Dict[str, str] = {}
    for t in targets:
        if t.archived or not t.id:
            continue
        d = earliest.get(record_base_key(t))
        if d and (not t.trade_date or d < t.trade_date):
            out[str(t.id)] = d
    return out
