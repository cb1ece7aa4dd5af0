from __future__ import annotations

import itertools
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

from trade_journal.core.schemas import LedgerRecord


# ----------------------------
# Errors
# ----------------------------
class StoreError(RuntimeError):
    def __init__(self, message: str, *, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code


class AlreadyArchivedError(StoreError):
    """Archive/update hit a record the store already tombstoned."""


# ----------------------------
# Filters
# ----------------------------
# Only these record fields are queryable.
FILTER_FIELDS = ("status", "broker", "row_type", "account", "contract_key", "ticker")


@dataclass(frozen=True)
class Eq:
    prop: str
    value: str


@dataclass(frozen=True)
class Contains:
    prop: str
    value: str


@dataclass(frozen=True)
class StartsWith:
    prop: str
    value: str


@dataclass(frozen=True)
class IsEmpty:
    prop: str


@dataclass(frozen=True)
class And:
    clauses: Tuple["LedgerFilter", ...]


@dataclass(frozen=True)
class Or:
    clauses: Tuple["LedgerFilter", ...]


LedgerFilter = Union[Eq, Contains, StartsWith, IsEmpty, And, Or]


def all_of(*clauses: LedgerFilter) -> And:
    return And(tuple(clauses))


def any_of(*clauses: LedgerFilter) -> Or:
    return Or(tuple(clauses))


def _check_prop(prop: str) -> None:
    if prop not in FILTER_FIELDS:
        raise ValueError(f"Unsupported filter property {prop!r} (allowed: {FILTER_FIELDS})")


def matches(r: LedgerRecord, flt: Optional[LedgerFilter]) -> bool:
    """Client-side evaluation, used by backends without server-side filtering."""
    if flt is None:
        return True
    if isinstance(flt, And):
        return all(matches(r, c) for c in flt.clauses)
    if isinstance(flt, Or):
        return any(matches(r, c) for c in flt.clauses)

    _check_prop(flt.prop)
    value = getattr(r, flt.prop)
    s = "" if value is None else str(value)
    if isinstance(flt, Eq):
        return s == flt.value
    if isinstance(flt, Contains):
        return flt.value in s
    if isinstance(flt, StartsWith):
        return s.startswith(flt.value)
    if isinstance(flt, IsEmpty):
        return s == ""
    raise TypeError(f"Unknown filter: {flt!r}")


# ----------------------------
# Protocol
# ----------------------------
class LedgerStore(Protocol):
    def query(self, flt: Optional[LedgerFilter] = None) -> Iterator[LedgerRecord]:
        ...

    def create(self, record: LedgerRecord) -> LedgerRecord:
        ...

    def update(self, record_id: str, changes: Dict[str, Any]) -> None:
        ...

    def archive(self, record_id: str) -> None:
        ...


_RECORD_FIELDS = {f.name for f in fields(LedgerRecord)}


def validate_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    bad = [k for k in changes if k not in _RECORD_FIELDS or k in ("id", "archived")]
    if bad:
        raise ValueError(f"Not updatable: {bad}")
    out = dict(changes)
    if "tags" in out:
        out["tags"] = tuple(out["tags"] or ())
    return out


def safe_archive(store: LedgerStore, record_id: str) -> bool:
    """Archive, treating an already-archived record as done. Returns True if this call archived it."""
    try:
        store.archive(record_id)
        return True
    except AlreadyArchivedError:
        return False


def safe_update(store: LedgerStore, record_id: str, changes: Dict[str, Any]) -> bool:
    try:
        store.update(record_id, changes)
        return True
    except AlreadyArchivedError:
        return False


# ----------------------------
# Common queries
# ----------------------------
def positions_for_broker(store: LedgerStore, broker: str) -> List[LedgerRecord]:
    return list(store.query(all_of(Eq("row_type", "Position"), Eq("broker", broker))))


def positions_for_brokers(store: LedgerStore, brokers: Sequence[str]) -> List[LedgerRecord]:
    if not brokers:
        return []
    return list(store.query(all_of(Eq("row_type", "Position"), any_of(*[Eq("broker", b) for b in brokers]))))


# ----------------------------
# In-memory backend
# ----------------------------
class InMemoryLedgerStore:
    """
    Dict-backed store with the same semantics as the remote ones: paginated
    listing, and archive of an archived record raises AlreadyArchivedError.
    """

    def __init__(self, records: Iterable[LedgerRecord] = (), *, page_size: int = 100):
        self.page_size = int(page_size)
        self._rows: Dict[str, LedgerRecord] = {}
        self._ids = itertools.count(1)
        self.calls: List[Tuple[str, str]] = []
        for r in records:
            self.create(r)

    def _next_id(self) -> str:
        return f"rec-{next(self._ids):05d}"

    def query_page(self, flt: Optional[LedgerFilter] = None, cursor: Optional[str] = None) -> Tuple[List[LedgerRecord], Optional[str]]:
        live = [r for r in self._rows.values() if not r.archived and matches(r, flt)]
        start = int(cursor or 0)
        page = live[start:start + self.page_size]
        nxt = start + self.page_size
        return page, (str(nxt) if nxt < len(live) else None)

    def query(self, flt: Optional[LedgerFilter] = None) -> Iterator[LedgerRecord]:
        cursor: Optional[str] = None
        while True:
            page, cursor = self.query_page(flt, cursor)
            yield from page
            if cursor is None:
                break

    def get(self, record_id: str) -> LedgerRecord:
        try:
            return self._rows[record_id]
        except KeyError:
            raise StoreError(f"Record not found: {record_id}", status=404, code="object_not_found") from None

    def create(self, record: LedgerRecord) -> LedgerRecord:
        rid = self._next_id()
        rec = replace(record, id=rid, archived=False, tags=tuple(record.tags))
        self._rows[rid] = rec
        self.calls.append(("create", rid))
        return rec

    def update(self, record_id: str, changes: Dict[str, Any]) -> None:
        cur = self.get(record_id)
        if cur.archived:
            raise AlreadyArchivedError(f"Can't edit block that is archived: {record_id}", status=400)
        self._rows[record_id] = replace(cur, **validate_changes(changes))
        self.calls.append(("update", record_id))

    def archive(self, record_id: str) -> None:
        cur = self.get(record_id)
        if cur.archived:
            raise AlreadyArchivedError(f"Record is already archived: {record_id}", status=400)
        self._rows[record_id] = replace(cur, archived=True)
        self.calls.append(("archive", record_id))

    def all_records(self, *, include_archived: bool = False) -> List[LedgerRecord]:
        return [r for r in self._rows.values() if include_archived or not r.archived]
