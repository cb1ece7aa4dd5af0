from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from trade_journal.core.schemas import LedgerRecord
from trade_journal.store.ledger_store import (
    And,
    AlreadyArchivedError,
    Contains,
    Eq,
    IsEmpty,
    LedgerFilter,
    Or,
    StartsWith,
    StoreError,
    matches,
    validate_changes,
)

NOTION_API = "https://api.notion.com/v1"
PAGE_SIZE = 100

# record field -> (Notion property name, Notion property type)
PROPERTIES: Dict[str, Tuple[str, str]] = {
    "title": ("Name", "title"),
    "row_type": ("Row Type", "select"),
    "ticker": ("Ticker", "rich_text"),
    "qty": ("Qty", "number"),
    "fill_price": ("Fill Price", "number"),
    "trade_date": ("Trade Date", "date"),
    "trade_time": ("Trade Time", "rich_text"),
    "close_date": ("Close Date", "date"),
    "close_time": ("Close Time", "rich_text"),
    "close_price": ("Close Price", "number"),
    "contract_key": ("Contract Key", "rich_text"),
    "status": ("Status", "select"),
    "strategy": ("Strategy", "select"),
    "tags": ("Tags", "multi_select"),
    "broker": ("Broker", "select"),
    "account": ("Account", "rich_text"),
    "pl": ("P/L at Close", "number"),
    "trade_type": ("Trade Type", "select"),
    "side": ("Side", "select"),
    "last_add_date": ("Last Add Date", "date"),
    "order_id": ("Order ID", "rich_text"),
    "snaptrade_id": ("SnapTrade ID", "rich_text"),
}

_STRING_FIELDS = {"ticker", "contract_key", "account", "title", "broker"}


def notion_session(token: str, *, notion_version: str = "2022-06-28") -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "Authorization": f"Bearer {token}",
        "Notion-Version": notion_version,
        "Content-Type": "application/json",
    })
    return s


# ----------------------------
# Typed property accessors
# ----------------------------
def _plain(runs: Optional[List[dict]]) -> str:
    return "".join(str(t.get("plain_text") or (t.get("text") or {}).get("content") or "") for t in (runs or [])).strip()


def read_property(page: dict, name: str, kind: str) -> Any:
    prop = (page.get("properties") or {}).get(name)
    if not prop or prop.get("type") != kind:
        return None
    if kind == "title":
        return _plain(prop.get("title"))
    if kind == "rich_text":
        return _plain(prop.get("rich_text"))
    if kind == "number":
        return prop.get("number")
    if kind == "select":
        return (prop.get("select") or {}).get("name")
    if kind == "multi_select":
        return tuple(o.get("name") for o in (prop.get("multi_select") or []) if o.get("name"))
    if kind == "date":
        return (prop.get("date") or {}).get("start")
    raise ValueError(f"Unsupported property type: {kind}")


def write_property(kind: str, value: Any) -> dict:
    if kind == "title":
        return {"title": [{"text": {"content": str(value or "")}}]}
    if kind == "rich_text":
        return {"rich_text": [] if not value else [{"text": {"content": str(value)}}]}
    if kind == "number":
        return {"number": None if value is None else float(value)}
    if kind == "select":
        return {"select": None if not value else {"name": str(value)}}
    if kind == "multi_select":
        return {"multi_select": [{"name": str(t)} for t in (value or ())]}
    if kind == "date":
        return {"date": None if not value else {"start": str(value)}}
    raise ValueError(f"Unsupported property type: {kind}")


def page_to_record(page: dict) -> LedgerRecord:
    values: Dict[str, Any] = {}
    for field_name, (prop, kind) in PROPERTIES.items():
        v = read_property(page, prop, kind)
        if field_name in _STRING_FIELDS:
            v = v or ""
        elif field_name == "tags":
            v = v or ()
        elif field_name == "row_type":
            v = v or "Position"
        elif v == "":
            v = None
        values[field_name] = v
    # date properties may carry a time component
    for d in ("trade_date", "close_date", "last_add_date"):
        if values.get(d):
            values[d] = str(values[d])[:10]
    return LedgerRecord(**values, id=page.get("id"), archived=bool(page.get("archived") or page.get("in_trash")))


def record_to_properties(fields: Dict[str, Any]) -> dict:
    props: Dict[str, Any] = {}
    for field_name, value in fields.items():
        if field_name not in PROPERTIES:
            continue
        prop, kind = PROPERTIES[field_name]
        props[prop] = write_property(kind, value)
    return props


def _record_fields(r: LedgerRecord) -> Dict[str, Any]:
    return {k: getattr(r, k) for k in PROPERTIES}


# ----------------------------
# Filters
# ----------------------------
def filter_to_notion(flt: Optional[LedgerFilter]) -> Optional[dict]:
    """
    Server-side filter, or None where Notion can't express it (select has no
    starts_with). Results are always re-checked client-side.
    """
    if flt is None:
        return None
    if isinstance(flt, And):
        parts = [p for p in (filter_to_notion(c) for c in flt.clauses) if p is not None]
        if not parts:
            return None
        return parts[0] if len(parts) == 1 else {"and": parts}
    if isinstance(flt, Or):
        parts = [filter_to_notion(c) for c in flt.clauses]
        if any(p is None for p in parts):
            return None
        return parts[0] if len(parts) == 1 else {"or": parts}

    prop, kind = PROPERTIES[flt.prop]
    if isinstance(flt, IsEmpty):
        return {"property": prop, kind: {"is_empty": True}}
    if isinstance(flt, Eq):
        return {"property": prop, kind: {"equals": flt.value}}
    if kind in ("rich_text", "title"):
        if isinstance(flt, Contains):
            return {"property": prop, kind: {"contains": flt.value}}
        if isinstance(flt, StartsWith):
            return {"property": prop, kind: {"starts_with": flt.value}}
    return None


# ----------------------------
# Store
# ----------------------------
class NotionLedgerStore:
    """Ledger rows as pages of one Notion database. The HTTP session is injected."""

    def __init__(self, session: requests.Session, *, database_id: str, base_url: str = NOTION_API, timeout: int = 30):
        self.session = session
        self.database_id = database_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        r = self.session.request(method, f"{self.base_url}/{path.lstrip('/')}", json=payload, timeout=self.timeout)
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            try:
                body = r.json()
            except ValueError:
                body = {}
            message = str(body.get("message") or r.text or e)
            code = body.get("code")
            if r.status_code == 400 and "archived" in message.lower():
                raise AlreadyArchivedError(message, status=r.status_code, code=code) from e
            raise StoreError(f"Notion {method} {path} failed ({r.status_code}): {message}", status=r.status_code, code=code) from e
        return r.json()

    def query(self, flt: Optional[LedgerFilter] = None) -> Iterator[LedgerRecord]:
        server_filter = filter_to_notion(flt)
        cursor: Optional[str] = None
        while True:
            payload: Dict[str, Any] = {"page_size": PAGE_SIZE}
            if server_filter is not None:
                payload["filter"] = server_filter
            if cursor:
                payload["start_cursor"] = cursor
            resp = self._request("POST", f"databases/{self.database_id}/query", payload)
            for page in resp.get("results") or []:
                rec = page_to_record(page)
                if not rec.archived and matches(rec, flt):
                    yield rec
            if not resp.get("has_more"):
                break
            cursor = resp.get("next_cursor")
            if not cursor:
                break

    def create(self, record: LedgerRecord) -> LedgerRecord:
        fields = {k: v for k, v in _record_fields(record).items() if v not in (None, "", ())}
        payload = {
            "parent": {"database_id": self.database_id},
            "properties": record_to_properties(fields),
        }
        page = self._request("POST", "pages", payload)
        return page_to_record(page) if page.get("properties") else LedgerRecord(**_record_fields(record), id=page.get("id"))

    def update(self, record_id: str, changes: Dict[str, Any]) -> None:
        props = record_to_properties(validate_changes(changes))
        if not props:
            return
        self._request("PATCH", f"pages/{record_id}", {"properties": props})

    def archive(self, record_id: str) -> None:
        self._request("PATCH", f"pages/{record_id}", {"archived": True})

    def create_child_page(self, parent_page_id: str, title: str, children: List[dict]) -> str:
        """Plain page under `parent_page_id` (outside the ledger database). Returns the new page id."""
        payload = {
            "parent": {"page_id": parent_page_id},
            "properties": {"title": {"title": [{"type": "text", "text": {"content": title}}]}},
            "children": children,
        }
        page = self._request("POST", "pages", payload)
        return str(page.get("id") or "")
