from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional

import pytest
import requests
from botocore.exceptions import ClientError

from trade_journal.config.config import ConfigError, Settings, assert_snaptrade_config, assert_weekly_review_config
from trade_journal.store.factory import open_ledger_store
from trade_journal.store.ledger_store import (
    AlreadyArchivedError,
    Contains,
    Eq,
    InMemoryLedgerStore,
    IsEmpty,
    StartsWith,
    StoreError,
    all_of,
    any_of,
    matches,
    positions_for_brokers,
    safe_archive,
)
from trade_journal.store.notion_store import NotionLedgerStore, filter_to_notion, page_to_record, record_to_properties
from trade_journal.store.s3_store import S3LedgerStore

from conftest import rec


# ----------------------------
# Filters
# ----------------------------
def test_filter_tree_matches():
    r = rec(broker="Public (CSV)", contract_key="NFLX260417C82")
    assert matches(r, all_of(Eq("row_type", "Position"), Eq("status", "OPEN")))
    assert matches(r, any_of(Eq("broker", "Fidelity"), StartsWith("broker", "Public")))
    assert matches(r, Contains("contract_key", "260417C"))
    assert not matches(r, IsEmpty("ticker"))
    assert not matches(r, Eq("status", "CLOSED"))


def test_filter_rejects_unknown_property():
    with pytest.raises(ValueError):
        matches(rec(), Eq("pl", "1"))


# ----------------------------
# In-memory store
# ----------------------------
def test_memory_store_paginates_and_hides_archived(store):
    created = [store.create(rec(contract_key=f"T{i}")) for i in range(7)]
    assert len(list(store.query())) == 7
    store.archive(created[0].id)
    assert len(list(store.query())) == 6
    assert len(store.all_records(include_archived=True)) == 7


def test_memory_store_double_archive(store):
    r = store.create(rec())
    store.archive(r.id)
    with pytest.raises(AlreadyArchivedError):
        store.archive(r.id)
    assert safe_archive(store, r.id) is False


def test_memory_store_update_validates_fields(store):
    r = store.create(rec())
    store.update(r.id, {"qty": 3.0, "tags": ["a"]})
    got = store.get(r.id)
    assert got.qty == 3.0
    assert got.tags == ("a",)
    with pytest.raises(ValueError):
        store.update(r.id, {"id": "x"})
    with pytest.raises(StoreError):
        store.update("missing", {"qty": 1.0})


def test_broker_helpers(store):
    store.create(rec(broker="Public (CSV)"))
    store.create(rec(broker="Public (PDF)"))
    store.create(rec(broker="Fidelity"))
    assert len(positions_for_brokers(store, ["Public (CSV)", "Fidelity"])) == 2
    assert positions_for_brokers(store, []) == []
    assert [r.broker for r in store.query(StartsWith("broker", "Public"))] == ["Public (CSV)", "Public (PDF)"]


# ----------------------------
# S3 store
# ----------------------------
class StubS3:
    def __init__(self, page_size: int = 2):
        self.objects: Dict[str, bytes] = {}
        self.page_size = page_size

    def put_object(self, *, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = Body

    def get_object(self, *, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def list_objects_v2(self, *, Bucket, Prefix, ContinuationToken=None):
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + self.page_size]
        nxt = start + self.page_size
        resp: Dict[str, Any] = {"Contents": [{"Key": k} for k in page], "IsTruncated": nxt < len(keys)}
        if nxt < len(keys):
            resp["NextContinuationToken"] = str(nxt)
        return resp


def test_s3_store_roundtrip_and_tombstone():
    s3 = StubS3()
    store = S3LedgerStore(s3, bucket="b", prefix="/journal/v1/")
    made = [store.create(rec(contract_key=c, tags=("x",))) for c in ("AAPL", "MSFT", "NVDA")]
    assert all(k.startswith("journal/v1/records/") for k in s3.objects)

    got = {r.contract_key: r for r in store.query()}
    assert set(got) == {"AAPL", "MSFT", "NVDA"}
    assert got["AAPL"].tags == ("x",)

    store.update(made[0].id, {"status": "CLOSED", "pl": 12.5})
    closed = list(store.query(Eq("status", "CLOSED")))
    assert [(r.contract_key, r.pl) for r in closed] == [("AAPL", 12.5)]

    store.archive(made[1].id)
    assert {r.contract_key for r in store.query()} == {"AAPL", "NVDA"}
    payload = json.loads(s3.objects[f"journal/v1/records/{made[1].id}.json"])
    assert payload["archived"] is True
    with pytest.raises(AlreadyArchivedError):
        store.archive(made[1].id)


def test_s3_store_missing_record():
    store = S3LedgerStore(StubS3(), bucket="b")
    with pytest.raises(StoreError):
        store.update("nope", {"qty": 1.0})


# ----------------------------
# Notion store
# ----------------------------
class FakeResponse:
    def __init__(self, status_code: int, body: dict):
        self.status_code = status_code
        self._body = body
        self.text = json.dumps(body)

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    def __init__(self, responses: List[FakeResponse]):
        self.responses = list(responses)
        self.calls: List[tuple[str, str, Optional[dict]]] = []

    def request(self, method, url, json=None, timeout=None):
        self.calls.append((method, url, json))
        return self.responses.pop(0)


def _page(pid: str, contract: str, status: str = "OPEN", archived: bool = False) -> dict:
    props = record_to_properties({
        "title": contract,
        "ticker": contract,
        "contract_key": contract,
        "account": "BROKERAGE ACCOUNT",
        "broker": "Public (CSV)",
        "row_type": "Position",
        "status": status,
        "qty": 2,
        "trade_date": "2025-01-02T10:00:00.000-05:00",
        "tags": ("swing",),
    })
    # responses carry the property type alongside the value
    for name, value in props.items():
        value["type"] = next(iter(k for k in value if k != "type"))
    return {"id": pid, "archived": archived, "properties": props}


def test_notion_page_to_record():
    r = page_to_record(_page("p1", "AAPL"))
    assert r.id == "p1"
    assert r.contract_key == "AAPL"
    assert r.qty == 2.0
    assert r.trade_date == "2025-01-02"
    assert r.tags == ("swing",)
    assert r.strategy is None


def test_notion_query_follows_cursor():
    session = FakeSession([
        FakeResponse(200, {"results": [_page("p1", "AAPL")], "has_more": True, "next_cursor": "c2"}),
        FakeResponse(200, {"results": [_page("p2", "MSFT"), _page("p3", "TSLA", archived=True)], "has_more": False}),
    ])
    store = NotionLedgerStore(session, database_id="db")
    got = list(store.query(Eq("status", "OPEN")))
    assert [r.id for r in got] == ["p1", "p2"]
    assert session.calls[0][2]["filter"] == {"property": "Status", "select": {"equals": "OPEN"}}
    assert session.calls[1][2]["start_cursor"] == "c2"


def test_notion_archive_conflict_is_benign():
    session = FakeSession([
        FakeResponse(400, {"code": "validation_error", "message": "Can't edit block that is archived."}),
        FakeResponse(401, {"code": "unauthorized", "message": "API token is invalid."}),
    ])
    store = NotionLedgerStore(session, database_id="db")
    assert safe_archive(store, "p1") is False
    with pytest.raises(StoreError) as exc:
        store.archive("p1")
    assert exc.value.status == 401
    assert not isinstance(exc.value, AlreadyArchivedError)


def test_notion_update_writes_typed_properties():
    session = FakeSession([FakeResponse(200, {"id": "p1"})])
    store = NotionLedgerStore(session, database_id="db")
    store.update("p1", {"close_date": "2025-02-01", "pl": 10.0, "last_add_date": None})
    method, url, body = session.calls[0]
    assert method == "PATCH"
    assert url.endswith("/pages/p1")
    assert body["properties"]["Close Date"] == {"date": {"start": "2025-02-01"}}
    assert body["properties"]["P/L at Close"] == {"number": 10.0}
    assert body["properties"]["Last Add Date"] == {"date": None}


def test_notion_create_child_page_posts_under_parent():
    session = FakeSession([FakeResponse(200, {"id": "review-1"})])
    store = NotionLedgerStore(session, database_id="db")
    blocks = [{"object": "block", "type": "paragraph", "paragraph": {"rich_text": []}}]
    assert store.create_child_page("parent-9", "Weekly Review - 2025-01-10", blocks) == "review-1"
    method, url, body = session.calls[0]
    assert (method, url.rsplit("/", 1)[-1]) == ("POST", "pages")
    assert body["parent"] == {"page_id": "parent-9"}
    assert body["properties"]["title"]["title"][0]["text"]["content"] == "Weekly Review - 2025-01-10"
    assert body["children"] == blocks


def test_filter_to_notion_skips_unsupported_clauses():
    flt = all_of(Eq("row_type", "Position"), StartsWith("broker", "Public"))
    assert filter_to_notion(flt) == {"property": "Row Type", "select": {"equals": "Position"}}
    assert filter_to_notion(any_of(Eq("broker", "A"), StartsWith("broker", "B"))) is None
    assert filter_to_notion(Contains("account", "ROTH")) == {"property": "Account", "rich_text": {"contains": "ROTH"}}


# ----------------------------
# Configuration
# ----------------------------
def test_store_config_lists_missing_vars():
    with pytest.raises(ConfigError) as exc:
        open_ledger_store(Settings(ledger_backend="notion", notion_token=None, notion_database_id=None))
    assert "NOTION_TOKEN" in str(exc.value)
    assert "NOTION_DATABASE_ID" in str(exc.value)

    with pytest.raises(ConfigError, match="S3_BUCKET"):
        open_ledger_store(Settings(ledger_backend="s3", bucket=None))

    with pytest.raises(ConfigError, match="LEDGER_BACKEND"):
        open_ledger_store(Settings(ledger_backend="sqlite"))


def test_memory_backend_needs_no_config():
    store = open_ledger_store(Settings(ledger_backend="memory"))
    assert isinstance(store, InMemoryLedgerStore)


def test_snaptrade_config_requires_all_credentials():
    s = Settings(
        snaptrade_client_id="cid",
        snaptrade_consumer_key=None,
        snaptrade_user_id="uid",
        snaptrade_user_secret=None,
    )
    with pytest.raises(ConfigError) as exc:
        assert_snaptrade_config(s)
    assert "SNAPTRADE_CONSUMER_KEY" in str(exc.value)
    assert "SNAPTRADE_USER_SECRET" in str(exc.value)
    assert "SNAPTRADE_CLIENT_ID" not in str(exc.value)


def test_weekly_review_config_requires_parent_page():
    with pytest.raises(ConfigError, match="NOTION_WEEKLY_REVIEWS_PAGE_ID"):
        assert_weekly_review_config(Settings(notion_token="t", notion_database_id="db", notion_weekly_reviews_page_id=None))
    assert_weekly_review_config(Settings(notion_token="t", notion_database_id="db", notion_weekly_reviews_page_id="p"))
