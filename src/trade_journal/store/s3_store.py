from __future__ import annotations

import json
import uuid
from dataclasses import asdict, fields, replace
from typing import Any, Dict, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from trade_journal.core.schemas import LedgerRecord
from trade_journal.store.ledger_store import (
    AlreadyArchivedError,
    LedgerFilter,
    StoreError,
    matches,
    validate_changes,
)

RECORDS_TABLE = "records"


# ----------------------------
# S3 helpers
# ----------------------------
def s3_client(region: str = "eu-west-1"):
    cfg = Config(region_name=region, retries={"max_attempts": 10, "mode": "adaptive"})
    return boto3.session.Session(region_name=region).client("s3", config=cfg)


def s3_put_json(s3, *, bucket: str, key: str, payload: dict) -> None:
    s3.put_object(
        Bucket=bucket,
        Key=key,
        Body=json.dumps(payload, indent=2).encode("utf-8"),
        ContentType="application/json",
    )


def s3_get_json(s3, *, bucket: str, key: str) -> dict:
    obj = s3.get_object(Bucket=bucket, Key=key)
    body = obj["Body"].read()
    return json.loads(body.decode("utf-8"))


def s3_list_keys(s3, *, bucket: str, prefix: str) -> list[str]:
    keys: list[str] = []
    token = None
    while True:
        kwargs = dict(Bucket=bucket, Prefix=prefix)
        if token:
            kwargs["ContinuationToken"] = token
        resp = s3.list_objects_v2(**kwargs)
        for it in resp.get("Contents", []):
            keys.append(it["Key"])
        if not resp.get("IsTruncated"):
            break
        token = resp.get("NextContinuationToken")
    return keys


def _s3_get_json_or_none(s3, *, bucket: str, key: str) -> Optional[dict]:
    try:
        return s3_get_json(s3, bucket=bucket, key=key)
    except ClientError as e:
        code = (e.response.get("Error") or {}).get("Code")
        if code in ("NoSuchKey", "404", "NotFound"):
            return None
        raise


_FIELD_NAMES = {f.name for f in fields(LedgerRecord)}


def record_from_payload(payload: Dict[str, Any]) -> LedgerRecord:
    values = {k: v for k, v in payload.items() if k in _FIELD_NAMES}
    values["tags"] = tuple(values.get("tags") or ())
    return LedgerRecord(**values)


# ----------------------------
# Store
# ----------------------------
class S3LedgerStore:
    """
    One JSON document per ledger row:
        <prefix>/records/<id>.json
    Archive flips `archived`; the document is kept as a tombstone.
    """

    def __init__(self, s3, *, bucket: str, prefix: str = "journal/v1"):
        self.s3 = s3
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, record_id: str) -> str:
        return f"{self.prefix}/{RECORDS_TABLE}/{record_id}.json"

    def _load(self, record_id: str) -> LedgerRecord:
        payload = _s3_get_json_or_none(self.s3, bucket=self.bucket, key=self._key(record_id))
        if payload is None:
            raise StoreError(f"Record not found: {record_id}", status=404, code="NoSuchKey")
        return record_from_payload(payload)

    def _save(self, rec: LedgerRecord) -> None:
        s3_put_json(self.s3, bucket=self.bucket, key=self._key(str(rec.id)), payload=asdict(rec))

    def query(self, flt: Optional[LedgerFilter] = None) -> Iterator[LedgerRecord]:
        keys = s3_list_keys(self.s3, bucket=self.bucket, prefix=f"{self.prefix}/{RECORDS_TABLE}/")
        for k in sorted(keys):
            if not k.endswith(".json"):
                continue
            payload = _s3_get_json_or_none(self.s3, bucket=self.bucket, key=k)
            if payload is None:
                continue
            rec = record_from_payload(payload)
            if not rec.archived and matches(rec, flt):
                yield rec

    def create(self, record: LedgerRecord) -> LedgerRecord:
        rec = replace(record, id=uuid.uuid4().hex, archived=False)
        self._save(rec)
        return rec

    def update(self, record_id: str, changes: Dict[str, Any]) -> None:
        cur = self._load(record_id)
        if cur.archived:
            raise AlreadyArchivedError(f"Record is archived: {record_id}", status=400)
        self._save(replace(cur, **validate_changes(changes)))

    def archive(self, record_id: str) -> None:
        cur = self._load(record_id)
        if cur.archived:
            raise AlreadyArchivedError(f"Record is already archived: {record_id}", status=400)
        self._save(replace(cur, archived=True))
