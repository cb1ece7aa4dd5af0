from __future__ import annotations

from trade_journal.config.config import Settings, assert_store_config, settings as default_settings
from trade_journal.store.ledger_store import InMemoryLedgerStore, LedgerStore
from trade_journal.store.notion_store import NotionLedgerStore, notion_session
from trade_journal.store.s3_store import S3LedgerStore, s3_client


def open_ledger_store(s: Settings = default_settings) -> LedgerStore:
    """Build the configured backend. Raises ConfigError before any I/O."""
    assert_store_config(s)
    backend = s.ledger_backend.lower()
    if backend == "notion":
        session = notion_session(str(s.notion_token), notion_version=s.notion_version)
        return NotionLedgerStore(session, database_id=str(s.notion_database_id))
    if backend == "s3":
        return S3LedgerStore(s3_client(s.aws_region), bucket=str(s.bucket), prefix=s.ledger_prefix)
    return InMemoryLedgerStore()


def open_notion_store(s: Settings = default_settings) -> NotionLedgerStore:
    """The Notion backend regardless of LEDGER_BACKEND; used for pages outside the ledger."""
    return NotionLedgerStore(
        notion_session(str(s.notion_token), notion_version=s.notion_version),
        database_id=str(s.notion_database_id),
    )
