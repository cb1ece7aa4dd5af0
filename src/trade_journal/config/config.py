from dataclasses import dataclass
import os

from dotenv import load_dotenv

load_dotenv()


class ConfigError(RuntimeError):
    pass


def _clean(name: str, default: str | None = None) -> str | None:
    v = (os.getenv(name) or "").strip()
    return v or default


@dataclass(frozen=True)
class Settings:
    # Ledger backend: notion | s3 | memory
    ledger_backend: str = _clean("LEDGER_BACKEND", "notion")

    # Notion
    notion_token: str | None = _clean("NOTION_TOKEN")
    notion_database_id: str | None = _clean("NOTION_DATABASE_ID")
    notion_version: str = _clean("NOTION_VERSION", "2022-06-28")
    timezone: str = _clean("NOTION_TIMEZONE", "America/New_York")
    notion_weekly_reviews_page_id: str | None = _clean("NOTION_WEEKLY_REVIEWS_PAGE_ID")

    # S3
    aws_region: str = _clean("AWS_REGION", "eu-west-1")
    bucket: str | None = _clean("S3_BUCKET")
    ledger_prefix: str = _clean("LEDGER_PREFIX", "journal/v1")

    # SnapTrade
    snaptrade_client_id: str | None = _clean("SNAPTRADE_CLIENT_ID")
    snaptrade_consumer_key: str | None = _clean("SNAPTRADE_CONSUMER_KEY")
    snaptrade_user_id: str | None = _clean("SNAPTRADE_USER_ID")
    snaptrade_user_secret: str | None = _clean("SNAPTRADE_USER_SECRET")
    snaptrade_days: int = int(_clean("SNAPTRADE_DAYS", "30"))
    snaptrade_start_date: str | None = _clean("SNAPTRADE_START_DATE")
    snaptrade_include_all: bool = _clean("SNAPTRADE_INCLUDE_ALL", "0") == "1"

    # File importers
    fidelity_csv_cutoff_date: str = _clean("FIDELITY_CSV_CUTOFF_DATE", "2026-01-01")
    public_close_cutoff_date: str | None = _clean("PUBLIC_CLOSE_CUTOFF_DATE")
    robinhood_start_date: str = _clean("ROBINHOOD_START_DATE", "2025-01-01")
    robinhood_pl_tolerance: float = float(_clean("ROBINHOOD_PL_TOLERANCE", "1"))

    # Freshness check
    freshness_threshold_hours: float = float(_clean("FRESHNESS_THRESHOLD_HOURS", "24"))
    freshness_lookback_days: int = int(_clean("FRESHNESS_LOOKBACK_DAYS", "30"))


settings = Settings()


def assert_store_config(s: Settings = settings) -> None:
    missing: list[str] = []
    backend = (s.ledger_backend or "").lower()
    if backend == "notion":
        if not s.notion_token:
            missing.append("NOTION_TOKEN")
        if not s.notion_database_id:
            missing.append("NOTION_DATABASE_ID")
    elif backend == "s3":
        if not s.bucket:
            missing.append("S3_BUCKET")
    elif backend != "memory":
        raise ConfigError(f"LEDGER_BACKEND must be notion, s3 or memory (got {s.ledger_backend!r})")

    if missing:
        raise ConfigError(f"Missing required env vars for ledger store: {', '.join(missing)}")


def assert_snaptrade_config(s: Settings = settings) -> None:
    missing = [
        name
        for name, value in (
            ("SNAPTRADE_CLIENT_ID", s.snaptrade_client_id),
            ("SNAPTRADE_CONSUMER_KEY", s.snaptrade_consumer_key),
            ("SNAPTRADE_USER_ID", s.snaptrade_user_id),
            ("SNAPTRADE_USER_SECRET", s.snaptrade_user_secret),
        )
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing required env vars for SnapTrade: {', '.join(missing)}")


def assert_weekly_review_config(s: Settings = settings) -> None:
    missing = [
        name
        for name, value in (
            ("NOTION_TOKEN", s.notion_token),
            ("NOTION_DATABASE_ID", s.notion_database_id),
            ("NOTION_WEEKLY_REVIEWS_PAGE_ID", s.notion_weekly_reviews_page_id),
        )
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing required env vars for weekly review: {', '.join(missing)}")
