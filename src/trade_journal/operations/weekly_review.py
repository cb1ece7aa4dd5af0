from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.core.schemas import LedgerRecord
from trade_journal.ledger.engine import round2
from trade_journal.operations.common import today_iso
from trade_journal.store.ledger_store import Eq, LedgerStore

TOP_N = 3

# (title, Notion blocks) -> created page id
Publisher = Callable[[str, List[dict]], str]


@dataclass
class ReviewStats:
    start: str
    end: str
    closed: List[LedgerRecord] = field(default_factory=list)
    open_positions: List[LedgerRecord] = field(default_factory=list)
    winners: List[LedgerRecord] = field(default_factory=list)
    losers: List[LedgerRecord] = field(default_factory=list)
    total_realized: float = 0.0
    win_rate: Optional[float] = None
    avg_win: Optional[float] = None
    avg_loss: Optional[float] = None


def review_window(end: Optional[str] = None, *, tz: str = "America/New_York", days: int = 7) -> tuple[str, str]:
    """Inclusive [start, end]; `end` defaults to today in `tz`."""
    end = end or today_iso(tz)
    start = (pd.Timestamp(end) - pd.Timedelta(days=days - 1)).date().isoformat()
    return start, end


def _closed_on(r: LedgerRecord) -> str:
    return r.close_date or r.trade_date or ""


def summarize_week(rows: List[LedgerRecord], *, start: str, end: str) -> ReviewStats:
    stats = ReviewStats(start=start, end=end)
    for r in rows:
        if r.row_type != "Position":
            continue
        if r.status == "OPEN":
            stats.open_positions.append(r)
        elif r.status == "CLOSED" and r.pl is not None and _closed_on(r) and start <= _closed_on(r) <= end:
            stats.closed.append(r)

    winners = sorted((r for r in stats.closed if (r.pl or 0) > 0), key=lambda r: -(r.pl or 0))
    losers = sorted((r for r in stats.closed if (r.pl or 0) < 0), key=lambda r: r.pl or 0)

    stats.total_realized = round2(sum(float(r.pl or 0) for r in stats.closed))
    if stats.closed:
        stats.win_rate = len(winners) / len(stats.closed)
    if winners:
        stats.avg_win = round2(sum(float(r.pl or 0) for r in winners) / len(winners))
    if losers:
        stats.avg_loss = round2(sum(float(r.pl or 0) for r in losers) / len(losers))
    stats.winners = winners[:TOP_N]
    stats.losers = losers[:TOP_N]
    return stats


# ----------------------------
# Formatting
# ----------------------------
def fmt_currency(value: float) -> str:
    sign = "+" if value > 0 else "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def fmt_percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def fmt_number(value: Optional[float], decimals: int = 4) -> str:
    if value is None:
        return ""
    return f"{value:.{decimals}f}".rstrip("0").rstrip(".")


def _text(content: str) -> List[dict]:
    return [{"type": "text", "text": {"content": content}}]


def _block(kind: str, content: str) -> dict:
    return {"object": "block", "type": kind, kind: {"rich_text": _text(content)}}


def _bullets(lines: List[str]) -> List[dict]:
    return [_block("bulleted_list_item", x) for x in (lines or ["None"])]


def review_title(stats: ReviewStats) -> str:
    return f"Weekly Review - {stats.end}"


def review_blocks(stats: ReviewStats) -> List[dict]:
    """Notion children for the review page."""
    def closed_line(r: LedgerRecord) -> str:
        return f"{r.ticker} - {fmt_currency(float(r.pl or 0))} ({_closed_on(r)})"

    def open_line(r: LedgerRecord) -> str:
        line = f"{r.ticker} - Qty {fmt_number(r.qty) or '?'}"
        if r.fill_price is not None:
            line += f" @ {fmt_currency(r.fill_price)}"
        if r.trade_date:
            line += f" (opened {r.trade_date})"
        return line

    na = "n/a"
    summary = [
        f"Closed trades: {len(stats.closed)}",
        f"Total realized P/L: {fmt_currency(stats.total_realized)}",
        f"Win rate: {na if stats.win_rate is None else fmt_percent(stats.win_rate)}",
        f"Average win: {na if stats.avg_win is None else fmt_currency(stats.avg_win)}",
        f"Average loss: {na if stats.avg_loss is None else fmt_currency(stats.avg_loss)}",
    ]

    blocks = [
        _block("heading_1", review_title(stats)),
        _block("paragraph", f"Date range: {stats.start} to {stats.end}"),
        _block("heading_2", "Summary"),
        *_bullets(summary),
        _block("heading_2", "Top Winners"),
        *_bullets([closed_line(r) for r in stats.winners]),
        _block("heading_2", "Top Losers"),
        *_bullets([closed_line(r) for r in stats.losers]),
        _block("heading_2", "Open Positions"),
        *_bullets([open_line(r) for r in stats.open_positions]),
    ]
    return blocks


def weekly_review(
    *,
    store: LedgerStore,
    s: Settings = default_settings,
    end: Optional[str] = None,
    publish: Optional[Publisher] = None,
) -> Dict[str, Any]:
    """
    Seven-day review ending on `end`. Without a publisher the page is only built,
    which is what a dry run prints.
    """
    start, end = review_window(end, tz=s.timezone)
    rows = list(store.query(Eq("row_type", "Position")))
    stats = summarize_week(rows, start=start, end=end)
    title = review_title(stats)
    blocks = review_blocks(stats)

    page_id: Optional[str] = None
    if publish is not None:
        page_id = publish(title, blocks)
        print(f"[weekly-review] created page {page_id} ({title})")
    else:
        print(f"[weekly-review] DRY RUN built {len(blocks)} blocks for {title}")

    return {
        "title": title,
        "pageId": page_id,
        "dateRange": {"start": start, "end": end},
        "totalRealized": stats.total_realized,
        "winRate": None if stats.win_rate is None else round(stats.win_rate, 4),
        "closedTrades": len(stats.closed),
        "openPositions": len(stats.open_positions),
    }
