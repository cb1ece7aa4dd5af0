from __future__ import annotations

import io
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from trade_journal.core.schemas import EffectModel, ParseResult, TradeEvent
from trade_journal.ledger.engine import sort_events


# ----------------------------
# Field parsing
# ----------------------------
def clean_str(x) -> str:
    if x is None:
        return ""
    s = str(x).strip()
    if s.lower() == "nan":
        return ""
    return s


def to_number(value) -> Optional[float]:
    """'$1,234.50' -> 1234.5, '($12.00)' -> -12.0, '' -> None."""
    s = clean_str(value)
    if not s:
        return None
    neg = "(" in s and ")" in s
    s = re.sub(r"[$,()\s]", "", s)
    if not s:
        return None
    n = pd.to_numeric(s, errors="coerce")
    if pd.isna(n):
        return None
    n = float(n)
    if not math.isfinite(n):
        return None
    return -abs(n) if neg else n


def parse_qty(value) -> Optional[float]:
    """Absolute, strictly positive quantity or None. Trailing unit letters are ignored ('2S')."""
    s = re.sub(r"[^0-9.\-]", "", clean_str(value))
    if not s:
        return None
    n = pd.to_numeric(s, errors="coerce")
    if pd.isna(n):
        return None
    q = abs(float(n))
    return q if q > 0 and math.isfinite(q) else None


_MDY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")


def mdy_to_iso(value) -> Optional[str]:
    """'1/7/2025' / '01/07/25' -> '2025-01-07'."""
    m = _MDY_RE.match(clean_str(value))
    if not m:
        return None
    mm, dd, yy = (int(g) for g in m.groups())
    if yy < 100:
        yy += 1900 if yy >= 70 else 2000
    try:
        return pd.Timestamp(year=yy, month=mm, day=dd).date().isoformat()
    except ValueError:
        return None


def iso_date(value) -> Optional[str]:
    s = clean_str(value)
    if not s:
        return None
    t = pd.to_datetime(s, errors="coerce")
    if pd.isna(t):
        return None
    return t.date().isoformat()


# ----------------------------
# CSV loading
# ----------------------------
def read_csv_rows(path: Path | str, *, header_marker: Optional[str] = None) -> List[Dict[str, str]]:
    """
    All-string rows. Preamble lines before the line containing `header_marker`
    (broker exports often start with a title block) are skipped.
    """
    text = Path(path).read_text(encoding="utf-8-sig")
    lines = text.splitlines()
    start = 0
    if header_marker:
        start = next((i for i, ln in enumerate(lines) if header_marker in ln), -1)
        if start < 0:
            return []
    body = "\n".join(lines[start:])
    if not body.strip():
        return []
    df = pd.read_csv(
        io.StringIO(body),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        on_bad_lines="skip",
        index_col=False,
    )
    df.columns = [str(c).strip() for c in df.columns]
    return [{k: clean_str(v) for k, v in row.items()} for row in df.to_dict(orient="records")]


def row_key(row: Dict[str, str], columns: Sequence[str]) -> str:
    return "|".join(clean_str(row.get(c)) for c in columns)


# ----------------------------
# Multi-file dedupe
# ----------------------------
def dedupe_across_files(per_file: Iterable[Iterable[Tuple[str, TradeEvent]]]) -> List[TradeEvent]:
    """
    Exports overlap; identical trades can also legitimately repeat. Per key, keep
    the highest occurrence count seen in any single file and emit that many copies.
    """
    event_by_key: Dict[str, TradeEvent] = {}
    count_by_key: Dict[str, int] = {}

    for pairs in per_file:
        file_counts: Dict[str, int] = {}
        for key, e in pairs:
            event_by_key[key] = e
            file_counts[key] = file_counts.get(key, 0) + 1
        for key, n in file_counts.items():
            if n > count_by_key.get(key, 0):
                count_by_key[key] = n

    out: List[TradeEvent] = []
    for key, e in event_by_key.items():
        out.extend([e] * count_by_key.get(key, 1))
    return sort_events(out)


# ----------------------------
# Source descriptor
# ----------------------------
FileParser = Callable[[Path], Tuple[List[Tuple[str, TradeEvent]], int]]


@dataclass(frozen=True)
class FileSource:
    """
    A file-based importer.

    parse_file returns ([(dedupe_key, event)], rows_seen); rows_seen - len(events)
    is the parse-level drop count.
    """
    name: str                   # imports/<name>/...
    label: str                  # ledger Broker value
    model: EffectModel
    suffixes: Tuple[str, ...]
    parse_file: FileParser
    auto_expire: bool = False


def parse_files(source: FileSource, files: Sequence[Path]) -> ParseResult:
    result = ParseResult()
    per_file: List[List[Tuple[str, TradeEvent]]] = []
    for f in files:
        pairs, seen = source.parse_file(f)
        per_file.append(pairs)
        result.parsed_rows += seen
        result.dropped_rows += max(0, seen - len(pairs))
        result.files.append(str(f))
    result.events = dedupe_across_files(per_file)
    return result
