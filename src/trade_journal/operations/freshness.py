from __future__ import annotations

from typing import Any, Dict, Optional

import pandas as pd

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.store.ledger_store import LedgerStore


def freshness(
    *,
    store: LedgerStore,
    s: Settings = default_settings,
    now: Optional[pd.Timestamp] = None,
    threshold_hours: Optional[float] = None,
    lookback_days: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Age of the newest Trade Date in the journal. Stale when older than the threshold,
    except on weekends when nothing new is expected.
    """
    tz = s.timezone
    now = pd.Timestamp.now(tz=tz) if now is None else (now.tz_localize(tz) if now.tzinfo is None else now.tz_convert(tz))
    threshold = float(s.freshness_threshold_hours if threshold_hours is None else threshold_hours)
    lookback = int(s.freshness_lookback_days if lookback_days is None else lookback_days)

    since = (now - pd.Timedelta(days=lookback)).date().isoformat()
    dates = [r.trade_date for r in store.query() if r.trade_date and r.trade_date >= since]
    newest = max(dates) if dates else None

    age_hours: Optional[float] = None
    if newest:
        age_hours = round((now - pd.Timestamp(newest).tz_localize(tz)).total_seconds() / 3600.0, 2)

    weekend = now.weekday() >= 5
    stale = (not weekend) and (age_hours is None or age_hours > threshold)

    counts: Dict[str, Any] = {
        "now": now.isoformat(),
        "rowsInWindow": len(dates),
        "newestTradeDate": newest,
        "ageHours": age_hours,
        "thresholdHours": threshold,
        "weekend": weekend,
        "stale": stale,
    }
    print(f"[freshness] newest={newest} age_hours={age_hours} threshold={threshold} weekend={weekend} stale={stale}")
    return counts
