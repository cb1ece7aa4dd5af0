from __future__ import annotations

from typing import Dict

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.sources import fidelity_csv, public_csv, public_history, public_pdf, robinhood_csv
from trade_journal.sources.common import FileSource


def file_sources(s: Settings = default_settings) -> Dict[str, FileSource]:
    """imports/<name>/ directory name -> importer."""
    sources = [
        fidelity_csv.SOURCE,
        robinhood_csv.make_source(s.robinhood_start_date),
        public_csv.SOURCE,
        public_history.SOURCE,
        public_pdf.SOURCE,
    ]
    return {src.name: src for src in sources}


def get_source(name: str, s: Settings = default_settings) -> FileSource:
    sources = file_sources(s)
    try:
        return sources[name.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown broker source {name!r}; expected one of: {', '.join(sorted(sources))}") from None
