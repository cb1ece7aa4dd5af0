from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

from trade_journal.config.config import Settings, settings as default_settings
from trade_journal.core.contracts import api_broker_label
from trade_journal.core.schemas import LedgerRecord
from trade_journal.ledger.engine import build_ledger_records
from trade_journal.ledger.reconcile import Supersession, build_manual_index, plan_supersession, plan_sync
from trade_journal.operations.common import all_positions, apply_sync_plan, other_label_rows, print_counts, today_iso
from trade_journal.paths import list_files, move_to_processed, processed_dir, raw_dir
from trade_journal.sources.common import FileSource, parse_files
from trade_journal.sources.registry import get_source
from trade_journal.store.ledger_store import LedgerStore, positions_for_broker, safe_archive


def source_files(source: FileSource) -> tuple[List[Path], List[Path]]:
    """(raw, processed) export files for a source."""
    return (
        list_files(raw_dir(source.name), source.suffixes),
        list_files(processed_dir(source.name), source.suffixes),
    )


def _close_cutoff(source: FileSource, s: Settings) -> Optional[str]:
    return s.public_close_cutoff_date if source.name.startswith("public") else None


def build_candidates(
    source: FileSource,
    files: Sequence[Path],
    *,
    s: Settings = default_settings,
    as_of: Optional[str] = None,
) -> tuple[List[LedgerRecord], Dict[str, int]]:
    parsed = parse_files(source, files)
    expire_as_of = (as_of or today_iso(s.timezone)) if source.auto_expire else None
    records = build_ledger_records(
        parsed.events,
        broker=source.label,
        model=source.model,
        expire_as_of=expire_as_of,
        close_cutoff=_close_cutoff(source, s),
    )
    stats = {
        "files": len(parsed.files),
        "parsedRows": parsed.parsed_rows,
        "droppedRows": parsed.dropped_rows,
        "events": len(parsed.events),
        "positions": len(records),
    }
    return records, stats


def supersession_for(
    label: str,
    records: Sequence[LedgerRecord],
    rows: Sequence[LedgerRecord],
    *,
    s: Settings = default_settings,
) -> Optional[Supersession]:
    """Hybrid overlap against the live-API label of the same broker, e.g. "Public" for "Public (CSV)"."""
    api_label = api_broker_label(label)
    if not api_label or api_label == label:
        return None
    api_rows = [r for r in rows if r.broker == api_label]
    if not api_rows:
        return None
    return plan_supersession(
        records,
        api_rows,
        api_broker=api_label,
        csv_broker=label,
        cutoff=s.fidelity_csv_cutoff_date,
    )


def rebuild_broker(
    name: str,
    *,
    store: LedgerStore,
    s: Settings = default_settings,
    files: Optional[Sequence[Path]] = None,
    as_of: Optional[str] = None,
    dry_run: bool = False,
    move_files: bool = True,
) -> Dict[str, int]:
    """
    Destructive rebuild: archive every row of the broker, recreate from all exports,
    carrying strategy/tags forward by manual key.
    """
    source = get_source(name, s)
    raw: List[Path] = []
    if files is None:
        raw, processed = source_files(source)
        files = raw + processed
    print(f"[rebuild] broker={source.label} files={len(files)} model={source.model} dry_run={dry_run}")

    records, counts = build_candidates(source, files, s=s, as_of=as_of)

    existing = positions_for_broker(store, source.label)
    manual = build_manual_index(existing)
    print(f"[rebuild] existing={len(existing)} manual_entries={len(manual)}")

    archived = 0
    for r in existing:
        if r.archived or not r.id:
            continue
        if dry_run:
            archived += 1
            continue
        if safe_archive(store, r.id):
            archived += 1

    created = 0
    carried = 0
    for rec in records:
        rec, hit = manual.apply(rec)
        carried += int(hit)
        if dry_run:
            print(f"[rebuild] DRY RUN would create {rec.account} {rec.contract_key} {rec.status} opened={rec.trade_date}")
        else:
            store.create(rec)
        created += 1

    if raw and move_files and not dry_run:
        move_to_processed(raw, source.name)
        print(f"[rebuild] moved {len(raw)} file(s) to {processed_dir(source.name)}")

    counts.update({"archived": archived, "created": created, "manualCarried": carried})
    print_counts(f"REBUILD {source.label}", counts)
    return counts


def sync_broker(
    name: str,
    *,
    store: LedgerStore,
    s: Settings = default_settings,
    files: Optional[Sequence[Path]] = None,
    as_of: Optional[str] = None,
    dry_run: bool = False,
    move_files: bool = True,
) -> Dict[str, int]:
    """Non-destructive sync; a second run without new exports writes nothing."""
    source = get_source(name, s)
    raw: List[Path] = []
    if files is None:
        raw, processed = source_files(source)
        files = raw + processed
    print(f"[sync] broker={source.label} files={len(files)} model={source.model} dry_run={dry_run}")

    records, counts = build_candidates(source, files, s=s, as_of=as_of)

    rows = all_positions(store)
    existing = [r for r in rows if r.broker == source.label]
    plan = plan_sync(
        records,
        existing,
        others=other_label_rows(rows, source.label),
        manual=build_manual_index(existing),
        supersession=supersession_for(source.label, records, rows, s=s),
    )
    apply_sync_plan(store, plan, dry_run=dry_run, tag="sync")

    if raw and move_files and not dry_run:
        move_to_processed(raw, source.name)

    counts.update(plan.counts())
    print_counts(f"SYNC {source.label}", counts)
    return counts
