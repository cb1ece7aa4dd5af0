from __future__ import annotations

import os
import shutil
from pathlib import Path


def project_root() -> Path:
    """
    Best-effort project root resolver.
    Priority:
      1) env TRADE_JOURNAL_ROOT
      2) walk upwards from this file until pyproject.toml found
      3) fallback: current working directory
    """
    env = os.getenv("TRADE_JOURNAL_ROOT")
    if env:
        return Path(env).expanduser().resolve()

    here = Path(__file__).resolve()
    for p in [here] + list(here.parents):
        if (p / "pyproject.toml").exists():
            return p
    return Path.cwd().resolve()


def imports_dir() -> Path:
    return project_root() / "imports"


def raw_dir(broker: str) -> Path:
    """Drop new exports here: imports/<broker>/raw"""
    return imports_dir() / broker / "raw"


def processed_dir(broker: str) -> Path:
    return imports_dir() / broker / "processed"


def ensure_dir(p: Path) -> Path:
    p.mkdir(parents=True, exist_ok=True)
    return p


def list_files(d: Path, suffixes: tuple[str, ...]) -> list[Path]:
    if not d.is_dir():
        return []
    return sorted(p for p in d.iterdir() if p.is_file() and p.suffix.lower() in suffixes)


def move_to_processed(files: list[Path], broker: str) -> list[Path]:
    dest = ensure_dir(processed_dir(broker))
    moved: list[Path] = []
    for f in files:
        target = dest / f.name
        if f.resolve() == target.resolve():
            continue
        shutil.move(str(f), str(target))
        moved.append(target)
    return moved
