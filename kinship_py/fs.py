"""Filesystem helper utilities.

Safe JSON read/write and atomic text writes, used for the bundled data
tables and for duplicate-scan checkpoints.
"""
from __future__ import annotations
from pathlib import Path
import json
import logging
import tempfile
import os
from typing import Any, Optional


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """Write text to path atomically using a temp file in the same dir.

    A reader never observes a partially written file. Missing parent
    directories are created.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
        os.replace(tmp, str(path))
    finally:
        if Path(tmp).exists():
            Path(tmp).unlink()


def json_load(path: Path, default: Optional[Any] = None) -> Any:
    p = Path(path)
    if not p.exists():
        return default
    try:
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        logging.warning("Could not read JSON file %s", str(p))
        return default


def json_save(path: Path, obj: Any) -> None:
    text = json.dumps(obj, ensure_ascii=False, indent=2)
    atomic_write_text(Path(path), text)


def remove_file(path: Path) -> bool:
    p = Path(path)
    if not p.exists():
        return False
    p.unlink()
    return True
