"""Configuration loader for kinship_py.

Behavior:
- Load defaults.
- If a path is given, or environment variable `KINSHIP_CONFIG` is set, load
  that JSON file and merge it over the defaults.
- Environment variables override file values when no explicit path was
  passed (KINSHIP_DATA_DIR, KINSHIP_MAX_DEPTH, KINSHIP_TRAVERSAL_TIMEOUT,
  KINSHIP_LOCK_TIMEOUT, KINSHIP_BRIDGE_TTL_DAYS,
  KINSHIP_DUPLICATE_MIN_CONFIDENCE).
"""
from __future__ import annotations
from dataclasses import dataclass, field, fields
from pathlib import Path
import os
import json
import logging
from typing import Dict, Optional


def _default_living_weights() -> Dict[str, float]:
    return {
        "first_name": 0.20,
        "last_name": 0.15,
        "maiden_name": 0.05,
        "middle_name": 0.05,
        "birth_date": 0.20,
        "birth_place": 0.10,
        "contact": 0.05,
        "shared_relatives": 0.20,
    }


def _default_deceased_weights() -> Dict[str, float]:
    return {
        "first_name": 0.20,
        "last_name": 0.15,
        "maiden_name": 0.05,
        "middle_name": 0.05,
        "birth_date": 0.15,
        "death_date": 0.15,
        "birth_place": 0.05,
        "death_place": 0.05,
        "shared_relatives": 0.15,
    }


def _default_date_scores() -> Dict[str, float]:
    return {"exact": 1.0, "month": 0.8, "year": 0.5, "close": 0.25}


@dataclass
class Config:
    data_dir: Path = Path("data")
    max_depth: int = 12
    cycle_check_depth: int = 64
    in_law_depth: int = 3
    traversal_timeout: float = 2.0
    lock_timeout: float = 5.0
    bridge_ttl_days: int = 30
    bridge_hint_min_score: float = 0.6
    duplicate_min_confidence: float = 0.5
    duplicate_high_confidence: float = 0.85
    shared_relatives_cap: int = 3
    fuzzy_name_floor: float = 0.8
    gender_conflict_factor: float = 0.5
    close_year_window: int = 2
    checkpoint_interval: int = 500
    cousin_tie_break: str = "min_removal"
    living_weights: Dict[str, float] = field(default_factory=_default_living_weights)
    deceased_weights: Dict[str, float] = field(default_factory=_default_deceased_weights)
    date_scores: Dict[str, float] = field(default_factory=_default_date_scores)

    def __post_init__(self) -> None:
        if self.cousin_tie_break not in ("min_removal", "max_removal"):
            raise ValueError(f"cousin_tie_break must be min_removal or max_removal, got {self.cousin_tie_break!r}")
        if self.max_depth < 1:
            raise ValueError("max_depth must be >= 1")


_ENV_OVERRIDES = {
    "KINSHIP_DATA_DIR": ("data_dir", Path),
    "KINSHIP_MAX_DEPTH": ("max_depth", int),
    "KINSHIP_TRAVERSAL_TIMEOUT": ("traversal_timeout", float),
    "KINSHIP_LOCK_TIMEOUT": ("lock_timeout", float),
    "KINSHIP_BRIDGE_TTL_DAYS": ("bridge_ttl_days", int),
    "KINSHIP_DUPLICATE_MIN_CONFIDENCE": ("duplicate_min_confidence", float),
}


def _load_json_file(path: Path) -> Optional[dict]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        logging.warning("Could not load config file %s", str(path))
        return None


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from (1) defaults, (2) JSON file, (3) env vars.

    :param config_path: optional path to a JSON config file. If not provided
                        will use environment variable `KINSHIP_CONFIG` if set.
    """
    values: Dict[str, object] = {}
    known = {f.name: f for f in fields(Config)}

    cp = config_path or os.environ.get("KINSHIP_CONFIG")
    if cp:
        data = _load_json_file(Path(cp))
        if isinstance(data, dict):
            for key, value in data.items():
                if key not in known:
                    logging.warning("Ignoring unknown config key %s", key)
                    continue
                if key == "data_dir":
                    if value:
                        values[key] = Path(value)
                elif key.endswith("_weights") or key == "date_scores":
                    merged = getattr(Config(), key)
                    merged.update({k: float(v) for k, v in (value or {}).items()})
                    values[key] = merged
                else:
                    values[key] = value

    # Explicit config files are authoritative; env only applies otherwise.
    if config_path is None:
        for env_name, (attr, conv) in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw:
                values[attr] = conv(raw)

    return Config(**values)
