from pathlib import Path
import json

import pytest

from kinship_py.config import Config, load_config


def test_load_config_from_file(tmp_path, monkeypatch):
    monkeypatch.setenv("KINSHIP_MAX_DEPTH", "3")
    cfgfile = tmp_path / "cfg.json"
    data = {"data_dir": "mydata", "max_depth": 8, "living_weights": {"first_name": 0.5}, "colour": "blue"}
    cfgfile.write_text(json.dumps(data))
    cfg = load_config(str(cfgfile))
    assert cfg.data_dir == Path("mydata")
    # explicit files win over the environment
    assert cfg.max_depth == 8
    assert cfg.living_weights["first_name"] == 0.5
    assert cfg.living_weights["last_name"] == Config().living_weights["last_name"]


def test_env_overrides(monkeypatch):
    monkeypatch.delenv("KINSHIP_CONFIG", raising=False)
    monkeypatch.setenv("KINSHIP_DATA_DIR", "envdata")
    monkeypatch.setenv("KINSHIP_BRIDGE_TTL_DAYS", "7")
    monkeypatch.setenv("KINSHIP_DUPLICATE_MIN_CONFIDENCE", "0.7")
    cfg = load_config(None)
    assert cfg.data_dir == Path("envdata")
    assert cfg.bridge_ttl_days == 7
    assert cfg.duplicate_min_confidence == 0.7


def test_defaults_and_validation():
    cfg = Config()
    assert cfg.max_depth == 12
    assert cfg.bridge_ttl_days == 30
    assert abs(sum(cfg.living_weights.values()) - 1.0) < 1e-9
    with pytest.raises(ValueError):
        Config(cousin_tie_break="random")
    with pytest.raises(ValueError):
        Config(max_depth=0)


def test_missing_file_falls_back_to_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.json"))
    assert cfg.max_depth == 12
