import dataclasses
import json
import math

import pytest

from boostbridge.backends.locate import candidate_paths, library_names
from boostbridge.config import DatasetConfig, LibraryConfig


def test_config_defaults(monkeypatch):
    monkeypatch.delenv("BOOSTBRIDGE_NTHREAD", raising=False)
    cfg = DatasetConfig()
    assert math.isnan(cfg.missing)
    assert cfg.nthread == 0
    assert cfg.data_split_mode == 0
    payload = json.loads(cfg.to_json())
    assert set(payload) == {"missing", "nthread", "data_split_mode"}
    assert math.isnan(payload["missing"])

    lib_cfg = LibraryConfig()
    assert lib_cfg.lib_path is None
    assert lib_cfg.log_native_messages


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BOOSTBRIDGE_NTHREAD", "3")
    monkeypatch.setenv("BOOSTBRIDGE_LIB_PATH", "/opt/xgb/libxgboost.so")
    monkeypatch.setenv("BOOSTBRIDGE_DISABLE_LOG_CALLBACK", "1")
    assert DatasetConfig().nthread == 3
    lib_cfg = LibraryConfig.from_env()
    assert lib_cfg.lib_path == "/opt/xgb/libxgboost.so"
    assert not lib_cfg.log_native_messages


def test_configs_are_frozen():
    cfg = DatasetConfig(missing=-999.0)
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.missing = 0.0  # type: ignore[misc]


def test_explicit_lib_path_is_the_only_candidate(tmp_path):
    target = tmp_path / "does-not-exist" / library_names()[0]
    assert candidate_paths(LibraryConfig(lib_path=str(target))) == [str(target)]
