from pathlib import Path

import pytest

from cryoctl.logic import ConfigError, ControllerConfig, load_config

EXAMPLE = Path(__file__).resolve().parents[2] / "tools" / "controller.yaml"


def test_defaults_and_band():
    cfg = ControllerConfig()
    assert cfg.setpoint_k == 78.0
    assert (cfg.band_low_k, cfg.band_high_k) == (76.0, 80.0)
    assert cfg.in_band(76.0) and cfg.in_band(80.0)
    assert not cfg.in_band(80.01)
    assert cfg.below_band(75.99)


def test_from_yaml_keeps_int_fields_int():
    cfg = ControllerConfig.from_yaml({"full_scale": 1023.0, "setpoint_k": 80, "tolerance_k": 1})
    assert cfg.full_scale == 1023
    assert isinstance(cfg.full_scale, int)
    assert isinstance(cfg.setpoint_k, float)


def test_from_yaml_rejects_unknown_keys():
    with pytest.raises(ConfigError, match="setpoint"):
        ControllerConfig.from_yaml({"setpoint": 80})


def test_from_yaml_rejects_bad_values():
    with pytest.raises(ConfigError):
        ControllerConfig.from_yaml({"full_scale": "lots"})


@pytest.mark.parametrize("overrides", [
    {"history_capacity": 1},
    {"tolerance_k": 0.0},
    {"tick_interval_ms": 0},
    {"warm_reference_k": 70.0},
    {"coarse_fine_threshold_k": 80.0},
    {"ema_alpha": 0.0},
    {"settle_duration_ms": -1},
    {"backoff_max_events": 0},
])
def test_inconsistent_settings_rejected(overrides):
    with pytest.raises(ConfigError):
        ControllerConfig(**overrides)


def test_config_is_frozen():
    cfg = ControllerConfig()
    with pytest.raises(AttributeError):
        cfg.setpoint_k = 90.0


def test_load_config_none_gives_defaults():
    assert load_config(None) == ControllerConfig()


def test_load_config_top_level(tmp_path):
    p = tmp_path / "ctl.yaml"
    p.write_text("setpoint_k: 80.0\nsettle_duration_ms: 1000\n", encoding="utf-8")
    cfg = load_config(p)
    assert cfg.setpoint_k == 80.0
    assert cfg.settle_duration_ms == 1000


def test_load_config_nested_section(tmp_path):
    p = tmp_path / "ctl.yaml"
    p.write_text("controller:\n  backoff_max_events: 3\n", encoding="utf-8")
    assert load_config(p).backoff_max_events == 3


def test_load_config_empty_file(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_config(p) == ControllerConfig()


def test_load_config_rejects_non_mapping(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)


def test_shipped_example_matches_defaults():
    assert load_config(EXAMPLE) == ControllerConfig()


def test_to_dict_round_trips():
    cfg = ControllerConfig(setpoint_k=77.0)
    assert ControllerConfig.from_yaml(cfg.to_dict()) == cfg
