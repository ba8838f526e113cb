from __future__ import annotations

"""
Controller configuration.

Every tunable of the supervisory controller lives in one frozen dataclass.
Values are fixed once the controller is built; drivers load them from YAML
(see tools/controller.yaml) the same way the interlock thresholds are read.
"""

from dataclasses import dataclass, fields
from pathlib import Path

import yaml


class ConfigError(ValueError):
    """Raised when a configuration file or mapping is inconsistent."""


@dataclass(frozen=True)
class ControllerConfig:
    # Temperatures [K]
    setpoint_k: float = 78.0
    tolerance_k: float = 2.0
    coarse_fine_threshold_k: float = 85.0
    warm_reference_k: float = 295.0
    # Actuator (12-bit DAC counts)
    full_scale: int = 4095
    max_step_per_tick: int = 5
    max_cooldown_rate_k_per_min: float = 1.0
    # Stall detection
    stall_window_ms: int = 300_000
    stall_min_drop_k: float = 1.0
    # Dwell periods
    init_amber_ms: int = 1_500
    settle_duration_ms: int = 60_000
    baseline_duration_ms: int = 300_000
    # Line voltage
    overvoltage_limit_v: float = 120.0
    # Overstroke (current spike) detection
    ema_alpha: float = 0.08
    prime_readings: int = 20
    spike_threshold_a: float = 2.0
    debounce_ms: int = 2_000
    # Backoff
    backoff_step: int = 200
    backoff_max_events: int = 10
    # History / cadence
    history_capacity: int = 20
    history_interval_ms: int = 30_000
    tick_interval_ms: int = 200

    def __post_init__(self) -> None:
        self.validate()

    @property
    def band_low_k(self) -> float:
        return self.setpoint_k - self.tolerance_k

    @property
    def band_high_k(self) -> float:
        return self.setpoint_k + self.tolerance_k

    def in_band(self, temp_k: float) -> bool:
        return self.band_low_k <= temp_k <= self.band_high_k

    def below_band(self, temp_k: float) -> bool:
        return temp_k < self.band_low_k

    def validate(self) -> None:
        if self.history_capacity < 2:
            raise ConfigError(f"history_capacity must be >= 2, got {self.history_capacity}")
        if self.tolerance_k <= 0:
            raise ConfigError("tolerance_k must be positive")
        if self.full_scale <= 0:
            raise ConfigError("full_scale must be positive")
        if self.tick_interval_ms <= 0:
            raise ConfigError("tick_interval_ms must be positive")
        if self.warm_reference_k <= self.setpoint_k:
            raise ConfigError(
                f"warm_reference_k ({self.warm_reference_k}) must be above setpoint_k ({self.setpoint_k})"
            )
        if self.coarse_fine_threshold_k <= self.band_high_k:
            raise ConfigError(
                f"coarse_fine_threshold_k ({self.coarse_fine_threshold_k}) must be above "
                f"the tolerance band ({self.band_high_k})"
            )
        if not (0.0 < self.ema_alpha <= 1.0):
            raise ConfigError(f"ema_alpha must be in (0, 1], got {self.ema_alpha}")
        for name in (
            "max_step_per_tick",
            "stall_window_ms",
            "init_amber_ms",
            "settle_duration_ms",
            "baseline_duration_ms",
            "prime_readings",
            "debounce_ms",
            "backoff_step",
            "history_interval_ms",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.backoff_max_events < 1:
            raise ConfigError("backoff_max_events must be >= 1")

    @classmethod
    def from_yaml(cls, data: dict | None) -> "ControllerConfig":
        d = dict(data or {})
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(d) - set(known))
        if unknown:
            raise ConfigError(f"unknown controller setting(s): {', '.join(unknown)}")
        kwargs = {}
        for name, value in d.items():
            # int fields stay int so DAC counts and ms never become floats
            caster = int if known[name].default.__class__ is int else float
            try:
                kwargs[name] = caster(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{name}: invalid value {value!r}") from exc
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(path: str | Path | None) -> ControllerConfig:
    """Load a ControllerConfig from a YAML file.

    The file may hold the settings at top level or under a `controller:` key.
    None or an empty file yields the defaults.
    """
    if path is None:
        return ControllerConfig()
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    if "controller" in data:
        data = data["controller"] or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: 'controller' must be a mapping")
    return ControllerConfig.from_yaml(data)
