from __future__ import annotations

"""
Actuator target planning.

Three separate concerns, each usable on its own:
- temperature_to_level(): the cooldown ramp curve (temperature -> level)
- ramp_toward(): slew-rate limiting of the actual output
- apply_backoff(): cumulative reduction after overstroke events
"""


def temperature_to_level(temp_k: float, warm_ref_k: float, cold_ref_k: float, full_scale: int) -> int:
    """Map temperature onto 0..full_scale, rising linearly as the stage cools."""
    if temp_k >= warm_ref_k:
        return 0
    if temp_k <= cold_ref_k:
        return int(full_scale)
    level = round(full_scale * (warm_ref_k - temp_k) / (warm_ref_k - cold_ref_k))
    return max(0, min(int(full_scale), int(level)))


def ramp_toward(current: int, target: int, max_step: int) -> int:
    if max_step < 0:
        raise ValueError(f"max_step must not be negative, got {max_step}")
    if target > current:
        return min(current + max_step, target)
    if target < current:
        return max(current - max_step, target)
    return current


def apply_backoff(level: int, cumulative_offset: int) -> int:
    return max(0, int(level) - int(cumulative_offset))


class ActuatorPlanner:
    """Cooldown target planner bound to one controller configuration."""

    def __init__(self, cfg) -> None:
        self.cfg = cfg

    def cooldown_target(self, temp_k: float, cooling_rate_k_per_min: float) -> int:
        proportional = temperature_to_level(
            temp_k,
            self.cfg.warm_reference_k,
            self.cfg.setpoint_k,
            self.cfg.full_scale,
        )
        # Rate guard hook: the level is a function of temperature alone, so
        # cooling_rate_k_per_min is accepted but not clamped against yet.
        return proportional

    def backed_off(self, level: int, cumulative_offset: int) -> int:
        if level <= 0 or cumulative_offset <= 0:
            return level
        return apply_backoff(level, cumulative_offset)

    def slew(self, current: int, target: int) -> int:
        return ramp_toward(current, target, self.cfg.max_step_per_tick)
