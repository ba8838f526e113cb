from __future__ import annotations

"""
Global safety guard for the supervisory controller.

Evaluated once per tick, before any per-state transition, whenever the
controller is not already in Fault. Order matters: over-voltage wins over
stall, and stall wins over overstroke backoff.
"""

import logging
from dataclasses import dataclass

from .commands import COOLDOWN_STATES, ControllerState, FaultReason

logger = logging.getLogger(__name__)


@dataclass
class InterlockThresholds:
    overvoltage_limit_v: float = 120.0
    backoff_step: int = 200
    backoff_max_events: int = 10
    full_scale: int = 4095


@dataclass
class BackoffState:
    event_count: int = 0
    cumulative_offset: int = 0

    def reset(self) -> None:
        self.event_count = 0
        self.cumulative_offset = 0


class InterlockLogic:
    def __init__(self, th: InterlockThresholds) -> None:
        self.th = th

    @classmethod
    def from_config(cls, cfg) -> "InterlockLogic":
        return cls(
            InterlockThresholds(
                overvoltage_limit_v=cfg.overvoltage_limit_v,
                backoff_step=cfg.backoff_step,
                backoff_max_events=cfg.backoff_max_events,
                full_scale=cfg.full_scale,
            )
        )

    def record_backoff(self, backoff: BackoffState) -> bool:
        """Count one overstroke event; True once the ceiling is reached."""
        backoff.event_count += 1
        backoff.cumulative_offset = min(
            backoff.cumulative_offset + self.th.backoff_step,
            self.th.full_scale,
        )
        logger.warning(
            "overstroke backoff %d/%d, output offset now %d",
            backoff.event_count,
            self.th.backoff_max_events,
            backoff.cumulative_offset,
        )
        return backoff.event_count >= self.th.backoff_max_events

    def evaluate(
        self,
        *,
        state: ControllerState,
        running: bool,
        voltage_v: float,
        stalled: bool,
        overstroke: bool,
        backoff: BackoffState,
    ) -> FaultReason:
        """Return the fault to enter this tick (FaultReason.NONE for none).

        Side effect: an overstroke while running advances the backoff
        bookkeeping even when it does not trip the ceiling.
        """
        if state is ControllerState.FAULT:
            return FaultReason.NONE
        if voltage_v > self.th.overvoltage_limit_v:
            return FaultReason.OVER_VOLTAGE
        if state in COOLDOWN_STATES and stalled:
            return FaultReason.TEMPERATURE_STALL
        if overstroke and running:
            if self.record_backoff(backoff):
                return FaultReason.EXCESSIVE_BACKOFF
        return FaultReason.NONE
