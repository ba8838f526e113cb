from __future__ import annotations

"""
Supervisory controller for the cryocooler.

Finite-state machine driving the cold stage from ambient to setpoint:

  Off -> Initialize -> Idle -> CoarseCooldown -> FineCooldown
      -> (Overshoot) -> Settle -> Baseline -> Operating
  any non-Fault state -> Fault (over-voltage, stall, excessive backoff)

Pure logic: no sensor or actuator I/O, and time is always supplied by the
caller as monotonic milliseconds. One instance per apparatus; it owns the
temperature history, current baseline and backoff bookkeeping.

External API (used by the CLI, replay runner and PV bridge):
- start(now_ms, temp_k), stop(now_ms), off(now_ms), power_on(now_ms)
- update(...): one tick from already-derived inputs
- tick(...): one tick from raw readings (history + detector + slew)
"""

import logging
from dataclasses import dataclass, replace

from .commands import (
    COOLDOWN_STATES,
    NORMAL_RELAY_STATES,
    ControllerState,
    FaultReason,
    IndicatorMode,
)
from .config import ControllerConfig
from .history import TemperatureHistory
from .interlock import BackoffState, InterlockLogic
from .overstroke import CurrentAnomalyDetector
from .planner import ActuatorPlanner

logger = logging.getLogger(__name__)

S = ControllerState
M = IndicatorMode

# (fault indicator, ready indicator) per state
INDICATORS: dict[ControllerState, tuple[IndicatorMode, IndicatorMode]] = {
    S.OFF: (M.OFF, M.OFF),
    S.INITIALIZE: (M.SOLID_AMBER, M.SOLID_AMBER),
    S.IDLE: (M.SOLID_RED, M.OFF),
    S.COARSE_COOLDOWN: (M.FLASH_FAST_RED, M.OFF),
    S.FINE_COOLDOWN: (M.FLASH_FAST_RED, M.FLASH_SLOW_GREEN),
    S.OVERSHOOT: (M.FLASH_FAST_RED, M.FLASH_FAST_GREEN),
    S.SETTLE: (M.FLASH_FAST_RED, M.FLASH_FAST_GREEN),
    S.BASELINE: (M.OFF, M.SOLID_GREEN),
    S.OPERATING: (M.OFF, M.SOLID_GREEN),
    S.FAULT: (M.FLASH_FAST_RED, M.OFF),
}

FAULT_TEXT = {
    FaultReason.NONE: "Fault: Unknown reason",
    FaultReason.OVER_VOLTAGE: "Fault: Line voltage exceeded safe limit",
    FaultReason.TEMPERATURE_STALL: "Fault: Temperature stalled during cooldown",
    FaultReason.EXCESSIVE_BACKOFF: "Fault: Too many back-EMF stroke events; output backed off",
}


@dataclass(frozen=True)
class Output:
    state: ControllerState
    actuator_target: int
    bypass_relay: bool
    alarm_relay: bool
    fault_indicator: IndicatorMode
    ready_indicator: IndicatorMode
    status_text: str
    backoff_event_count: int


class SupervisoryController:
    def __init__(self, cfg: ControllerConfig | None = None, now_ms: int = 0) -> None:
        self.cfg = cfg or ControllerConfig()
        self.history = TemperatureHistory(self.cfg.history_capacity)
        self.detector = CurrentAnomalyDetector.from_config(self.cfg)
        self.planner = ActuatorPlanner(self.cfg)
        self.interlock = InterlockLogic.from_config(self.cfg)
        self._backoff = BackoffState()

        self._state: ControllerState = S.OFF
        self._entry_ms: int = int(now_ms)
        self._running: bool = False
        self._fault: FaultReason = FaultReason.NONE
        self._on_ms: int | None = None
        self._off_ms: int | None = None
        # Settle dwell timer; None = disarmed
        self._settle_start_ms: int | None = None
        # When the current uninterrupted cooldown run began (Coarse <-> Fine keeps it)
        self._cooldown_since_ms: int | None = None
        self._last_history_ms: int | None = None

        self.actuator_level: int = 0
        self.last_output: Output | None = None

    # --- Queries ---
    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def fault_reason(self) -> FaultReason:
        return self._fault

    @property
    def state_name(self) -> str:
        return self._state.label

    @property
    def status_text(self) -> str:
        return self._status_text(self._state)

    @property
    def backoff(self) -> BackoffState:
        return replace(self._backoff)

    def is_running(self) -> bool:
        return self._running

    def time_in_state_ms(self, now_ms: int) -> int:
        return max(0, int(now_ms) - self._entry_ms)

    def on_duration_ms(self, now_ms: int) -> int:
        """Time since the latest start(); frozen once stop/off/fault is recorded."""
        if self._on_ms is None:
            return 0
        if self._off_ms is not None:
            return self._off_ms - self._on_ms
        return max(0, int(now_ms) - self._on_ms)

    def snapshot_status(self, now_ms: int) -> dict:
        """State snapshot for drivers that publish it (PV bridge, CLI)."""
        out = self.last_output
        return {
            "state": int(self._state),
            "state_name": self.state_name,
            "status_text": self.status_text,
            "fault_reason": int(self._fault),
            "running": self._running,
            "actuator_target": out.actuator_target if out is not None else 0,
            "actuator_level": self.actuator_level,
            "bypass_relay": out.bypass_relay if out is not None else True,
            "alarm_relay": out.alarm_relay if out is not None else False,
            "backoff_count": self._backoff.event_count,
            "backoff_offset": self._backoff.cumulative_offset,
            "cooling_rate": self.history.cooling_rate_k_per_min(),
            "time_in_state_ms": self.time_in_state_ms(now_ms),
            "on_duration_ms": self.on_duration_ms(now_ms),
        }

    # --- Operator commands ---
    def power_on(self, now_ms: int) -> None:
        """Leave Off through the Initialize lamp test."""
        if self._state is not S.OFF:
            logger.debug("power_on ignored in %s", self.state_name)
            return
        self._enter(S.INITIALIZE, now_ms)

    def start(self, now_ms: int, temp_k: float) -> None:
        if self._running:
            logger.debug("start ignored: already running (%s)", self.state_name)
            return
        if self._state is S.FAULT:
            logger.debug("start ignored in Fault; stop or off first")
            return
        self._running = True
        self._on_ms = int(now_ms)
        self._off_ms = None
        self._fault = FaultReason.NONE
        self._backoff.reset()
        self.detector.clear()
        # 재부팅 후 현재 온도로 재개 상태 선택 (불필요한 stall fault 방지)
        self._enter(self._resume_state(temp_k), now_ms)

    def stop(self, now_ms: int) -> None:
        if not self._running and self._state is not S.FAULT:
            logger.debug("stop ignored: not running (%s)", self.state_name)
            return
        self._running = False
        self._mark_off(now_ms)
        self._fault = FaultReason.NONE
        self._enter(S.IDLE, now_ms)

    def off(self, now_ms: int) -> None:
        if self._state is S.OFF:
            return
        self._running = False
        self._mark_off(now_ms)
        self._fault = FaultReason.NONE
        self._enter(S.OFF, now_ms)

    # --- Periodic update ---
    def update(
        self,
        temp_k: float,
        cooling_rate_k_per_min: float,
        voltage_v: float,
        stalled: bool,
        overstroke: bool,
        now_ms: int,
    ) -> Output:
        """Advance the machine by one tick.

        The global safety guard runs first, so a fault always wins over a
        simultaneous state-advance condition.
        """
        cfg = self.cfg
        reason = self.interlock.evaluate(
            state=self._state,
            running=self._running,
            voltage_v=voltage_v,
            stalled=stalled,
            overstroke=overstroke,
            backoff=self._backoff,
        )
        if reason is not FaultReason.NONE:
            self._enter_fault(reason, now_ms)
            return self._emit(S.FAULT, 0)

        elapsed = int(now_ms) - self._entry_ms
        state = self._state
        target = 0

        if state is S.INITIALIZE:
            if elapsed >= cfg.init_amber_ms:
                self._enter(S.IDLE, now_ms)

        elif state is S.COARSE_COOLDOWN:
            target = self.planner.cooldown_target(temp_k, cooling_rate_k_per_min)
            if temp_k < cfg.coarse_fine_threshold_k:
                self._enter(S.FINE_COOLDOWN, now_ms)

        elif state is S.FINE_COOLDOWN:
            if temp_k > cfg.coarse_fine_threshold_k:
                target = self.planner.cooldown_target(temp_k, cooling_rate_k_per_min)
                self._enter(S.COARSE_COOLDOWN, now_ms)
            elif cfg.below_band(temp_k):
                self._enter(S.OVERSHOOT, now_ms)
            elif cfg.in_band(temp_k):
                self._enter(S.SETTLE, now_ms)
            else:
                target = self.planner.cooldown_target(temp_k, cooling_rate_k_per_min)

        elif state is S.OVERSHOOT:
            if cfg.in_band(temp_k):
                self._enter(S.SETTLE, now_ms)

        elif state is S.SETTLE:
            if not cfg.in_band(temp_k):
                # drifted out of band: dwell restarts on re-entry
                self._settle_start_ms = None
            elif self._settle_start_ms is None:
                self._settle_start_ms = int(now_ms)
            elif int(now_ms) - self._settle_start_ms >= cfg.settle_duration_ms:
                self._enter(S.BASELINE, now_ms)

        elif state is S.BASELINE:
            if elapsed >= cfg.baseline_duration_ms:
                self._enter(S.OPERATING, now_ms)

        # Off, Idle, Operating and Fault hold until an operator command
        return self._emit(self._state, target)

    def tick(self, now_ms: int, temp_k: float, current_a: float, voltage_v: float) -> Output:
        """One control tick from raw readings.

        Records history (decimated to history_interval_ms), feeds the current
        detector, derives rate and stall, runs update(), acknowledges a
        consumed overstroke and slews the actual actuator level.
        """
        cfg = self.cfg
        if self._last_history_ms is None or int(now_ms) - self._last_history_ms >= cfg.history_interval_ms:
            self.history.push_sample(now_ms, temp_k)
            self._last_history_ms = int(now_ms)

        self.detector.sample(current_a, now_ms)
        rate = self.history.cooling_rate_k_per_min()
        stalled = self._stall_armed(now_ms) and self.history.is_stalled(
            cfg.stall_window_ms, cfg.stall_min_drop_k
        )
        overstroke = self.detector.has_flag()

        out = self.update(temp_k, rate, voltage_v, stalled, overstroke, now_ms)
        if overstroke:
            self.detector.clear()

        if out.state in (S.FAULT, S.OFF):
            self.actuator_level = 0
        else:
            self.actuator_level = self.planner.slew(self.actuator_level, out.actuator_target)
        return out

    # --- Helpers & internal state ---
    def _resume_state(self, temp_k: float) -> ControllerState:
        cfg = self.cfg
        if temp_k >= cfg.coarse_fine_threshold_k:
            return S.COARSE_COOLDOWN
        if cfg.below_band(temp_k):
            return S.OVERSHOOT
        if cfg.in_band(temp_k):
            return S.SETTLE
        return S.FINE_COOLDOWN

    def _stall_armed(self, now_ms: int) -> bool:
        if self._state not in COOLDOWN_STATES or self._cooldown_since_ms is None:
            return False
        return int(now_ms) - self._cooldown_since_ms >= self.cfg.stall_window_ms

    def _mark_off(self, now_ms: int) -> None:
        if self._off_ms is None:
            self._off_ms = int(now_ms)

    def _enter(self, state: ControllerState, now_ms: int) -> None:
        prev = self._state
        self._state = state
        self._entry_ms = int(now_ms)
        self._settle_start_ms = int(now_ms) if state is S.SETTLE else None
        if state is not S.FAULT:
            self._fault = FaultReason.NONE
        if state in COOLDOWN_STATES:
            if prev not in COOLDOWN_STATES or self._cooldown_since_ms is None:
                self._cooldown_since_ms = int(now_ms)
        else:
            self._cooldown_since_ms = None
        if prev is not state:
            logger.info("state %s -> %s at %d ms", prev.label, state.label, int(now_ms))

    def _enter_fault(self, reason: FaultReason, now_ms: int) -> None:
        self._running = False
        self._mark_off(now_ms)
        self._enter(S.FAULT, now_ms)
        self._fault = reason
        logger.warning("fault entered: %s (%s)", reason.name, FAULT_TEXT[reason])

    def _status_text(self, state: ControllerState) -> str:
        th = self.cfg.coarse_fine_threshold_k
        if state is S.FAULT:
            return FAULT_TEXT[self._fault]
        return {
            S.OFF: "System is off",
            S.INITIALIZE: "Initial power up state",
            S.IDLE: "Cold stage is warm; dewar is not cooling",
            S.COARSE_COOLDOWN: f"Cooling; cold stage is above {th:g}K",
            S.FINE_COOLDOWN: f"Cooling; cold stage is below {th:g}K",
            S.OVERSHOOT: "Cold stage is cooler than set point; integrator is settling",
            S.SETTLE: "Cold stage temperature is settling; circuits switched to Normal",
            S.BASELINE: "Cold stage temperature has settled; collecting baseline data",
            S.OPERATING: "System is operating normally; checking for deviations from baseline",
        }[state]

    def _emit(self, state: ControllerState, target: int) -> Output:
        if state in COOLDOWN_STATES:
            target = self.planner.backed_off(target, self._backoff.cumulative_offset)
        else:
            target = 0
        fault_ind, ready_ind = INDICATORS[state]
        out = Output(
            state=state,
            actuator_target=int(target),
            bypass_relay=state not in NORMAL_RELAY_STATES,
            alarm_relay=state is S.FAULT,
            fault_indicator=fault_ind,
            ready_indicator=ready_ind,
            status_text=self._status_text(state),
            backoff_event_count=self._backoff.event_count,
        )
        self.last_output = out
        return out
