#!/usr/bin/env python3
"""
EPICS PV bridge for the cryocooler supervisory controller.

Runs SupervisoryController against the CryoPlant model at the controller tick
and mirrors its state onto Channel Access PVs.
Requires: pyepics

Usage:
  python tools/pv_bridge.py --config tools/controller.yaml --verbose

Primary PVs (must exist in IOC DB):
  - CRYO:CC:STATE:MAIN (mbbi)          controller state, -1..8
  - CRYO:CC:STATE:TEXT (stringin)      short state name
  - CRYO:CC:STATUS:TEXT (stringin)     operator status line
  - CRYO:CC:FAULT:REASON (mbbi)
  - CRYO:CC:CMD:MAIN (mbbo)            0 NONE, 1 START, 2 STOP, 3 OFF, 4 POWER_ON
  - CRYO:CC:TEMP:COLD (ai)             cold-stage temperature [K]
  - CRYO:CC:TEMP:RATE (ai)             cooling rate [K/min]
  - CRYO:CC:TEMP:PROGRESS (ai)         cooldown progress [%]
  - CRYO:CC:ACT:TARGET (ai), CRYO:CC:ACT:LEVEL (ai)
  - CRYO:CC:LINE:VOLTAGE (ai), CRYO:CC:ACT:CURRENT (ai)
  - CRYO:CC:RELAY:BYPASS (bi), CRYO:CC:RELAY:ALARM (bi)
  - CRYO:CC:LAMP:FAULT (stringin), CRYO:CC:LAMP:READY (stringin)
  - CRYO:CC:BACKOFF:COUNT (ai)
  - CRYO:CC:TIME:STATE (stringin), CRYO:CC:TIME:ON (stringin)
  - CRYO:CC:SIM:QLOAD (ao)             plant heat load [W]
  - CRYO:CC:SIM:SPIKE (bo)             write 1 to inject a current spike
  - CRYO:CC:SIM:SURGE (ao)             extra line voltage [V]
  - Historical arrays under CRYO:CC:HIST:* (waveform)
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path when executed as a script
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

try:
    from epics import PV
    import numpy as np
    import yaml
except Exception as exc:  # pragma: no cover - import diagnostic
    print("[pv_bridge] pyepics import failed. Please `pip install pyepics`.")
    print(f"reason: {exc}")
    sys.exit(2)

from cryoctl.core import CryoPlant
from cryoctl.logic import MainCmd, SupervisoryController, load_config, parse_main_cmd
from cryoctl.logic.conversions import cooldown_percent, format_hms


PV_STATE = "CRYO:CC:STATE:MAIN"
PV_STATE_TEXT = "CRYO:CC:STATE:TEXT"
PV_STATUS_TEXT = "CRYO:CC:STATUS:TEXT"
PV_FAULT = "CRYO:CC:FAULT:REASON"
PV_CMD = "CRYO:CC:CMD:MAIN"
PV_TEMP = "CRYO:CC:TEMP:COLD"
PV_RATE = "CRYO:CC:TEMP:RATE"
PV_PROGRESS = "CRYO:CC:TEMP:PROGRESS"
PV_TARGET = "CRYO:CC:ACT:TARGET"
PV_LEVEL = "CRYO:CC:ACT:LEVEL"
PV_CURRENT = "CRYO:CC:ACT:CURRENT"
PV_VOLTAGE = "CRYO:CC:LINE:VOLTAGE"
PV_BYPASS = "CRYO:CC:RELAY:BYPASS"
PV_ALARM = "CRYO:CC:RELAY:ALARM"
PV_LAMP_FAULT = "CRYO:CC:LAMP:FAULT"
PV_LAMP_READY = "CRYO:CC:LAMP:READY"
PV_BACKOFF = "CRYO:CC:BACKOFF:COUNT"
PV_TIME_STATE = "CRYO:CC:TIME:STATE"
PV_TIME_ON = "CRYO:CC:TIME:ON"
PV_QLOAD = "CRYO:CC:SIM:QLOAD"
PV_SPIKE = "CRYO:CC:SIM:SPIKE"
PV_SURGE = "CRYO:CC:SIM:SURGE"

# Historical arrays (waveforms)
PV_HIST_TIME = "CRYO:CC:HIST:TIME"
PV_HIST_TEMP = "CRYO:CC:HIST:TEMP:COLD"
PV_HIST_LEVEL = "CRYO:CC:HIST:ACT:LEVEL"
PV_HIST_CURRENT = "CRYO:CC:HIST:ACT:CURRENT"


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="PV bridge for the cryocooler controller")
    p.add_argument("--config", type=str, default="", help="controller YAML (default: tools/controller.yaml if present)")
    p.add_argument("--qload", type=float, default=10.0, help="initial heat load (W)")
    p.add_argument("--t0", type=float, default=None, help="initial cold-stage temperature (K)")
    p.add_argument(
        "--hist-interval",
        type=float,
        default=1.0,
        help="History waveform publish interval (seconds)")
    p.add_argument(
        "--init-config",
        type=str,
        default="",
        help="YAML file with initial PV values (pvs: {name: value})")
    p.add_argument(
        "--verbose",
        action="store_true",
        help="Print debug info")
    return p.parse_args(argv)


class PVBridge:
    def __init__(self, cfg_path: str, q_load: float, t0: float | None = None, verbose: bool = False,
                 init_config: str | None = None, hist_interval: float = 1.0) -> None:
        if not cfg_path:
            default_path = _ROOT / "tools" / "controller.yaml"
            cfg_path = str(default_path) if default_path.exists() else ""
        self.cfg = load_config(cfg_path or None)
        self.dt = self.cfg.tick_interval_ms / 1000.0
        self.plant = CryoPlant(full_scale=self.cfg.full_scale, q_load=q_load)
        self.plant.reset(t0)
        self.ctrl = SupervisoryController(self.cfg, now_ms=0)
        self.verbose = verbose
        self.init_config = init_config or ""
        self.hist_interval = float(hist_interval or 1.0)
        self._hist_elapsed = 0.0
        # Last-put cache and eps map to reduce CA traffic
        self._last_put: dict[str, float | int | str] = {}
        self._eps_map: dict[str, float] = {
            PV_TEMP: 0.01,
            PV_RATE: 0.005,
            PV_PROGRESS: 0.1,
            PV_CURRENT: 0.01,
            PV_VOLTAGE: 0.1,
        }

        self.pv_state = PV(PV_STATE, auto_monitor=False)
        self.pv_state_text = PV(PV_STATE_TEXT, auto_monitor=False)
        self.pv_status_text = PV(PV_STATUS_TEXT, auto_monitor=False)
        self.pv_fault = PV(PV_FAULT, auto_monitor=False)
        self.pv_cmd = PV(PV_CMD, auto_monitor=True)
        self.pv_temp = PV(PV_TEMP, auto_monitor=False)
        self.pv_rate = PV(PV_RATE, auto_monitor=False)
        self.pv_progress = PV(PV_PROGRESS, auto_monitor=False)
        self.pv_target = PV(PV_TARGET, auto_monitor=False)
        self.pv_level = PV(PV_LEVEL, auto_monitor=False)
        self.pv_current = PV(PV_CURRENT, auto_monitor=False)
        self.pv_voltage = PV(PV_VOLTAGE, auto_monitor=False)
        self.pv_bypass = PV(PV_BYPASS, auto_monitor=False)
        self.pv_alarm = PV(PV_ALARM, auto_monitor=False)
        self.pv_lamp_fault = PV(PV_LAMP_FAULT, auto_monitor=False)
        self.pv_lamp_ready = PV(PV_LAMP_READY, auto_monitor=False)
        self.pv_backoff = PV(PV_BACKOFF, auto_monitor=False)
        self.pv_time_state = PV(PV_TIME_STATE, auto_monitor=False)
        self.pv_time_on = PV(PV_TIME_ON, auto_monitor=False)
        self.pv_qload = PV(PV_QLOAD, auto_monitor=True)
        self.pv_spike = PV(PV_SPIKE, auto_monitor=True)
        self.pv_surge = PV(PV_SURGE, auto_monitor=True)

        self.pv_hist_time = PV(PV_HIST_TIME, auto_monitor=False)
        self.pv_hist_temp = PV(PV_HIST_TEMP, auto_monitor=False)
        self.pv_hist_level = PV(PV_HIST_LEVEL, auto_monitor=False)
        self.pv_hist_current = PV(PV_HIST_CURRENT, auto_monitor=False)

        self._last_cmd_val: int = 0
        self._now_ms: int = 0

        conns = [
            (PV_STATE, self.pv_state),
            (PV_STATE_TEXT, self.pv_state_text),
            (PV_STATUS_TEXT, self.pv_status_text),
            (PV_FAULT, self.pv_fault),
            (PV_CMD, self.pv_cmd),
            (PV_TEMP, self.pv_temp),
            (PV_RATE, self.pv_rate),
            (PV_PROGRESS, self.pv_progress),
            (PV_TARGET, self.pv_target),
            (PV_LEVEL, self.pv_level),
            (PV_CURRENT, self.pv_current),
            (PV_VOLTAGE, self.pv_voltage),
            (PV_BYPASS, self.pv_bypass),
            (PV_ALARM, self.pv_alarm),
            (PV_LAMP_FAULT, self.pv_lamp_fault),
            (PV_LAMP_READY, self.pv_lamp_ready),
            (PV_BACKOFF, self.pv_backoff),
            (PV_TIME_STATE, self.pv_time_state),
            (PV_TIME_ON, self.pv_time_on),
            (PV_QLOAD, self.pv_qload),
            (PV_SPIKE, self.pv_spike),
            (PV_SURGE, self.pv_surge),
            (PV_HIST_TIME, self.pv_hist_time),
            (PV_HIST_TEMP, self.pv_hist_temp),
            (PV_HIST_LEVEL, self.pv_hist_level),
            (PV_HIST_CURRENT, self.pv_hist_current),
        ]
        failed = []
        for name, obj in conns:
            if not obj.wait_for_connection(timeout=1.0):
                failed.append(name)
        if self.verbose:
            print(f"[pv_bridge] connected={len(conns)-len(failed)}/{len(conns)}")
            if failed:
                print("[pv_bridge] missing:", ", ".join(failed))

    def _read(self, pv: PV, default: float) -> float:
        try:
            v = pv.get(timeout=0.2)
        except Exception as e:
            if self.verbose:
                print(f"[pv_bridge] read error {getattr(pv, 'pvname', pv)}: {e}")
            return float(default)
        return float(v) if v is not None else float(default)

    def _is_pv_connected(self, pv: PV) -> bool:
        try:
            return bool(getattr(pv, "connected", False))
        except Exception:
            return False

    def _write(self, pv: PV, val: float | int | bool | str) -> None:
        """Put val only when it differs from the last put (floats use the eps map)."""
        if not self._is_pv_connected(pv):
            return
        name = pv.pvname
        last = self._last_put.get(name)
        if isinstance(val, str):
            val = val[:39]  # stringin VAL holds 40 chars
            changed = last != val
        elif isinstance(val, (bool, int)):
            val = int(val)
            changed = last != val
        else:
            val = float(val)
            changed = not isinstance(last, float) or abs(last - val) > self._eps_map.get(name, 0.0)
        if changed:
            pv.put(val, wait=False)
            self._last_put[name] = val

    def _dispatch(self, cmd: MainCmd) -> None:
        now = self._now_ms
        if cmd is MainCmd.START:
            self.ctrl.start(now, self.plant.t)
        elif cmd is MainCmd.STOP:
            self.ctrl.stop(now)
        elif cmd is MainCmd.OFF:
            self.ctrl.off(now)
        elif cmd is MainCmd.POWER_ON:
            self.ctrl.power_on(now)
        if self.verbose and cmd is not MainCmd.NONE:
            print(f"[pv_bridge] cmd {cmd.name} -> {self.ctrl.state_name}")

    def _apply_sim_inputs(self) -> None:
        self.plant.q_load = self._read(self.pv_qload, self.plant.q_load)
        self.plant.surge_v = self._read(self.pv_surge, self.plant.surge_v)
        if self._read(self.pv_spike, 0.0) > 0.5:
            self.plant.inject_spike(self.cfg.spike_threshold_a * 2.0)
            # spike PV is a momentary button
            if self._is_pv_connected(self.pv_spike):
                self.pv_spike.put(0, wait=False)

    def _publish(self, out) -> None:
        c = self.ctrl
        now = self._now_ms
        self._write(self.pv_state, int(out.state))
        self._write(self.pv_state_text, c.state_name)
        self._write(self.pv_status_text, out.status_text)
        self._write(self.pv_fault, int(c.fault_reason))
        self._write(self.pv_temp, self.plant.t)
        self._write(self.pv_rate, c.history.cooling_rate_k_per_min())
        self._write(
            self.pv_progress,
            cooldown_percent(self.plant.t, self.cfg.warm_reference_k, self.cfg.setpoint_k),
        )
        self._write(self.pv_target, out.actuator_target)
        self._write(self.pv_level, c.actuator_level)
        self._write(self.pv_current, self.plant.current_a)
        self._write(self.pv_voltage, self.plant.voltage_v)
        self._write(self.pv_bypass, out.bypass_relay)
        self._write(self.pv_alarm, out.alarm_relay)
        self._write(self.pv_lamp_fault, out.fault_indicator.value)
        self._write(self.pv_lamp_ready, out.ready_indicator.value)
        self._write(self.pv_backoff, out.backoff_event_count)
        self._write(self.pv_time_state, format_hms(c.time_in_state_ms(now)))
        self._write(self.pv_time_on, format_hms(c.on_duration_ms(now)))

    def _publish_history(self) -> None:
        try:
            t_ms, temps = self.ctrl.history.as_arrays()
            hist_targets = (
                (self.pv_hist_time, t_ms.astype(float) / 1000.0),
                (self.pv_hist_temp, temps),
                (self.pv_hist_level, np.asarray(self._hist_level, dtype=float)),
                (self.pv_hist_current, np.asarray(self._hist_current, dtype=float)),
            )
            for pv, data in hist_targets:
                if not self._is_pv_connected(pv):
                    continue
                pv.put(np.asarray(data, dtype=float), wait=False)
        except Exception as e:
            if self.verbose:
                print(f"[pv_bridge] history publish error: {e}")

    def loop(self) -> None:
        self._apply_init_from_yaml()
        self._last_cmd_val = int(self._read(self.pv_cmd, 0))
        # level/current waveforms are sampled alongside the temperature history
        self._hist_level: list[float] = []
        self._hist_current: list[float] = []
        hist_len = self.cfg.history_capacity

        if self.verbose:
            print(f"[pv_bridge] loop start tick={self.cfg.tick_interval_ms}ms q_load={self.plant.q_load}")
        # Use monotonic timing so processing time doesn't add to the period
        next_tick = time.perf_counter()
        while True:
            cmd_val = int(self._read(self.pv_cmd, self._last_cmd_val))
            if cmd_val != self._last_cmd_val:
                self._dispatch(parse_main_cmd(cmd_val))
                self._last_cmd_val = cmd_val
            self._apply_sim_inputs()

            out = self.ctrl.tick(self._now_ms, self.plant.t, self.plant.current_a, self.plant.voltage_v)
            newest = self.ctrl.history.newest()
            if newest is not None and newest.timestamp_ms == self._now_ms:
                self._hist_level.append(float(self.ctrl.actuator_level))
                self._hist_current.append(float(self.plant.current_a))
                del self._hist_level[:-hist_len]
                del self._hist_current[:-hist_len]
            self.plant.step(self.ctrl.actuator_level, not out.bypass_relay, self.cfg.setpoint_k, self.dt)
            self._publish(out)

            self._hist_elapsed += self.dt
            if self._hist_elapsed >= self.hist_interval:
                self._hist_elapsed = 0.0
                self._publish_history()

            self._now_ms += self.cfg.tick_interval_ms
            next_tick += self.dt
            now = time.perf_counter()
            sleep_for = next_tick - now
            if sleep_for < 0.0:
                # If we're lagging, resync to avoid drift
                next_tick = now
                if self.verbose and (-sleep_for) > (3.0 * self.dt):
                    print(f"[pv_bridge] loop lag {(-sleep_for):.3f}s > 3*tick")
                sleep_for = 0.0
            time.sleep(sleep_for)

    def _apply_init_from_yaml(self) -> None:
        """Apply initial PV values from an optional YAML file.

        Format (tools/pv_init.yaml):
        pvs:
          CRYO:CC:SIM:QLOAD: 10
          CRYO:CC:CMD:MAIN: 0
        """
        cfg_path = self.init_config
        if not cfg_path:
            default_path = _ROOT / "tools" / "pv_init.yaml"
            if default_path.exists():
                cfg_path = str(default_path)
        if not cfg_path:
            return
        try:
            with open(cfg_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            if self.verbose:
                print(f"[pv_bridge] init-config not found: {cfg_path}")
            return
        pvs = data.get("pvs", {}) if isinstance(data, dict) else {}
        if not isinstance(pvs, dict):
            if self.verbose:
                print("[pv_bridge] init-config: 'pvs' must be a mapping")
            return
        for name, val in pvs.items():
            pv = PV(str(name), auto_monitor=False)
            if not pv.wait_for_connection(timeout=0.5):
                if self.verbose:
                    print(f"[pv_bridge] init-config: not connected: {name}")
                continue
            pv.put(val, wait=False)


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="[%(name)s] %(message)s")
    bridge = PVBridge(
        args.config,
        args.qload,
        t0=args.t0,
        verbose=args.verbose,
        init_config=args.init_config,
        hist_interval=args.hist_interval,
    )
    try:
        bridge.loop()
    except KeyboardInterrupt:
        print("\n[pv_bridge] stopped by user")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
