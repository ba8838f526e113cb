#!/usr/bin/env python3
"""
Deterministic scenario replay for the supervisory controller.

Time is explicit in every step, so a recorded input trace always reproduces
the same transitions. Plan YAML example:

config:
  settle_duration_ms: 1000
steps:
  - power_on: { t: 0 }
  - update: { t: 1500, temp: 295.0 }
  - expect: { state: Idle }
  - start: { t: 1600, temp: 295.0 }
  - tick: { t: 1800, temp: 290.0, current: 0.5, voltage: 110, repeat: 10, step: 200, dtemp: -0.5 }
  - expect: { state: CoarseCooldown, target_min: 1 }
  - update: { t: 5000, temp: 200.0, voltage: 130.0 }
  - expect: { state: Fault, fault: OVER_VOLTAGE, alarm: true }

Usage:
  python -m cryoctl.cli.replay --plan scenario.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict

import yaml

from cryoctl.logic import ConfigError, ControllerConfig, ControllerState, FaultReason, SupervisoryController


class ScenarioError(ValueError):
    """Malformed plan or step."""


def load_plan(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ScenarioError(f"{path}: plan must be a mapping")
    return data


def _state_from(value: Any) -> ControllerState:
    if isinstance(value, int):
        return ControllerState(value)
    key = str(value).strip()
    for s in ControllerState:
        if key in (s.name, s.label):
            return s
    raise ScenarioError(f"unknown state '{value}'")


def _fault_from(value: Any) -> FaultReason:
    if isinstance(value, int):
        return FaultReason(value)
    key = str(value).strip().upper()
    if key not in FaultReason.__members__:
        raise ScenarioError(f"unknown fault reason '{value}'")
    return FaultReason[key]


class ScenarioRunner:
    def __init__(self, cfg: ControllerConfig | None = None) -> None:
        self.ctrl = SupervisoryController(cfg)
        self.now_ms = 0
        self.last = None  # last Output

    @classmethod
    def from_plan(cls, plan: Dict[str, Any]) -> "ScenarioRunner":
        return cls(ControllerConfig.from_yaml(plan.get("config")))

    def _time(self, args: Dict[str, Any]) -> int:
        if "t" not in args:
            raise ScenarioError(f"step needs an explicit time 't': {args}")
        t = int(args["t"])
        if t < self.now_ms:
            raise ScenarioError(f"time went backwards: {t} < {self.now_ms}")
        self.now_ms = t
        return t

    def run_step(self, step: Dict[str, Any]) -> None:
        if not isinstance(step, dict) or len(step) != 1:
            raise ScenarioError(f"step must be a single-key mapping: {step}")
        (kind, args), = step.items()
        args = args or {}
        c = self.ctrl

        if kind == "power_on":
            c.power_on(self._time(args))
            return
        if kind == "start":
            if "temp" not in args:
                raise ScenarioError(f"start needs the cold-stage temperature: {args}")
            c.start(self._time(args), float(args["temp"]))
            return
        if kind == "stop":
            c.stop(self._time(args))
            return
        if kind == "off":
            c.off(self._time(args))
            return
        if kind == "update":
            self.last = c.update(
                float(args.get("temp", 295.0)),
                float(args.get("rate", 0.0)),
                float(args.get("voltage", 0.0)),
                bool(args.get("stalled", False)),
                bool(args.get("overstroke", False)),
                self._time(args),
            )
            return
        if kind == "tick":
            t = self._time(args)
            temp = float(args.get("temp", 295.0))
            repeat = int(args.get("repeat", 1))
            step_ms = int(args.get("step", c.cfg.tick_interval_ms))
            dtemp = float(args.get("dtemp", 0.0))
            for i in range(repeat):
                self.now_ms = t + i * step_ms
                self.last = c.tick(
                    self.now_ms,
                    temp + i * dtemp,
                    float(args.get("current", 0.0)),
                    float(args.get("voltage", 0.0)),
                )
            return
        if kind == "expect":
            self._expect(args)
            return
        raise ScenarioError(f"Unknown step: {step}")

    def _expect(self, e: Dict[str, Any]) -> None:
        c = self.ctrl
        if "state" in e:
            want = _state_from(e["state"])
            assert c.state is want, f"expect state failed: {c.state_name} != {want.label}"
        if "fault" in e:
            want = _fault_from(e["fault"])
            assert c.fault_reason is want, f"expect fault failed: {c.fault_reason.name} != {want.name}"
        if "running" in e:
            assert c.is_running() == bool(e["running"]), f"expect running failed: {c.is_running()}"
        if "backoff" in e:
            got = c.backoff.event_count
            assert got == int(e["backoff"]), f"expect backoff failed: {got} != {e['backoff']}"
        out = self.last
        for key in ("target", "target_min", "target_max", "bypass", "alarm"):
            if key in e and out is None:
                raise ScenarioError(f"expect '{key}' needs a prior update/tick")
        if "target" in e:
            assert out.actuator_target == int(e["target"]), f"expect target failed: {out.actuator_target} != {e['target']}"
        if "target_min" in e:
            assert out.actuator_target >= int(e["target_min"]), f"expect target_min failed: {out.actuator_target}"
        if "target_max" in e:
            assert out.actuator_target <= int(e["target_max"]), f"expect target_max failed: {out.actuator_target}"
        if "bypass" in e:
            assert out.bypass_relay == bool(e["bypass"]), f"expect bypass failed: {out.bypass_relay}"
        if "alarm" in e:
            assert out.alarm_relay == bool(e["alarm"]), f"expect alarm failed: {out.alarm_relay}"

    def run(self, plan: Dict[str, Any], verbose: bool = False) -> int:
        steps = plan.get("steps") or []
        if not isinstance(steps, list):
            raise ScenarioError("'steps' must be a list")
        for i, step in enumerate(steps, 1):
            if verbose:
                print(f"[replay] step {i}: {list(step.keys())[0] if isinstance(step, dict) and step else step}")
            self.run_step(step)
        return len(steps)


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser(description="Replay a controller scenario plan")
    ap.add_argument("--plan", required=True, help="YAML plan path")
    ap.add_argument("--verbose", action="store_true", help="Print each step and controller log")
    args = ap.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="[%(name)s] %(message)s")
    try:
        plan = load_plan(args.plan)
        runner = ScenarioRunner.from_plan(plan)
        print(f"[replay] steps={len(plan.get('steps') or [])} plan={args.plan}")
        runner.run(plan, verbose=args.verbose)
    except (ScenarioError, ConfigError) as exc:
        print(f"[replay] invalid plan: {exc}")
        return 2
    except AssertionError as exc:
        print(f"[replay] FAILED at t={runner.now_ms} ms: {exc}")
        return 1
    print(f"[replay] completed state={runner.ctrl.state_name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
