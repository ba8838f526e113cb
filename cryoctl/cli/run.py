#!/usr/bin/env python3
"""
Closed-loop CLI: run the supervisory controller against the CryoPlant model
and print a CSV trace.

Example:
  python -m cryoctl.cli.run --seconds 1800 --every 50
  python -m cryoctl.cli.run --config tools/controller.yaml --spike-at 600 --spike-at 620
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from cryoctl.core.model import CryoPlant
from cryoctl.logic import SupervisoryController, load_config
from cryoctl.logic.conversions import format_hms


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the cryocooler controller against the plant simulator")
    p.add_argument("--config", type=str, default=None, help="controller YAML (default: built-in values)")
    p.add_argument("--seconds", type=float, default=1800.0, help="Total simulated seconds")
    p.add_argument("--tick-ms", type=int, default=0, help="Tick interval in ms (0 = config value)")
    p.add_argument("--start-at", type=float, default=2.0, help="Simulated second of the START command")
    p.add_argument("--stop-at", type=float, default=-1.0, help="Simulated second of a STOP command (<0: never)")
    p.add_argument("--power-on", action="store_true", help="Pass through Initialize before START")
    p.add_argument("--t0", type=float, default=None, help="Initial cold-stage temperature (K)")
    p.add_argument("--qload", type=float, default=10.0, help="Heat load on the cold stage (W)")
    p.add_argument("--spike-at", type=float, action="append", default=[], help="Inject a current spike at this second")
    p.add_argument("--spike-amps", type=float, default=4.0, help="Injected spike amplitude (A)")
    p.add_argument("--surge-at", type=float, default=-1.0, help="Raise line voltage above the limit at this second")
    p.add_argument("--every", type=int, default=25, help="Print one row every N ticks")
    p.add_argument("--realtime", action="store_true", help="Sleep to realtime")
    p.add_argument("--verbose", action="store_true", help="Log controller transitions to stderr")
    return p.parse_args(argv)


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="[%(name)s] %(message)s")
    cfg = load_config(args.config)
    tick_ms = args.tick_ms or cfg.tick_interval_ms

    plant = CryoPlant(full_scale=cfg.full_scale, q_load=args.qload)
    plant.reset(args.t0)
    ctrl = SupervisoryController(cfg, now_ms=0)
    if args.power_on:
        ctrl.power_on(0)

    start_ms = int(args.start_at * 1000)
    stop_ms = int(args.stop_at * 1000) if args.stop_at >= 0 else None
    surge_ms = int(args.surge_at * 1000) if args.surge_at >= 0 else None
    spikes_ms = sorted(int(s * 1000) for s in args.spike_at)
    started = False

    steps = int(args.seconds * 1000 / tick_ms)
    print("# time_s, state, temp_k, rate_k_min, target, level, normal, alarm, backoff, on_time")
    for i in range(steps + 1):
        now = i * tick_ms
        if not started and now >= start_ms:
            ctrl.start(now, plant.t)
            started = True
        if stop_ms is not None and now >= stop_ms:
            ctrl.stop(now)
            stop_ms = None
        if surge_ms is not None and now >= surge_ms:
            plant.surge_v = cfg.overvoltage_limit_v - plant.line_voltage_v + 5.0
            surge_ms = None
        while spikes_ms and now >= spikes_ms[0]:
            plant.inject_spike(args.spike_amps)
            spikes_ms.pop(0)

        out = ctrl.tick(now, plant.t, plant.current_a, plant.voltage_v)
        plant.step(ctrl.actuator_level, not out.bypass_relay, cfg.setpoint_k, tick_ms / 1000.0)

        if i % max(1, args.every) == 0:
            print(
                f"{now / 1000.0:.1f}, {out.state.label}, {plant.t:.2f}, "
                f"{ctrl.history.cooling_rate_k_per_min():.3f}, {out.actuator_target}, "
                f"{ctrl.actuator_level}, {int(not out.bypass_relay)}, {int(out.alarm_relay)}, "
                f"{out.backoff_event_count}, {format_hms(ctrl.on_duration_ms(now))}"
            )
        if args.realtime:
            time.sleep(tick_ms / 1000.0)

    print(f"[run] final state={ctrl.state_name} status=\"{ctrl.status_text}\"")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
