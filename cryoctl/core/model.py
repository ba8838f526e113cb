from __future__ import annotations

"""
First-order cold-stage simulator for dry runs of the supervisory controller.

Intentionally simple: one thermal node plus synthetic line voltage and
actuator current so the safety detectors have something to look at.
"""

from dataclasses import dataclass, field


@dataclass
class CryoPlant:
    """Single-node thermal model of the cold stage with two drive circuits.

    Cold stage dynamics (first order):
        dT/dt = (Tamb - T)/tau_env + (Qload - Qcool)/cap

    Bypass relay: Qcool follows the slewed actuator level,
        Qcool = qmax * level/full_scale * lift(T)
    Normal relay: an internal PI regulator holds the setpoint,
        Qcool = PI(T - Tsp) limited to qmax * lift(T)

    lift(T) = (T - t_floor)/(tamb - t_floor) models the cooler losing
    capacity as the stage approaches its floor temperature.

    Units: K, W, seconds, V, A.
    """

    cap: float = 800.0          # effective heat capacity [J/K]
    tau_env: float = 3600.0     # parasitic leak time constant [s]
    tamb: float = 290.0
    t_floor: float = 60.0       # no lift at or below this temperature
    t: float = 290.0
    qmax: float = 2000.0        # cooling power at full scale and ambient
    q_load: float = 10.0        # heat load on the stage
    full_scale: int = 4095
    # Normal-circuit regulator
    k_p: float = 200.0
    k_i: float = 5.0
    _ei: float = field(default=0.0, init=False, repr=False)
    # Electrical
    line_voltage_v: float = 110.0
    surge_v: float = 0.0        # added to line voltage (fault injection)
    i_idle_a: float = 0.3
    i_full_a: float = 3.0
    _spike_a: float = field(default=0.0, init=False, repr=False)
    _spike_left_s: float = field(default=0.0, init=False, repr=False)
    qcool: float = field(default=0.0, init=False)
    current_a: float = field(default=0.3, init=False)

    def reset(self, t0: float | None = None) -> None:
        self.t = self.tamb if t0 is None else float(t0)
        self._ei = 0.0
        self.qcool = 0.0
        self.current_a = self.i_idle_a
        self._spike_a = 0.0
        self._spike_left_s = 0.0
        self.surge_v = 0.0

    def lift(self) -> float:
        span = max(1e-6, self.tamb - self.t_floor)
        return max(0.0, min(1.0, (self.t - self.t_floor) / span))

    def inject_spike(self, amps: float, duration_s: float = 0.5) -> None:
        self._spike_a = float(amps)
        self._spike_left_s = float(duration_s)

    @property
    def voltage_v(self) -> float:
        return self.line_voltage_v + self.surge_v

    def _controller(self, tsp: float, dt: float, qlim: float) -> float:
        """PI controller mapping error to cooling power with anti-windup."""
        err = self.t - tsp
        ei = self._ei + err * dt
        u = self.k_p * err + self.k_i * ei
        u_sat = max(0.0, min(qlim, u))
        if self.k_i > 0:
            self._ei = ei + (u_sat - u) / self.k_i
        else:
            self._ei = ei
        return u_sat

    def step(self, level: int, normal: bool, tsp: float, dt: float) -> float:
        """Advance dt seconds; return the new cold-stage temperature."""
        qlim = self.qmax * self.lift()
        if normal:
            qcool = self._controller(tsp, dt, qlim)
        else:
            self._ei = 0.0
            frac = max(0.0, min(1.0, level / float(self.full_scale)))
            qcool = qlim * frac
        self.qcool = qcool

        dT = (self.tamb - self.t) / self.tau_env + (self.q_load - qcool) / self.cap
        self.t += dT * dt

        drive = qcool / self.qmax if self.qmax > 0 else 0.0
        current = self.i_idle_a + self.i_full_a * drive
        if self._spike_left_s > 0.0:
            current += self._spike_a
            self._spike_left_s -= dt
        self.current_a = current
        return self.t
