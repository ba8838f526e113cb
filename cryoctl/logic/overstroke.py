from __future__ import annotations

"""
Overstroke (back-EMF current spike) detection.

An exponential moving average tracks the normal actuator current. A sample
is an overstroke when it exceeds the baseline by more than the threshold,
no earlier event is still pending, and the debounce interval has elapsed.
The flag is edge-triggered: one physical transient spanning many samples
yields one logical event. The consumer must clear() it after handling.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CurrentBaseline:
    ema_value: float = 0.0
    primed_count: int = 0
    overstroke_flagged: bool = False
    last_event_ms: int = 0


class CurrentAnomalyDetector:
    def __init__(
        self,
        *,
        alpha: float = 0.08,
        prime_readings: int = 20,
        threshold_a: float = 2.0,
        debounce_ms: int = 2000,
    ) -> None:
        if not (0.0 < alpha <= 1.0):
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = float(alpha)
        self.prime_readings = int(prime_readings)
        self.threshold_a = float(threshold_a)
        self.debounce_ms = int(debounce_ms)
        self.baseline = CurrentBaseline()
        self.last_current_a: float = 0.0

    @classmethod
    def from_config(cls, cfg) -> "CurrentAnomalyDetector":
        return cls(
            alpha=cfg.ema_alpha,
            prime_readings=cfg.prime_readings,
            threshold_a=cfg.spike_threshold_a,
            debounce_ms=cfg.debounce_ms,
        )

    @property
    def primed(self) -> bool:
        return self.baseline.primed_count >= self.prime_readings

    def sample(self, current_a: float, now_ms: int) -> bool:
        """Feed one current reading; return True if an event was flagged now."""
        b = self.baseline
        current_a = float(current_a)
        self.last_current_a = current_a

        # 초기 구간: 평활 없이 그대로 시드
        if b.primed_count < self.prime_readings:
            b.ema_value = current_a
            b.primed_count += 1
            return False

        b.ema_value += self.alpha * (current_a - b.ema_value)
        delta = current_a - b.ema_value
        if (
            delta > self.threshold_a
            and not b.overstroke_flagged
            and (now_ms - b.last_event_ms) >= self.debounce_ms
        ):
            b.overstroke_flagged = True
            b.last_event_ms = int(now_ms)
            logger.info("overstroke detected: %.2f A over baseline %.2f A", delta, b.ema_value)
            return True
        return False

    def has_flag(self) -> bool:
        return self.baseline.overstroke_flagged

    def clear(self) -> None:
        self.baseline.overstroke_flagged = False

    def reset(self) -> None:
        """Forget the baseline entirely; detection re-primes from scratch."""
        self.baseline = CurrentBaseline()
        self.last_current_a = 0.0
