from __future__ import annotations

"""
Shared enums used across logic modules.

Includes:
- MainCmd: operator commands (numeric, as written by PV/CLI drivers)
- ControllerState: supervisory states, values aligned with the state PV
- FaultReason: why the controller is in Fault
- IndicatorMode: lamp modes selected per state (blink phase is external)
"""

from enum import Enum, IntEnum


class MainCmd(IntEnum):
    NONE = 0
    START = 1
    STOP = 2
    OFF = 3
    POWER_ON = 4


class ControllerState(IntEnum):
    OFF = -1
    INITIALIZE = 0
    IDLE = 1
    COARSE_COOLDOWN = 2
    FINE_COOLDOWN = 3
    OVERSHOOT = 4
    SETTLE = 5
    BASELINE = 6
    OPERATING = 7
    FAULT = 8

    @property
    def label(self) -> str:
        """Short machine-readable name, e.g. 'CoarseCooldown'."""
        return "".join(part.capitalize() for part in self.name.split("_"))


COOLDOWN_STATES = frozenset({ControllerState.COARSE_COOLDOWN, ControllerState.FINE_COOLDOWN})

# Relay is switched to Normal only once setpoint has been reached and held
NORMAL_RELAY_STATES = frozenset({
    ControllerState.SETTLE,
    ControllerState.BASELINE,
    ControllerState.OPERATING,
})


class FaultReason(IntEnum):
    NONE = 0
    OVER_VOLTAGE = 1
    TEMPERATURE_STALL = 2
    EXCESSIVE_BACKOFF = 3


class IndicatorMode(Enum):
    OFF = "off"
    SOLID_RED = "solid-red"
    SOLID_GREEN = "solid-green"
    SOLID_AMBER = "solid-amber"
    FLASH_FAST_RED = "flash-fast-red"
    FLASH_SLOW_RED = "flash-slow-red"
    FLASH_FAST_GREEN = "flash-fast-green"
    FLASH_SLOW_GREEN = "flash-slow-green"


def parse_main_cmd(value: int | str | MainCmd) -> MainCmd:
    """Translate a raw command value (number or name) to MainCmd.

    Unknown values map to MainCmd.NONE so a stray PV write is ignored.
    """
    if isinstance(value, str):
        key = value.strip().upper().replace("-", "_")
        if key in MainCmd.__members__:
            return MainCmd[key]
        try:
            value = int(key)
        except ValueError:
            return MainCmd.NONE
    try:
        return MainCmd(int(value))
    except ValueError:
        return MainCmd.NONE
