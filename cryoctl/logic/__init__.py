"""Logic layer exports for the cryocooler controller.

Provides a stable import surface so callers can do:

  from cryoctl.logic import SupervisoryController, ControllerConfig, ControllerState
"""

from .commands import (  # re-export
    ControllerState,
    FaultReason,
    IndicatorMode,
    MainCmd,
    parse_main_cmd,
)
from .config import ConfigError, ControllerConfig, load_config  # re-export
from .history import TemperatureHistory, TemperatureSample  # re-export
from .interlock import BackoffState, InterlockLogic, InterlockThresholds  # re-export
from .overstroke import CurrentAnomalyDetector, CurrentBaseline  # re-export
from .planner import ActuatorPlanner, apply_backoff, ramp_toward, temperature_to_level  # re-export
from .supervisor import Output, SupervisoryController  # re-export

__all__ = [
    "ControllerState",
    "FaultReason",
    "IndicatorMode",
    "MainCmd",
    "parse_main_cmd",
    "ConfigError",
    "ControllerConfig",
    "load_config",
    "TemperatureHistory",
    "TemperatureSample",
    "BackoffState",
    "InterlockLogic",
    "InterlockThresholds",
    "CurrentAnomalyDetector",
    "CurrentBaseline",
    "ActuatorPlanner",
    "apply_backoff",
    "ramp_toward",
    "temperature_to_level",
    "Output",
    "SupervisoryController",
]
