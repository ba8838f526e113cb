import logging

import pytest

from cryoctl.logic import (
    ControllerConfig,
    ControllerState as S,
    FaultReason,
    IndicatorMode as M,
    SupervisoryController,
)

LINE_V = 110.0


def make(**overrides) -> SupervisoryController:
    return SupervisoryController(ControllerConfig(**overrides))


def step(c: SupervisoryController, temp_k: float, now_ms: int, *, voltage: float = LINE_V,
         rate: float = 0.0, stalled: bool = False, overstroke: bool = False):
    return c.update(temp_k, rate, voltage, stalled, overstroke, now_ms)


def running_in(state_temp: float, **overrides) -> SupervisoryController:
    c = make(**overrides)
    c.start(0, state_temp)
    return c


# --- Lifecycle / commands ---

def test_starts_off_with_everything_idle():
    c = make()
    out = step(c, 295.0, 0)
    assert c.state is S.OFF
    assert out.actuator_target == 0
    assert out.bypass_relay is True
    assert out.alarm_relay is False
    assert (out.fault_indicator, out.ready_indicator) == (M.OFF, M.OFF)
    assert out.status_text == "System is off"


def test_power_on_runs_amber_lamp_test_then_idle():
    c = make()
    c.power_on(0)
    out = step(c, 295.0, 1499)
    assert c.state is S.INITIALIZE
    assert (out.fault_indicator, out.ready_indicator) == (M.SOLID_AMBER, M.SOLID_AMBER)
    out = step(c, 295.0, 1500)
    assert c.state is S.IDLE
    assert out.fault_indicator is M.SOLID_RED
    assert out.status_text == "Cold stage is warm; dewar is not cooling"


def test_power_on_ignored_unless_off():
    c = running_in(295.0)
    c.power_on(100)
    assert c.state is S.COARSE_COOLDOWN


@pytest.mark.parametrize("temp_k,expected", [
    (295.0, S.COARSE_COOLDOWN),
    (85.0, S.COARSE_COOLDOWN),
    (83.0, S.FINE_COOLDOWN),
    (80.0, S.SETTLE),
    (76.0, S.SETTLE),
    (70.0, S.OVERSHOOT),
])
def test_start_resumes_from_current_temperature(temp_k: float, expected: S):
    c = make()
    c.start(0, temp_k)
    assert c.is_running()
    assert c.state is expected


def test_start_is_idempotent():
    c = make()
    c.start(1000, 295.0)
    c.start(5000, 79.0)
    assert c.state is S.COARSE_COOLDOWN
    assert c.on_duration_ms(11000) == 10000
    assert c.time_in_state_ms(11000) == 10000


def test_stop_returns_to_idle_and_freezes_on_time():
    c = make()
    c.start(1000, 295.0)
    c.stop(4000)
    assert c.state is S.IDLE
    assert not c.is_running()
    assert c.on_duration_ms(60_000) == 3000


def test_stop_when_not_running_is_ignored():
    c = make()
    c.power_on(0)
    step(c, 295.0, 2000)
    c.stop(3000)
    assert c.state is S.IDLE
    assert c.time_in_state_ms(3000) == 1000


def test_off_from_any_state():
    c = running_in(150.0)
    c.off(100)
    assert c.state is S.OFF
    assert not c.is_running()


# --- Cooldown progression ---

def test_coarse_to_fine_strictly_below_threshold():
    c = running_in(200.0)
    step(c, 85.0, 200)
    assert c.state is S.COARSE_COOLDOWN
    step(c, 84.9, 400)
    assert c.state is S.FINE_COOLDOWN
    assert c.status_text == "Cooling; cold stage is below 85K"


def test_fine_back_to_coarse_when_warming():
    c = running_in(83.0)
    out = step(c, 85.0, 200)
    assert c.state is S.FINE_COOLDOWN
    assert out.actuator_target > 0
    out = step(c, 85.5, 400)
    assert c.state is S.COARSE_COOLDOWN
    assert out.actuator_target > 0
    assert c.status_text == "Cooling; cold stage is above 85K"


def test_fine_to_overshoot_to_settle():
    c = running_in(83.0)
    out = step(c, 75.9, 200)
    assert c.state is S.OVERSHOOT
    assert out.actuator_target == 0
    assert out.ready_indicator is M.FLASH_FAST_GREEN
    step(c, 76.0, 400)
    assert c.state is S.SETTLE


def test_fine_into_band_goes_to_settle():
    c = running_in(83.0)
    out = step(c, 80.0, 200)
    assert c.state is S.SETTLE
    assert out.bypass_relay is False


def test_settle_timer_restarts_after_leaving_band():
    c = running_in(79.0)
    step(c, 79.0, 30_000)
    step(c, 81.0, 40_000)
    assert c.state is S.SETTLE
    step(c, 79.0, 50_000)
    step(c, 79.0, 100_000)
    assert c.state is S.SETTLE
    step(c, 79.0, 110_000)
    assert c.state is S.BASELINE


def test_settle_completes_after_full_dwell():
    c = running_in(78.0)
    step(c, 78.0, 59_999)
    assert c.state is S.SETTLE
    step(c, 78.0, 60_000)
    assert c.state is S.BASELINE


def test_baseline_then_operating():
    c = running_in(78.0, settle_duration_ms=0)
    step(c, 78.0, 0)
    assert c.state is S.BASELINE
    step(c, 78.0, 299_999)
    assert c.state is S.BASELINE
    out = step(c, 78.0, 300_000)
    assert c.state is S.OPERATING
    assert out.bypass_relay is False
    assert out.ready_indicator is M.SOLID_GREEN
    assert out.fault_indicator is M.OFF


def test_operating_holds_without_commands():
    c = running_in(78.0, settle_duration_ms=0, baseline_duration_ms=0)
    step(c, 78.0, 0)
    step(c, 78.0, 1)
    assert c.state is S.OPERATING
    step(c, 90.0, 10_000)
    assert c.state is S.OPERATING


def test_target_follows_temperature_only_in_cooldown():
    c = running_in(200.0)
    out = step(c, 200.0, 200)
    assert out.actuator_target == 1793
    assert out.bypass_relay is True
    assert out.fault_indicator is M.FLASH_FAST_RED


# --- Safety guard ---

def test_overvoltage_wins_over_everything():
    c = running_in(100.0)
    out = step(c, 80.0, 200, voltage=130.0, stalled=True, overstroke=True)
    assert c.state is S.FAULT
    assert c.fault_reason is FaultReason.OVER_VOLTAGE
    assert c.backoff.event_count == 0
    assert out.actuator_target == 0
    assert out.alarm_relay is True
    assert out.bypass_relay is True
    assert out.status_text == "Fault: Line voltage exceeded safe limit"
    assert not c.is_running()


def test_voltage_at_limit_is_allowed():
    c = running_in(200.0)
    step(c, 200.0, 200, voltage=120.0)
    assert c.state is S.COARSE_COOLDOWN


def test_overvoltage_trips_outside_cooldown():
    c = make()
    c.power_on(0)
    step(c, 295.0, 100, voltage=121.0)
    assert c.state is S.FAULT


def test_stall_faults_only_during_cooldown():
    c = running_in(79.0)
    step(c, 79.0, 200, stalled=True)
    assert c.state is S.SETTLE

    c = running_in(150.0)
    out = step(c, 150.0, 200, stalled=True, overstroke=True)
    assert c.fault_reason is FaultReason.TEMPERATURE_STALL
    assert c.backoff.event_count == 0
    assert out.status_text == "Fault: Temperature stalled during cooldown"


def test_overstroke_backs_off_target():
    c = running_in(100.0)
    out = step(c, 100.0, 200, overstroke=True)
    assert c.state is S.COARSE_COOLDOWN
    assert out.backoff_event_count == 1
    assert out.actuator_target == 3680 - 200


def test_nine_backoffs_then_fault_on_tenth():
    c = running_in(100.0)
    for i in range(9):
        step(c, 100.0, 200 * (i + 1), overstroke=True)
    assert c.state is S.COARSE_COOLDOWN
    assert c.backoff.event_count == 9
    assert c.backoff.cumulative_offset == 1800
    step(c, 100.0, 2000, overstroke=True)
    assert c.state is S.FAULT
    assert c.fault_reason is FaultReason.EXCESSIVE_BACKOFF


def test_overstroke_ignored_when_not_running():
    c = make()
    c.power_on(0)
    step(c, 295.0, 2000)
    step(c, 295.0, 2200, overstroke=True)
    assert c.state is S.IDLE
    assert c.backoff.event_count == 0


def test_backoff_resets_on_new_start():
    c = running_in(100.0)
    step(c, 100.0, 200, overstroke=True)
    c.stop(400)
    c.start(600, 100.0)
    assert c.backoff.event_count == 0
    assert c.backoff.cumulative_offset == 0


def test_fault_is_latched():
    c = running_in(200.0)
    step(c, 200.0, 200, voltage=130.0)
    out = step(c, 79.0, 400)
    assert c.state is S.FAULT
    assert out.alarm_relay is True
    c.start(600, 200.0)
    assert c.state is S.FAULT


def test_stop_clears_fault():
    c = running_in(200.0)
    step(c, 200.0, 200, voltage=130.0)
    c.stop(1000)
    assert c.state is S.IDLE
    assert c.fault_reason is FaultReason.NONE
    out = step(c, 200.0, 1200)
    assert out.alarm_relay is False
    c.start(1400, 200.0)
    assert c.state is S.COARSE_COOLDOWN


def test_off_clears_fault():
    c = running_in(200.0)
    step(c, 200.0, 200, stalled=True)
    c.off(500)
    assert c.state is S.OFF
    assert c.fault_reason is FaultReason.NONE


def test_on_time_frozen_at_fault():
    c = make()
    c.start(1000, 200.0)
    step(c, 200.0, 5000, voltage=130.0)
    assert c.on_duration_ms(9000) == 4000


def test_fault_logged_as_warning(caplog):
    c = running_in(200.0)
    with caplog.at_level(logging.WARNING, logger="cryoctl.logic.supervisor"):
        step(c, 200.0, 200, voltage=130.0)
    assert "OVER_VOLTAGE" in caplog.text


def test_snapshot_status_reports_state():
    c = running_in(200.0)
    step(c, 200.0, 200)
    snap = c.snapshot_status(1200)
    assert snap["state_name"] == "CoarseCooldown"
    assert snap["running"] is True
    assert snap["actuator_target"] == 1793
    assert snap["time_in_state_ms"] == 1200


# --- tick(): raw readings ---

def test_tick_slews_actual_level():
    c = running_in(200.0)
    c.tick(0, 200.0, 0.5, LINE_V)
    assert c.actuator_level == 5
    out = c.tick(200, 200.0, 0.5, LINE_V)
    assert c.actuator_level == 10
    assert out.actuator_target == 1793


def test_tick_fault_cuts_output_immediately():
    c = running_in(200.0)
    for i in range(10):
        c.tick(i * 200, 200.0, 0.5, LINE_V)
    assert c.actuator_level == 50
    c.tick(2000, 200.0, 0.5, 130.0)
    assert c.actuator_level == 0


def test_tick_stall_armed_after_full_window():
    c = running_in(200.0)
    for now in range(0, 300_000, 30_000):
        c.tick(now, 200.0, 0.5, LINE_V)
    assert c.state is S.COARSE_COOLDOWN
    c.tick(300_000, 200.0, 0.5, LINE_V)
    assert c.state is S.FAULT
    assert c.fault_reason is FaultReason.TEMPERATURE_STALL


def test_tick_no_stall_while_cooling():
    c = running_in(200.0)
    for i, now in enumerate(range(0, 600_000, 30_000)):
        c.tick(now, 200.0 - i, 0.5, LINE_V)
    assert c.state is S.COARSE_COOLDOWN
    assert c.history.cooling_rate_k_per_min() == pytest.approx(2.0)


def test_tick_overstroke_counts_one_event_per_transient():
    c = running_in(200.0)
    for i in range(20):
        c.tick(i * 200, 200.0, 0.5, LINE_V)
    out = c.tick(4000, 200.0, 6.0, LINE_V)
    assert out.backoff_event_count == 1
    assert not c.detector.has_flag()
    out = c.tick(4200, 200.0, 6.0, LINE_V)
    assert out.backoff_event_count == 1


@pytest.mark.parametrize("temp_k,expected", [
    (295.0, S.COARSE_COOLDOWN),
    (78.0, S.SETTLE),
    (74.0, S.OVERSHOOT),
    (82.0, S.FINE_COOLDOWN),
])
def test_start_from_off_at_100ms(temp_k: float, expected: S):
    c = make()
    assert c.state is S.OFF
    c.start(100, temp_k)
    assert c.state is expected
    assert c.time_in_state_ms(100) == 0


@pytest.mark.parametrize("temp_k,expected", [
    (100.0, 3680 - 1800),
    (250.0, 0),  # 849 - 1800 floors at zero
])
def test_nine_backoffs_reduce_target_by_nine_steps(temp_k: float, expected: int):
    c = running_in(temp_k)
    baseline = step(c, temp_k, 100).actuator_target
    for i in range(9):
        out = step(c, temp_k, 200 * (i + 1), overstroke=True)
    assert out.actuator_target == max(0, baseline - 9 * 200) == expected
    assert c.state is S.COARSE_COOLDOWN
    assert out.alarm_relay is False
    out = step(c, temp_k, 2000, overstroke=True)
    assert out.alarm_relay is True


def test_second_start_keeps_backoff_and_entry_time():
    c = running_in(100.0)
    step(c, 100.0, 200, overstroke=True)
    c.start(400, 100.0)
    assert c.backoff.event_count == 1
    assert c.time_in_state_ms(400) == 400


def test_backoff_offset_capped_at_full_scale():
    c = running_in(250.0, backoff_step=1000)
    for i in range(6):
        out = step(c, 250.0, 200 * (i + 1), overstroke=True)
    assert c.backoff.event_count == 6
    assert c.backoff.cumulative_offset == 4095
    assert out.actuator_target == 0
    assert c.state is S.COARSE_COOLDOWN
