"""Pure math / conversion utilities shared by the controller and its drivers."""

ABSOLUTE_ZERO_C = -273.15
RTD_FULL_SCALE_COUNTS = 32768.0  # MAX31865 15-bit RTD register


def celsius_to_kelvin(temp_c: float) -> float:
    return temp_c - ABSOLUTE_ZERO_C


def kelvin_to_celsius(temp_k: float) -> float:
    return temp_k + ABSOLUTE_ZERO_C


def celsius_to_fahrenheit(temp_c: float) -> float:
    return temp_c * 9.0 / 5.0 + 32.0


def fahrenheit_to_celsius(temp_f: float) -> float:
    return (temp_f - 32.0) * 5.0 / 9.0


def rtd_raw_to_resistance(rtd_raw: int, r_ref: float) -> float:
    """Convert a raw 15-bit RTD register value to ohms."""
    return r_ref * (float(rtd_raw) / RTD_FULL_SCALE_COUNTS)


def cooldown_percent(temp_k: float, warm_k: float, cold_k: float) -> float:
    """Cooldown progress: 0 % at warm_k, 100 % at cold_k. Not clamped."""
    return (warm_k - temp_k) / (warm_k - cold_k) * 100.0


def format_hms(duration_ms: int) -> str:
    total = max(0, int(duration_ms)) // 1000
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"
