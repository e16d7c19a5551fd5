import math
from datetime import datetime, timezone

from solar_calculator import SHADOW_LENGTH_INFINITE, SolarPositionCalculator, calculate_shadow_length

def test_equinox_noon_on_equator_is_overhead():
    calc = SolarPositionCalculator("UTC")
    sun = calc.calculate(0.0, 0.0, datetime(2024, 3, 20, 12, 7, tzinfo=timezone.utc))
    assert sun.altitude > 89.0

def test_busan_summer_noon():
    calc = SolarPositionCalculator("Asia/Seoul")
    sun = calc.calculate(35.1587, 129.1550, datetime(2024, 7, 15, 12, 30))
    assert 70.0 < sun.altitude < 80.0
    assert 150.0 < sun.azimuth < 210.0

def test_morning_sun_is_in_the_east():
    calc = SolarPositionCalculator("Asia/Seoul")
    sun = calc.calculate(35.1587, 129.1550, datetime(2024, 7, 15, 8, 0))
    assert sun.altitude > 0
    assert 45.0 < sun.azimuth < 120.0

def test_sun_below_horizon_at_night():
    calc = SolarPositionCalculator("Asia/Seoul")
    sun = calc.calculate(35.1587, 129.1550, datetime(2024, 7, 15, 2, 0))
    assert sun.altitude < 0
    assert not sun.is_above_horizon

def test_naive_time_is_local_to_configured_zone():
    calc = SolarPositionCalculator("Asia/Seoul")
    naive = datetime(2024, 7, 15, 14, 0)
    aware = datetime(2024, 7, 15, 5, 0, tzinfo=timezone.utc)

    assert calc.to_utc(naive) == aware
    a = calc.calculate(35.1587, 129.1550, naive)
    b = calc.calculate(35.1587, 129.1550, aware)
    assert math.isclose(a.altitude, b.altitude)
    assert math.isclose(a.azimuth, b.azimuth)

def test_julian_day_of_j2000():
    jd = SolarPositionCalculator.julian_day(datetime(2000, 1, 1, 12, 0, tzinfo=timezone.utc))
    assert math.isclose(jd, 2451545.0)

def test_azimuth_range():
    calc = SolarPositionCalculator("Asia/Seoul")
    for hour in range(24):
        sun = calc.calculate(35.1587, 129.1550, datetime(2024, 12, 21, hour, 0))
        assert 0.0 <= sun.azimuth < 360.0
        assert -90.0 <= sun.altitude <= 90.0

def test_shadow_length():
    assert math.isclose(calculate_shadow_length(10.0, 45.0), 10.0)
    assert calculate_shadow_length(10.0, 0.0) == SHADOW_LENGTH_INFINITE
    assert calculate_shadow_length(10.0, -5.0) == SHADOW_LENGTH_INFINITE
    assert calculate_shadow_length(10.0, 30.0) > calculate_shadow_length(10.0, 60.0)
