import pytest

from conftest import BUSAN_END, BUSAN_START, straight_leg
from geo_utils import bearing, destination_point, interpolate, path_length
from models import Route
from route_validator import RouteQualityValidator, analyze_progression, criteria_for

def make_route(points, shadow=0, route_type="shortest"):
    distance = path_length(points)
    return Route(points=tuple(points), distance_meters=distance,
                 duration_minutes=int(distance / 1.2 // 60),
                 shadow_percentage=shadow, route_type=route_type)

def detour_points(ratio=0.5, offset=40.0, side=-90.0):
    middle = interpolate(BUSAN_START, BUSAN_END, ratio)
    wp = destination_point(middle, (bearing(BUSAN_START, BUSAN_END) + side) % 360, offset)
    return straight_leg(BUSAN_START, wp) + straight_leg(wp, BUSAN_END)[1:]

def zigzag_points():
    points = [BUSAN_START]
    steps = 40
    for i in range(1, steps + 1):
        forward = interpolate(BUSAN_START, BUSAN_END, i / steps)
        back = interpolate(BUSAN_START, BUSAN_END, max(0.0, (i - 0.8) / steps))
        points.extend([forward, back])
    points.append(BUSAN_END)
    return points

@pytest.fixture
def validator():
    return RouteQualityValidator()

@pytest.fixture
def base():
    return make_route(straight_leg(BUSAN_START, BUSAN_END))

def test_identical_route_passes_shortest_but_not_shade(validator, base):
    same = make_route(list(base.points))
    assert validator.accept(same, base, "shortest")
    outcome = validator.evaluate(same.model_copy(update={"route_type": "shade"}), base, "shade")
    assert not outcome.accepted
    assert "shadow gain" in outcome.reason

def test_shade_route_with_enough_gain_is_accepted(validator, base):
    candidate = make_route(detour_points(), shadow=40, route_type="shade")
    assert validator.accept(candidate, base, "shade")

def test_shade_gain_requirement_depends_on_base(validator):
    assert validator.required_shadow_gain(10) == 15
    assert validator.required_shadow_gain(30) == 12
    assert validator.required_shadow_gain(70) == 8

def test_shade_route_with_small_gain_is_rejected(validator, base):
    candidate = make_route(detour_points(), shadow=10, route_type="shade")
    assert not validator.accept(candidate, base, "shade")

def test_balanced_needs_small_gain(validator, base):
    assert validator.accept(make_route(detour_points(), shadow=5), base, "balanced")
    assert not validator.accept(make_route(detour_points(), shadow=2), base, "balanced")

def test_long_detour_rejected(validator, base):
    candidate = make_route(detour_points(offset=500.0), shadow=20, route_type="shade")
    outcome = validator.evaluate(candidate, base, "shade")
    assert not outcome.accepted
    assert "distance ratio" in outcome.reason
    assert validator.reject(candidate, base)

def test_large_shadow_gain_extends_distance_limit(validator):
    assert validator.max_distance_ratio("shade", 10) == 1.5
    assert validator.max_distance_ratio("shade", 30) == 1.8
    assert validator.max_distance_ratio("balanced", 30) == 1.6

def test_zigzag_route_rejected(validator, base):
    points = zigzag_points()
    candidate = make_route(points, shadow=40, route_type="shade")
    metrics = analyze_progression(points)
    assert metrics.regressing_ratio > 0.3
    outcome = validator.evaluate(candidate, base, "shade")
    assert not outcome.accepted

def test_tiny_variant_rejected(validator):
    end = destination_point(BUSAN_START, 45.0, 30.0)
    tiny = make_route([BUSAN_START, interpolate(BUSAN_START, end, 0.5), end], shadow=50)
    outcome = validator.evaluate(tiny, tiny, "shade")
    assert outcome.reason == "route too small"

def test_straight_route_progression(base):
    metrics = analyze_progression(base.points)
    assert metrics.progress_efficiency == pytest.approx(1.0)
    assert metrics.regressing_ratio == 0
    assert metrics.zigzag_score == pytest.approx(0.0)

def test_criteria_relax_with_shadow():
    strict = criteria_for("shade", 0)
    lenient = criteria_for("shade", 60)
    assert lenient.min_progress_efficiency == pytest.approx(strict.min_progress_efficiency - 0.1)
    assert lenient.max_zigzag_score == pytest.approx(strict.max_zigzag_score + 0.1)
    assert criteria_for("balanced", 35).max_regressing_ratio == pytest.approx(0.3)
