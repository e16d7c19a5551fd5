import pytest

from conftest import BUSAN_END, BUSAN_START
from config import WaypointConfig
from geo_utils import (
    angle_difference, bearing, destination_point, forward_projection, haversine_distance, interpolate
)
from models import GeoPoint, PolygonGeometry, RoutePurpose, ShadowArea, SunPosition
from waypoint_synthesizer import WaypointSynthesizer, constrain_direction, generate_consistent_seed

SUN = SunPosition(altitude=50.0, azimuth=150.0)

def test_seed_packs_quantized_coordinates():
    seed = generate_consistent_seed(GeoPoint(latitude=1.0, longitude=2.0),
                                    GeoPoint(latitude=3.0, longitude=4.0))
    assert seed == (1000 << 48) | (2000 << 32) | (3000 << 16) | 4000

def test_seed_wraps_to_signed_64bit():
    seed = generate_consistent_seed(GeoPoint(latitude=35.0, longitude=129.0),
                                    GeoPoint(latitude=35.5, longitude=129.5))
    assert seed == 0x88B9F7E88AADF9DC - (1 << 64)
    assert seed < 0

def test_seed_with_negative_coordinate():
    seed = generate_consistent_seed(GeoPoint(latitude=-1.0, longitude=2.0),
                                    GeoPoint(latitude=3.0, longitude=4.0))
    assert seed == -1000 * 2 ** 48 + 2000 * 2 ** 32 + 3000 * 2 ** 16 + 4000

def test_constrain_direction():
    assert constrain_direction(30.0, 0.0, 45.0) == pytest.approx(30.0)
    assert constrain_direction(90.0, 0.0, 45.0) == pytest.approx(45.0)
    assert constrain_direction(270.0, 0.0, 45.0) == pytest.approx(315.0)
    assert constrain_direction(350.0, 10.0, 45.0) == pytest.approx(350.0)

def test_preferred_bearings_by_purpose():
    synth = WaypointSynthesizer()
    assert synth.preferred_bearings(RoutePurpose.AVOID_SHADOW, SUN, 50.0) == [150.0]
    assert synth.preferred_bearings(RoutePurpose.SEEK_SHADOW, SUN, 50.0) == [330.0]
    # 太陽と直交する方向のうち目的地方向(50度)に近い60度が先
    assert synth.preferred_bearings(RoutePurpose.BALANCED, SUN, 50.0) == [60.0, 240.0]

def test_synthesis_is_deterministic():
    synth = WaypointSynthesizer()
    for purpose in RoutePurpose:
        for attempt in range(3):
            first = synth.synthesize(BUSAN_START, BUSAN_END, SUN, purpose, attempt)
            second = synth.synthesize(BUSAN_START, BUSAN_END, SUN, purpose, attempt)
            assert first == second

def test_waypoints_move_toward_destination():
    synth = WaypointSynthesizer()
    direct = haversine_distance(BUSAN_START, BUSAN_END)
    destination_bearing = bearing(BUSAN_START, BUSAN_END)

    for purpose in RoutePurpose:
        for attempt in range(3):
            strategy = synth.strategy_for(attempt)
            for wp in synth.synthesize(BUSAN_START, BUSAN_END, SUN, purpose, attempt):
                to_wp = haversine_distance(BUSAN_START, wp)
                wp_to_end = haversine_distance(wp, BUSAN_END)
                assert (to_wp + wp_to_end) / direct <= strategy.max_detour_ratio
                assert wp_to_end / direct <= synth.config.max_remaining_ratio
                assert angle_difference(bearing(BUSAN_START, wp), destination_bearing) <= synth.config.max_heading_deviation
                dot, magnitude_sq = forward_projection(wp, BUSAN_START, BUSAN_END)
                assert dot >= magnitude_sq * 0.5

def test_waypoint_count_within_budget():
    synth = WaypointSynthesizer()
    for attempt in range(3):
        waypoints = synth.synthesize(BUSAN_START, BUSAN_END, SUN, RoutePurpose.SEEK_SHADOW, attempt)
        assert len(waypoints) <= 20
        assert len({(wp.latitude, wp.longitude) for wp in waypoints}) == len(waypoints)

def test_seek_shadow_waypoints_lean_to_shadow_side():
    synth = WaypointSynthesizer()
    destination_bearing = bearing(BUSAN_START, BUSAN_END)
    sun = SunPosition(altitude=50.0, azimuth=(destination_bearing + 90) % 360)
    waypoints = synth.synthesize(BUSAN_START, BUSAN_END, sun, RoutePurpose.SEEK_SHADOW, 0)

    assert waypoints
    for wp in waypoints:
        # 影は太陽の反対側（進行方向の左）にできる
        diff = (bearing(BUSAN_START, wp) - destination_bearing) % 360
        assert diff > 180

def test_too_short_trip_yields_nothing():
    synth = WaypointSynthesizer()
    end = destination_point(BUSAN_START, 45.0, 20.0)
    assert synth.synthesize(BUSAN_START, end, SUN, RoutePurpose.SEEK_SHADOW, 0) == []

def test_rejection_reasons():
    synth = WaypointSynthesizer()
    strategy = synth.strategy_for(0)

    on_axis = interpolate(BUSAN_START, BUSAN_END, 0.6)
    assert synth.rejection_reason(BUSAN_START, on_axis, BUSAN_END, strategy) is None
    assert synth.is_progressive(BUSAN_START, on_axis, BUSAN_END, strategy)

    behind = destination_point(BUSAN_START, (bearing(BUSAN_START, BUSAN_END) + 180) % 360, 50.0)
    assert synth.rejection_reason(BUSAN_START, behind, BUSAN_END, strategy) is not None

    near_start = interpolate(BUSAN_START, BUSAN_END, 0.05)
    assert synth.rejection_reason(BUSAN_START, near_start, BUSAN_END, strategy) is not None

    assert synth.rejection_reason(BUSAN_START, on_axis, BUSAN_START, strategy) == "zero length trip"

def test_region_bounds_exclude_waypoints():
    config = WaypointConfig(region_bounds=(33.0, 124.0, 34.0, 126.0))
    synth = WaypointSynthesizer(config)
    assert synth.synthesize(BUSAN_START, BUSAN_END, SUN, RoutePurpose.SEEK_SHADOW, 0) == []

def test_slight_variation_is_deterministic_and_forward():
    synth = WaypointSynthesizer()
    a = synth.slight_variation(BUSAN_START, BUSAN_END)
    b = synth.slight_variation(BUSAN_START, BUSAN_END)
    assert a == b

    middle = interpolate(BUSAN_START, BUSAN_END, 0.5)
    assert haversine_distance(middle, a) == pytest.approx(30.0, rel=0.02)
    assert angle_difference(bearing(middle, a), bearing(BUSAN_START, BUSAN_END)) <= 90.5

def test_seek_shadow_prefers_nearby_shadow_mass():
    synth = WaypointSynthesizer()
    destination_bearing = bearing(BUSAN_START, BUSAN_END)
    middle = interpolate(BUSAN_START, BUSAN_END, 0.5)
    center = destination_point(middle, (destination_bearing - 30) % 360, 100.0)
    half = 0.0002
    ring = [[center.longitude - half, center.latitude - half],
            [center.longitude + half, center.latitude - half],
            [center.longitude + half, center.latitude + half],
            [center.longitude - half, center.latitude + half],
            [center.longitude - half, center.latitude - half]]
    area = ShadowArea(id=1, building_height=20.0,
                      building_geometry=PolygonGeometry(coordinates=[ring]),
                      shadow_geometry=PolygonGeometry(coordinates=[ring]))

    bearings = synth.preferred_bearings(RoutePurpose.SEEK_SHADOW, SUN, destination_bearing,
                                        BUSAN_START, BUSAN_END, [area], 45.0)
    assert len(bearings) == 2
    assert angle_difference(bearings[0], (destination_bearing - 30) % 360) < 5.0
    assert bearings[1] == pytest.approx(330.0)

def test_axis_limits_come_from_config():
    direct = haversine_distance(BUSAN_START, BUSAN_END)
    destination_bearing = bearing(BUSAN_START, BUSAN_END)
    on_axis = interpolate(BUSAN_START, BUSAN_END, 0.6)
    slanted = destination_point(BUSAN_START, (destination_bearing + 10) % 360, direct * 0.6)

    synth = WaypointSynthesizer()
    strategy = synth.strategy_for(0)
    assert synth.rejection_reason(BUSAN_START, slanted, BUSAN_END, strategy) is None

    strict = WaypointSynthesizer(WaypointConfig(max_heading_deviation=5.0))
    assert strict.rejection_reason(BUSAN_START, slanted, BUSAN_END, strategy) == "heading off axis"
    assert strict.rejection_reason(BUSAN_START, on_axis, BUSAN_END, strategy) is None

    short_reach = WaypointSynthesizer(WaypointConfig(max_remaining_ratio=0.3))
    assert short_reach.rejection_reason(BUSAN_START, on_axis, BUSAN_END, strategy) == "too far from destination"

def _offset(origin, bearing_deg, lateral, radial):
    """origin から bearing_deg を前方とした (横, 前) メートルの地点"""
    shifted = destination_point(origin, (bearing_deg + 90) % 360, lateral)
    return destination_point(shifted, bearing_deg, radial)

def test_shadow_mass_uses_polygon_centroid():
    synth = WaypointSynthesizer()
    destination_bearing = bearing(BUSAN_START, BUSAN_END)
    middle = interpolate(BUSAN_START, BUSAN_END, 0.5)
    toward = (destination_bearing - 30) % 360
    center = destination_point(middle, toward, 100.0)

    # 片側の短辺にだけ頂点が密集した細長い影（頂点平均は重心から大きくずれる）
    corners = [_offset(center, toward, 60.0, r) for r in range(-10, 11, 2)]
    corners += [_offset(center, toward, -60.0, 10.0), _offset(center, toward, -60.0, -10.0)]
    ring = [[p.longitude, p.latitude] for p in corners]
    ring.append(ring[0])
    area = ShadowArea(id=1, building_height=20.0,
                      building_geometry=PolygonGeometry(coordinates=[ring]),
                      shadow_geometry=PolygonGeometry(coordinates=[ring]))

    bearings = synth.preferred_bearings(RoutePurpose.SEEK_SHADOW, SUN, destination_bearing,
                                        BUSAN_START, BUSAN_END, [area], 45.0)
    assert angle_difference(bearings[0], toward) < 3.0
