import itertools

from conftest import BUSAN_END, BUSAN_START, straight_leg
from geo_utils import bearing, destination_point, interpolate, path_length
from models import Route
from similarity_checker import SimilarityChecker

def make_route(points, shadow=0, minutes=None):
    distance = path_length(points)
    return Route(points=tuple(points), distance_meters=distance,
                 duration_minutes=minutes if minutes is not None else int(distance / 1.2 // 60),
                 shadow_percentage=shadow)

def via(offset, side=-90.0):
    middle = interpolate(BUSAN_START, BUSAN_END, 0.5)
    wp = destination_point(middle, (bearing(BUSAN_START, BUSAN_END) + side) % 360, offset)
    return straight_leg(BUSAN_START, wp) + straight_leg(wp, BUSAN_END)[1:]

def test_identical_routes_are_similar():
    route = make_route(straight_leg(BUSAN_START, BUSAN_END))
    assert SimilarityChecker().are_similar(route, route)

def test_shadow_difference_breaks_characteristic_similarity():
    checker = SimilarityChecker()
    a = make_route(straight_leg(BUSAN_START, BUSAN_END), shadow=10)
    b = make_route(via(60.0), shadow=60)
    assert not checker.characteristics_similar(a, b)
    assert not checker.are_similar(a, b)

def test_geographic_overlap_detects_same_path():
    checker = SimilarityChecker()
    a = make_route(straight_leg(BUSAN_START, BUSAN_END), shadow=0)
    b = make_route(straight_leg(BUSAN_START, BUSAN_END, spacing=7.0), shadow=50, minutes=20)
    assert not checker.characteristics_similar(a, b)
    assert checker.geographically_similar(a, b)

def test_similarity_is_symmetric():
    checker = SimilarityChecker()
    routes = [
        make_route(straight_leg(BUSAN_START, BUSAN_END), shadow=0),
        make_route(via(20.0), shadow=30),
        make_route(via(60.0), shadow=60),
        make_route(via(40.0, side=90.0), shadow=5),
        make_route(straight_leg(BUSAN_START, BUSAN_END, spacing=3.0), shadow=4),
    ]
    for a, b in itertools.permutations(routes, 2):
        assert checker.are_similar(a, b) == checker.are_similar(b, a)
        assert checker.overlap(a, b) == checker.overlap(b, a)
