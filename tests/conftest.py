import asyncio
import math

import pytest

from exceptions import OracleError, ProviderError
from geo_utils import bearing, haversine_distance, interpolate, to_local_xy
from models import GeoPoint, PathResult, PolygonGeometry, ShadowArea, SunPosition
from solar_calculator import SolarPositionCalculator

BUSAN_START = GeoPoint(latitude=35.1587, longitude=129.1550)
BUSAN_END = GeoPoint(latitude=35.1620, longitude=129.1600)

def straight_leg(start, end, spacing=10.0):
    """start から end まで等間隔に分割したポイント（start を含み end を含む）"""
    length = haversine_distance(start, end)
    steps = max(1, int(math.ceil(length / spacing)))
    return [interpolate(start, end, i / steps) for i in range(steps + 1)]

class FakePathProvider:
    """経由地を直線で結ぶだけの経路プロバイダ"""

    def __init__(self, fail=False, fail_with_waypoints=False, delay=0.0, waypoint_delay=0.0):
        self.fail = fail
        self.fail_with_waypoints = fail_with_waypoints
        self.delay = delay
        self.waypoint_delay = waypoint_delay
        self.calls = []

    async def get_path(self, start, end, waypoints=()):
        self.calls.append(list(waypoints))
        if self.delay:
            await asyncio.sleep(self.delay)
        if waypoints and self.waypoint_delay:
            await asyncio.sleep(self.waypoint_delay)
        if self.fail or (waypoints and self.fail_with_waypoints):
            raise ProviderError("provider unavailable")

        stops = [start, *waypoints, end]
        points = [start]
        for a, b in zip(stops, stops[1:]):
            points.extend(straight_leg(a, b)[1:])
        distance = sum(haversine_distance(points[i], points[i + 1]) for i in range(len(points) - 1))
        return PathResult(points=points, distance_meters=distance, duration_seconds=distance / 1.2)

class LeftSideOracle:
    """出発地→目的地の直線の左側（2m超）を日陰とみなすオラクル"""

    def __init__(self, start=BUSAN_START, end=BUSAN_END, fail=False, fail_contains=False):
        self.start = start
        self.end = end
        self.fail = fail
        self.fail_contains = fail_contains
        self.calls = 0

    async def shadows_near(self, start, end, sun, when=None):
        self.calls += 1
        if self.fail:
            raise OracleError("oracle unavailable")
        # 経由地の方向補正に影響しない遠方のダミー
        far = [[0.0, 0.0], [0.0001, 0.0], [0.0001, 0.0001], [0.0, 0.0]]
        return [ShadowArea(id=1, building_height=10.0,
                           building_geometry=PolygonGeometry(coordinates=[far]),
                           shadow_geometry=PolygonGeometry(coordinates=[far]))]

    def merge_shadows(self, shadow_areas):
        return ("left-of", self.start, self.end) if shadow_areas else None

    def contains(self, merged, point):
        if self.fail_contains:
            raise OracleError("containment failed")
        if merged is None:
            return False
        _, start, end = merged
        ex, ey = to_local_xy(start, end)
        px, py = to_local_xy(start, point)
        cross = ex * py - ey * px
        return cross / math.hypot(ex, ey) > 2.0

class FixedSolar(SolarPositionCalculator):
    """固定の太陽位置を返す"""

    def __init__(self, sun):
        super().__init__("Asia/Seoul")
        self.sun = sun

    def calculate(self, latitude, longitude, when):
        return self.sun

class FakeWeather:
    def __init__(self, unsafe=False, error=None):
        self.unsafe = unsafe
        self.error = error

    async def is_unsafe(self, location, when):
        if self.error:
            raise self.error
        return self.unsafe

def sun_right_of(start, end, altitude=50.0):
    """進行方向の右側から照らす太陽（影は左側）"""
    return SunPosition(altitude=altitude, azimuth=(bearing(start, end) + 90) % 360)

@pytest.fixture
def provider():
    return FakePathProvider()

@pytest.fixture
def oracle():
    return LeftSideOracle()

@pytest.fixture
def right_sun():
    return sun_right_of(BUSAN_START, BUSAN_END)
