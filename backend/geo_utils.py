"""
地理計算ユーティリティ
"""
import math
from typing import Sequence, Tuple

from models import GeoPoint

EARTH_RADIUS = 6371000  # 地球の半径（メートル）
METERS_PER_DEGREE = 111000.0

def haversine_distance(point1: GeoPoint, point2: GeoPoint) -> float:
    """2点間の距離を計算（メートル）"""
    lat1, lon1 = point1.latitude, point1.longitude
    lat2, lon2 = point2.latitude, point2.longitude

    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat/2) * math.sin(dlat/2) +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon/2) * math.sin(dlon/2))

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

    return EARTH_RADIUS * c

def path_length(points: Sequence[GeoPoint]) -> float:
    """ポイント列の総延長（メートル）"""
    return sum(haversine_distance(points[i], points[i + 1]) for i in range(len(points) - 1))

def bearing(start: GeoPoint, end: GeoPoint) -> float:
    """start から end への方位角（度, 北=0, 時計回り）"""
    lat1 = math.radians(start.latitude)
    lat2 = math.radians(end.latitude)
    dlon = math.radians(end.longitude - start.longitude)

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)

    return normalize_angle(math.degrees(math.atan2(y, x)))

def normalize_angle(angle: float) -> float:
    """角度を [0, 360) に正規化"""
    return angle % 360.0

def signed_angle_difference(from_angle: float, to_angle: float) -> float:
    """from から to への符号付き角度差（-180, 180]"""
    diff = (to_angle - from_angle) % 360.0
    if diff > 180.0:
        diff -= 360.0
    return diff

def angle_difference(angle1: float, angle2: float) -> float:
    """2つの方位の差の絶対値 [0, 180]"""
    return abs(signed_angle_difference(angle1, angle2))

def destination_point(origin: GeoPoint, bearing_deg: float, distance: float) -> GeoPoint:
    """origin から方位 bearing_deg に distance メートル進んだ地点"""
    rad = math.radians(bearing_deg)
    lat_offset = distance * math.cos(rad) / METERS_PER_DEGREE
    lng_offset = distance * math.sin(rad) / (METERS_PER_DEGREE * math.cos(math.radians(origin.latitude)))
    return GeoPoint(latitude=origin.latitude + lat_offset,
                    longitude=origin.longitude + lng_offset)

def interpolate(start: GeoPoint, end: GeoPoint, ratio: float) -> GeoPoint:
    """直線上の ratio 地点"""
    return GeoPoint(latitude=start.latitude + (end.latitude - start.latitude) * ratio,
                    longitude=start.longitude + (end.longitude - start.longitude) * ratio)

def to_local_xy(origin: GeoPoint, point: GeoPoint) -> Tuple[float, float]:
    """origin を原点とする平面座標（東向きx, 北向きy, メートル）"""
    x = (point.longitude - origin.longitude) * METERS_PER_DEGREE * math.cos(math.radians(origin.latitude))
    y = (point.latitude - origin.latitude) * METERS_PER_DEGREE
    return x, y

def perpendicular_distance(point: GeoPoint, line_start: GeoPoint, line_end: GeoPoint) -> float:
    """point から直線 line_start-line_end までの垂直距離（メートル）"""
    ex, ey = to_local_xy(line_start, line_end)
    px, py = to_local_xy(line_start, point)
    length = math.hypot(ex, ey)
    if length == 0:
        return math.hypot(px, py)
    return abs(ex * py - ey * px) / length

def forward_projection(point: GeoPoint, start: GeoPoint, end: GeoPoint) -> Tuple[float, float]:
    """(start→end)・(start→point) と |start→end|² を返す"""
    ex, ey = to_local_xy(start, end)
    px, py = to_local_xy(start, point)
    return ex * px + ey * py, ex * ex + ey * ey

def meters_to_degrees(meters: float) -> float:
    return meters / METERS_PER_DEGREE
