"""
経由地生成 - 太陽方位に応じて日陰へ寄せる／避ける迂回点を生成

生成される経由地は目的地方向の円錐内に制限され、逆走や大回りを必要としない
ものだけが残る。乱数は座標から導いたシードを使うため、同じ入力なら同じ結果になる。
"""
import logging
import math
import random
from typing import List, Optional, Sequence

from shapely.geometry import Polygon

from config import WaypointConfig, WaypointStrategy, waypoint_config
from geo_utils import (
    angle_difference, bearing, destination_point, forward_projection, haversine_distance,
    interpolate, meters_to_degrees, normalize_angle, perpendicular_distance, signed_angle_difference
)
from models import GeoPoint, RoutePurpose, ShadowArea, SunPosition

logger = logging.getLogger(__name__)

_MASK64 = (1 << 64) - 1

# 目的ごとのシードオフセット
_PURPOSE_SEED_OFFSET = {
    RoutePurpose.AVOID_SHADOW: 0,
    RoutePurpose.SEEK_SHADOW: 1000,
    RoutePurpose.BALANCED: 2000,
}

def generate_consistent_seed(start: GeoPoint, end: GeoPoint, quantization: int = 1000) -> int:
    """出発地・目的地の座標から一貫したシードを生成

    各座標を int(値 * quantization) で量子化し、符号付き64bit整数として
    (sLat << 48) | (sLng << 32) | (eLat << 16) | eLng に詰める。
    """
    parts = [int(v * quantization) for v in
             (start.latitude, start.longitude, end.latitude, end.longitude)]
    packed = 0
    for value, shift in zip(parts, (48, 32, 16, 0)):
        packed |= ((value & _MASK64) << shift) & _MASK64
    if packed >= 1 << 63:
        packed -= 1 << 64
    return packed

def constrain_direction(preferred: float, destination: float, max_deviation: float) -> float:
    """目的地方向 ±max_deviation の範囲に方位を制限（範囲外は近い方の境界）"""
    diff = signed_angle_difference(destination, preferred)
    if abs(diff) <= max_deviation:
        return normalize_angle(preferred)
    return normalize_angle(destination + math.copysign(max_deviation, diff))

class WaypointSynthesizer:
    """経由地生成"""

    def __init__(self, config: WaypointConfig = None):
        self.config = config or waypoint_config

    def strategy_for(self, attempt: int) -> WaypointStrategy:
        strategies = self.config.strategies
        return strategies[max(0, min(attempt, len(strategies) - 1))]

    def _distance_scale(self, straight_distance: float) -> float:
        scale = straight_distance / self.config.reference_distance
        return max(self.config.min_distance_scale, min(self.config.max_distance_scale, scale))

    def _waypoint_budget(self, straight_distance: float) -> int:
        count = int(straight_distance / self.config.meters_per_waypoint)
        return max(self.config.min_waypoints, min(self.config.max_waypoints, count))

    def _shadow_density_bearing(self,
                                start: GeoPoint,
                                end: GeoPoint,
                                shadow_areas: Sequence[ShadowArea]) -> Optional[float]:
        """ルート中間点付近の影の面積加重重心への方位"""
        middle = interpolate(start, end, 0.5)
        radius = self.config.shadow_bias_radius_meters

        total_weight = 0.0
        weighted_lat = 0.0
        weighted_lng = 0.0
        for area in shadow_areas:
            ring = area.shadow_geometry.coordinates[0]
            if len(ring) < 4:
                continue
            polygon = Polygon(ring)
            weight = polygon.area
            if weight <= 0:
                continue
            centroid = polygon.centroid
            center = GeoPoint(latitude=centroid.y, longitude=centroid.x)
            if haversine_distance(middle, center) > radius:
                continue
            total_weight += weight
            weighted_lat += center.latitude * weight
            weighted_lng += center.longitude * weight

        if total_weight == 0:
            return None

        centroid = GeoPoint(latitude=weighted_lat / total_weight,
                            longitude=weighted_lng / total_weight)
        if haversine_distance(middle, centroid) < 1.0:
            return None
        return bearing(middle, centroid)

    def preferred_bearings(self,
                           purpose: RoutePurpose,
                           sun: SunPosition,
                           destination_bearing: float,
                           start: GeoPoint = None,
                           end: GeoPoint = None,
                           shadow_areas: Sequence[ShadowArea] = None,
                           max_deviation: float = 60.0) -> List[float]:
        """目的に応じた迂回方位の候補（優先順）"""
        azimuth = sun.azimuth
        if purpose == RoutePurpose.AVOID_SHADOW:
            return [normalize_angle(azimuth)]

        if purpose == RoutePurpose.SEEK_SHADOW:
            bearings = []
            if shadow_areas and start is not None and end is not None:
                density = self._shadow_density_bearing(start, end, shadow_areas)
                if density is not None and angle_difference(density, destination_bearing) <= max_deviation:
                    bearings.append(density)
            bearings.append(normalize_angle(azimuth + 180))
            return bearings

        # バランス: 太陽と直交する2方向のうち目的地方向に近い方から
        left = normalize_angle(azimuth - 90)
        right = normalize_angle(azimuth + 90)
        return sorted([left, right], key=lambda b: angle_difference(b, destination_bearing))

    def is_within_bounds(self, waypoint: GeoPoint, start: GeoPoint, end: GeoPoint) -> bool:
        """経由地が妥当な地理範囲内か"""
        if self.config.region_bounds is not None:
            south, west, north, east = self.config.region_bounds
            if not (south <= waypoint.latitude <= north and west <= waypoint.longitude <= east):
                return False

        straight = haversine_distance(start, end)
        margin = meters_to_degrees(max(self.config.bbox_min_margin_meters,
                                       straight * self.config.bbox_margin_ratio))
        lng_margin = margin / max(0.01, math.cos(math.radians(waypoint.latitude)))
        return (min(start.latitude, end.latitude) - margin <= waypoint.latitude
                <= max(start.latitude, end.latitude) + margin
                and min(start.longitude, end.longitude) - lng_margin <= waypoint.longitude
                <= max(start.longitude, end.longitude) + lng_margin)

    def rejection_reason(self,
                         start: GeoPoint,
                         waypoint: GeoPoint,
                         end: GeoPoint,
                         strategy: WaypointStrategy,
                         base: Optional[GeoPoint] = None) -> Optional[str]:
        """経由地が目的地へ進む妥当な点か判定し、不適切なら理由を返す"""
        direct = haversine_distance(start, end)
        if direct <= 0:
            return "zero length trip"

        if not self.is_within_bounds(waypoint, start, end):
            return "out of bounds"

        to_waypoint = haversine_distance(start, waypoint)
        waypoint_to_end = haversine_distance(waypoint, end)

        if base is not None and waypoint_to_end >= haversine_distance(base, end):
            return "does not approach destination"

        detour_ratio = (to_waypoint + waypoint_to_end) / direct
        if detour_ratio > strategy.max_detour_ratio:
            return f"detour ratio {detour_ratio:.2f}"

        if waypoint_to_end / direct > self.config.max_remaining_ratio:
            return "too far from destination"

        if angle_difference(bearing(start, waypoint), bearing(start, end)) > self.config.max_heading_deviation:
            return "heading off axis"

        perpendicular = perpendicular_distance(waypoint, start, end)
        if perpendicular > direct * strategy.max_perpendicular_ratio:
            return f"perpendicular distance {perpendicular:.0f}m"

        clearance = direct * self.config.min_endpoint_clearance_ratio
        if to_waypoint < clearance or waypoint_to_end < clearance:
            return "too close to endpoint"

        dot, magnitude_sq = forward_projection(waypoint, start, end)
        if dot < magnitude_sq * self.config.forward_projection_ratio:
            return "not forward"

        return None

    def is_progressive(self,
                       start: GeoPoint,
                       waypoint: GeoPoint,
                       end: GeoPoint,
                       strategy: WaypointStrategy,
                       base: Optional[GeoPoint] = None) -> bool:
        return self.rejection_reason(start, waypoint, end, strategy, base) is None

    def synthesize(self,
                   start: GeoPoint,
                   end: GeoPoint,
                   sun: SunPosition,
                   purpose: RoutePurpose,
                   attempt: int = 0,
                   shadow_areas: Sequence[ShadowArea] = None) -> List[GeoPoint]:
        """経由地候補を生成（同じ入力なら同じ結果）"""
        straight = haversine_distance(start, end)
        if straight < 2 * self.config.bbox_min_margin_meters * self.config.min_endpoint_clearance_ratio:
            logger.debug(f"Trip too short for detour: {straight:.0f}m")
            return []

        strategy = self.strategy_for(attempt)
        scale = self._distance_scale(straight)
        budget = self._waypoint_budget(straight)
        destination_bearing = bearing(start, end)

        seed = (generate_consistent_seed(start, end, self.config.seed_quantization)
                + _PURPOSE_SEED_OFFSET[purpose] + attempt * 100)
        rng = random.Random(seed)

        preferred = self.preferred_bearings(purpose, sun, destination_bearing, start, end,
                                            shadow_areas, strategy.max_deviation)

        waypoints: List[GeoPoint] = []
        seen = set()
        rejected = 0
        for preferred_bearing in preferred:
            for offset in strategy.angle_offsets:
                for ratio in strategy.progress_ratios:
                    for detour in strategy.detour_distances:
                        if len(waypoints) >= budget:
                            break
                        jitter = rng.uniform(-strategy.jitter_degrees, strategy.jitter_degrees) \
                            if strategy.jitter_degrees > 0 else 0.0
                        direction = constrain_direction(preferred_bearing + offset + jitter,
                                                        destination_bearing, strategy.max_deviation)
                        base = interpolate(start, end, ratio)
                        candidate = destination_point(base, direction, detour * scale)

                        key = (round(candidate.latitude, 6), round(candidate.longitude, 6))
                        if key in seen:
                            continue

                        reason = self.rejection_reason(start, candidate, end, strategy, base)
                        if reason is not None:
                            rejected += 1
                            logger.debug(f"Waypoint rejected ({purpose.value}, attempt {attempt}): {reason}")
                            continue

                        seen.add(key)
                        waypoints.append(candidate)

        if purpose == RoutePurpose.BALANCED and attempt >= len(self.config.strategies) - 1 \
                and len(waypoints) < budget:
            variation = self.slight_variation(start, end)
            key = (round(variation.latitude, 6), round(variation.longitude, 6))
            if key not in seen and self.is_within_bounds(variation, start, end):
                waypoints.append(variation)

        logger.debug(f"Synthesized {len(waypoints)} waypoints for {purpose.value} "
                     f"(attempt {attempt}, rejected {rejected}, straight {straight:.0f}m)")
        return waypoints

    def slight_variation(self, start: GeoPoint, end: GeoPoint) -> GeoPoint:
        """中間点から約30m、シード固定の方向にずらした経由地（前進方向の半円に限定）"""
        rng = random.Random(generate_consistent_seed(start, end, self.config.seed_quantization)
                            + self.config.variation_seed_offset)
        direction = rng.random() * 360.0
        destination_bearing = bearing(start, end)
        if angle_difference(direction, destination_bearing) > 90:
            direction = normalize_angle(direction + 180)
        middle = interpolate(start, end, 0.5)
        return destination_point(middle, direction, self.config.variation_distance_meters)
