"""
類似ルート判定 - 特性（距離・時間・日陰率）または地理的な重なりで判定
"""
import logging
from typing import Sequence

from config import SimilarityConfig, similarity_config
from models import GeoPoint, Route
from route_evaluator import sample_indices

logger = logging.getLogger(__name__)

def _relative_difference(a: float, b: float) -> float:
    """大きい方を分母とする相対差（対称）"""
    denominator = max(abs(a), abs(b))
    if denominator == 0:
        return 0.0
    return abs(a - b) / denominator

class SimilarityChecker:
    """2つのルートが実質的に同じかどうか"""

    def __init__(self, config: SimilarityConfig = None):
        self.config = config or similarity_config

    def characteristics_similar(self, route_a: Route, route_b: Route) -> bool:
        distance_diff = _relative_difference(route_a.distance_meters, route_b.distance_meters)
        duration_diff = _relative_difference(route_a.duration_minutes, route_b.duration_minutes)
        shadow_diff = abs(route_a.shadow_percentage - route_b.shadow_percentage)
        return (distance_diff < self.config.distance_threshold
                and duration_diff < self.config.duration_threshold
                and shadow_diff < self.config.shadow_threshold)

    def _sample(self, route: Route) -> Sequence[GeoPoint]:
        return [route.points[i] for i in sample_indices(len(route.points), self.config.sample_size)]

    def _overlap_ratio(self, samples: Sequence[GeoPoint], others: Sequence[GeoPoint]) -> float:
        """samples のうち others のいずれかの点から許容範囲内にある割合"""
        if not samples:
            return 0.0
        tolerance = self.config.coordinate_tolerance
        matched = 0
        for p in samples:
            for q in others:
                if abs(p.latitude - q.latitude) <= tolerance and abs(p.longitude - q.longitude) <= tolerance:
                    matched += 1
                    break
        return matched / len(samples)

    def overlap(self, route_a: Route, route_b: Route) -> float:
        """双方向の重なり率の小さい方"""
        samples_a = self._sample(route_a)
        samples_b = self._sample(route_b)
        return min(self._overlap_ratio(samples_a, samples_b),
                   self._overlap_ratio(samples_b, samples_a))

    def geographically_similar(self, route_a: Route, route_b: Route) -> bool:
        return self.overlap(route_a, route_b) > self.config.overlap_threshold

    def are_similar(self, route_a: Route, route_b: Route) -> bool:
        """特性または地理的に類似していればTrue（引数の順序に依存しない）"""
        if self.characteristics_similar(route_a, route_b):
            logger.debug("Routes are similar by characteristics")
            return True
        if self.geographically_similar(route_a, route_b):
            logger.debug("Routes are similar by geography")
            return True
        return False
