"""
ルート品質検証 - 距離比・進行性・ジグザグ・日陰改善幅による判定

判定は上から順に行い、最初に失敗した基準で打ち切る。
1. 最小サイズ（迂回ルートのみ）
2. 最短ルートに対する距離比
3. 進行性（目的地への前進効率、後退区間、ジグザグ）
4. 日陰ルート: 日陰率の改善幅
5. バランスルート: 小さな改善幅と距離比
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from config import ValidationConfig, validation_config
from geo_utils import angle_difference, bearing, haversine_distance
from models import GeoPoint, Route, RouteType

logger = logging.getLogger(__name__)

@dataclass
class ValidationCriteria:
    """ルート種別・日陰率ごとの進行性の閾値"""
    min_progress_efficiency: float
    max_regressing_ratio: float
    max_regressing_distance_ratio: float
    max_single_regressing_ratio: float
    max_zigzag_score: float

    def relaxed_to(self, metrics: "ProgressionMetrics") -> "ValidationCriteria":
        """基準ルートが既に満たしている水準より厳しくしない"""
        return ValidationCriteria(
            min_progress_efficiency=min(self.min_progress_efficiency, metrics.progress_efficiency),
            max_regressing_ratio=max(self.max_regressing_ratio, metrics.regressing_ratio),
            max_regressing_distance_ratio=max(self.max_regressing_distance_ratio,
                                              metrics.regressing_distance_ratio),
            max_single_regressing_ratio=max(self.max_single_regressing_ratio,
                                            metrics.longest_regressing_ratio),
            max_zigzag_score=max(self.max_zigzag_score, metrics.zigzag_score)
        )

@dataclass
class ProgressionMetrics:
    """ルートの進行性指標"""
    progress_efficiency: float = 1.0
    regressing_ratio: float = 0.0
    regressing_distance_ratio: float = 0.0
    longest_regressing_ratio: float = 0.0
    reversal_frequency: float = 0.0
    short_segment_ratio: float = 0.0
    zigzag_score: float = 0.0
    step_count: int = 0

@dataclass
class ValidationOutcome:
    accepted: bool
    reason: str = ""

def criteria_for(route_type: str,
                 shadow_percentage: int,
                 config: ValidationConfig = None) -> ValidationCriteria:
    """ルート種別と日陰率から閾値を決定（日陰が多いほど緩い）"""
    config = config or validation_config
    thresholds = config.progression_thresholds.get(
        route_type, config.progression_thresholds[RouteType.BALANCED.value]
    )
    min_eff, max_regr, max_regr_dist, max_single, max_zigzag = thresholds

    leniency = 0.0
    for min_shadow, relax in sorted(config.leniency_steps, reverse=True):
        if shadow_percentage >= min_shadow:
            leniency = relax
            break

    return ValidationCriteria(
        min_progress_efficiency=max(0.0, min_eff - leniency),
        max_regressing_ratio=max_regr + leniency,
        max_regressing_distance_ratio=max_regr_dist + leniency,
        max_single_regressing_ratio=max_single + leniency,
        max_zigzag_score=max_zigzag + leniency
    )

def analyze_progression(points: Sequence[GeoPoint],
                        destination: GeoPoint = None,
                        config: ValidationConfig = None) -> ProgressionMetrics:
    """ポイント列を辿り、目的地までの残り距離の増減とジグザグ度を計算"""
    config = config or validation_config
    if len(points) < 2:
        return ProgressionMetrics()
    if destination is None:
        destination = points[-1]

    segment_lengths = []
    headings = []
    forward = 0
    regressing = 0
    regressing_distance = 0.0
    current_run = 0.0
    longest_run = 0.0

    remaining = haversine_distance(points[0], destination)
    for i in range(1, len(points)):
        length = haversine_distance(points[i - 1], points[i])
        if length < config.min_step_meters:
            continue
        segment_lengths.append(length)
        headings.append(bearing(points[i - 1], points[i]))

        next_remaining = haversine_distance(points[i], destination)
        if next_remaining < remaining:
            forward += 1
            current_run = 0.0
        else:
            regressing += 1
            regressing_distance += length
            current_run += length
            longest_run = max(longest_run, current_run)
        remaining = next_remaining

    steps = len(segment_lengths)
    if steps == 0:
        return ProgressionMetrics()

    total_length = sum(segment_lengths)

    reversals = sum(1 for i in range(1, len(headings))
                    if angle_difference(headings[i - 1], headings[i]) > config.reversal_angle)
    reversal_frequency = reversals / (len(headings) - 1) if len(headings) > 1 else 0.0

    mean_length = total_length / steps
    short_segments = sum(1 for length in segment_lengths
                         if length < mean_length * config.short_segment_ratio)
    short_segment_ratio = short_segments / steps

    return ProgressionMetrics(
        progress_efficiency=forward / steps,
        regressing_ratio=regressing / steps,
        regressing_distance_ratio=regressing_distance / total_length if total_length > 0 else 0.0,
        longest_regressing_ratio=longest_run / total_length if total_length > 0 else 0.0,
        reversal_frequency=reversal_frequency,
        short_segment_ratio=short_segment_ratio,
        zigzag_score=(config.reversal_weight * reversal_frequency
                      + config.short_segment_weight * short_segment_ratio),
        step_count=steps
    )

class RouteQualityValidator:
    """ルート品質検証（状態を持たない）"""

    def __init__(self, config: ValidationConfig = None):
        self.config = config or validation_config

    @staticmethod
    def distance_ratio(candidate: Route, base: Route) -> float:
        if base.distance_meters <= 0:
            return 1.0 if candidate.distance_meters <= 0 else math.inf
        return candidate.distance_meters / base.distance_meters

    def required_shadow_gain(self, base_shadow: int) -> int:
        """日陰ルートに必要な日陰率の改善幅（ベースが低いほど厳しい）"""
        for upper, gain in sorted(self.config.shade_gain_steps):
            if base_shadow < upper:
                return gain
        return self.config.shade_default_gain

    def max_distance_ratio(self, route_type: str, shadow_gain: int) -> float:
        if route_type == RouteType.SHADE.value and shadow_gain >= self.config.shade_extended_gain:
            return self.config.shade_extended_distance_ratio
        return self.config.max_distance_ratio.get(route_type, self.config.extreme_distance_ratio)

    def reject(self, candidate: Optional[Route], base: Route) -> bool:
        """明らかに不適切なルート（空・距離比が極端）"""
        if candidate is None or len(candidate.points) < 2 or candidate.distance_meters <= 0:
            return True
        ratio = self.distance_ratio(candidate, base)
        if ratio > self.config.extreme_distance_ratio:
            logger.debug(f"Extreme detour rejected: {ratio:.2f}x")
            return True
        return False

    def evaluate(self, candidate: Route, base: Route, route_type: str) -> ValidationOutcome:
        """品質基準を順に判定"""
        is_variant = route_type != RouteType.SHORTEST.value
        shadow_gain = candidate.shadow_percentage - base.shadow_percentage

        # 1. 最小サイズ
        if is_variant and (candidate.distance_meters < self.config.min_route_distance
                           or len(candidate.points) < self.config.min_route_points):
            return ValidationOutcome(False, "route too small")

        # 2. 距離比
        ratio = self.distance_ratio(candidate, base)
        max_ratio = self.max_distance_ratio(route_type, shadow_gain)
        if ratio > max_ratio:
            return ValidationOutcome(False, f"distance ratio {ratio:.2f} > {max_ratio:.2f}")

        # 3. 進行性
        criteria = criteria_for(route_type, candidate.shadow_percentage, self.config)
        base_metrics = analyze_progression(base.points, base.end, self.config)
        criteria = criteria.relaxed_to(base_metrics)
        metrics = analyze_progression(candidate.points, candidate.end, self.config)

        if metrics.progress_efficiency < criteria.min_progress_efficiency:
            return ValidationOutcome(False, f"progress efficiency {metrics.progress_efficiency:.2f}")
        if metrics.regressing_ratio > criteria.max_regressing_ratio:
            return ValidationOutcome(False, f"regressing ratio {metrics.regressing_ratio:.2f}")
        if metrics.regressing_distance_ratio > criteria.max_regressing_distance_ratio:
            return ValidationOutcome(False, f"regressing distance {metrics.regressing_distance_ratio:.2f}")
        if metrics.longest_regressing_ratio > criteria.max_single_regressing_ratio:
            return ValidationOutcome(False, f"longest regression {metrics.longest_regressing_ratio:.2f}")
        if metrics.zigzag_score > criteria.max_zigzag_score:
            return ValidationOutcome(False, f"zigzag score {metrics.zigzag_score:.2f}")

        # 4. 日陰ルートの改善幅
        if route_type == RouteType.SHADE.value:
            required = self.required_shadow_gain(base.shadow_percentage)
            if shadow_gain < required:
                return ValidationOutcome(False, f"shadow gain {shadow_gain:+d} < {required}")

        # 5. バランスルート
        if route_type == RouteType.BALANCED.value:
            if shadow_gain < self.config.balanced_min_gain:
                return ValidationOutcome(False, f"shadow gain {shadow_gain:+d} < {self.config.balanced_min_gain}")
            if ratio > self.config.max_distance_ratio[RouteType.BALANCED.value]:
                return ValidationOutcome(False, f"balanced distance ratio {ratio:.2f}")

        return ValidationOutcome(True)

    def accept(self, candidate: Route, base: Route, route_type: str) -> bool:
        outcome = self.evaluate(candidate, base, route_type)
        if not outcome.accepted:
            logger.debug(f"{route_type} candidate rejected: {outcome.reason}")
        return outcome.accepted
