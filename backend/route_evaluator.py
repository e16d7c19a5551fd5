"""
ルート評価 - 経由地から経路を取得し、日陰率を計算する
"""
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from config import PerformanceConfig, performance_config
from exceptions import OracleError, ProviderError, RouteTimeout
from geo_utils import path_length
from interfaces import GeometryOracle, PathProvider
from models import GeoPoint, PathResult, Route, RouteResult, ShadowContext, ShadowSegment

logger = logging.getLogger(__name__)

def sample_indices(count: int, sample_size: int) -> List[int]:
    """等間隔のサンプル位置（先頭と末尾を必ず含む）"""
    if count <= sample_size:
        return list(range(count))
    if sample_size < 2:
        return [0, count - 1]
    step = (count - 1) / (sample_size - 1)
    indices = sorted({int(round(i * step)) for i in range(sample_size)})
    if indices[-1] != count - 1:
        indices.append(count - 1)
    return indices

def analyze_shadow_segments(points: Sequence[GeoPoint]) -> Tuple[ShadowSegment, ...]:
    """日陰判定済みポイントの連続区間を抽出（未判定のポイントは区間を分断しない）"""
    segments = []
    run_start: Optional[int] = None
    run_end: Optional[int] = None

    for i, point in enumerate(points):
        if point.in_shadow is None:
            continue
        if point.in_shadow:
            if run_start is None:
                run_start = i
            run_end = i
        elif run_start is not None:
            segments.append(_segment(points, run_start, run_end))
            run_start = run_end = None

    if run_start is not None:
        segments.append(_segment(points, run_start, run_end))

    return tuple(segments)

def _segment(points: Sequence[GeoPoint], start: int, end: int) -> ShadowSegment:
    return ShadowSegment(start_index=start, end_index=end,
                         length_meters=path_length(points[start:end + 1]))

class RouteEvaluator:
    """経由地セット → 日陰率付きルート"""

    def __init__(self,
                 provider: PathProvider,
                 oracle: GeometryOracle,
                 executor: Optional[ThreadPoolExecutor] = None,
                 config: PerformanceConfig = None):
        self.provider = provider
        self.oracle = oracle
        self.config = config or performance_config
        self.executor = executor or ThreadPoolExecutor(max_workers=self.config.max_workers)

    async def fetch_path(self,
                         start: GeoPoint,
                         end: GeoPoint,
                         waypoints: Sequence[GeoPoint] = ()) -> PathResult:
        """経路プロバイダを時間制限付きで呼び出す"""
        try:
            path = await asyncio.wait_for(
                self.provider.get_path(start, end, list(waypoints)),
                timeout=self.config.provider_call_timeout
            )
        except asyncio.TimeoutError as e:
            raise RouteTimeout(f"Path provider timed out after {self.config.provider_call_timeout}s") from e

        if path is None or len(path.points) < 2:
            raise ProviderError("Path provider returned an empty path")
        return path

    def _classify_points(self,
                         points: Sequence[GeoPoint],
                         indices: Sequence[int],
                         merged) -> Tuple[List[GeoPoint], int]:
        """サンプル点の日陰判定（ワーカースレッドで実行）"""
        flagged: List[GeoPoint] = [p.with_shadow(None) for p in points]
        in_shadow = 0
        for i in indices:
            inside = self.oracle.contains(merged, points[i])
            flagged[i] = points[i].with_shadow(inside)
            if inside:
                in_shadow += 1
        percentage = int(in_shadow * 100 / len(indices)) if indices else 0
        return flagged, percentage

    async def apply_shadow(self, route: Route, context: ShadowContext) -> Route:
        """ルートに日陰率を付与（影データの取得失敗時は0%）"""
        points = list(route.points)
        indices = sample_indices(len(points), self.config.shadow_sample_size)

        if not context.has_shadows:
            flagged = [p.with_shadow(None) for p in points]
            for i in indices:
                flagged[i] = points[i].with_shadow(False)
            return route.with_shadow(tuple(flagged), 0, ())

        loop = asyncio.get_running_loop()
        try:
            flagged, percentage = await asyncio.wait_for(
                loop.run_in_executor(self.executor, self._classify_points, points, indices, context.merged),
                timeout=self.config.oracle_call_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Shadow containment timed out for {route.route_type} route, using 0%")
            return route.with_shadow(tuple(p.with_shadow(None) for p in points), 0, ())
        except OracleError as e:
            logger.warning(f"Shadow containment failed for {route.route_type} route: {e}, using 0%")
            return route.with_shadow(tuple(p.with_shadow(None) for p in points), 0, ())

        return route.with_shadow(tuple(flagged), percentage, analyze_shadow_segments(flagged))

    async def evaluate(self,
                       start: GeoPoint,
                       end: GeoPoint,
                       waypoints: Sequence[GeoPoint],
                       route_type: str,
                       context: ShadowContext) -> RouteResult:
        """経路取得と日陰率計算（プロバイダ・タイムアウトの失敗は RouteResult で返す）"""
        started = time.time()
        try:
            path = await self.fetch_path(start, end, waypoints)
        except (ProviderError, RouteTimeout) as e:
            logger.debug(f"Path fetch failed for {route_type} ({len(waypoints)} waypoints): {e}")
            return RouteResult.failure(e)

        route = Route(
            points=tuple(p.with_shadow(None) for p in path.points),
            distance_meters=path.distance_meters,
            duration_minutes=int(path.duration_seconds // 60),
            route_type=route_type,
            waypoint_count=len(waypoints),
            waypoints=tuple(waypoints)
        )
        route = await self.apply_shadow(route, context)

        logger.debug(f"Evaluated {route_type} route: {route.distance_meters:.0f}m, "
                     f"shade {route.shadow_percentage}%, {len(route.points)} points "
                     f"in {time.time() - started:.2f}s")
        return RouteResult.success(route)
