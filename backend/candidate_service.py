"""
候補ルートサービス - 最短・日陰・バランスの3候補を生成する

状態遷移: GATING → GENERATING_BASE → GENERATING_VARIANTS → VALIDATING → FINALIZING
どの経路で終了しても、常に shortest / shade / balanced の順で3件を返す。
"""
import asyncio
import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from cache_manager import LRUCache
from config import CandidateConfig, PerformanceConfig, candidate_config, performance_config
from exceptions import (
    REASON_BASE_FAILED, REASON_SAFETY, REASON_SYSTEM_ERROR,
    NoWaypointFound, OracleError, RouteEngineError, RouteTimeout,
    SimilarRouteRejected, ValidationRejected
)
from interfaces import GeometryOracle, PathProvider, WeatherGate
from models import (
    GeoPoint, Route, RouteCandidate, RoutePurpose, RouteType, ShadowContext, SunPosition,
    balance_score
)
from route_evaluator import RouteEvaluator
from route_validator import RouteQualityValidator
from similarity_checker import SimilarityChecker
from solar_calculator import SolarPositionCalculator
from waypoint_synthesizer import WaypointSynthesizer

logger = logging.getLogger(__name__)

class PipelineState(str, Enum):
    GATING = "gating"
    GENERATING_BASE = "generating_base"
    GENERATING_VARIANTS = "generating_variants"
    VALIDATING = "validating"
    FINALIZING = "finalizing"

# 生成不可の理由の優先順位（先頭ほど優先して表示）
_REASON_PRECEDENCE = [
    SimilarRouteRejected.reason,
    ValidationRejected.reason,
    RouteTimeout.reason,
    NoWaypointFound.reason,
    RouteEngineError.reason,
]

_VARIANT_PURPOSE = {
    RouteType.SHADE.value: RoutePurpose.SEEK_SHADOW,
    RouteType.BALANCED.value: RoutePurpose.BALANCED,
}

@dataclass
class VariantOutcome:
    """迂回ルート生成の結果（スコア順の有効ルート、または失敗理由）"""
    routes: List[Route] = field(default_factory=list)
    reason: Optional[str] = None

def select_reason(reasons: Sequence[str]) -> str:
    """収集した失敗理由から表示する理由を1つ選ぶ"""
    for reason in _REASON_PRECEDENCE:
        if reason in reasons:
            return reason
    return reasons[0] if reasons else RouteEngineError.reason

def rank_routes(route_type: str, routes: Sequence[Route]) -> List[Route]:
    """宣言されたスコアで並べる（到着順には依存しない）"""
    if route_type == RouteType.SHADE.value:
        return sorted(routes, key=lambda r: (-r.shadow_percentage, r.distance_meters))
    return sorted(routes, key=lambda r: (-balance_score(r), r.distance_meters))

class RouteCandidateService:
    """候補ルート生成のオーケストレーター"""

    def __init__(self,
                 provider: PathProvider,
                 oracle: GeometryOracle,
                 weather: Optional[WeatherGate] = None,
                 route_cache: Optional[LRUCache] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 solar: Optional[SolarPositionCalculator] = None,
                 synthesizer: Optional[WaypointSynthesizer] = None,
                 validator: Optional[RouteQualityValidator] = None,
                 similarity: Optional[SimilarityChecker] = None,
                 config: Optional[CandidateConfig] = None,
                 perf_config: Optional[PerformanceConfig] = None):
        self.provider = provider
        self.oracle = oracle
        self.weather = weather
        self.route_cache = route_cache
        self.config = config or candidate_config
        self.perf_config = perf_config or performance_config
        self.executor = executor or ThreadPoolExecutor(max_workers=self.perf_config.max_workers)
        self.solar = solar or SolarPositionCalculator(self.config.timezone)
        self.synthesizer = synthesizer or WaypointSynthesizer()
        self.validator = validator or RouteQualityValidator()
        self.similarity = similarity or SimilarityChecker()
        self.evaluator = RouteEvaluator(provider, oracle, self.executor, self.perf_config)

    def close(self):
        self.executor.shutdown(wait=False)

    # ----- 補助 -----

    def local_time(self, when: Optional[datetime] = None) -> datetime:
        """設定タイムゾーンの現地時刻（タイムゾーン無しはそのまま現地時刻とみなす）"""
        if when is None:
            return datetime.now(self.solar.tz)
        if when.tzinfo is None:
            return when.replace(tzinfo=self.solar.tz)
        return when.astimezone(self.solar.tz)

    def is_night_time(self, when: datetime) -> bool:
        """夜間帯 [night_start, 24) ∪ [0, night_end) か"""
        hour = self.local_time(when).hour
        return hour >= self.config.night_start_hour or hour < self.config.night_end_hour

    def _fingerprint(self, start: GeoPoint, end: GeoPoint, when: datetime) -> str:
        """キャッシュキー（丸めた座標と現地の日付・時）"""
        precision = self.config.fingerprint_precision
        key_data = (f"{start.latitude:.{precision}f},{start.longitude:.{precision}f},"
                    f"{end.latitude:.{precision}f},{end.longitude:.{precision}f},"
                    f"{when.strftime('%Y-%m-%d %H')}")
        return hashlib.md5(key_data.encode()).hexdigest()

    @staticmethod
    def _transition(request_id: str, state: PipelineState):
        logger.info(f"[{request_id}] -> {state.value}")

    def _all_unavailable(self, reason: str) -> List[RouteCandidate]:
        return [RouteCandidate.unavailable(t.value, reason) for t in RouteType]

    # ----- パイプライン -----

    async def generate_candidates(self,
                                  start: GeoPoint,
                                  end: GeoPoint,
                                  when: Optional[datetime] = None) -> List[RouteCandidate]:
        """3件の候補ルートを生成（例外は送出しない）"""
        local_when = self.local_time(when)
        cache_key = self._fingerprint(start, end, local_when)
        request_id = cache_key[:8]

        if self.route_cache is not None:
            cached = self.route_cache.get(cache_key)
            if cached is not None:
                logger.info(f"[{request_id}] Using cached candidate routes")
                return list(cached)

        started = time.monotonic()
        try:
            candidates = await self._run_pipeline(request_id, start, end, local_when, started)
        except Exception as e:
            logger.error(f"[{request_id}] Candidate generation failed: {e}", exc_info=True)
            return self._all_unavailable(REASON_SYSTEM_ERROR)

        if self.route_cache is not None and candidates[0].available:
            self.route_cache.put(cache_key, list(candidates))

        logger.info(f"[{request_id}] Generated candidates in {time.monotonic() - started:.2f}s: "
                    + ", ".join(f"{c.type}={'ok' if c.available else 'n/a'}" for c in candidates))
        return candidates

    async def _run_pipeline(self,
                            request_id: str,
                            start: GeoPoint,
                            end: GeoPoint,
                            when: datetime,
                            started: float) -> List[RouteCandidate]:
        logger.info(f"[{request_id}] Candidate request: ({start.latitude}, {start.longitude}) -> "
                    f"({end.latitude}, {end.longitude}) at {when.isoformat()}")

        self._transition(request_id, PipelineState.GATING)
        sun = self.solar.calculate(start.latitude, start.longitude, when)
        if self.is_night_time(when) or await self._is_unsafe_weather(start, when):
            return await self._safety_candidates(request_id, start, end, sun)

        self._transition(request_id, PipelineState.GENERATING_BASE)
        context = await self.build_shadow_context(start, end, sun, when)
        base_result = await self.evaluator.evaluate(start, end, [], RouteType.SHORTEST.value, context)
        if not base_result.ok:
            logger.error(f"[{request_id}] Shortest route failed: {base_result.error}")
            return self._all_unavailable(REASON_BASE_FAILED)
        base = base_result.route

        self._transition(request_id, PipelineState.GENERATING_VARIANTS)
        shade_outcome, balanced_outcome = await self._generate_variants(
            request_id, start, end, base, context, started
        )

        self._transition(request_id, PipelineState.VALIDATING)
        shade_route = shade_outcome.routes[0] if shade_outcome.routes else None
        balanced_route = None
        balanced_reason = balanced_outcome.reason
        for route in balanced_outcome.routes:
            if shade_route is not None and self.similarity.are_similar(route, shade_route):
                logger.debug(f"[{request_id}] Balanced route similar to shade route, trying next")
                continue
            balanced_route = route
            break
        if balanced_route is None and balanced_outcome.routes:
            balanced_reason = SimilarRouteRejected.reason

        self._transition(request_id, PipelineState.FINALIZING)
        candidates = [RouteCandidate.from_route(RouteType.SHORTEST.value, base)]
        for route_type, route, reason in (
                (RouteType.SHADE.value, shade_route, shade_outcome.reason),
                (RouteType.BALANCED.value, balanced_route, balanced_reason)):
            if route is not None:
                candidates.append(RouteCandidate.from_route(route_type, route).with_efficiency(base))
            else:
                candidates.append(RouteCandidate.unavailable(route_type, reason or RouteEngineError.reason))
        return candidates

    async def _is_unsafe_weather(self, location: GeoPoint, when: datetime) -> bool:
        """天候ゲート（取得できない場合は安全とみなす）"""
        if self.weather is None:
            return False
        try:
            return await asyncio.wait_for(self.weather.is_unsafe(location, when),
                                          timeout=self.perf_config.weather_call_timeout)
        except asyncio.TimeoutError:
            logger.warning("Weather check timed out, assuming safe weather")
            return False
        except Exception as e:
            logger.warning(f"Weather check failed: {e}, assuming safe weather")
            return False

    async def _safety_candidates(self,
                                 request_id: str,
                                 start: GeoPoint,
                                 end: GeoPoint,
                                 sun: SunPosition) -> List[RouteCandidate]:
        """夜間・悪天候時: 最短ルートのみ"""
        logger.info(f"[{request_id}] Safety mode: shortest route only")
        base_result = await self.evaluator.evaluate(start, end, [], RouteType.SHORTEST.value,
                                                    ShadowContext(sun=sun))
        if base_result.ok:
            shortest = RouteCandidate.from_route(RouteType.SHORTEST.value, base_result.route)
        else:
            logger.error(f"[{request_id}] Shortest route failed in safety mode: {base_result.error}")
            shortest = RouteCandidate.unavailable(RouteType.SHORTEST.value, REASON_BASE_FAILED)
        return [
            shortest,
            RouteCandidate.unavailable(RouteType.SHADE.value, REASON_SAFETY),
            RouteCandidate.unavailable(RouteType.BALANCED.value, REASON_SAFETY),
        ]

    async def build_shadow_context(self,
                                   start: GeoPoint,
                                   end: GeoPoint,
                                   sun: SunPosition,
                                   when: datetime) -> ShadowContext:
        """影データを取得して結合（失敗時は影なしとして続行）"""
        if not sun.is_above_horizon:
            return ShadowContext(sun=sun)
        try:
            areas = await asyncio.wait_for(self.oracle.shadows_near(start, end, sun, when),
                                           timeout=self.perf_config.oracle_call_timeout)
            loop = asyncio.get_running_loop()
            merged = await loop.run_in_executor(self.executor, self.oracle.merge_shadows, areas)
        except asyncio.TimeoutError:
            logger.warning("Shadow data request timed out, continuing without shadows")
            return ShadowContext(sun=sun)
        except OracleError as e:
            logger.warning(f"Shadow data unavailable: {e}, continuing without shadows")
            return ShadowContext(sun=sun)
        return ShadowContext(sun=sun, shadow_areas=list(areas), merged=merged)

    async def _generate_variants(self,
                                 request_id: str,
                                 start: GeoPoint,
                                 end: GeoPoint,
                                 base: Route,
                                 context: ShadowContext,
                                 started: float):
        """日陰・バランスを並行生成（開始からの合計時間で打ち切り）"""
        tasks = {
            route_type: asyncio.create_task(
                self.generate_variant(request_id, route_type, start, end, base, context)
            )
            for route_type in (RouteType.SHADE.value, RouteType.BALANCED.value)
        }

        remaining = max(0.0, self.perf_config.variant_timeout_seconds - (time.monotonic() - started))
        done, pending = await asyncio.wait(tasks.values(), timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes = []
        for route_type, task in tasks.items():
            if task in pending:
                logger.warning(f"[{request_id}] {route_type} generation timed out")
                outcomes.append(VariantOutcome(reason=RouteTimeout.reason))
            elif task.exception() is not None:
                error = task.exception()
                logger.error(f"[{request_id}] {route_type} generation error: {error}", exc_info=error)
                outcomes.append(VariantOutcome(reason=RouteEngineError.reason))
            else:
                outcomes.append(task.result())
        return outcomes[0], outcomes[1]

    async def generate_variant(self,
                               request_id: str,
                               route_type: str,
                               start: GeoPoint,
                               end: GeoPoint,
                               base: Route,
                               context: ShadowContext) -> VariantOutcome:
        """試行ごとに経由地を変えて有効なルートを探す"""
        # 影がなければ日陰率の上積みは得られない
        if not context.has_shadows:
            logger.info(f"[{request_id}] No shadow data, skipping {route_type} generation")
            return VariantOutcome(reason=ValidationRejected.reason)

        purpose = _VARIANT_PURPOSE[route_type]
        batch_size = self.perf_config.evaluation_batch_size
        valid: List[Route] = []
        reasons: List[str] = []

        for attempt in range(self.perf_config.max_attempts):
            waypoints = self.synthesizer.synthesize(start, end, context.sun, purpose, attempt,
                                                    context.shadow_areas)
            if not waypoints:
                reasons.append(NoWaypointFound.reason)
                continue

            for i in range(0, len(waypoints), batch_size):
                batch = waypoints[i:i + batch_size]
                results = await asyncio.gather(*[
                    self.evaluator.evaluate(start, end, [wp], route_type, context) for wp in batch
                ])

                for result in results:
                    if not result.ok:
                        error = result.error
                        reasons.append(error.reason if isinstance(error, RouteEngineError)
                                       else RouteEngineError.reason)
                        continue
                    route = result.route
                    if self.validator.reject(route, base) or not self.validator.accept(route, base, route_type):
                        reasons.append(ValidationRejected.reason)
                        continue
                    if self.similarity.are_similar(route, base):
                        reasons.append(SimilarRouteRejected.reason)
                        continue
                    valid.append(route)

                if len(valid) >= self.perf_config.enough_valid_routes:
                    break

            logger.info(f"[{request_id}] {route_type} attempt {attempt + 1}: "
                        f"{len(waypoints)} waypoints, {len(valid)} valid routes")
            if valid:
                break

        if not valid:
            return VariantOutcome(reason=select_reason(reasons))
        return VariantOutcome(routes=rank_routes(route_type, valid))
