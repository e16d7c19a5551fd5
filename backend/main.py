"""
候補ルートAPIサーバー
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from cache_manager import CacheManager
from candidate_service import RouteCandidateService
from config import api_config, candidate_config, performance_config
from models import (
    CandidateDetailResponse, CandidateRoutesResponse, CandidateTypesResponse,
    ErrorResponse, GeoPoint, HealthResponse, RouteType
)
from shadow_service import BuildingShadowOracle
from tmap_client import TmapPedestrianClient
from weather_service import WeatherService

# ログ設定
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@dataclass
class AppServices:
    """アプリケーションが所有するサービス"""
    candidate_service: RouteCandidateService
    cache_manager: CacheManager
    closers: List[Any] = field(default_factory=list)

    async def close(self):
        for resource in self.closers:
            await resource.close()
        self.candidate_service.close()
        self.cache_manager.stop_cleanup_thread()
        self.cache_manager.clear_all()

def build_services() -> AppServices:
    """本番用のサービスを組み立てる"""
    cache_manager = CacheManager()
    cache_manager.start_cleanup_thread()
    executor = ThreadPoolExecutor(max_workers=performance_config.max_workers)

    oracle = BuildingShadowOracle(cache=cache_manager.shadows(), executor=executor)
    provider = TmapPedestrianClient()
    weather = WeatherService()

    service = RouteCandidateService(
        provider=provider,
        oracle=oracle,
        weather=weather,
        route_cache=cache_manager.routes(),
        executor=executor
    )
    return AppServices(candidate_service=service, cache_manager=cache_manager,
                       closers=[oracle, provider, weather])

def create_app(service_factory: Callable[[], AppServices] = build_services) -> FastAPI:
    """FastAPIアプリケーションを生成"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """アプリケーションのライフサイクル管理"""
        logger.info("Starting Shade Route Candidate API Server...")
        app.state.services = service_factory()

        yield

        logger.info("Shutting down Shade Route Candidate API Server...")
        await app.state.services.close()

    app = FastAPI(
        title=api_config.title,
        version=api_config.version,
        description="建物の影を考慮した歩行者ルート候補API",
        lifespan=lifespan
    )

    # CORS設定
    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config.cors_origins,
        allow_credentials=api_config.cors_allow_credentials,
        allow_methods=api_config.cors_allow_methods,
        allow_headers=api_config.cors_allow_headers,
    )

    # リクエスト処理時間のミドルウェア
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """リクエスト処理時間を記録"""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    # グローバル例外ハンドラー
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """グローバル例外ハンドラー"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)

        error_response = ErrorResponse(
            error="internal_server_error",
            message="内部サーバーエラーが発生しました",
            details={"request_path": str(request.url.path)},
            timestamp=datetime.now().isoformat()
        )

        return JSONResponse(
            status_code=500,
            content=error_response.model_dump()
        )

    def get_services(request: Request) -> AppServices:
        return request.app.state.services

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """ヘルスチェック"""
        services = get_services(request)
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now().isoformat(),
            version=api_config.version,
            cache_stats=services.cache_manager.stats()
        )

    @app.get("/api/stats")
    async def get_stats(request: Request):
        """システム統計情報"""
        services = get_services(request)
        return {
            "cache": services.cache_manager.stats(),
            "config": {
                "max_workers": performance_config.max_workers,
                "variant_timeout_seconds": performance_config.variant_timeout_seconds,
                "timezone": candidate_config.timezone
            },
            "timestamp": datetime.now().isoformat()
        }

    @app.post("/api/cache/clear")
    async def clear_cache(request: Request):
        """キャッシュクリア"""
        get_services(request).cache_manager.clear_all()
        return {"message": "キャッシュをクリアしました"}

    async def _generate(request: Request,
                        start_lat: float, start_lng: float,
                        end_lat: float, end_lng: float,
                        date_time: Optional[datetime]):
        service = get_services(request).candidate_service
        when = service.local_time(date_time)
        candidates = await service.generate_candidates(
            GeoPoint(latitude=start_lat, longitude=start_lng),
            GeoPoint(latitude=end_lat, longitude=end_lng),
            when
        )
        return service, when, candidates

    @app.get("/api/routes/candidate-routes", response_model=CandidateRoutesResponse)
    async def get_candidate_routes(
        request: Request,
        start_lat: float = Query(..., alias="startLat", ge=-90, le=90),
        start_lng: float = Query(..., alias="startLng", ge=-180, le=180),
        end_lat: float = Query(..., alias="endLat", ge=-90, le=90),
        end_lng: float = Query(..., alias="endLng", ge=-180, le=180),
        date_time: Optional[datetime] = Query(None, alias="dateTime")
    ):
        """3つの候補ルートを取得"""
        start_time = time.time()
        service, when, candidates = await _generate(request, start_lat, start_lng, end_lat, end_lng, date_time)
        calculation_time = int((time.time() - start_time) * 1000)

        logger.info(f"Candidate routes served: {len(candidates)} candidates in {calculation_time}ms")
        return CandidateRoutesResponse(
            candidates=candidates,
            total_count=len(candidates),
            request_time=when.isoformat(),
            is_night_time=service.is_night_time(when),
            calculation_time_ms=calculation_time
        )

    @app.get("/api/routes/candidate-routes/{route_type}", response_model=CandidateDetailResponse)
    async def get_candidate_route_detail(
        request: Request,
        route_type: str,
        start_lat: float = Query(..., alias="startLat", ge=-90, le=90),
        start_lng: float = Query(..., alias="startLng", ge=-180, le=180),
        end_lat: float = Query(..., alias="endLat", ge=-90, le=90),
        end_lng: float = Query(..., alias="endLng", ge=-180, le=180),
        date_time: Optional[datetime] = Query(None, alias="dateTime")
    ):
        """指定した種類の候補ルートを取得"""
        if route_type not in {t.value for t in RouteType}:
            raise HTTPException(
                status_code=404,
                detail=f"該当する種類のルートが見つかりません: {route_type}"
            )

        _, when, candidates = await _generate(request, start_lat, start_lng, end_lat, end_lng, date_time)
        candidate = next(c for c in candidates if c.type == route_type)
        return CandidateDetailResponse(candidate=candidate, request_time=when.isoformat())

    @app.get("/api/routes/candidate-types", response_model=CandidateTypesResponse)
    async def get_candidate_types():
        """候補ルートの種類一覧"""
        return CandidateTypesResponse(
            types={t.value: candidate_config.display_names.get(t.value, t.value) for t in RouteType},
            default_type=RouteType.SHORTEST.value
        )

    return app

app = create_app()

def main():
    """メイン関数"""
    logger.info(f"Starting server on {api_config.host}:{api_config.port}")

    uvicorn.run(
        "main:app",
        host=api_config.host,
        port=api_config.port,
        reload=False,
        workers=1,  # 非同期処理を活用するため単一ワーカー
        loop="asyncio",
        log_level="info"
    )

if __name__ == "__main__":
    main()
