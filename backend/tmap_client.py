"""
Tmap歩行者経路クライアント
"""
import asyncio
import logging
from typing import Dict, List, Sequence

import aiohttp

from config import TmapConfig, performance_config, tmap_config
from exceptions import ProviderError
from geo_utils import path_length
from models import GeoPoint, PathResult

logger = logging.getLogger(__name__)

def parse_tmap_route(data: Dict) -> PathResult:
    """Tmap GeoJSONレスポンスを経路に変換

    LineString の座標は [経度, 緯度] 順。距離と所要時間は各フィーチャーの
    properties.distance / properties.time の合計。
    """
    features = data.get("features") if isinstance(data, dict) else None
    if not isinstance(features, list):
        raise ProviderError("Tmap response has no features")

    points: List[GeoPoint] = []
    total_distance = 0.0
    total_time = 0.0
    reported_total = None

    try:
        for feature in features:
            properties = feature.get("properties") or {}
            if "distance" in properties:
                total_distance += float(properties["distance"])
            if "time" in properties:
                total_time += float(properties["time"])
            if reported_total is None and "totalDistance" in properties:
                reported_total = float(properties["totalDistance"])

            geometry = feature.get("geometry") or {}
            if geometry.get("type") != "LineString":
                continue

            for coord in geometry.get("coordinates", []):
                point = GeoPoint(latitude=float(coord[1]), longitude=float(coord[0]))
                # 隣接するLineStringの接続点は重複する
                if points and points[-1] == point:
                    continue
                points.append(point)
    except (TypeError, ValueError, IndexError, KeyError) as e:
        raise ProviderError(f"Tmap response parse error: {e}") from e

    if len(points) < 2:
        raise ProviderError(f"Tmap returned too few points: {len(points)}")

    if total_distance <= 0:
        total_distance = reported_total if reported_total else path_length(points)

    return PathResult(points=points, distance_meters=total_distance, duration_seconds=total_time)

class TmapPedestrianClient:
    """Tmap歩行者経路API（経由地は passList で最大5点）"""

    def __init__(self, config: TmapConfig = None):
        self.config = config or tmap_config
        self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """HTTPセッションを取得"""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=performance_config.external_api_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        """リソースのクリーンアップ"""
        if self._session:
            await self._session.close()
            self._session = None

    def build_payload(self,
                      start: GeoPoint,
                      end: GeoPoint,
                      waypoints: Sequence[GeoPoint] = ()) -> Dict[str, str]:
        """リクエストボディを生成"""
        payload = {
            "startX": str(start.longitude),
            "startY": str(start.latitude),
            "endX": str(end.longitude),
            "endY": str(end.latitude),
            "reqCoordType": "WGS84GEO",
            "resCoordType": "WGS84GEO",
            "startName": "start",
            "endName": "end",
            "searchOption": self.config.search_option
        }
        if waypoints:
            if len(waypoints) > self.config.max_pass_points:
                logger.warning(f"Too many waypoints ({len(waypoints)}), using first {self.config.max_pass_points}")
            pass_list = "_".join(
                f"{wp.longitude},{wp.latitude}" for wp in waypoints[:self.config.max_pass_points]
            )
            payload["passList"] = pass_list
        return payload

    async def get_path(self,
                       start: GeoPoint,
                       end: GeoPoint,
                       waypoints: Sequence[GeoPoint] = ()) -> PathResult:
        """歩行者経路を取得"""
        if not self.config.api_key:
            raise ProviderError("TMAP_API_KEY is not configured")

        url = f"{self.config.base_url}/routes/pedestrian?version=1"
        headers = {"Accept": "application/json", "appKey": self.config.api_key}
        payload = self.build_payload(start, end, waypoints)

        try:
            session = await self._get_session()
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    body = await response.text()
                    raise ProviderError(f"Tmap API error: {response.status} {body[:200]}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(f"Tmap API request failed: {e}") from e

        result = parse_tmap_route(data)
        logger.debug(f"Tmap route parsed: {len(result.points)} points, {result.distance_meters:.0f}m, "
                     f"{len(waypoints)} waypoints")
        return result
