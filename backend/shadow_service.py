"""
建物影サービス - OSM建物データから太陽位置に応じた影ポリゴンを生成
"""
import asyncio
import hashlib
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
from shapely.affinity import translate
from shapely.errors import ShapelyError
from shapely.geometry import Point, Polygon
from shapely.ops import unary_union

from cache_manager import LRUCache
from config import osm_config, performance_config, shadow_config
from exceptions import OracleError
from geo_utils import METERS_PER_DEGREE, haversine_distance, perpendicular_distance
from models import (
    Building, BuildingProperties, GeoPoint, PolygonGeometry, ShadowArea, SunPosition
)
from solar_calculator import calculate_shadow_length

logger = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]

class BuildingShadowOracle:
    """建物影オラクル（Overpass API + shapely）"""

    def __init__(self,
                 cache: Optional[LRUCache] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.cache = cache
        self.executor = executor or ThreadPoolExecutor(max_workers=performance_config.max_workers)
        self._owns_executor = executor is None
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
        if self._owns_executor:
            self.executor.shutdown(wait=False)

    @staticmethod
    def route_bbox(start: GeoPoint, end: GeoPoint, margin: float = None) -> BBox:
        """出発地・目的地を含む境界ボックス (south, west, north, east)"""
        if margin is None:
            margin = shadow_config.bbox_margin_degrees
        return (
            round(min(start.latitude, end.latitude) - margin, 6),
            round(min(start.longitude, end.longitude) - margin, 6),
            round(max(start.latitude, end.latitude) + margin, 6),
            round(max(start.longitude, end.longitude) + margin, 6)
        )

    def _generate_cache_key(self, prefix: str, bbox: BBox, suffix: str = "") -> str:
        """境界ボックスからキャッシュキーを生成"""
        bbox_str = f"{prefix}:{bbox[0]:.6f},{bbox[1]:.6f},{bbox[2]:.6f},{bbox[3]:.6f}:{suffix}"
        return hashlib.md5(bbox_str.encode()).hexdigest()

    def _create_overpass_query(self, bbox: BBox) -> str:
        """Overpassクエリを生成"""
        return f"""
        [out:json][timeout:{performance_config.external_api_timeout}];
        (
          way[building]({bbox[0]},{bbox[1]},{bbox[2]},{bbox[3]});
          way[building:part]({bbox[0]},{bbox[1]},{bbox[2]},{bbox[3]});
        );
        out geom {performance_config.max_buildings_per_request};
        """

    async def _fetch_from_overpass(self, query: str, url: str) -> Optional[Dict]:
        """Overpass APIからデータを取得"""
        try:
            session = await self._get_session()
            async with session.post(url, data=query) as response:
                if response.status == 200:
                    return await response.json()
                logger.warning(f"Overpass API error: {response.status}")
                return None
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Overpass API request failed: {e}")
            return None

    async def _fetch_buildings_from_osm(self, bbox: BBox) -> Dict:
        """OSMから建物データを取得（バックアップURL対応）"""
        query = self._create_overpass_query(bbox)

        osm_data = await self._fetch_from_overpass(query, osm_config.overpass_url)
        if osm_data:
            return osm_data

        for backup_url in osm_config.backup_overpass_urls:
            logger.info(f"Trying backup URL: {backup_url}")
            osm_data = await self._fetch_from_overpass(query, backup_url)
            if osm_data:
                return osm_data

        raise OracleError(f"Failed to fetch building data for bbox {bbox}")

    @staticmethod
    def estimate_building_height(tags: Dict) -> float:
        """建物の高さを推定"""
        if "height" in tags:
            try:
                raw = str(tags["height"])
                height = float(raw.replace("m", "").replace("ft", "").strip())
                if "ft" in raw:
                    height = height * 0.3048  # フィートからメートルに変換
                return max(3.0, height)
            except (ValueError, TypeError):
                pass

        if "building:levels" in tags:
            try:
                levels = int(float(tags["building:levels"]))
                return max(3.0, levels * 3.5)  # 1階=3.5m想定
            except (ValueError, TypeError):
                pass

        building_type = tags.get("building", "")
        height_map = {
            "skyscraper": 100.0,
            "office": 50.0,
            "apartments": 30.0,
            "commercial": 20.0,
            "hotel": 40.0,
            "hospital": 25.0,
            "school": 15.0,
            "house": 8.0,
            "garage": 4.0,
            "shed": 3.0
        }

        return height_map.get(building_type, 10.0)

    def process_building_element(self, element: Dict) -> Optional[Building]:
        """Overpass要素を建物に変換（ポリゴンでない要素はNone）"""
        if element.get("type") != "way" or "geometry" not in element:
            return None

        coordinates = [[coord["lon"], coord["lat"]] for coord in element["geometry"]]
        if len(coordinates) < 3:
            return None

        # 閉じた多角形にする
        if coordinates[0] != coordinates[-1]:
            coordinates.append(coordinates[0])
        if len(coordinates) < 4:
            return None

        tags = element.get("tags", {})
        return Building(
            geometry=PolygonGeometry(type="Polygon", coordinates=[coordinates]),
            properties=BuildingProperties(
                building=str(tags.get("building", "yes")),
                height=self.estimate_building_height(tags),
                osm_id=element.get("id"),
                levels=tags.get("building:levels")
            )
        )

    async def get_buildings(self, bbox: BBox) -> List[Building]:
        """建物データを取得（キャッシュ優先）"""
        cache_key = self._generate_cache_key("buildings", bbox)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached building data for bbox: {bbox}")
                return cached

        start_time = time.time()
        logger.info(f"Fetching building data from OSM for bbox: {bbox}")

        osm_data = await self._fetch_buildings_from_osm(bbox)
        elements = osm_data.get("elements", [])
        if len(elements) > performance_config.max_buildings_per_request:
            elements = elements[:performance_config.max_buildings_per_request]
            logger.warning(f"Limited buildings to {performance_config.max_buildings_per_request}")

        buildings = [b for b in map(self.process_building_element, elements) if b is not None]

        if self.cache is not None:
            self.cache.put(cache_key, buildings)

        logger.info(f"Processed {len(buildings)} buildings in {time.time() - start_time:.2f}s")
        return buildings

    @staticmethod
    def build_shadow_area(building: Building, sun: SunPosition, area_id: int) -> Optional[ShadowArea]:
        """建物の影ポリゴンを生成（建物と平行移動した建物の凸包）"""
        if not sun.is_above_horizon:
            return None

        ring = building.geometry.coordinates[0]
        footprint = Polygon(ring)
        if not footprint.is_valid:
            footprint = footprint.buffer(0)
        if footprint.is_empty:
            return None

        shadow_length = min(calculate_shadow_length(building.properties.height, sun.altitude),
                            shadow_config.max_shadow_length)

        # 影は太陽の反対方向に伸びる
        direction = math.radians((sun.azimuth + 180) % 360)
        center_lat = footprint.centroid.y
        dx = shadow_length * math.sin(direction) / (METERS_PER_DEGREE * math.cos(math.radians(center_lat)))
        dy = shadow_length * math.cos(direction) / METERS_PER_DEGREE

        shadow = footprint.union(translate(footprint, xoff=dx, yoff=dy)).convex_hull
        if shadow.geom_type != "Polygon":
            return None

        return ShadowArea(
            id=building.properties.osm_id or area_id,
            building_height=building.properties.height,
            building_geometry=building.geometry,
            shadow_geometry=PolygonGeometry(
                type="Polygon",
                coordinates=[[list(c) for c in shadow.exterior.coords]]
            )
        )

    def build_shadow_areas(self,
                           buildings: Sequence[Building],
                           sun: SunPosition,
                           start: GeoPoint,
                           end: GeoPoint) -> List[ShadowArea]:
        """ルートに近い建物から順に影を生成（上限 max_shadow_areas）"""
        def distance_to_route(building: Building) -> float:
            centroid = Polygon(building.geometry.coordinates[0]).centroid
            center = GeoPoint(latitude=centroid.y, longitude=centroid.x)
            return _distance_to_segment(center, start, end)

        nearest = sorted(buildings, key=distance_to_route)[:shadow_config.max_shadow_areas]

        areas = []
        for i, building in enumerate(nearest):
            area = self.build_shadow_area(building, sun, i)
            if area is not None:
                areas.append(area)
        return areas

    async def shadows_near(self,
                           start: GeoPoint,
                           end: GeoPoint,
                           sun: SunPosition,
                           when: datetime = None) -> List[ShadowArea]:
        """ルート周辺の影エリアを取得"""
        if sun.altitude <= shadow_config.min_sun_altitude:
            return []

        bbox = self.route_bbox(start, end)
        if when is not None:
            suffix = when.strftime("%Y-%m-%d %H")
        else:
            suffix = f"{sun.altitude:.1f},{sun.azimuth:.1f}"
        cache_key = self._generate_cache_key("shadows", bbox, suffix)

        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached shadow areas for bbox: {bbox} ({suffix})")
                return cached

        buildings = await self.get_buildings(bbox)

        loop = asyncio.get_running_loop()
        try:
            areas = await loop.run_in_executor(
                self.executor, self.build_shadow_areas, buildings, sun, start, end
            )
        except (ValueError, TypeError) as e:
            raise OracleError(f"Shadow polygon generation failed: {e}") from e

        if self.cache is not None:
            self.cache.put(cache_key, areas)

        logger.info(f"Generated {len(areas)} shadow areas (altitude={sun.altitude:.1f}, azimuth={sun.azimuth:.1f})")
        return areas

    def merge_shadows(self, shadow_areas: Sequence[ShadowArea]) -> Any:
        """影ポリゴンを結合（許容誤差分だけ拡張）"""
        polygons = []
        for area in shadow_areas[:shadow_config.max_shadow_areas]:
            polygon = Polygon(area.shadow_geometry.coordinates[0])
            if not polygon.is_valid:
                polygon = polygon.buffer(0)
            if not polygon.is_empty:
                polygons.append(polygon)

        if not polygons:
            return None

        try:
            return unary_union(polygons).buffer(shadow_config.containment_tolerance_degrees)
        except ShapelyError as e:
            raise OracleError(f"Shadow merge failed: {e}") from e

    def contains(self, merged: Any, point: GeoPoint) -> bool:
        """ポイントが影の中にあるか"""
        if merged is None:
            return False
        return merged.covers(Point(point.longitude, point.latitude))

def _distance_to_segment(point: GeoPoint, start: GeoPoint, end: GeoPoint) -> float:
    """線分 start-end までの概算距離（メートル）"""
    total = haversine_distance(start, end)
    if total == 0:
        return haversine_distance(point, start)
    d_start = haversine_distance(point, start)
    d_end = haversine_distance(point, end)
    # 射影が線分外なら端点までの距離
    projection = (d_start ** 2 - d_end ** 2 + total ** 2) / (2 * total)
    if projection <= 0:
        return d_start
    if projection >= total:
        return d_end
    return perpendicular_distance(point, start, end)
