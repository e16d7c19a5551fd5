"""
データモデル - 候補ルートの値オブジェクトとAPIスキーマ
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import candidate_config

class RouteType(str, Enum):
    """候補ルートの種類"""
    SHORTEST = "shortest"
    SHADE = "shade"
    BALANCED = "balanced"

class RoutePurpose(str, Enum):
    """経由地生成の目的"""
    AVOID_SHADOW = "avoid_shadow"
    SEEK_SHADOW = "seek_shadow"
    BALANCED = "balanced"

class GeoPoint(BaseModel):
    """地理座標（不変）。in_shadow が None の場合は未判定"""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, description="緯度")
    longitude: float = Field(..., ge=-180, le=180, description="経度")
    in_shadow: Optional[bool] = Field(None, description="日陰内か（未サンプルはNone）")

    def with_shadow(self, in_shadow: Optional[bool]) -> "GeoPoint":
        return self.model_copy(update={"in_shadow": in_shadow})

class SunPosition(BaseModel):
    """太陽位置（度）。方位角は北=0, 東=90, 南=180, 西=270"""
    model_config = ConfigDict(frozen=True)

    altitude: float = Field(..., description="太陽高度")
    azimuth: float = Field(..., description="太陽方位角")

    @property
    def is_above_horizon(self) -> bool:
        return self.altitude > 0

class PolygonGeometry(BaseModel):
    """GeoJSONポリゴン（[経度, 緯度]順）"""
    type: str = Field(default="Polygon", description="ジオメトリタイプ")
    coordinates: List[List[List[float]]] = Field(..., description="座標リスト")

class BuildingProperties(BaseModel):
    """建物プロパティ"""
    building: str = Field(default="yes", description="建物タイプ")
    height: float = Field(default=10.0, ge=0, description="建物の高さ（メートル）")
    osm_id: Optional[int] = Field(None, description="OpenStreetMap ID")
    levels: Optional[str] = Field(None, description="階数タグ")

class Building(BaseModel):
    """建物"""
    type: str = Field(default="Feature", description="フィーチャータイプ")
    geometry: PolygonGeometry = Field(..., description="ジオメトリ")
    properties: BuildingProperties = Field(..., description="プロパティ")

class ShadowArea(BaseModel):
    """建物とその影のポリゴン"""
    id: int = Field(..., description="建物ID")
    building_height: float = Field(..., ge=0, description="建物の高さ（メートル）")
    building_geometry: PolygonGeometry = Field(..., description="建物ポリゴン")
    shadow_geometry: PolygonGeometry = Field(..., description="影ポリゴン")

class ShadowSegment(BaseModel):
    """ルート上で連続して日陰に入っている区間"""
    model_config = ConfigDict(frozen=True)

    start_index: int = Field(..., ge=0)
    end_index: int = Field(..., ge=0)
    length_meters: float = Field(..., ge=0)

class Route(BaseModel):
    """ルート（不変）。ポイント列と距離は経路プロバイダが同時に生成する"""
    model_config = ConfigDict(frozen=True)

    points: Tuple[GeoPoint, ...] = Field(..., description="ルートポイント列")
    distance_meters: float = Field(..., ge=0, description="総距離（メートル）")
    duration_minutes: int = Field(..., ge=0, description="所要時間（分）")
    shadow_percentage: int = Field(default=0, ge=0, le=100, description="日陰率（%）")
    route_type: str = Field(default=RouteType.SHORTEST.value, description="ルート種別")
    waypoint_count: int = Field(default=0, ge=0, description="経由地数")
    waypoints: Tuple[GeoPoint, ...] = Field(default=(), description="経由地")
    shadow_segments: Tuple[ShadowSegment, ...] = Field(default=(), description="日陰区間")

    @field_validator("points")
    @classmethod
    def validate_points(cls, v):
        """ポイント数のチェック"""
        if len(v) < 2:
            raise ValueError("ルートポイントは最低2つ必要です")
        return v

    @property
    def start(self) -> GeoPoint:
        return self.points[0]

    @property
    def end(self) -> GeoPoint:
        return self.points[-1]

    def with_shadow(self,
                    points: Tuple[GeoPoint, ...],
                    shadow_percentage: int,
                    shadow_segments: Tuple[ShadowSegment, ...] = ()) -> "Route":
        """日陰情報を付与した新しいルートを返す（ポイント列は同一の位置であること）"""
        if len(points) != len(self.points):
            raise ValueError("日陰判定はルートと同じポイント列に対して行う必要があります")
        return self.model_copy(update={
            "points": tuple(points),
            "shadow_percentage": max(0, min(100, int(shadow_percentage))),
            "shadow_segments": tuple(shadow_segments)
        })

class RouteCandidate(BaseModel):
    """候補ルート。route が None の場合は「生成不可」"""
    type: str = Field(..., description="候補の種類")
    display_name: str = Field(..., description="表示名")
    route: Optional[Route] = Field(None, description="ルート（生成不可の場合はNone）")
    description: str = Field(..., description="説明文")
    detailed_description: str = Field(default="", description="詳細説明")
    score: float = Field(default=0.0, description="スコア")
    color: str = Field(..., description="表示色")
    priority: int = Field(default=99, description="優先度（低いほど優先）")

    @property
    def available(self) -> bool:
        return self.route is not None

    @classmethod
    def from_route(cls, route_type: str, route: Route) -> "RouteCandidate":
        """ルートから候補を作成"""
        display_name = candidate_config.display_names.get(route_type, route_type)
        description = describe_route(route)
        detailed = f"{display_name}\n{description}"
        if route.waypoint_count > 0:
            detailed += f"\n{route.waypoint_count} waypoint(s)"
        return cls(
            type=route_type,
            display_name=display_name,
            route=route,
            description=description,
            detailed_description=detailed,
            score=calculate_score(route_type, route),
            color=candidate_config.colors.get(route_type, candidate_config.default_color),
            priority=candidate_config.priorities.get(route_type, 99)
        )

    @classmethod
    def unavailable(cls, route_type: str, reason: str) -> "RouteCandidate":
        """生成不可の候補を作成"""
        display_name = candidate_config.display_names.get(route_type, route_type)
        description = f"Unavailable: {reason}"
        return cls(
            type=route_type,
            display_name=display_name,
            route=None,
            description=description,
            detailed_description=f"{display_name}: {description}",
            score=0.0,
            color=candidate_config.unavailable_color,
            priority=candidate_config.priorities.get(route_type, 99)
        )

    def with_efficiency(self, base: Route) -> "RouteCandidate":
        """最短ルートとの差分を説明文に追加"""
        if self.route is None:
            return self
        info = efficiency_description(self.route, base)
        return self.model_copy(update={
            "description": f"{self.description} · {info}",
            "detailed_description": f"{self.detailed_description}\n{info}"
        })

def describe_route(route: Route) -> str:
    return (f"{route.distance_meters / 1000.0:.1f}km · "
            f"{route.duration_minutes}min · shade {route.shadow_percentage}%")

def efficiency_description(route: Route, base: Route) -> str:
    """距離差と日陰率差の表示文字列（例: +37m (+6%) · shade +22%p）"""
    distance_delta = route.distance_meters - base.distance_meters
    if base.distance_meters > 0:
        distance_pct = distance_delta / base.distance_meters * 100
    else:
        distance_pct = 0.0
    shadow_delta = route.shadow_percentage - base.shadow_percentage
    return (f"{distance_delta:+.0f}m ({distance_pct:+.0f}%) · "
            f"shade {shadow_delta:+d}%p")

def calculate_score(route_type: str, route: Optional[Route]) -> float:
    """候補の並び替え用スコア"""
    if route is None:
        return 0.0

    normalized_distance = min(1.0, route.distance_meters / candidate_config.score_distance_reference)
    normalized_shade = route.shadow_percentage / 100.0

    if route_type == RouteType.SHORTEST.value:
        return 1.0 - normalized_distance
    if route_type == RouteType.SHADE.value:
        return normalized_shade
    if route_type == RouteType.BALANCED.value:
        return balance_score(route)
    return 0.5

def balance_score(route: Route) -> float:
    """適度な日陰（30-70%）と短い距離を好むスコア"""
    normalized_distance = min(1.0, route.distance_meters / candidate_config.score_distance_reference)
    normalized_shade = route.shadow_percentage / 100.0
    low, high = candidate_config.balanced_shadow_band
    if low < normalized_shade < high:
        shade_score = 1.0 - abs(0.5 - normalized_shade) * 2
    else:
        shade_score = 0.5
    return ((1.0 - normalized_distance) * candidate_config.balanced_distance_weight
            + shade_score * candidate_config.balanced_shadow_weight)

@dataclass
class PathResult:
    """経路プロバイダの戻り値"""
    points: List[GeoPoint]
    distance_meters: float
    duration_seconds: float

@dataclass
class RouteResult:
    """ルート評価の結果（成功時は route、失敗時は error）"""
    route: Optional[Route] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.route is not None and self.error is None

    @classmethod
    def success(cls, route: Route) -> "RouteResult":
        return cls(route=route)

    @classmethod
    def failure(cls, error: Exception) -> "RouteResult":
        return cls(error=error)

@dataclass
class ShadowContext:
    """リクエスト単位の日陰情報（読み取り専用として共有）"""
    sun: SunPosition
    shadow_areas: List[ShadowArea] = field(default_factory=list)
    merged: Any = None

    @property
    def has_shadows(self) -> bool:
        return self.merged is not None and bool(self.shadow_areas)

class CandidateRoutesResponse(BaseModel):
    """候補ルートレスポンス"""
    candidates: List[RouteCandidate] = Field(..., description="候補ルート（常に3件）")
    total_count: int = Field(..., description="候補数")
    request_time: str = Field(..., description="リクエスト時刻")
    is_night_time: bool = Field(..., description="夜間帯か")
    calculation_time_ms: Optional[int] = Field(None, description="計算時間（ミリ秒）")

class CandidateDetailResponse(BaseModel):
    """候補ルート詳細レスポンス"""
    candidate: RouteCandidate = Field(..., description="候補ルート")
    request_time: str = Field(..., description="リクエスト時刻")

class CandidateTypesResponse(BaseModel):
    """候補種別一覧"""
    types: Dict[str, str] = Field(..., description="種別と表示名")
    default_type: str = Field(default=RouteType.SHORTEST.value, description="デフォルト種別")

class HealthResponse(BaseModel):
    """ヘルスチェックレスポンス"""
    status: str = Field(..., description="ステータス")
    timestamp: str = Field(..., description="タイムスタンプ")
    version: str = Field(..., description="APIバージョン")
    cache_stats: Optional[Dict[str, Any]] = Field(None, description="キャッシュ統計")

class ErrorResponse(BaseModel):
    """エラーレスポンス"""
    error: str = Field(..., description="エラータイプ")
    message: str = Field(..., description="エラーメッセージ")
    details: Optional[Dict[str, Any]] = Field(None, description="詳細情報")
    timestamp: str = Field(..., description="タイムスタンプ")
