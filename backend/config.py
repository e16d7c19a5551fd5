"""
設定ファイル - 候補ルート生成エンジンの閾値と外部サービス設定
"""
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

@dataclass
class APIConfig:
    """API関連の設定"""
    host: str = "0.0.0.0"
    port: int = 8006
    title: str = "Shade Route Candidate API"
    version: str = "3.0.0"

    # CORS設定
    cors_origins: List[str] = None
    cors_allow_credentials: bool = True
    cors_allow_methods: List[str] = None
    cors_allow_headers: List[str] = None

    def __post_init__(self):
        if self.cors_origins is None:
            self.cors_origins = ["http://localhost:3000", "http://localhost:5173", "http://localhost:5174"]
        if self.cors_allow_methods is None:
            self.cors_allow_methods = ["GET", "POST"]
        if self.cors_allow_headers is None:
            self.cors_allow_headers = ["*"]

@dataclass
class CacheConfig:
    """キャッシュ関連の設定"""
    max_cache_size: int = 64  # 最大キャッシュアイテム数
    cache_ttl_seconds: int = 3600  # キャッシュの有効期限（1時間）
    route_cache_ttl_seconds: int = 600  # 候補ルートは短めに（10分）
    cleanup_interval_seconds: int = 300
    shadow_cache_enabled: bool = True
    route_cache_enabled: bool = True

@dataclass
class PerformanceConfig:
    """パフォーマンス関連の設定"""
    # 並列処理の最大ワーカー数
    max_workers: int = 4

    # 外部API呼び出しのタイムアウト（秒）
    external_api_timeout: int = 10
    provider_call_timeout: float = 5.0
    oracle_call_timeout: float = 8.0
    weather_call_timeout: float = 3.0

    # 日陰ルート・バランスルート生成の合計タイムアウト（秒）
    variant_timeout_seconds: float = 20.0

    # 経由地評価のバッチサイズと試行回数
    evaluation_batch_size: int = 5
    max_attempts: int = 3
    enough_valid_routes: int = 2

    # 日陰判定のサンプル数上限
    shadow_sample_size: int = 50

    # 建物データの最大取得数
    max_buildings_per_request: int = 1000

@dataclass
class CandidateConfig:
    """候補ルートの表示とゲーティング設定"""
    # 夜間帯 [night_start_hour, 24) ∪ [0, night_end_hour)
    night_start_hour: int = 22
    night_end_hour: int = 6
    timezone: str = "Asia/Seoul"

    display_names: Dict[str, str] = None
    colors: Dict[str, str] = None
    priorities: Dict[str, int] = None
    unavailable_color: str = "#CCCCCC"
    default_color: str = "#757575"

    # スコア計算（2km基準で距離を正規化）
    score_distance_reference: float = 2000.0
    balanced_shadow_band: Tuple[float, float] = (0.3, 0.7)
    balanced_distance_weight: float = 0.6
    balanced_shadow_weight: float = 0.4

    # キャッシュキー用の座標丸め桁数
    fingerprint_precision: int = 4

    def __post_init__(self):
        if self.display_names is None:
            self.display_names = {
                "shortest": "Shortest route",
                "shade": "Shade route",
                "balanced": "Balanced route"
            }
        if self.colors is None:
            self.colors = {
                "shortest": "#2196F3",
                "shade": "#4CAF50",
                "balanced": "#FF9800"
            }
        if self.priorities is None:
            self.priorities = {
                "shortest": 1,
                "balanced": 2,
                "shade": 3
            }

@dataclass
class WaypointStrategy:
    """試行ごとの経由地生成パラメータ"""
    progress_ratios: Tuple[float, ...]
    detour_distances: Tuple[float, ...]  # メートル（500m基準）
    angle_offsets: Tuple[float, ...]
    max_deviation: float  # 目的地方向からの最大偏差（度）
    max_detour_ratio: float
    max_perpendicular_ratio: float
    jitter_degrees: float = 0.0

@dataclass
class WaypointConfig:
    """経由地生成の設定"""
    strategies: List[WaypointStrategy] = None

    # 距離スケーリング
    reference_distance: float = 500.0
    min_distance_scale: float = 0.6
    max_distance_scale: float = 2.5

    # 生成数（100mごとに1つ、2〜20個）
    min_waypoints: int = 2
    max_waypoints: int = 20
    meters_per_waypoint: float = 100.0

    # 妥当性判定
    min_endpoint_clearance_ratio: float = 0.15
    forward_projection_ratio: float = 0.5
    max_remaining_ratio: float = 0.75      # 経由地→目的地 / 直線距離
    max_heading_deviation: float = 75.0    # 出発地から見た目的地方向とのずれ（度）
    bbox_margin_ratio: float = 0.3
    bbox_min_margin_meters: float = 100.0
    region_bounds: Optional[Tuple[float, float, float, float]] = None  # (south, west, north, east)

    # 日陰密度による方向補正
    shadow_bias_radius_meters: float = 300.0

    # シード生成
    seed_quantization: int = 1000
    variation_seed_offset: int = 3000
    variation_distance_meters: float = 30.0

    def __post_init__(self):
        if self.strategies is None:
            self.strategies = [
                WaypointStrategy(
                    progress_ratios=(0.5, 0.6),
                    detour_distances=(40.0, 60.0),
                    angle_offsets=(0.0, 20.0, -20.0),
                    max_deviation=45.0,
                    max_detour_ratio=1.15,
                    max_perpendicular_ratio=0.15
                ),
                WaypointStrategy(
                    progress_ratios=(0.6, 0.7),
                    detour_distances=(60.0, 90.0),
                    angle_offsets=(0.0, 20.0, -20.0),
                    max_deviation=60.0,
                    max_detour_ratio=1.3,
                    max_perpendicular_ratio=0.2
                ),
                WaypointStrategy(
                    progress_ratios=(0.7, 0.8),
                    detour_distances=(90.0, 130.0),
                    angle_offsets=(0.0, 30.0, -30.0),
                    max_deviation=60.0,
                    max_detour_ratio=1.5,
                    max_perpendicular_ratio=0.25,
                    jitter_degrees=10.0
                )
            ]

@dataclass
class ValidationConfig:
    """ルート品質検証の閾値"""
    min_route_distance: float = 50.0
    min_route_points: int = 3

    # 最短ルートに対する距離比の上限
    max_distance_ratio: Dict[str, float] = None
    shade_extended_distance_ratio: float = 1.8
    shade_extended_gain: int = 30
    extreme_distance_ratio: float = 1.8

    # 日陰ルートの最低改善幅（ベース日陰率が低いほど厳しい）
    shade_gain_steps: List[Tuple[int, int]] = None  # (ベース日陰率の上限, 必要な改善幅)
    shade_default_gain: int = 8
    balanced_min_gain: int = 3

    # 進行性の閾値:
    # (min_progress_efficiency, max_regressing_ratio, max_regressing_distance_ratio,
    #  max_single_regressing_ratio, max_zigzag_score)
    progression_thresholds: Dict[str, Tuple[float, float, float, float, float]] = None

    # 日陰率による緩和 (日陰率の下限, 緩和量)
    leniency_steps: List[Tuple[int, float]] = None

    # ジグザグ判定
    reversal_weight: float = 0.7
    short_segment_weight: float = 0.3
    reversal_angle: float = 120.0
    short_segment_ratio: float = 0.25
    min_step_meters: float = 0.5

    def __post_init__(self):
        if self.max_distance_ratio is None:
            self.max_distance_ratio = {
                "shortest": 1.1,
                "shade": 1.5,
                "balanced": 1.6
            }
        if self.shade_gain_steps is None:
            self.shade_gain_steps = [(20, 15), (50, 12)]
        if self.progression_thresholds is None:
            self.progression_thresholds = {
                "shortest": (0.7, 0.15, 0.15, 0.1, 0.35),
                "shade": (0.55, 0.3, 0.3, 0.2, 0.5),
                "balanced": (0.6, 0.25, 0.25, 0.15, 0.45)
            }
        if self.leniency_steps is None:
            self.leniency_steps = [(60, 0.1), (30, 0.05)]

@dataclass
class SimilarityConfig:
    """類似ルート判定の設定"""
    distance_threshold: float = 0.05
    duration_threshold: float = 0.08
    shadow_threshold: int = 8  # パーセントポイント
    overlap_threshold: float = 0.85
    coordinate_tolerance: float = 0.0001  # 約10m
    sample_size: int = 50

@dataclass
class ShadowConfig:
    """建物影計算の設定"""
    bbox_margin_degrees: float = 0.003  # 約300m
    containment_tolerance_degrees: float = 0.00003  # 約3m
    max_shadow_length: float = 500.0  # メートル
    max_shadow_areas: int = 50
    min_sun_altitude: float = 0.0

@dataclass
class TmapConfig:
    """Tmap歩行者経路APIの設定"""
    base_url: str = "https://apis.openapi.sk.com/tmap"
    api_key: str = ""
    max_pass_points: int = 5
    search_option: str = "0"

@dataclass
class WeatherConfig:
    """天気API（OpenWeatherMap）の設定"""
    url: str = "https://api.openweathermap.org/data/2.5/weather"
    api_key: str = ""
    unsafe_conditions: List[str] = None

    def __post_init__(self):
        if self.unsafe_conditions is None:
            self.unsafe_conditions = ["Rain", "Drizzle", "Thunderstorm", "Snow"]

@dataclass
class OSMConfig:
    """OpenStreetMap関連の設定"""
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    backup_overpass_urls: List[str] = None

    def __post_init__(self):
        if self.backup_overpass_urls is None:
            self.backup_overpass_urls = [
                "https://overpass.kumi.systems/api/interpreter",
                "https://overpass.openstreetmap.ru/api/interpreter"
            ]

# 設定インスタンス
api_config = APIConfig()
cache_config = CacheConfig()
performance_config = PerformanceConfig()
candidate_config = CandidateConfig()
waypoint_config = WaypointConfig()
validation_config = ValidationConfig()
similarity_config = SimilarityConfig()
shadow_config = ShadowConfig()
tmap_config = TmapConfig()
weather_config = WeatherConfig()
osm_config = OSMConfig()

# 環境変数からの設定上書き
def load_config_from_env():
    """環境変数から設定を読み込む"""
    if os.getenv("API_PORT"):
        api_config.port = int(os.getenv("API_PORT"))

    if os.getenv("CACHE_TTL"):
        cache_config.cache_ttl_seconds = int(os.getenv("CACHE_TTL"))

    if os.getenv("MAX_WORKERS"):
        performance_config.max_workers = int(os.getenv("MAX_WORKERS"))

    if os.getenv("VARIANT_TIMEOUT"):
        performance_config.variant_timeout_seconds = float(os.getenv("VARIANT_TIMEOUT"))

    if os.getenv("CORS_ORIGINS"):
        api_config.cors_origins = os.getenv("CORS_ORIGINS").split(",")

    if os.getenv("TMAP_API_KEY"):
        tmap_config.api_key = os.getenv("TMAP_API_KEY")

    if os.getenv("WEATHER_API_KEY"):
        weather_config.api_key = os.getenv("WEATHER_API_KEY")

    if os.getenv("ROUTE_TIMEZONE"):
        candidate_config.timezone = os.getenv("ROUTE_TIMEZONE")

# 初期化時に環境変数を読み込む
load_config_from_env()
