"""
外部コラボレータのインターフェース（経路プロバイダ・影ジオメトリ・天気）
"""
from datetime import datetime
from typing import Any, List, Protocol, Sequence

from models import GeoPoint, PathResult, ShadowArea, SunPosition

class PathProvider(Protocol):
    """歩行者経路プロバイダ。失敗時は ProviderError を送出する"""

    async def get_path(self,
                       start: GeoPoint,
                       end: GeoPoint,
                       waypoints: Sequence[GeoPoint] = ()) -> PathResult:
        ...

class GeometryOracle(Protocol):
    """建物影の取得と包含判定。失敗時は OracleError を送出する"""

    async def shadows_near(self,
                           start: GeoPoint,
                           end: GeoPoint,
                           sun: SunPosition,
                           when: datetime = None) -> List[ShadowArea]:
        ...

    def merge_shadows(self, shadow_areas: Sequence[ShadowArea]) -> Any:
        ...

    def contains(self, merged: Any, point: GeoPoint) -> bool:
        ...

class WeatherGate(Protocol):
    """歩行に危険な天候かどうか"""

    async def is_unsafe(self, location: GeoPoint, when: datetime) -> bool:
        ...
