"""
例外定義 - 候補ルート生成のエラー分類と表示用の理由文字列
"""

class RouteEngineError(Exception):
    """ルートエンジンの基底例外。reason は画面表示用の固定文字列"""
    reason = "generation error"

    def __init__(self, message: str = "", reason: str = None):
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason

class ProviderError(RouteEngineError):
    """経路プロバイダ（Tmap等）の通信・クォータ・解析エラー"""
    reason = "generation error"

class OracleError(RouteEngineError):
    """建物影データの取得・計算エラー"""
    reason = "generation error"

class ValidationRejected(RouteEngineError):
    """品質基準を満たさないルート（システム障害ではない）"""
    reason = "quality threshold not met"

class RouteTimeout(RouteEngineError):
    """時間制限の超過"""
    reason = "processing timeout"

class NoWaypointFound(RouteEngineError):
    """妥当な経由地が見つからない"""
    reason = "no suitable waypoint"

class SimilarRouteRejected(RouteEngineError):
    """既存の候補とほぼ同じルート"""
    reason = "similar to existing route"

# 表示用の理由文字列
REASON_SAFETY = "unavailable for safety (night time / bad weather)"
REASON_BASE_FAILED = "route generation failed"
REASON_SYSTEM_ERROR = "system error"
