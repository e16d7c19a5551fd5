"""
天気サービス - 歩行に危険な天候の判定（OpenWeatherMap）
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

import aiohttp

from config import WeatherConfig, performance_config, weather_config
from models import GeoPoint

logger = logging.getLogger(__name__)

class WeatherService:
    """天気ゲート。APIキー未設定や取得失敗時は「良い天気」とみなす"""

    def __init__(self, config: WeatherConfig = None):
        self.config = config or weather_config
        self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=performance_config.weather_call_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_current_weather(self, location: GeoPoint) -> Optional[Dict]:
        """現在の天気を取得"""
        if not self.config.api_key:
            logger.debug("Weather API key not configured, assuming good weather")
            return None

        params = {
            "lat": f"{location.latitude:.6f}",
            "lon": f"{location.longitude:.6f}",
            "appid": self.config.api_key,
            "units": "metric"
        }
        try:
            session = await self._get_session()
            async with session.get(self.config.url, params=params) as response:
                if response.status != 200:
                    logger.warning(f"Weather API error: {response.status}")
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Weather API request failed: {e}")
            return None

    def is_bad_weather(self, data: Dict) -> bool:
        """天気データから危険な天候かどうかを判定"""
        conditions = [w.get("main", "") for w in data.get("weather", []) if isinstance(w, dict)]
        return any(c in self.config.unsafe_conditions for c in conditions)

    @staticmethod
    def describe(data: Optional[Dict]) -> str:
        """天気の説明文（ログ・表示用）"""
        if not data:
            return "no weather data"
        try:
            description = data["weather"][0]["description"]
            temp = data["main"]["temp"]
            humidity = data["main"]["humidity"]
            return f"{description}, {temp:.1f}°C, humidity {humidity}%"
        except (KeyError, IndexError, TypeError):
            return "unknown weather"

    async def is_unsafe(self, location: GeoPoint, when: datetime) -> bool:
        """歩行に危険な天候か（現在の天気のみ参照）"""
        data = await self.fetch_current_weather(location)
        if data is None:
            return False

        unsafe = self.is_bad_weather(data)
        logger.info(f"Weather check at ({location.latitude:.4f}, {location.longitude:.4f}): "
                    f"{self.describe(data)} -> {'unsafe' if unsafe else 'safe'}")
        return unsafe
