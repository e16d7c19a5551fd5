import asyncio
from datetime import datetime

from config import WeatherConfig
from models import GeoPoint
from weather_service import WeatherService

LOCATION = GeoPoint(latitude=35.1587, longitude=129.1550)

def test_bad_weather_conditions():
    service = WeatherService(WeatherConfig())
    assert service.is_bad_weather({"weather": [{"main": "Rain"}]})
    assert service.is_bad_weather({"weather": [{"main": "Clouds"}, {"main": "Snow"}]})
    assert not service.is_bad_weather({"weather": [{"main": "Clear"}]})
    assert not service.is_bad_weather({})

def test_describe():
    data = {"weather": [{"main": "Clear", "description": "clear sky"}],
            "main": {"temp": 27.34, "humidity": 60}}
    assert WeatherService.describe(data) == "clear sky, 27.3°C, humidity 60%"
    assert WeatherService.describe(None) == "no weather data"
    assert WeatherService.describe({"weather": []}) == "unknown weather"

def test_no_api_key_means_safe():
    service = WeatherService(WeatherConfig(api_key=""))
    assert asyncio.run(service.is_unsafe(LOCATION, datetime(2024, 7, 15, 13, 0))) is False

def test_unsafe_when_raining(monkeypatch):
    service = WeatherService(WeatherConfig(api_key="test"))

    async def rainy(location):
        return {"weather": [{"main": "Thunderstorm", "description": "thunderstorm"}],
                "main": {"temp": 22.0, "humidity": 95}}

    monkeypatch.setattr(service, "fetch_current_weather", rainy)
    assert asyncio.run(service.is_unsafe(LOCATION, datetime(2024, 7, 15, 13, 0))) is True
