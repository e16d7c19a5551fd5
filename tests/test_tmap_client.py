import asyncio

import pytest

from config import TmapConfig
from exceptions import ProviderError
from models import GeoPoint
from tmap_client import TmapPedestrianClient, parse_tmap_route

SAMPLE_RESPONSE = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [129.1550, 35.1587]},
            "properties": {"totalDistance": 640, "totalTime": 460, "pointType": "SP"}
        },
        {
            "type": "Feature",
            "geometry": {"type": "LineString",
                         "coordinates": [[129.1550, 35.1587], [129.1560, 35.1595], [129.1575, 35.1600]]},
            "properties": {"distance": 250, "time": 180}
        },
        {
            "type": "Feature",
            "geometry": {"type": "LineString",
                         "coordinates": [[129.1575, 35.1600], [129.1600, 35.1620]]},
            "properties": {"distance": 390, "time": 280}
        },
    ]
}

def test_parse_sums_segments_and_swaps_coordinates():
    result = parse_tmap_route(SAMPLE_RESPONSE)

    assert result.distance_meters == pytest.approx(640)
    assert result.duration_seconds == pytest.approx(460)
    assert len(result.points) == 4
    assert result.points[0] == GeoPoint(latitude=35.1587, longitude=129.1550)
    assert result.points[-1] == GeoPoint(latitude=35.1620, longitude=129.1600)

def test_parse_falls_back_to_total_distance():
    data = {"features": [
        {"geometry": {"type": "Point"}, "properties": {"totalDistance": 500}},
        {"geometry": {"type": "LineString", "coordinates": [[129.0, 35.0], [129.001, 35.001]]},
         "properties": {}},
    ]}
    assert parse_tmap_route(data).distance_meters == pytest.approx(500)

@pytest.mark.parametrize("data", [
    {},
    {"features": None},
    {"features": [{"geometry": {"type": "LineString", "coordinates": [[129.0, 35.0]]}}]},
    {"features": [{"geometry": {"type": "LineString", "coordinates": [["x", "y"], [129.0, 35.0]]}}]},
    [],
])
def test_parse_rejects_malformed_responses(data):
    with pytest.raises(ProviderError):
        parse_tmap_route(data)

def test_payload_pass_list():
    client = TmapPedestrianClient(TmapConfig(api_key="test"))
    start = GeoPoint(latitude=35.1587, longitude=129.1550)
    end = GeoPoint(latitude=35.1620, longitude=129.1600)
    waypoints = [GeoPoint(latitude=35.16 + i * 0.0001, longitude=129.157) for i in range(7)]

    payload = client.build_payload(start, end, waypoints)
    assert payload["startX"] == "129.155"
    assert payload["endY"] == "35.162"
    assert payload["passList"].count("_") == 4
    assert payload["passList"].startswith("129.157,35.16_")

    assert "passList" not in client.build_payload(start, end)

def test_missing_api_key_is_provider_error():
    client = TmapPedestrianClient(TmapConfig(api_key=""))
    start = GeoPoint(latitude=35.1587, longitude=129.1550)
    end = GeoPoint(latitude=35.1620, longitude=129.1600)
    with pytest.raises(ProviderError):
        asyncio.run(client.get_path(start, end))
