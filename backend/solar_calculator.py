"""
太陽位置計算 - NOAA太陽位置アルゴリズム

時刻計算はすべてUTCで行う。タイムゾーン情報のない日時は設定のタイムゾーン
（デフォルト Asia/Seoul）の現地時刻として扱い、UTCに変換してからユリウス日を求める。
"""
import logging
import math
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import candidate_config
from models import SunPosition

logger = logging.getLogger(__name__)

# 太陽高度が0度以下の場合の影の長さ
SHADOW_LENGTH_INFINITE = math.inf

# 1970-01-01T00:00:00Z のユリウス日
UNIX_EPOCH_JULIAN_DAY = 2440587.5

class SolarPositionCalculator:
    """太陽位置計算（副作用なし）"""

    def __init__(self, tz_name: Optional[str] = None):
        self.tz = ZoneInfo(tz_name or candidate_config.timezone)

    def to_utc(self, when: datetime) -> datetime:
        """現地時刻をUTCに変換"""
        if when.tzinfo is None:
            when = when.replace(tzinfo=self.tz)
        return when.astimezone(timezone.utc)

    @staticmethod
    def julian_day(utc_time: datetime) -> float:
        """UTC時刻からユリウス日を計算"""
        return utc_time.timestamp() / 86400.0 + UNIX_EPOCH_JULIAN_DAY

    def calculate(self, latitude: float, longitude: float, when: datetime) -> SunPosition:
        """指定時刻・位置の太陽高度と方位角を計算"""
        utc_time = self.to_utc(when)

        # 1. ユリウス日・ユリウス世紀
        julian_day = self.julian_day(utc_time)
        julian_century = (julian_day - 2451545.0) / 36525.0

        # 2. 幾何平均黄経・平均近点角
        geom_mean_long = (280.46646 + julian_century * (36000.76983 + julian_century * 0.0003032)) % 360
        geom_mean_anom = 357.52911 + julian_century * (35999.05029 - 0.0001537 * julian_century)

        # 3. 地球軌道の離心率
        eccent = 0.016708634 - julian_century * (0.000042037 + 0.0000001267 * julian_century)

        # 4. 中心差
        sun_eq_of_ctr = (math.sin(math.radians(geom_mean_anom)) *
                         (1.914602 - julian_century * (0.004817 + 0.000014 * julian_century)) +
                         math.sin(math.radians(2 * geom_mean_anom)) * (0.019993 - 0.000101 * julian_century) +
                         math.sin(math.radians(3 * geom_mean_anom)) * 0.000289)

        # 5. 真黄経・視黄経（章動補正）
        sun_true_long = geom_mean_long + sun_eq_of_ctr
        omega = 125.04 - 1934.136 * julian_century
        sun_app_long = sun_true_long - 0.00569 - 0.00478 * math.sin(math.radians(omega))

        # 6. 黄道傾斜角と補正
        mean_obliq = 23 + (26 + ((21.448 - julian_century *
                                  (46.815 + julian_century * (0.00059 - julian_century * 0.001813)))) / 60) / 60
        obliq_corr = mean_obliq + 0.00256 * math.cos(math.radians(omega))

        # 7. 赤緯
        declination = math.degrees(math.asin(
            math.sin(math.radians(obliq_corr)) * math.sin(math.radians(sun_app_long))))

        # 8. 均時差（分）
        y = math.tan(math.radians(obliq_corr / 2)) ** 2
        eq_of_time = 4 * math.degrees(
            y * math.sin(2 * math.radians(geom_mean_long)) -
            2 * eccent * math.sin(math.radians(geom_mean_anom)) +
            4 * eccent * y * math.sin(math.radians(geom_mean_anom)) * math.cos(2 * math.radians(geom_mean_long)) -
            0.5 * y * y * math.sin(4 * math.radians(geom_mean_long)) -
            1.25 * eccent * eccent * math.sin(2 * math.radians(geom_mean_anom)))

        # 9. 真太陽時（分）と時角
        utc_minutes = utc_time.hour * 60 + utc_time.minute + utc_time.second / 60.0
        true_solar_time = (utc_minutes + eq_of_time + 4 * longitude) % 1440
        hour_angle = true_solar_time / 4.0 - 180.0

        # 10. 天頂角・高度
        cos_zenith = (math.sin(math.radians(latitude)) * math.sin(math.radians(declination)) +
                      math.cos(math.radians(latitude)) * math.cos(math.radians(declination)) *
                      math.cos(math.radians(hour_angle)))
        zenith = math.degrees(math.acos(_clamp(cos_zenith)))
        elevation = 90.0 - zenith

        # 11. 大気差補正
        elevation_corrected = elevation + self._atmospheric_refraction(elevation)

        # 12. 方位角
        azimuth = self._azimuth(latitude, declination, zenith, hour_angle)

        logger.debug(
            f"Sun position: local={when.isoformat()} utc={utc_time.isoformat()} "
            f"lat={latitude:.4f} lng={longitude:.4f} -> "
            f"altitude={elevation_corrected:.2f} azimuth={azimuth:.2f} hour_angle={hour_angle:.2f}"
        )

        return SunPosition(altitude=elevation_corrected, azimuth=azimuth)

    @staticmethod
    def _atmospheric_refraction(elevation: float) -> float:
        """大気差（度）"""
        if elevation > 85:
            refraction = 0.0
        elif elevation > 5:
            tan_e = math.tan(math.radians(elevation))
            refraction = 58.1 / tan_e - 0.07 / tan_e ** 3 + 0.000086 / tan_e ** 5
        elif elevation > -0.575:
            refraction = 1735 + elevation * (-518.2 + elevation * (103.4 + elevation *
                                                                   (-12.79 + elevation * 0.711)))
        else:
            refraction = -20.772 / math.tan(math.radians(elevation))
        return refraction / 3600.0

    @staticmethod
    def _azimuth(latitude: float, declination: float, zenith: float, hour_angle: float) -> float:
        denominator = math.cos(math.radians(latitude)) * math.sin(math.radians(zenith))
        if abs(denominator) < 1e-12:
            # 天頂または極: 太陽は南北いずれかの真上
            return 180.0 if latitude >= declination else 0.0

        cos_az = ((math.sin(math.radians(latitude)) * math.cos(math.radians(zenith)) -
                   math.sin(math.radians(declination))) / denominator)
        angle = math.degrees(math.acos(_clamp(cos_az)))

        if hour_angle > 0:
            return (angle + 180) % 360
        return (540 - angle) % 360

def calculate_shadow_length(building_height: float, solar_elevation: float) -> float:
    """建物の影の長さ（メートル）。太陽高度0度以下は無限大"""
    if solar_elevation <= 0:
        return SHADOW_LENGTH_INFINITE
    return building_height / math.tan(math.radians(solar_elevation))

def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))
