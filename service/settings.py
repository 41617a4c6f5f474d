"""Read-only configuration loaded from environment variables."""
import os
from dataclasses import dataclass
from typing import Optional, Tuple


def _parse_center(value: str) -> Tuple[float, float]:
    lat, lng = (float(part) for part in value.split(','))
    return lat, lng


@dataclass(frozen=True)
class Settings:
    """Dashboard configuration."""
    sheet_id: str
    api_key: Optional[str]
    schedule_sheet: str = 'Van Schedule'
    tracking_sheet: str = 'Service Tracking'
    census_sheet: str = 'Census Tract Data'
    cache_duration_minutes: float = 10
    refresh_interval_ms: int = 300000
    geocode_region: str = 'Maine'
    geocode_min_delay_seconds: float = 1.0
    geocode_user_agent: str = 'wellness-van-dashboard'
    timeout_seconds: int = 30
    log_level: str = 'INFO'
    map_center: Tuple[float, float] = (44.1, -69.1)
    map_zoom: int = 10
    census_geojson_path: Optional[str] = None

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_duration_minutes * 60

    @property
    def sheet_names(self) -> dict:
        return {
            'schedule': self.schedule_sheet,
            'tracking': self.tracking_sheet,
            'census': self.census_sheet,
        }

    @classmethod
    def from_env(cls) -> 'Settings':
        """
        Build settings from environment variables.

        Returns:
            Settings instance with defaults for unset variables
        """
        env = os.environ
        return cls(
            sheet_id=env.get('GOOGLE_SHEET_ID', ''),
            api_key=env.get('GOOGLE_API_KEY') or None,
            schedule_sheet=env.get('SCHEDULE_SHEET', 'Van Schedule'),
            tracking_sheet=env.get('TRACKING_SHEET', 'Service Tracking'),
            census_sheet=env.get('CENSUS_SHEET', 'Census Tract Data'),
            cache_duration_minutes=float(env.get('CACHE_DURATION_MINUTES', '10')),
            refresh_interval_ms=int(env.get('REFRESH_INTERVAL_MS', '300000')),
            geocode_region=env.get('GEOCODE_REGION', 'Maine'),
            geocode_min_delay_seconds=float(env.get('GEOCODE_MIN_DELAY_SECONDS', '1.0')),
            geocode_user_agent=env.get('GEOCODE_USER_AGENT', 'wellness-van-dashboard'),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            map_center=_parse_center(env.get('MAP_CENTER', '44.1,-69.1')),
            map_zoom=int(env.get('MAP_ZOOM', '10')),
            census_geojson_path=env.get('CENSUS_GEOJSON_PATH') or None
        )
