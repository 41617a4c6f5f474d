"""AWS Lambda handler for the Wellness Van Dashboard data feed."""
import json
import logging
import time
from dataclasses import asdict
from datetime import date, datetime
from typing import Any, Dict, Optional

from fetcher.geocoder import GeocodeEnricher
from fetcher.sheet_parser import SheetParser
from fetcher.sheets_client import SheetsClient
from processor.record_normalizer import RecordNormalizer
from service.data_service import DashboardLoadError, DataService
from service.settings import Settings
from storage.cache_store import CacheStore

# Built once per container and reused across warm invocations
_data_service: Optional[DataService] = None


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_data_service(settings: Settings) -> DataService:
    """
    Wire up a DataService and its caches for one application run.

    Args:
        settings: Dashboard configuration

    Returns:
        DataService instance
    """
    client = SheetsClient(
        sheet_id=settings.sheet_id,
        api_key=settings.api_key,
        timeout=settings.timeout_seconds
    )
    enricher = GeocodeEnricher(
        region=settings.geocode_region,
        min_delay_seconds=settings.geocode_min_delay_seconds,
        user_agent=settings.geocode_user_agent
    )
    return DataService(
        client=client,
        parser=SheetParser(client.sheet_format),
        normalizer=RecordNormalizer(),
        cache=CacheStore(),
        enricher=enricher,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        sheet_names=settings.sheet_names
    )


def get_data_service(settings: Settings) -> DataService:
    global _data_service
    if _data_service is None:
        _data_service = build_data_service(settings)
    return _data_service


def load_geojson(path: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Read the census tract GeoJSON file if one is configured.

    Args:
        path: File path, or None

    Returns:
        Decoded FeatureCollection, or None when unavailable
    """
    if not path:
        return None

    logger = logging.getLogger(__name__)
    try:
        with open(path, encoding='utf-8') as geojson_file:
            return json.load(geojson_file)
    except (OSError, ValueError) as e:
        logger.info(f"Census tract GeoJSON not available: {e}")
        return None


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler returning the dashboard data feed.

    Args:
        event: Invocation payload; optional keys ``refresh`` (bool),
            ``date_range`` and ``service``
        context: Lambda context object

    Returns:
        Response dict with statusCode and the dashboard body
    """
    event = event or {}
    settings = Settings.from_env()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    date_range = event.get('date_range', 'upcoming')
    service_filter = event.get('service', 'all')

    logger.info(
        "Dashboard load started",
        extra={'date_range': date_range, 'service': service_filter}
    )

    try:
        data_service = get_data_service(settings)

        if event.get('refresh'):
            logger.info("Refresh requested, clearing cached datasets")
            data_service.clear_cache()

        try:
            data = data_service.load_dashboard(date_range=date_range, service=service_filter)
        except DashboardLoadError as e:
            logger.error(
                f"Failed to load dashboard data: {str(e)}",
                extra={'error_type': type(e).__name__}
            )
            duration = time.time() - start_time
            return {
                'statusCode': 500,
                'body': json.dumps({
                    'message': 'Failed to load data. Please check your configuration and try again.',
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'duration_seconds': round(duration, 2)
                })
            }

        census_overlay = None
        geojson = load_geojson(settings.census_geojson_path)
        if geojson is not None:
            census_overlay = data_service.census_overlay(geojson, data.census)
            logger.info("Census tract overlay loaded")

        duration = time.time() - start_time
        logger.info(
            "Dashboard load completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'schedule_items': len(data.schedule),
                'markers': len(data.markers)
            }
        )

        body = {
            'message': 'Dashboard data loaded',
            'statistics': asdict(data.statistics),
            'schedule': [asdict(record) for record in data.schedule],
            'markers': [asdict(marker) for marker in data.markers],
            'map': {
                'center': list(settings.map_center),
                'zoom': settings.map_zoom,
                'bounds': data.bounds
            },
            'census_overlay': census_overlay,
            'sources': data.sources,
            'last_updated': data.last_updated,
            'refresh_interval_ms': settings.refresh_interval_ms,
            'duration_seconds': round(duration, 2)
        }
        return {
            'statusCode': 200,
            'body': json.dumps(body, default=_json_default)
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Dashboard load failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Dashboard load failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
