"""Orchestrates fetching, parsing, caching and enrichment per dataset."""
import calendar
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fetcher.errors import FetchError, ParseError
from fetcher.geocoder import GeocodeEnricher
from fetcher.sheet_parser import SheetParser
from fetcher.sheets_client import SheetsClient
from processor.choropleth_styler import ChoroplethStyler
from processor.location_aggregator import Bounds, LocationAggregator, fit_bounds
from processor.models import (
    CensusTractRecord,
    MarkerSpec,
    ScheduleRecord,
    Statistics,
    TrackingRecord,
)
from processor.record_normalizer import RecordNormalizer
from storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

DATE_RANGES = ('today', 'upcoming', 'week', 'month', 'all')

# Where the rows of the most recent fetch_sheet call came from
SOURCE_FRESH = 'fresh'
SOURCE_CACHE = 'cache'
SOURCE_STALE = 'stale'
SOURCE_EMPTY = 'empty'


class DashboardLoadError(Exception):
    """Raised when every dataset fetch failed and no cache could answer."""


@dataclass
class DashboardData:
    """Everything one dashboard load produces."""
    schedule: List[ScheduleRecord]
    tracking: List[TrackingRecord]
    census: List[CensusTractRecord]
    statistics: Statistics
    markers: List[MarkerSpec]
    bounds: Optional[Bounds]
    last_updated: Optional[datetime]
    sources: Dict[str, str] = field(default_factory=dict)


def add_month(value: date) -> date:
    """Add one calendar month, clamping to the last day of the month."""
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class DataService:
    """Loads schedule, tracking and census datasets for the dashboard."""

    def __init__(
        self,
        client: SheetsClient,
        parser: SheetParser,
        normalizer: RecordNormalizer,
        cache: CacheStore,
        enricher: GeocodeEnricher,
        cache_ttl_seconds: float,
        sheet_names: Dict[str, str],
        aggregator: Optional[LocationAggregator] = None
    ):
        """
        Initialize the service with its collaborators.

        Args:
            client: Transport for the spreadsheet source
            parser: Decoder for the configured wire format
            normalizer: Row to record mapper
            cache: Dataset cache shared for the application run
            enricher: Geocoder shared for the application run
            cache_ttl_seconds: Freshness window for cached datasets
            sheet_names: Sheet tab name per dataset (schedule, tracking, census)
            aggregator: Marker builder (defaults to LocationAggregator())
        """
        self.client = client
        self.parser = parser
        self.normalizer = normalizer
        self.cache = cache
        self.enricher = enricher
        self.cache_ttl_seconds = cache_ttl_seconds
        self.sheet_names = sheet_names
        self.aggregator = aggregator or LocationAggregator()
        self.sources: Dict[str, str] = {}
        self._last_updated: Optional[datetime] = None

    @property
    def last_updated(self) -> Optional[datetime]:
        """Time of the most recent successful network fetch."""
        return self._last_updated

    def fetch_sheet(self, sheet_name: str, use_cache: bool = True) -> List[Dict[str, Any]]:
        """
        Fetch parsed rows for one sheet tab.

        Fresh cache hits are served without a request. Failed fetches fall
        back to the cached rows regardless of age, or an empty list.

        Args:
            sheet_name: Name of the sheet tab (also the cache key)
            use_cache: Whether fresh cached rows may be served

        Returns:
            List of raw row dictionaries
        """
        with self.cache.lock(sheet_name):
            if use_cache:
                cached = self.cache.read(sheet_name, self.cache_ttl_seconds)
                if cached is not None:
                    self.sources[sheet_name] = SOURCE_CACHE
                    return cached

            try:
                logger.info(f"Fetching data from: {sheet_name}")
                payload = self.client.fetch(sheet_name)
                rows = self.parser.parse_strict(payload)
            except (FetchError, ParseError) as e:
                logger.error(f"Error fetching {sheet_name}: {e}")
                has_entry = self.cache.has(sheet_name)
                self.sources[sheet_name] = SOURCE_STALE if has_entry else SOURCE_EMPTY
                return self.cache.on_fetch_failure(sheet_name)

            self.cache.write(sheet_name, rows)
            self._last_updated = datetime.now()
            self.sources[sheet_name] = SOURCE_FRESH
            return rows

    def get_schedule(self) -> List[ScheduleRecord]:
        """
        Get van schedule records with valid coordinates.

        Returns:
            List of ScheduleRecord objects, geocoded where needed
        """
        rows = self.fetch_sheet(self.sheet_names['schedule'])
        records = self.normalizer.normalize_schedule(rows)
        return self.enricher.enrich(records)

    def get_tracking(self) -> List[TrackingRecord]:
        rows = self.fetch_sheet(self.sheet_names['tracking'])
        return self.normalizer.normalize_tracking(rows)

    def get_census_data(self) -> List[CensusTractRecord]:
        rows = self.fetch_sheet(self.sheet_names['census'])
        return self.normalizer.normalize_census(rows)

    def get_statistics(self, tracking: Optional[List[TrackingRecord]] = None) -> Statistics:
        """
        Summarize tracking data.

        Args:
            tracking: Tracking records; fetched when omitted

        Returns:
            Statistics with stop, attendee, service and community counts
        """
        if tracking is None:
            tracking = self.get_tracking()

        return Statistics(
            total_stops=len(tracking),
            total_attendees=sum(item.attendees for item in tracking),
            total_services=sum(len(item.services_provided) for item in tracking),
            communities_reached=len({item.location for item in tracking})
        )

    @staticmethod
    def filter_by_date_range(
        records: List[Any],
        date_range: str,
        today: Optional[date] = None
    ) -> List[Any]:
        """
        Filter records by date range.

        Args:
            records: Records with a ``date`` attribute
            date_range: One of today, upcoming, week, month, all; anything
                else behaves as all
            today: Evaluation day (defaults to the local current date)

        Returns:
            Records whose date falls inside the range
        """
        today = today or date.today()

        if date_range == 'today':
            return [r for r in records if r.date == today]
        if date_range == 'upcoming':
            return [r for r in records if r.date >= today]
        if date_range == 'week':
            end = today + timedelta(days=7)
            return [r for r in records if today <= r.date <= end]
        if date_range == 'month':
            end = add_month(today)
            return [r for r in records if today <= r.date <= end]

        if date_range not in DATE_RANGES:
            logger.warning(f"Unknown date range '{date_range}', showing all records")
        return list(records)

    @staticmethod
    def filter_by_service(records: List[ScheduleRecord], service: Optional[str]) -> List[ScheduleRecord]:
        """Keep records offering a service matching ``service`` (case-insensitive)."""
        if not service or service == 'all':
            return list(records)

        needle = service.lower()
        return [
            r for r in records
            if any(needle in offered.lower() for offered in r.services)
        ]

    @staticmethod
    def sort_by_date(records: List[Any]) -> List[Any]:
        return sorted(records, key=lambda r: r.date)

    def census_overlay(
        self,
        geojson: Dict[str, Any],
        census: List[CensusTractRecord]
    ) -> Dict[str, Any]:
        """Style a tract FeatureCollection with the census records."""
        return ChoroplethStyler(census).style_collection(geojson)

    def load_dashboard(
        self,
        date_range: str = 'upcoming',
        service: Optional[str] = 'all',
        today: Optional[date] = None
    ) -> DashboardData:
        """
        Load every dataset and derive the dashboard view.

        The three datasets are fetched concurrently; geocoding inside the
        schedule load stays serialized.

        Args:
            date_range: Schedule date filter
            service: Schedule service filter
            today: Evaluation day (defaults to the local current date)

        Returns:
            DashboardData with filtered schedule, statistics and markers

        Raises:
            DashboardLoadError: If every dataset fetch failed with no cache
        """
        today = today or date.today()
        logger.info("Loading dashboard data")

        with ThreadPoolExecutor(max_workers=3) as executor:
            schedule_future = executor.submit(self.get_schedule)
            tracking_future = executor.submit(self.get_tracking)
            census_future = executor.submit(self.get_census_data)

            schedule = schedule_future.result()
            tracking = tracking_future.result()
            census = census_future.result()

        sources = {
            dataset: self.sources.get(sheet_name, SOURCE_EMPTY)
            for dataset, sheet_name in self.sheet_names.items()
        }
        if all(source == SOURCE_EMPTY for source in sources.values()):
            raise DashboardLoadError("Every dataset fetch failed and no cached data is available")

        logger.info(
            f"Loaded {len(schedule)} schedule items, {len(tracking)} tracking "
            f"records, {len(census)} census tracts"
        )

        filtered = self.filter_by_date_range(schedule, date_range, today=today)
        filtered = self.sort_by_date(self.filter_by_service(filtered, service))
        markers = self.aggregator.build_markers(filtered, today=today)

        return DashboardData(
            schedule=filtered,
            tracking=tracking,
            census=census,
            statistics=self.get_statistics(tracking),
            markers=markers,
            bounds=fit_bounds(markers),
            last_updated=self.last_updated,
            sources=sources
        )

    def clear_cache(self) -> None:
        """Drop cached datasets; resolved addresses are kept."""
        self.cache.clear()
