"""Rate-limited address geocoding with a session-lifetime cache."""
import logging
import re
import threading
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from fetcher.errors import GeocodeError
from processor.models import GeocodeResult, ScheduleRecord

logger = logging.getLogger(__name__)


class GeocodeEnricher:
    """Resolves street addresses to coordinates for schedule records."""

    DEFAULT_USER_AGENT = "wellness-van-dashboard"

    def __init__(
        self,
        geocode: Optional[Callable] = None,
        region: str = '',
        min_delay_seconds: float = 1.0,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: int = 10
    ):
        """
        Initialize the enricher.

        Args:
            geocode: Geocoding callable taking a query string; defaults to
                Nominatim's ``geocode``
            region: Region appended to every address (e.g. "Maine")
            min_delay_seconds: Minimum interval between external lookups
            user_agent: User agent sent to Nominatim
            timeout: Lookup timeout in seconds
        """
        if geocode is None:
            geocode = Nominatim(user_agent=user_agent).geocode

        self.region = region
        self.timeout = timeout
        self._geocode = RateLimiter(
            geocode,
            min_delay_seconds=min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False
        )
        self._cache: Dict[str, GeocodeResult] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize_key(address: str, region: str = '') -> str:
        """
        Build the cache key for an address.

        Args:
            address: Free-text street address
            region: Region qualifier

        Returns:
            Lower-cased "address, region" string with collapsed whitespace
        """
        parts = [re.sub(r'\s+', ' ', part).strip(' ,') for part in (address, region)]
        return ', '.join(part for part in parts if part).lower()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def resolve(self, address: str, region: Optional[str] = None) -> Optional[GeocodeResult]:
        """
        Resolve an address to coordinates.

        The cache is consulted before any delay is incurred. Lookups that
        miss are serialized and spaced by the minimum interval. Negative
        results are not cached.

        Args:
            address: Free-text street address
            region: Region qualifier (defaults to the configured region)

        Returns:
            GeocodeResult, or None if the address could not be resolved
        """
        region = self.region if region is None else region
        key = self.normalize_key(address, region)
        if not key:
            return None

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            query = ', '.join(part for part in (address.strip(), region) if part)
            try:
                result = self._lookup(query)
            except (GeopyError, GeocodeError) as e:
                logger.warning(f"Geocoding failed for '{query}': {e}")
                return None

            if result is None:
                logger.warning(f"No geocoding match for '{query}'")
                return None

            self._cache[key] = result
            return result

    def _lookup(self, query: str) -> Optional[GeocodeResult]:
        """
        Issue one external lookup and keep the first candidate.

        Raises:
            GeocodeError: If the candidate carries no usable coordinates
        """
        candidates = self._geocode(query, exactly_one=False, timeout=self.timeout)
        if not candidates:
            return None

        first = candidates[0]
        try:
            return GeocodeResult(lat=float(first.latitude), lng=float(first.longitude))
        except (AttributeError, TypeError, ValueError) as e:
            raise GeocodeError(f"Unusable geocoding candidate: {first!r}") from e

    def enrich(self, records: Iterable[ScheduleRecord]) -> List[ScheduleRecord]:
        """
        Fill in coordinates for records lacking them.

        Records are resolved one at a time in input order. An address that
        fails is not looked up again during the same pass. Records still
        without valid coordinates afterwards are dropped.

        Args:
            records: Normalized schedule records

        Returns:
            Records that have valid coordinates
        """
        enriched = []
        dropped = 0
        failed = set()

        for record in records:
            if record.has_coordinates:
                enriched.append(record)
                continue

            if not record.address:
                dropped += 1
                continue

            key = self.normalize_key(record.address, self.region)
            result = None if key in failed else self.resolve(record.address)
            if result is None:
                failed.add(key)
                dropped += 1
                continue

            enriched.append(replace(record, lat=result.lat, lng=result.lng))

        if dropped:
            logger.warning(f"Dropped {dropped} schedule records without coordinates")
        return enriched

    def clear(self) -> None:
        """Forget every resolved address."""
        self._cache.clear()
