"""Unit tests for GeocodeEnricher."""
import time
from datetime import date
from unittest.mock import Mock

import pytest
from geopy.exc import GeocoderTimedOut

from fetcher.geocoder import GeocodeEnricher
from processor.models import ScheduleRecord


def candidate(lat, lng):
    """Create a geopy-like Location stand-in."""
    location = Mock()
    location.latitude = lat
    location.longitude = lng
    return location


def make_record(address='12 Main St', lat=float('nan'), lng=float('nan'), location='Town Hall'):
    return ScheduleRecord(
        date=date(2025, 3, 10),
        time='10:00 AM',
        location=location,
        address=address,
        services=[],
        zip_code=None,
        notes='',
        lat=lat,
        lng=lng
    )


@pytest.fixture
def geocode():
    return Mock(return_value=[candidate(44.1, -69.1), candidate(45.0, -70.0)])


@pytest.fixture
def enricher(geocode):
    return GeocodeEnricher(geocode=geocode, region='Maine', min_delay_seconds=0)


class TestGeocodeEnricher:
    """Test cases for GeocodeEnricher class."""

    def test_normalize_key(self):
        """Test that keys collapse whitespace and ignore case."""
        key = GeocodeEnricher.normalize_key('  12  Main St ', 'Maine')

        assert key == '12 main st, maine'
        assert GeocodeEnricher.normalize_key('12 MAIN St', 'maine') == key
        assert GeocodeEnricher.normalize_key('12 Main St') == '12 main st'

    def test_resolve_uses_first_candidate(self, enricher, geocode):
        """Test that only the first candidate is used."""
        result = enricher.resolve('12 Main St')

        assert (result.lat, result.lng) == (44.1, -69.1)
        geocode.assert_called_once_with('12 Main St, Maine', exactly_one=False, timeout=10)

    def test_resolve_caches_results(self, enricher, geocode):
        """Test that the same normalized address is looked up at most once."""
        first = enricher.resolve('12 Main St')
        second = enricher.resolve('12  main st')

        assert first == second
        assert geocode.call_count == 1
        assert enricher.cache_size == 1

    def test_empty_result_is_not_cached(self, geocode):
        """Test that misses are retried on the next request."""
        geocode.return_value = []
        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=0)

        assert enricher.resolve('Nowhere Rd') is None
        assert enricher.resolve('Nowhere Rd') is None
        assert geocode.call_count == 2
        assert enricher.cache_size == 0

    def test_lookup_errors_are_swallowed(self, geocode):
        """Test that geocoder errors resolve to None."""
        geocode.side_effect = GeocoderTimedOut('timed out')
        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=0)

        assert enricher.resolve('12 Main St') is None

    def test_unusable_candidate_resolves_to_none(self, geocode):
        geocode.return_value = [object()]
        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=0)

        assert enricher.resolve('12 Main St') is None

    def test_lookups_are_spaced_by_minimum_delay(self):
        """Test that consecutive external lookups respect the interval."""
        calls = []

        def geocode(query, **kwargs):
            calls.append(time.monotonic())
            return [candidate(44.0, -69.0)]

        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=0.05)
        for address in ('1 A St', '2 B St', '3 C St'):
            enricher.resolve(address)

        assert len(calls) == 3
        assert calls[1] - calls[0] >= 0.045
        assert calls[2] - calls[1] >= 0.045

    def test_cache_hit_incurs_no_delay(self):
        """Test that cached addresses are answered without waiting."""
        geocode = Mock(return_value=[candidate(44.0, -69.0)])
        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=5)
        enricher.resolve('1 A St')

        start = time.monotonic()
        enricher.resolve('1 A St')

        assert time.monotonic() - start < 1

    def test_enrich_fills_and_drops(self, enricher, geocode):
        """Test batch enrichment keeps only records with coordinates."""
        records = [
            make_record(lat=44.5, lng=-69.5, location='Has coords'),
            make_record(address='12 Main St', location='Needs lookup'),
            make_record(address='', location='No address'),
        ]

        enriched = enricher.enrich(records)

        assert [r.location for r in enriched] == ['Has coords', 'Needs lookup']
        assert (enriched[1].lat, enriched[1].lng) == (44.1, -69.1)
        assert geocode.call_count == 1

    def test_enrich_drops_unresolved(self, geocode):
        geocode.return_value = None
        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=0)

        assert enricher.enrich([make_record()]) == []

    def test_failed_address_not_retried_in_same_pass(self, geocode):
        """Test that one failing address costs one lookup per pass."""
        geocode.return_value = []
        enricher = GeocodeEnricher(geocode=geocode, min_delay_seconds=0)
        records = [make_record(address='Nowhere Rd'), make_record(address='nowhere  rd')]

        assert enricher.enrich(records) == []
        assert geocode.call_count == 1

        enricher.enrich(records)
        assert geocode.call_count == 2

    def test_clear(self, enricher, geocode):
        enricher.resolve('12 Main St')
        enricher.clear()
        enricher.resolve('12 Main St')

        assert geocode.call_count == 2
