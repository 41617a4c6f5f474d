"""Unit tests for DataService."""
from datetime import date
from unittest.mock import Mock

import pytest

from fetcher.errors import FetchError, ParseError
from fetcher.geocoder import GeocodeEnricher
from fetcher.sheet_parser import SheetFormat, SheetParser
from processor.models import MarkerStatus, TrackingRecord
from processor.record_normalizer import RecordNormalizer
from service.data_service import (
    DashboardLoadError,
    DataService,
    add_month,
)
from storage.cache_store import CacheStore

TODAY = date(2025, 3, 12)

SHEET_NAMES = {
    'schedule': 'Van Schedule',
    'tracking': 'Service Tracking',
    'census': 'Census Tract Data',
}

SHEETS = {
    'Van Schedule': {'values': [
        ['Date', 'Time', 'Location', 'Address', 'Services', 'Latitude', 'Longitude'],
        ['2025-03-10', '9 AM', 'Town Hall', '12 Main St', 'Vaccines', '44.10', '-69.10'],
        ['2025-03-17', '9 AM', 'Town Hall', '12 Main St', 'Vaccines, Dental', '44.1001', '-69.1001'],
        ['2025-03-12', '1 PM', 'Library', '5 Elm St', 'Screenings', '', ''],
        ['2025-03-20', '1 PM', 'Harbor', '', 'Screenings', '', ''],
    ]},
    'Service Tracking': {'values': [
        ['Date', 'Location', 'Attendees', 'Services Provided'],
        ['2025-03-01', 'Town Hall', '10', 'Vaccines, Dental'],
        ['2025-03-03', 'Library', 'n/a', 'Screenings'],
        ['2025-03-05', 'Town Hall', '5', ''],
    ]},
    'Census Tract Data': {'values': [
        ['Census_Tract', 'Name', 'Pct_Wout_Insurance'],
        ['9701', 'Tract 9701', '12'],
    ]},
}


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def location(lat, lng):
    result = Mock()
    result.latitude = lat
    result.longitude = lng
    return result


@pytest.fixture
def client():
    client = Mock()
    client.fetch.side_effect = lambda name: SHEETS[name]
    return client


@pytest.fixture
def geocode():
    return Mock(return_value=[location(44.2, -69.2)])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(client, geocode, clock):
    return DataService(
        client=client,
        parser=SheetParser(SheetFormat.API_KEY),
        normalizer=RecordNormalizer(),
        cache=CacheStore(clock=clock),
        enricher=GeocodeEnricher(geocode=geocode, region='Maine', min_delay_seconds=0),
        cache_ttl_seconds=600,
        sheet_names=SHEET_NAMES
    )


def tracking(location, attendees=0, services=None):
    return TrackingRecord(
        date=TODAY,
        location=location,
        attendees=attendees,
        services_provided=services or [],
        notes=''
    )


class TestFetchSheet:
    """Test cases for cached sheet fetching."""

    def test_cache_hit_skips_fetch(self, service, client):
        first = service.fetch_sheet('Van Schedule')
        second = service.fetch_sheet('Van Schedule')

        assert first == second
        assert client.fetch.call_count == 1
        assert service.sources['Van Schedule'] == 'cache'
        assert service.last_updated is not None

    def test_expired_cache_refetches(self, service, client, clock):
        service.fetch_sheet('Van Schedule')
        clock.now += 601
        service.fetch_sheet('Van Schedule')

        assert client.fetch.call_count == 2

    def test_use_cache_false_refetches(self, service, client):
        service.fetch_sheet('Van Schedule')
        service.fetch_sheet('Van Schedule', use_cache=False)

        assert client.fetch.call_count == 2

    def test_stale_serve_on_fetch_failure(self, service, client, clock):
        """Test that expired rows are served when the refresh fails."""
        rows = service.fetch_sheet('Van Schedule')
        clock.now += 10_000
        client.fetch.side_effect = FetchError('network down')

        assert service.fetch_sheet('Van Schedule') == rows
        assert service.sources['Van Schedule'] == 'stale'

    def test_fetch_failure_without_cache(self, service, client):
        client.fetch.side_effect = FetchError('network down')

        assert service.fetch_sheet('Van Schedule') == []
        assert service.sources['Van Schedule'] == 'empty'

    def test_malformed_payload_without_cache_is_empty(self, service, client):
        client.fetch.side_effect = ParseError('bad json')

        assert service.fetch_sheet('Van Schedule') == []
        assert service.sources['Van Schedule'] == 'empty'

    def test_undecodable_body_serves_stale(self, service, client, clock):
        """Test that a body the client cannot decode falls back to cached rows."""
        rows = service.fetch_sheet('Van Schedule')
        clock.now += 10_000
        client.fetch.side_effect = ParseError('bad json')

        assert service.fetch_sheet('Van Schedule') == rows
        assert service.sources['Van Schedule'] == 'stale'

    def test_malformed_payload_keeps_cached_rows(self, client, clock):
        """Test that a malformed export neither replaces nor hides cached rows."""
        good = '/*O_o*/\ngoogle.visualization.Query.setResponse(' + (
            '{"table":{"cols":[{"label":"Location"}],"rows":[{"c":[{"v":"Town Hall"}]}]}}'
        ) + ');'
        client.fetch.side_effect = [good, 'garbage', FetchError('network down')]
        service = DataService(
            client=client,
            parser=SheetParser(SheetFormat.PUBLIC_EXPORT),
            normalizer=RecordNormalizer(),
            cache=CacheStore(clock=clock),
            enricher=GeocodeEnricher(geocode=Mock(), min_delay_seconds=0),
            cache_ttl_seconds=600,
            sheet_names=SHEET_NAMES
        )

        first = service.fetch_sheet('Van Schedule')
        clock.now += 601
        malformed = service.fetch_sheet('Van Schedule')
        later = service.fetch_sheet('Van Schedule')

        assert first == [{'Location': 'Town Hall'}]
        assert malformed == first
        assert later == first
        assert service.sources['Van Schedule'] == 'stale'


class TestDatasets:
    """Test cases for dataset getters."""

    def test_get_schedule_geocodes_and_drops(self, service, geocode):
        """Test that missing coordinates are geocoded or the row dropped."""
        schedule = service.get_schedule()

        assert [r.location for r in schedule] == ['Town Hall', 'Town Hall', 'Library']
        library = schedule[2]
        assert (library.lat, library.lng) == (44.2, -69.2)
        geocode.assert_called_once_with('5 Elm St, Maine', exactly_one=False, timeout=10)

    def test_repeated_schedule_loads_geocode_once(self, service, geocode):
        service.get_schedule()
        service.clear_cache()
        service.get_schedule()

        assert geocode.call_count == 1

    def test_get_tracking(self, service):
        records = service.get_tracking()

        assert [r.attendees for r in records] == [10, 0, 5]

    def test_get_census_data(self, service):
        census = service.get_census_data()

        assert census[0].tract_id == 9701
        assert census[0].pct_without_insurance == 12

    def test_get_statistics(self, service):
        """Test statistics derived from tracking data."""
        stats = service.get_statistics()

        assert stats.total_stops == 3
        assert stats.total_attendees == 15
        assert stats.total_services == 3
        assert stats.communities_reached == 2

    def test_communities_are_case_sensitive(self, service):
        stats = service.get_statistics([tracking('Library'), tracking('library')])

        assert stats.communities_reached == 2


class TestFilters:
    """Test cases for date and service filters."""

    @pytest.fixture
    def records(self):
        return [
            tracking('a'),
            TrackingRecord(date(2025, 3, 11), 'b', 0, [], ''),
            TrackingRecord(date(2025, 3, 19), 'c', 0, [], ''),
            TrackingRecord(date(2025, 3, 20), 'd', 0, [], ''),
            TrackingRecord(date(2025, 4, 12), 'e', 0, [], ''),
            TrackingRecord(date(2025, 4, 13), 'f', 0, [], ''),
        ]

    @pytest.mark.parametrize('date_range,expected', [
        ('today', ['a']),
        ('upcoming', ['a', 'c', 'd', 'e', 'f']),
        ('week', ['a', 'c']),
        ('month', ['a', 'c', 'd', 'e']),
        ('all', ['a', 'b', 'c', 'd', 'e', 'f']),
        ('fortnight', ['a', 'b', 'c', 'd', 'e', 'f']),
    ])
    def test_filter_by_date_range(self, records, date_range, expected):
        filtered = DataService.filter_by_date_range(records, date_range, today=TODAY)

        assert [r.location for r in filtered] == expected

    def test_add_month_clamps(self):
        assert add_month(date(2025, 1, 31)) == date(2025, 2, 28)
        assert add_month(date(2025, 12, 15)) == date(2026, 1, 15)

    def test_filter_by_service(self, service):
        schedule = service.get_schedule()

        dental = DataService.filter_by_service(schedule, 'dent')

        assert [r.date for r in dental] == [date(2025, 3, 17)]
        assert DataService.filter_by_service(schedule, 'all') == schedule


class TestLoadDashboard:
    """Test cases for the full dashboard load."""

    def test_load_dashboard(self, service):
        data = service.load_dashboard(date_range='all', today=TODAY)

        assert len(data.schedule) == 3
        assert data.statistics.total_attendees == 15
        assert len(data.census) == 1
        assert [m.key for m in data.markers] == ['44.1000,-69.1000', '44.2000,-69.2000']
        assert data.markers[0].status is MarkerStatus.UPCOMING
        assert data.markers[1].status is MarkerStatus.TODAY
        assert data.bounds is not None
        assert data.sources == {'schedule': 'fresh', 'tracking': 'fresh', 'census': 'fresh'}

    def test_zero_matches_is_not_an_error(self, service):
        data = service.load_dashboard(date_range='today', service='Acupuncture', today=TODAY)

        assert data.schedule == []
        assert data.markers == []
        assert data.bounds is None

    def test_partial_failure_degrades(self, service, client):
        def fetch(name):
            if name == 'Service Tracking':
                raise FetchError('boom')
            return SHEETS[name]
        client.fetch.side_effect = fetch

        data = service.load_dashboard(date_range='all', today=TODAY)

        assert data.tracking == []
        assert data.statistics.total_stops == 0
        assert len(data.schedule) == 3

    def test_total_failure_raises(self, service, client):
        client.fetch.side_effect = FetchError('offline')

        with pytest.raises(DashboardLoadError):
            service.load_dashboard(today=TODAY)

    def test_total_failure_with_cache_serves_stale(self, service, client, clock):
        service.load_dashboard(date_range='all', today=TODAY)
        clock.now += 10_000
        client.fetch.side_effect = FetchError('offline')

        data = service.load_dashboard(date_range='all', today=TODAY)

        assert len(data.schedule) == 3
        assert set(data.sources.values()) == {'stale'}
