"""Groups schedule records into per-location map markers."""
import logging
from datetime import date
from html import escape
from typing import Dict, Iterable, List, Optional, Tuple

from processor.models import LocationMarkerGroup, MarkerSpec, MarkerStatus, ScheduleRecord

logger = logging.getLogger(__name__)

# Roughly 11 m at these latitudes
COORDINATE_TOLERANCE = 0.0001
_EPSILON = 1e-9

STATUS_COLORS = {
    MarkerStatus.TODAY: '#10b981',
    MarkerStatus.UPCOMING: '#3b82f6',
    MarkerStatus.PAST: '#9ca3af',
}

Bounds = Tuple[Tuple[float, float], Tuple[float, float]]


def location_key(lat: float, lng: float) -> str:
    """Format a coordinate rounded to 4 decimal places."""
    return f"{lat:.4f},{lng:.4f}"


def format_date(value: date) -> str:
    """Format a date like "Mon, Mar 17, 2025"."""
    return f"{value:%a}, {value:%b} {value.day}, {value.year}"


def _within(a: float, b: float, tolerance: float) -> bool:
    return abs(a - b) <= tolerance + _EPSILON


def _near(a: ScheduleRecord, b: ScheduleRecord) -> bool:
    return (_within(a.lat, b.lat, COORDINATE_TOLERANCE) and
            _within(a.lng, b.lng, COORDINATE_TOLERANCE))


class LocationAggregator:
    """Selects and classifies the relevant event for every stop."""

    def __init__(self, colors: Optional[Dict[MarkerStatus, str]] = None):
        """
        Initialize the aggregator.

        Args:
            colors: Marker colour per status (defaults to STATUS_COLORS)
        """
        self.colors = dict(STATUS_COLORS)
        if colors:
            self.colors.update(colors)

    @staticmethod
    def classify(event_date: date, today: date) -> MarkerStatus:
        if event_date == today:
            return MarkerStatus.TODAY
        if event_date > today:
            return MarkerStatus.UPCOMING
        return MarkerStatus.PAST

    def group(
        self,
        records: Iterable[ScheduleRecord],
        today: Optional[date] = None
    ) -> List[LocationMarkerGroup]:
        """
        Group records by location and pick each group's primary event.

        A record joins the first group whose every member lies within
        COORDINATE_TOLERANCE on both axes, otherwise it starts a new group
        keyed by its own rounded coordinate. Within a group the primary is
        the soonest event on or after today, and ``also_scheduled`` lists
        the remaining future dates soonest first.

        Args:
            records: Schedule records with valid coordinates
            today: Evaluation day (defaults to the local current date)

        Returns:
            List of LocationMarkerGroup objects in first-seen order
        """
        today = today or date.today()
        clusters: List[Tuple[ScheduleRecord, List[ScheduleRecord]]] = []

        for record in records:
            if not record.has_coordinates:
                logger.warning(f"No coordinates for {record.location}")
                continue

            for anchor, members in clusters:
                if all(_near(record, member) for member in members):
                    members.append(record)
                    break
            else:
                clusters.append((record, [record]))

        groups = []
        for anchor, members in clusters:
            ordered = sorted(members, key=lambda r: r.date)
            upcoming = [r for r in ordered if r.date >= today]

            # Fall back to the most recent past event
            primary = upcoming[0] if upcoming else ordered[-1]
            status = self.classify(primary.date, today)

            also_scheduled = []
            if status is MarkerStatus.UPCOMING:
                also_scheduled = upcoming[1:]

            groups.append(LocationMarkerGroup(
                key=location_key(anchor.lat, anchor.lng),
                records=ordered,
                primary=primary,
                status=status,
                also_scheduled=also_scheduled
            ))

        return groups

    def build_markers(
        self,
        records: Iterable[ScheduleRecord],
        today: Optional[date] = None
    ) -> List[MarkerSpec]:
        """
        Build one marker per location.

        Args:
            records: Schedule records with valid coordinates
            today: Evaluation day (defaults to the local current date)

        Returns:
            List of MarkerSpec objects ready for the map
        """
        markers = []
        for group in self.group(records, today=today):
            primary = group.primary
            markers.append(MarkerSpec(
                key=group.key,
                lat=primary.lat,
                lng=primary.lng,
                color=self.colors[group.status],
                status=group.status,
                popup_html=self.popup_html(group)
            ))

        logger.info(f"Built {len(markers)} markers")
        return markers

    @staticmethod
    def popup_html(group: LocationMarkerGroup) -> str:
        """Render popup content for a group's primary event."""
        event = group.primary
        label = 'Today' if group.status is MarkerStatus.TODAY else 'Next Date'

        parts = [
            '<div class="stop-popup">',
            f'<div class="stop-status">{escape(group.status.value)}</div>',
            f'<h3>{escape(event.location or "Unknown Location")}</h3>',
            f'<p><strong>{label}:</strong> {escape(format_date(event.date))}</p>',
        ]

        if group.also_scheduled:
            dates = ', '.join(format_date(r.date) for r in group.also_scheduled)
            parts.append(f'<p class="stop-upcoming">Upcoming: {escape(dates)}</p>')

        parts.append(f'<p><strong>Time:</strong> {escape(event.time or "TBD")}</p>')
        parts.append(
            f'<p><strong>Address:</strong> '
            f'{escape(event.address or "Address not available")}</p>'
        )
        if event.zip_code:
            parts.append(f'<p><strong>Zip:</strong> {escape(event.zip_code)}</p>')

        services = ''.join(
            f'<span class="service-tag">{escape(service)}</span>'
            for service in event.services
        )
        parts.append(
            f'<div><strong>Services Offered:</strong> '
            f'{services or "<em>No services listed</em>"}</div>'
        )

        if event.notes:
            parts.append(f'<p class="stop-notes">{escape(event.notes)}</p>')

        parts.append('</div>')
        return ''.join(parts)


def fit_bounds(markers: List[MarkerSpec], padding: float = 0.1) -> Optional[Bounds]:
    """
    Compute map bounds covering every marker.

    Args:
        markers: Placed markers
        padding: Fraction of the span added on every side

    Returns:
        ((south, west), (north, east)), or None when there are no markers
    """
    if not markers:
        return None

    south = min(m.lat for m in markers)
    north = max(m.lat for m in markers)
    west = min(m.lng for m in markers)
    east = max(m.lng for m in markers)

    lat_buffer = (north - south) * padding
    lng_buffer = (east - west) * padding

    return (south - lat_buffer, west - lng_buffer), (north + lat_buffer, east + lng_buffer)


def find_marker(
    markers: List[MarkerSpec],
    lat: float,
    lng: float,
    tolerance: float = COORDINATE_TOLERANCE
) -> Optional[MarkerSpec]:
    """Return the placed marker matching an "open this marker" request."""
    for marker in markers:
        if abs(marker.lat - lat) < tolerance and abs(marker.lng - lng) < tolerance:
            return marker
    return None
