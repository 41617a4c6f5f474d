"""Data models for schedule, tracking and census processing."""
import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional


class MarkerStatus(str, Enum):
    """Temporal status of a location's primary event."""
    PAST = 'Past'
    TODAY = 'Today'
    UPCOMING = 'Upcoming'


@dataclass
class ScheduleRecord:
    """Normalized van schedule row."""
    date: date
    time: str
    location: str
    address: str
    services: List[str]
    zip_code: Optional[str]
    notes: str
    lat: float
    lng: float

    @property
    def has_coordinates(self) -> bool:
        """True when both coordinates are present and finite."""
        return (
            self.lat is not None and self.lng is not None and
            math.isfinite(self.lat) and math.isfinite(self.lng)
        )


@dataclass
class TrackingRecord:
    """Normalized service tracking row."""
    date: date
    location: str
    attendees: int
    services_provided: List[str]
    notes: str


@dataclass
class CensusTractRecord:
    """Demographic row for one census tract."""
    tract_id: int
    name: str
    pct_without_insurance: Optional[float] = None
    pct_no_transport: Optional[float] = None
    pct_food_insecure: Optional[float] = None
    pct_housing_insecure: Optional[float] = None
    pct_mental_distress: Optional[float] = None
    median_income: Optional[float] = None
    median_age: Optional[float] = None


@dataclass
class GeocodeResult:
    """Coordinates resolved for an address."""
    lat: float
    lng: float


@dataclass
class LocationMarkerGroup:
    """Schedule records that share one physical stop."""
    key: str
    records: List[ScheduleRecord]
    primary: ScheduleRecord
    status: MarkerStatus
    also_scheduled: List[ScheduleRecord] = field(default_factory=list)


@dataclass
class MarkerSpec:
    """Everything the map needs to draw one marker."""
    key: str
    lat: float
    lng: float
    color: str
    status: MarkerStatus
    popup_html: str


@dataclass
class Statistics:
    """Summary figures derived from tracking data."""
    total_stops: int
    total_attendees: int
    total_services: int
    communities_reached: int
