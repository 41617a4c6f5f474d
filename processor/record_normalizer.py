"""Normalizer mapping raw sheet rows onto canonical records."""
import logging
import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from processor.models import CensusTractRecord, ScheduleRecord, TrackingRecord

logger = logging.getLogger(__name__)

_NUMBER_PREFIX = re.compile(r'^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)')
_INTEGER_PREFIX = re.compile(r'^\s*([-+]?\d+)')
_VISUALIZATION_DATE = re.compile(r'^Date\((\d{4}),\s*(\d{1,2}),\s*(\d{1,2})')


class RecordNormalizer:
    """Maps header-name variants onto schedule, tracking and census records."""

    SCHEDULE_FIELDS = {
        'date': ('Date', 'date'),
        'time': ('Time', 'time'),
        'location': ('Location', 'location'),
        'address': ('Address', 'address'),
        'services': ('Services', 'services'),
        'zip_code': ('Zip Code', 'zipCode', 'zip'),
        'notes': ('Notes', 'notes'),
        'lat': ('Latitude', 'lat'),
        'lng': ('Longitude', 'lng', 'lon'),
    }

    TRACKING_FIELDS = {
        'date': ('Date', 'date'),
        'location': ('Location', 'location'),
        'attendees': ('Attendees', 'attendees'),
        'services_provided': ('Services Provided', 'servicesProvided'),
        'notes': ('Notes', 'notes'),
    }

    CENSUS_FIELDS = {
        'tract_id': ('Census_Tract',),
        'name': ('Name',),
        'pct_without_insurance': ('Pct_Wout_Insurance',),
        'pct_no_transport': ('Pct_No_Transport',),
        'pct_food_insecure': ('Pct_Food_Insec',),
        'pct_housing_insecure': ('Pct_Housing_Insec',),
        'pct_mental_distress': ('Pct_Mental_Distress',),
        'median_income': ('Med_Inc',),
        'median_age': ('Med_Age',),
    }

    DATE_FORMATS = [
        '%Y-%m-%d',      # ISO 8601
        '%m/%d/%Y',      # US format
        '%m-%d-%Y',      # US format with dashes
        '%B %d, %Y',     # Full month name
        '%b %d, %Y',     # Abbreviated month name
        '%Y/%m/%d',      # Alternative ISO format
    ]

    def normalize_schedule(self, rows: List[Dict[str, Any]]) -> List[ScheduleRecord]:
        """
        Normalize raw schedule rows.

        Rows without a date or location are dropped. Coordinates are not
        required here; records lacking them are left for geocoding.

        Args:
            rows: Raw header -> value rows

        Returns:
            List of ScheduleRecord objects
        """
        records = []
        fields = self.SCHEDULE_FIELDS

        for row in rows:
            event_date = self.parse_date(self.first_value(row, fields['date']))
            location = self._text(self.first_value(row, fields['location']))

            if event_date is None or not location:
                logger.debug(f"Dropping schedule row missing date or location: {row}")
                continue

            zip_code = self.first_value(row, fields['zip_code'])

            records.append(ScheduleRecord(
                date=event_date,
                time=self._text(self.first_value(row, fields['time'])),
                location=location,
                address=self._text(self.first_value(row, fields['address'])),
                services=self.parse_services(self.first_value(row, fields['services'])),
                zip_code=self._text(zip_code) if zip_code is not None else None,
                notes=self._text(self.first_value(row, fields['notes'])),
                lat=self.parse_float(self.first_value(row, fields['lat'])),
                lng=self.parse_float(self.first_value(row, fields['lng']))
            ))

        logger.info(f"Normalized {len(records)} schedule records out of {len(rows)} rows")
        return records

    def normalize_tracking(self, rows: List[Dict[str, Any]]) -> List[TrackingRecord]:
        """
        Normalize raw tracking rows.

        Args:
            rows: Raw header -> value rows

        Returns:
            List of TrackingRecord objects with date and location present
        """
        records = []
        fields = self.TRACKING_FIELDS

        for row in rows:
            event_date = self.parse_date(self.first_value(row, fields['date']))
            location = self._text(self.first_value(row, fields['location']))

            if event_date is None or not location:
                logger.debug(f"Dropping tracking row missing date or location: {row}")
                continue

            records.append(TrackingRecord(
                date=event_date,
                location=location,
                attendees=self.parse_count(self.first_value(row, fields['attendees'])),
                services_provided=self.parse_services(
                    self.first_value(row, fields['services_provided'])
                ),
                notes=self._text(self.first_value(row, fields['notes']))
            ))

        logger.info(f"Normalized {len(records)} tracking records out of {len(rows)} rows")
        return records

    def normalize_census(self, rows: List[Dict[str, Any]]) -> List[CensusTractRecord]:
        """Normalize census rows, dropping any without an integer tract id."""
        records = []
        fields = self.CENSUS_FIELDS

        for row in rows:
            tract_id = self.parse_tract_id(self.first_value(row, fields['tract_id']))
            if tract_id is None:
                continue

            metrics = {
                name: self.parse_optional_float(self.first_value(row, headers))
                for name, headers in fields.items()
                if name not in ('tract_id', 'name')
            }
            records.append(CensusTractRecord(
                tract_id=tract_id,
                name=self._text(self.first_value(row, fields['name'])),
                **metrics
            ))

        logger.info(f"Normalized {len(records)} census tracts out of {len(rows)} rows")
        return records

    @staticmethod
    def first_value(row: Dict[str, Any], headers: Sequence[str]) -> Any:
        """
        Return the first populated value among the accepted header spellings.

        Args:
            row: Raw header -> value row
            headers: Accepted spellings in priority order (exact match)

        Returns:
            The value, or None if no spelling is populated
        """
        for header in headers:
            value = row.get(header)
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            return value
        return None

    @staticmethod
    def parse_services(value: Any) -> List[str]:
        """Split a comma-separated services cell into trimmed entries."""
        if value is None:
            return []
        return [part.strip() for part in str(value).split(',') if part.strip()]

    def parse_date(self, value: Any) -> Optional[date]:
        """
        Coerce a date cell to a calendar date.

        Args:
            value: Date string, visualization ``Date(y,m,d)`` literal, or
                date object

        Returns:
            date object or None if parsing fails
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value

        text = str(value).strip()

        # Visualization exports use zero-based months
        match = _VISUALIZATION_DATE.match(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            try:
                return date(year, month + 1, day)
            except ValueError:
                return None

        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue

        logger.warning(f"Unrecognized date value: {text!r}")
        return None

    @staticmethod
    def parse_float(value: Any) -> float:
        """Permissive number parse; NaN when no leading number is present."""
        if isinstance(value, bool) or value is None:
            return math.nan
        if isinstance(value, (int, float)):
            return float(value)

        match = _NUMBER_PREFIX.match(str(value))
        if not match:
            return math.nan
        return float(match.group(1))

    def parse_optional_float(self, value: Any) -> Optional[float]:
        number = self.parse_float(value)
        return None if math.isnan(number) else number

    @staticmethod
    def parse_count(value: Any) -> int:
        """Parse a non-negative integer count, falling back to 0."""
        if isinstance(value, bool) or value is None:
            return 0
        if isinstance(value, (int, float)):
            count = int(value) if math.isfinite(value) else 0
        else:
            match = _INTEGER_PREFIX.match(str(value))
            count = int(match.group(1)) if match else 0
        return max(count, 0)

    @staticmethod
    def parse_tract_id(value: Any) -> Optional[int]:
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, float):
            return int(value) if value.is_integer() else None
        if isinstance(value, int):
            return value

        match = _INTEGER_PREFIX.match(str(value))
        return int(match.group(1)) if match else None

    @staticmethod
    def _text(value: Any) -> str:
        if value is None:
            return ''
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()
