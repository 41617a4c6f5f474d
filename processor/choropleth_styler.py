"""Choropleth styling for census tract polygons."""
import copy
import math
from html import escape
from typing import Any, Dict, Iterable, Optional

from processor.models import CensusTractRecord

UNKNOWN_TIER = 0

TIER_COLORS = {
    4: '#dc2626',  # high need
    3: '#f59e0b',
    2: '#fbbf24',
    1: '#10b981',  # low need
    UNKNOWN_TIER: '#cccccc',
}

TRACT_ID_PROPERTIES = ('GEOID', 'TRACTCE')


def tier_for(pct_without_insurance: Optional[float]) -> int:
    """
    Bucket a percent-without-insurance value.

    Thresholds are exclusive lower bounds: exactly 15 falls in tier 3.

    Args:
        pct_without_insurance: Percentage, or None when missing

    Returns:
        Tier 1-4, or UNKNOWN_TIER
    """
    if pct_without_insurance is None or math.isnan(pct_without_insurance):
        return UNKNOWN_TIER
    if pct_without_insurance > 15:
        return 4
    if pct_without_insurance > 10:
        return 3
    if pct_without_insurance > 5:
        return 2
    return 1


def _display(value: Optional[float], prefix: str = '', suffix: str = '') -> str:
    if value is None:
        return 'N/A'
    if float(value).is_integer():
        text = f"{int(value):,}"
    else:
        text = f"{value:,}"
    return f"{prefix}{text}{suffix}"


class ChoroplethStyler:
    """Joins tract polygons to demographic rows and styles them."""

    BASE_STYLE = {
        'weight': 1,
        'opacity': 1,
        'color': 'white',
        'fillOpacity': 0.5,
    }

    def __init__(self, census_records: Iterable[CensusTractRecord]):
        self.records: Dict[int, CensusTractRecord] = {
            record.tract_id: record for record in census_records
        }

    @staticmethod
    def tract_id(feature: Dict[str, Any]) -> Optional[int]:
        """
        Extract the tract identifier from a GeoJSON feature.

        Args:
            feature: GeoJSON feature

        Returns:
            Integer tract id, or None if absent or not numeric
        """
        properties = feature.get('properties') or {}
        for name in TRACT_ID_PROPERTIES:
            value = properties.get(name)
            if value is None:
                continue
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
        return None

    def record_for(self, feature: Dict[str, Any]) -> Optional[CensusTractRecord]:
        tract_id = self.tract_id(feature)
        if tract_id is None:
            return None
        return self.records.get(tract_id)

    def tier(self, feature: Dict[str, Any]) -> int:
        record = self.record_for(feature)
        if record is None:
            return UNKNOWN_TIER
        return tier_for(record.pct_without_insurance)

    def style(self, feature: Dict[str, Any]) -> Dict[str, Any]:
        """Return the polygon style for a feature."""
        style = dict(self.BASE_STYLE)
        style['fillColor'] = TIER_COLORS[self.tier(feature)]
        return style

    def popup(self, feature: Dict[str, Any]) -> Optional[str]:
        """Render tract popup content, or None when no record matches."""
        record = self.record_for(feature)
        if record is None:
            return None

        rows = [
            ('Median Income', _display(record.median_income, prefix='$')),
            ('Without Insurance', _display(record.pct_without_insurance, suffix='%')),
            ('No Transportation', _display(record.pct_no_transport, suffix='%')),
            ('Food Insecure', _display(record.pct_food_insecure, suffix='%')),
            ('Housing Insecure', _display(record.pct_housing_insecure, suffix='%')),
            ('Mental Distress', _display(record.pct_mental_distress, suffix='%')),
            ('Median Age', _display(record.median_age)),
        ]

        body = ''.join(
            f'<p><strong>{label}:</strong> {escape(value)}</p>' for label, value in rows
        )
        return f'<div class="tract-popup"><h3>{escape(record.name)}</h3>{body}</div>'

    def style_collection(self, geojson: Dict[str, Any]) -> Dict[str, Any]:
        """
        Attach style and popup content to every feature.

        Args:
            geojson: GeoJSON FeatureCollection

        Returns:
            A copy of the collection with ``style``, ``tier`` and ``popup``
            added to each feature's properties
        """
        styled = copy.deepcopy(geojson)
        for feature in styled.get('features') or []:
            properties = feature.setdefault('properties', {})
            properties['tier'] = self.tier(feature)
            properties['style'] = self.style(feature)
            properties['popup'] = self.popup(feature)
        return styled
