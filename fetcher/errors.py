"""Error types raised while fetching, parsing and geocoding dataset rows."""


class DashboardDataError(Exception):
    """Base class for data pipeline errors."""


class ParseError(DashboardDataError):
    """Raised when a wire payload cannot be decoded into rows."""


class FetchError(DashboardDataError):
    """Raised when a sheet cannot be retrieved from the data source."""


class GeocodeError(DashboardDataError):
    """Raised when a geocoding response cannot be used."""
