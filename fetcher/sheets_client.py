"""HTTP client for the Google Sheets data source."""
import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import requests

from fetcher.errors import FetchError, ParseError
from fetcher.sheet_parser import SheetFormat

logger = logging.getLogger(__name__)


class SheetsClient:
    """Fetches raw sheet payloads in either supported wire format."""

    API_URL = "https://sheets.googleapis.com/v4/spreadsheets/{sheet_id}/values/{sheet_name}"
    EXPORT_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq"

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, sheet_id: str, api_key: Optional[str] = None, timeout: int = 30):
        """
        Initialize the sheets client.

        Args:
            sheet_id: Spreadsheet identifier from the sheet URL
            api_key: Sheets API key; when empty the public export is used
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.sheet_id = sheet_id
        self.api_key = api_key or None
        self.timeout = timeout

    @property
    def sheet_format(self) -> SheetFormat:
        """Wire format implied by the configured credentials."""
        if self.api_key:
            return SheetFormat.API_KEY
        return SheetFormat.PUBLIC_EXPORT

    def build_request(self, sheet_name: str) -> Tuple[str, Dict[str, str]]:
        """
        Build the URL and query parameters for one sheet tab.

        Args:
            sheet_name: Name of the sheet tab

        Returns:
            Tuple of (url, params)
        """
        if self.sheet_format is SheetFormat.API_KEY:
            url = self.API_URL.format(
                sheet_id=self.sheet_id,
                sheet_name=quote(sheet_name, safe='')
            )
            return url, {'key': self.api_key}

        url = self.EXPORT_URL.format(sheet_id=self.sheet_id)
        return url, {'tqx': 'out:json', 'sheet': sheet_name}

    def fetch(self, sheet_name: str) -> Any:
        """
        Fetch one sheet tab with retry logic.

        Args:
            sheet_name: Name of the sheet tab

        Returns:
            Decoded JSON object in API-key mode, response text otherwise

        Raises:
            FetchError: If all retry attempts fail
            ParseError: If an API-key response body is not JSON
        """
        url, params = self.build_request(sheet_name)

        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Fetching sheet '{sheet_name}' "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                response = requests.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                break

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request for '{sheet_name}' failed "
                        f"(attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed for "
                        f"'{sheet_name}'. Last error: {e}"
                    )
                    raise FetchError(f"Could not fetch sheet '{sheet_name}': {e}") from e

        if self.sheet_format is SheetFormat.API_KEY:
            try:
                return response.json()
            except ValueError as e:
                raise ParseError(f"Sheet '{sheet_name}' returned invalid JSON") from e

        return response.text
