"""Decoders for the two spreadsheet wire formats."""
import json
import logging
from enum import Enum
from typing import Any, Dict, List

from fetcher.errors import ParseError

logger = logging.getLogger(__name__)


class SheetFormat(Enum):
    """Wire format served by the spreadsheet source."""
    API_KEY = 'api_key'
    PUBLIC_EXPORT = 'public_export'


class SheetParser:
    """Turns a raw sheet payload into a list of header -> value rows."""

    # "/*O_o*/\ngoogle.visualization.Query.setResponse(" ... ");"
    WRAPPER_PREFIX_LENGTH = 47
    WRAPPER_SUFFIX_LENGTH = 2

    def __init__(self, sheet_format: SheetFormat):
        """
        Initialize the parser for one wire format.

        Args:
            sheet_format: Format chosen from configuration
        """
        self.sheet_format = sheet_format

    def parse(self, payload: Any) -> List[Dict[str, Any]]:
        """
        Parse a sheet payload.

        Args:
            payload: Decoded JSON object (API-key mode) or response text
                (public-export mode)

        Returns:
            List of row dictionaries, or an empty list if the payload is
            malformed
        """
        try:
            return self.parse_strict(payload)
        except ParseError as e:
            logger.error(f"Failed to parse {self.sheet_format.value} payload: {e}")
            return []

    def parse_strict(self, payload: Any) -> List[Dict[str, Any]]:
        """
        Parse a sheet payload, raising instead of degrading to an empty list.

        Raises:
            ParseError: If the payload is malformed
        """
        if self.sheet_format is SheetFormat.API_KEY:
            return self.parse_api_response(payload)
        return self.parse_visualization_response(payload)

    def parse_api_response(self, payload: Any) -> List[Dict[str, Any]]:
        """
        Parse a Sheets API ``values`` response.

        Args:
            payload: Decoded JSON object with a ``values`` 2-D array

        Returns:
            List of row dictionaries keyed by the header row

        Raises:
            ParseError: If the ``values`` field is missing or not an array
        """
        if not isinstance(payload, dict) or 'values' not in payload:
            raise ParseError("Response has no 'values' field")

        values = payload['values']
        if not isinstance(values, list):
            raise ParseError("'values' field is not an array")

        if len(values) < 2:
            return []

        headers = [str(header) for header in values[0]]
        rows = []

        for row in values[1:]:
            if not isinstance(row, list):
                raise ParseError(f"Row is not an array: {row!r}")
            record = {}
            for index, header in enumerate(headers):
                value = row[index] if index < len(row) else None
                record[header] = value if value is not None else ''
            rows.append(record)

        return rows

    def parse_visualization_response(self, text: Any) -> List[Dict[str, Any]]:
        """
        Parse a public visualization export response.

        Args:
            text: Response body including the JavaScript wrapper

        Returns:
            List of row dictionaries keyed by column label (or id)

        Raises:
            ParseError: If the wrapper cannot be trimmed or decoded, or the
                ``table.rows`` field is missing
        """
        if not isinstance(text, str):
            raise ParseError("Visualization response is not text")

        minimum_length = self.WRAPPER_PREFIX_LENGTH + self.WRAPPER_SUFFIX_LENGTH
        if len(text) <= minimum_length:
            raise ParseError("Visualization response is too short to unwrap")

        json_string = text[self.WRAPPER_PREFIX_LENGTH:-self.WRAPPER_SUFFIX_LENGTH]

        try:
            document = json.loads(json_string)
        except ValueError as e:
            raise ParseError(f"Invalid JSON inside wrapper: {e}") from e

        table = document.get('table') if isinstance(document, dict) else None
        if not isinstance(table, dict) or not isinstance(table.get('rows'), list):
            raise ParseError("Response has no 'table.rows' field")

        headers = [
            col.get('label') or col.get('id') or ''
            for col in table.get('cols') or []
        ]
        rows = []

        for row in table['rows']:
            if not isinstance(row, dict):
                raise ParseError(f"Row is not an object: {row!r}")
            cells = row.get('c') or []
            record = {}
            for index, header in enumerate(headers):
                cell = cells[index] if index < len(cells) else None
                if not isinstance(cell, dict) or cell.get('v') is None:
                    record[header] = ''
                else:
                    record[header] = cell['v']
            rows.append(record)

        return rows
