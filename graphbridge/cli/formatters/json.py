"""
JSON formatter for machine-readable output

Rows keep the column order of the scan. Values that JSON cannot carry are
converted: timestamps and dates to ISO 8601, numerics to strings, NaN and
infinities to null.
"""

import json
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from graphbridge.cli.formatters.base import BaseFormatter


class JSONFormatter(BaseFormatter):
    """Format rows as a JSON array of objects"""

    def format(self, results: list[dict[str, Any]], columns: list[str] | None = None, **kwargs) -> str:
        """
        Format rows as JSON

        Args:
            results: List of row dictionaries
            columns: Column order
            **kwargs: 'compact' for a single line, 'indent' otherwise

        Returns:
            JSON string
        """
        columns = self.resolve_columns(results, columns)
        rows = [{col: _json_value(row.get(col)) for col in columns} for row in results]

        if kwargs.get("compact", False):
            return json.dumps(rows, separators=(",", ":"), default=str)
        return json.dumps(rows, indent=kwargs.get("indent", 2), default=str)


def _json_value(value: Any) -> Any:
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value
