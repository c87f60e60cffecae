"""
CSV formatter for Unix-friendly output
"""

import csv
import io
from typing import Any, Dict, List, Optional

from graphbridge.cli.formatters.base import BaseFormatter


class CSVFormatter(BaseFormatter):
    """Format results as CSV"""

    def format(self, results: List[Dict[str, Any]], columns: Optional[List[str]] = None, **kwargs) -> str:
        """
        Format results as CSV

        NULL is written as an empty field; timestamps in ISO 8601.

        Args:
            results: List of row dictionaries
            columns: Column order
            **kwargs: Options like 'delimiter', 'quote_all'

        Returns:
            CSV string
        """
        columns = self.resolve_columns(results, columns)
        if not columns:
            return ""

        output = io.StringIO()
        writer = csv.DictWriter(
            output,
            fieldnames=columns,
            delimiter=kwargs.get("delimiter", ","),
            quoting=csv.QUOTE_MINIMAL if not kwargs.get("quote_all") else csv.QUOTE_ALL,
            extrasaction="ignore",
        )

        writer.writeheader()
        for row in results:
            writer.writerow({col: _cell(row.get(col)) for col in columns})

        return output.getvalue()


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value
