"""
Base formatter interface for CLI output

All formatters must implement the format() method.
"""

from typing import Any, Dict, List, Optional


class BaseFormatter:
    """Base class for all output formatters"""

    def format(self, results: List[Dict[str, Any]], columns: Optional[List[str]] = None, **kwargs) -> str:
        """
        Format scan results for output

        Args:
            results: List of row dictionaries
            columns: Column order (taken from the first row if omitted)
            **kwargs: Additional formatter-specific options

        Returns:
            Formatted string ready for output
        """
        raise NotImplementedError("Formatters must implement format() method")

    def get_name(self) -> str:
        """Get formatter name"""
        return self.__class__.__name__.replace("Formatter", "").lower()

    @staticmethod
    def resolve_columns(results: List[Dict[str, Any]], columns: Optional[List[str]]) -> List[str]:
        if columns:
            return list(columns)
        return list(results[0].keys()) if results else []
