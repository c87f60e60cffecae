"""
Scan operator - leaf that pulls rows from a foreign scan
"""

from collections.abc import Iterable, Iterator
from typing import Any

from graphbridge.operators.base import Operator


class Scan(Operator):
    """
    Scan operator - wrapper around a row source

    The source is usually a ScanExecutor; any iterable of row dicts works.
    """

    def __init__(self, source: Iterable[dict[str, Any]], name: str = ""):
        """
        Initialize scan operator

        Args:
            source: Rows to pull
            name: Table name, shown by explain()
        """
        super().__init__(child=None)
        self.source = source
        self.name = name

    def __iter__(self) -> Iterator[dict[str, Any]]:
        yield from self.source

    def __repr__(self) -> str:
        return f"Scan({self.name or self.source.__class__.__name__})"
