"""
Project operator - implements the SELECT column list
"""

from typing import Any, Dict, Iterator, List

from graphbridge.operators.base import Operator


class Project(Operator):
    """
    Project operator - keeps only the requested columns, in request order

    Columns scanned only to evaluate host-side predicates are dropped here.
    """

    def __init__(self, child: Operator, columns: List[str]):
        """
        Initialize project operator

        Args:
            child: Child operator to pull rows from
            columns: Column names to keep
        """
        super().__init__(child)
        self.columns = columns

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        for row in self.child:
            yield {col: row.get(col) for col in self.columns}

    def __repr__(self) -> str:
        col_str = ", ".join(self.columns)
        return f"Project({col_str})"
