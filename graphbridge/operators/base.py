"""
Base operator class for host-side evaluation

Rows leave the bridge exactly as the remote returned them. Predicates the
remote could not evaluate, the final projection and a limit that could not
be pushed are applied afterwards by a small pull-based operator tree:

    Limit -> Project -> Filter -> Scan(foreign scan)
"""

from collections.abc import Iterator
from typing import Any, Optional


class Operator:
    """
    Base class for all host-side operators

    Operators are lazy: each one pulls rows from its child on demand, so a
    LIMIT at the top stops the foreign scan underneath from fetching more
    pages than it needs.
    """

    def __init__(self, child: Optional["Operator"] = None):
        """
        Initialize operator

        Args:
            child: Child operator to pull data from (None for leaf operators)
        """
        self.child = child

    def __iter__(self) -> Iterator[dict[str, Any]]:
        """
        Execute operator and yield results

        Yields:
            Rows as dictionaries
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement __iter__()")

    def explain(self, indent: int = 0) -> list[str]:
        """Render the operator tree, one line per operator"""
        lines = ["  " * indent + repr(self)]
        if self.child is not None:
            lines.extend(self.child.explain(indent + 1))
        return lines

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
