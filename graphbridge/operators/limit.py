"""
Limit operator - host-side LIMIT

Used when the limit could not be sent to the remote API (residual
predicates still have to drop rows).
"""

from collections.abc import Iterator
from itertools import islice
from typing import Any

from graphbridge.operators.base import Operator


class Limit(Operator):
    """
    Yield at most N rows of the child

    The child is not pulled past the Nth row, so the foreign scan below
    issues no further remote calls once the limit is met.
    """

    def __init__(self, child: Operator, limit: int):
        super().__init__(child)
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        self.limit = limit

    def __iter__(self) -> Iterator[dict[str, Any]]:
        if self.limit == 0:
            return iter(())
        return islice(self.child, self.limit)

    def __repr__(self) -> str:
        return f"Limit({self.limit})"
