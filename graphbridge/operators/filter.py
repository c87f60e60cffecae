"""
Filter operator - applies residual predicates on the host

Evaluates the predicates the remote could not and only yields rows that
match all of them (AND logic). SQL NULL semantics apply: any comparison
with NULL is false, only IS NULL / IS NOT NULL look at NULLs.
"""

import re
from collections.abc import Iterator
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

from graphbridge.core.models import Predicate
from graphbridge.core.types import parse_date, parse_datetime
from graphbridge.operators.base import Operator


class Filter(Operator):
    """
    Filter operator - evaluates WHERE predicates

    Supported operators: =, <>, <, <=, >, >=, LIKE, NOT LIKE, ILIKE,
    NOT ILIKE, IS NULL, IS NOT NULL.
    """

    def __init__(self, child: Operator, predicates: list[Predicate]):
        """
        Initialize filter operator

        Args:
            child: Child operator to pull rows from
            predicates: Predicates (AND'd together)
        """
        super().__init__(child)
        self.predicates = predicates

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for row in self.child:
            if self._matches(row):
                yield row

    def _matches(self, row: dict[str, Any]) -> bool:
        for predicate in self.predicates:
            if not evaluate(predicate, row.get(predicate.column)):
                return False
        return True

    def __repr__(self) -> str:
        cond_str = " AND ".join(str(p) for p in self.predicates)
        return f"Filter({cond_str})"


def evaluate(predicate: Predicate, value: Any) -> bool:
    """
    Evaluate one predicate against a column value

    Args:
        predicate: Predicate to check
        value: The row's value for predicate.column

    Returns:
        True if the predicate holds
    """
    op = predicate.operator

    if op == "IS NULL":
        return value is None
    if op == "IS NOT NULL":
        return value is not None

    expected = predicate.value
    if value is None or expected is None:
        return False

    if op in ("LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE"):
        regex = like_to_regex(str(expected), ignore_case=op.endswith("ILIKE"))
        matched = regex.fullmatch(str(value)) is not None
        return not matched if op.startswith("NOT") else matched

    expected = _align(expected, value)

    try:
        if op == "=":
            return value == expected
        elif op == "<>":
            return value != expected
        elif op == ">":
            return value > expected
        elif op == "<":
            return value < expected
        elif op == ">=":
            return value >= expected
        elif op == "<=":
            return value <= expected
    except TypeError:
        # Type mismatch (e.g., comparing string to int)
        return False

    raise ValueError(f"Unsupported operator '{op}'")


@lru_cache(maxsize=256)
def like_to_regex(pattern: str, ignore_case: bool = False) -> re.Pattern:
    """
    Compile a SQL LIKE pattern

    % matches any sequence, _ any single character, backslash escapes.
    """
    parts = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile("".join(parts), flags)


def _align(expected: Any, value: Any) -> Any:
    """Convert a string literal to the type of the value it is compared with"""
    if not isinstance(expected, str) or isinstance(value, str):
        return expected

    if isinstance(value, datetime):
        parsed = parse_datetime(expected)
        if parsed is None:
            return expected
        if value.tzinfo is not None and parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        elif value.tzinfo is None and parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    if isinstance(value, date):
        return parse_date(expected) or expected

    if isinstance(value, bool):
        lowered = expected.strip().lower()
        if lowered in ("true", "t", "1"):
            return True
        if lowered in ("false", "f", "0"):
            return False
        return expected

    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(expected) if isinstance(value, Decimal) else float(expected)
        except (ValueError, InvalidOperation):
            return expected

    return expected
