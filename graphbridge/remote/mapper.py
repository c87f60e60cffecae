"""
Row Mapper - converts remote payloads into rows

A page is located in the payload by RemoteQuerySpec.records_path, then each
record is turned into a row dict keyed by column name:

- missing or null field, nullable column      -> None
- missing or null field, non-null column      -> RowCoercionError, row skipped
- value that cannot be coerced                -> None (strict tables: skipped)

One bad record never aborts the scan; skipped rows are logged and counted.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from graphbridge.core.models import ColumnDefinition, RemotePage, RemoteQuerySpec
from graphbridge.core.types import CoercionFailure, coerce_value
from graphbridge.errors import MalformedResponse, RowCoercionError

logger = logging.getLogger(__name__)

_MISSING = object()


class RowMapper:
    """
    Map remote records onto declared columns

    Example:
        mapper = RowMapper(table_name="linear_issues")
        page = mapper.to_page(payload, spec)
        rows = mapper.map(page.records, spec.columns)
    """

    def __init__(self, table_name: str = "", strict: bool = False):
        """
        Initialize mapper

        Args:
            table_name: Used in log messages only
            strict: Skip rows with uncoercible values instead of nulling them
        """
        self.table_name = table_name
        self.strict = strict
        self.skipped = 0
        self.errors: List[RowCoercionError] = []

    def to_page(self, payload: Dict[str, Any], spec: RemoteQuerySpec) -> RemotePage:
        """
        Extract records and the continuation cursor from a response

        Raises:
            MalformedResponse: If the payload does not have the expected shape
        """
        node = _navigate(payload, spec.records_path)

        if node is _MISSING or node is None:
            # A null single object (or parent) means no rows
            if spec.paginated and node is _MISSING:
                raise MalformedResponse(
                    f"Response has no records at '{'.'.join(spec.records_path)}'"
                )
            return RemotePage(records=())

        if isinstance(node, list):
            records = tuple(node)
        elif isinstance(node, dict):
            records = (node,)
        else:
            raise MalformedResponse(
                f"Expected a list or object at '{'.'.join(spec.records_path)}', "
                f"got {type(node).__name__}"
            )

        cursor = None
        if spec.page_info_path is not None:
            page_info = _navigate(payload, spec.page_info_path)
            if isinstance(page_info, dict) and page_info.get("hasNextPage"):
                cursor = page_info.get("endCursor")
                if not cursor:
                    raise MalformedResponse("pageInfo.hasNextPage is true but endCursor is empty")

        return RemotePage(records=records, cursor=cursor)

    def map(self, records: Sequence[Any], columns: Sequence[ColumnDefinition]) -> List[Dict[str, Any]]:
        """Map a batch of records, skipping (and counting) rows that fail"""
        return list(self.iter_rows(records, columns))

    def iter_rows(
        self, records: Sequence[Any], columns: Sequence[ColumnDefinition], start_index: int = 0
    ) -> Iterator[Dict[str, Any]]:
        """Lazily map records; index is used only for diagnostics"""
        for offset, record in enumerate(records):
            index = start_index + offset
            try:
                yield self.map_record(record, columns, index)
            except RowCoercionError as e:
                self.skipped += 1
                self.errors.append(e)
                logger.warning(f"Skipping row {index} of '{self.table_name}': {e}")

    def map_record(
        self, record: Any, columns: Sequence[ColumnDefinition], index: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Map one record

        Raises:
            RowCoercionError: If the row cannot be emitted
        """
        if not isinstance(record, dict):
            raise RowCoercionError(
                f"record is {type(record).__name__}, not an object", column="*", record_index=index
            )

        row: Dict[str, Any] = {}
        for column in columns:
            raw = _navigate(record, column.path)

            if raw is _MISSING or raw is None:
                if not column.nullable:
                    raise RowCoercionError(
                        f"missing value for non-null column '{column.name}'",
                        column=column.name,
                        record_index=index,
                    )
                row[column.name] = None
                continue

            try:
                row[column.name] = coerce_value(raw, column.type)
            except CoercionFailure as e:
                if self.strict or not column.nullable:
                    raise RowCoercionError(
                        f"column '{column.name}': {e}", column=column.name, record_index=index
                    ) from e
                logger.debug(f"Column '{column.name}' of '{self.table_name}' set to NULL: {e}")
                row[column.name] = None

        return row


def _navigate(data: Any, path: Tuple[str, ...]) -> Any:
    """Follow a field path through nested dicts; _MISSING if any step is absent"""
    current = data
    for key in path:
        if current is None:
            return None
        if not isinstance(current, dict) or key not in current:
            return _MISSING
        current = current[key]
    return current
