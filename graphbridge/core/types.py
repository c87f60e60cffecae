"""Type system for graphbridge.

This module maps declared column types (the names used in a foreign table
declaration) to a small set of semantic types, and coerces remote JSON
values into Python values of those types.
"""

import json
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class DataType(Enum):
    """Column types supported by foreign tables."""

    # Numeric types
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    DECIMAL = "DECIMAL"

    # String types
    TEXT = "TEXT"
    JSON = "JSON"

    # Boolean
    BOOLEAN = "BOOLEAN"

    # Temporal types
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMPTZ = "TIMESTAMPTZ"

    def __str__(self) -> str:
        return self.value

    def is_numeric(self) -> bool:
        """Check if type is numeric (INTEGER, FLOAT, or DECIMAL)."""
        return self in (DataType.INTEGER, DataType.FLOAT, DataType.DECIMAL)

    def is_temporal(self) -> bool:
        """Check if type is temporal (DATE, TIMESTAMP, or TIMESTAMPTZ)."""
        return self in (DataType.DATE, DataType.TIMESTAMP, DataType.TIMESTAMPTZ)

    def is_textual(self) -> bool:
        """Check if values of this type can be matched with LIKE."""
        return self in (DataType.TEXT, DataType.JSON)

    @property
    def sql_name(self) -> str:
        """Name used when rendering CREATE FOREIGN TABLE statements."""
        return _SQL_NAMES[self]


_SQL_NAMES = {
    DataType.INTEGER: "bigint",
    DataType.FLOAT: "float",
    DataType.DECIMAL: "numeric",
    DataType.TEXT: "text",
    DataType.JSON: "jsonb",
    DataType.BOOLEAN: "boolean",
    DataType.DATE: "date",
    DataType.TIMESTAMP: "timestamp",
    DataType.TIMESTAMPTZ: "timestamptz",
}

# Declared type name -> DataType. Covers the usual PostgreSQL spellings.
_TYPE_ALIASES = {
    "text": DataType.TEXT,
    "varchar": DataType.TEXT,
    "character varying": DataType.TEXT,
    "char": DataType.TEXT,
    "string": DataType.TEXT,
    "uuid": DataType.TEXT,
    "int": DataType.INTEGER,
    "int2": DataType.INTEGER,
    "int4": DataType.INTEGER,
    "int8": DataType.INTEGER,
    "integer": DataType.INTEGER,
    "smallint": DataType.INTEGER,
    "bigint": DataType.INTEGER,
    "float": DataType.FLOAT,
    "float4": DataType.FLOAT,
    "float8": DataType.FLOAT,
    "real": DataType.FLOAT,
    "double precision": DataType.FLOAT,
    "numeric": DataType.DECIMAL,
    "decimal": DataType.DECIMAL,
    "bool": DataType.BOOLEAN,
    "boolean": DataType.BOOLEAN,
    "date": DataType.DATE,
    "timestamp": DataType.TIMESTAMP,
    "timestamp without time zone": DataType.TIMESTAMP,
    "timestamptz": DataType.TIMESTAMPTZ,
    "timestamp with time zone": DataType.TIMESTAMPTZ,
    "json": DataType.JSON,
    "jsonb": DataType.JSON,
}

# GraphQL scalar name -> DataType, used when checking declarations against
# an introspected schema.
GRAPHQL_SCALARS = {
    "String": DataType.TEXT,
    "ID": DataType.TEXT,
    "Int": DataType.INTEGER,
    "Float": DataType.FLOAT,
    "Boolean": DataType.BOOLEAN,
    "DateTime": DataType.TIMESTAMPTZ,
    "TimelessDate": DataType.DATE,
    "JSON": DataType.JSON,
    "JSONObject": DataType.JSON,
}


class CoercionFailure(ValueError):
    """Raised when a remote value cannot be represented in the column type."""


def parse_type_name(name: str) -> DataType:
    """Resolve a declared column type name.

    Args:
        name: Type as written in the table declaration, e.g. ``"timestamptz"``

    Returns:
        The matching DataType

    Raises:
        ValueError: If the type name is not supported
    """
    if isinstance(name, DataType):
        return name

    normalized = re.sub(r"\s+", " ", str(name).strip().lower())
    # varchar(255), numeric(10,2)
    normalized = re.sub(r"\(.*\)$", "", normalized).strip()

    if normalized in _TYPE_ALIASES:
        return _TYPE_ALIASES[normalized]

    try:
        return DataType(normalized.upper())
    except ValueError:
        supported = ", ".join(sorted(_TYPE_ALIASES))
        raise ValueError(f"Unsupported column type '{name}'. Supported: {supported}") from None


def parse_datetime(value: str) -> datetime | None:
    """Try to parse a timestamp from string.

    Accepts RFC 3339 / ISO 8601 (with ``Z`` or an offset) first, then a few
    common SQL formats.

    Args:
        value: String to parse

    Returns:
        datetime object if successful, None otherwise
    """
    if not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    iso_value = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return datetime.fromisoformat(iso_value)
    except ValueError:
        pass

    formats = [
        "%Y-%m-%dT%H:%M:%S.%f%z",  # offsets without colon: +0000
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%d %H:%M:%S",  # SQL format: 2024-01-15 10:30:00
        "%Y-%m-%d %H:%M:%S.%f",  # SQL with microseconds
        "%Y-%m-%d %H:%M",  # Without seconds
    ]

    for fmt in formats:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    return None


def parse_date(value: str) -> date | None:
    """Try to parse a date (``YYYY-MM-DD``) or the date part of a timestamp.

    Args:
        value: String to parse

    Returns:
        date object if successful, None otherwise
    """
    if not isinstance(value, str):
        return None

    value = value.strip()

    try:
        return date.fromisoformat(value)
    except ValueError:
        pass

    dt = parse_datetime(value)
    return dt.date() if dt is not None else None


def coerce_value(value: Any, dtype: DataType) -> Any:
    """Convert a remote JSON value into the Python value for a column type.

    ``None`` always stays ``None``; the caller decides whether that is
    acceptable for the column.

    Args:
        value: Value taken from the remote payload
        dtype: Declared column type

    Returns:
        Converted value

    Raises:
        CoercionFailure: If the value cannot be represented in ``dtype``

    Examples:
        >>> coerce_value("42", DataType.INTEGER)
        42
        >>> coerce_value("2024-01-15T10:30:00.000Z", DataType.TIMESTAMPTZ)
        datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
    """
    if value is None:
        return None

    converter = _CONVERTERS[dtype]
    try:
        return converter(value)
    except CoercionFailure:
        raise
    except (TypeError, ValueError, InvalidOperation) as e:
        raise CoercionFailure(f"cannot convert {_describe(value)} to {dtype}: {e}") from e


def _describe(value: Any) -> str:
    """Short description of a value for error messages."""
    text = repr(value)
    if len(text) > 40:
        text = text[:37] + "..."
    return f"{type(value).__name__} {text}"


def _reject(value: Any, dtype: DataType) -> CoercionFailure:
    return CoercionFailure(f"cannot convert {_describe(value)} to {dtype}")


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    raise _reject(value, DataType.TEXT)


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise _reject(value, DataType.INTEGER)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise _reject(value, DataType.INTEGER)
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise _reject(value, DataType.INTEGER)


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise _reject(value, DataType.FLOAT)
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise _reject(value, DataType.FLOAT)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise _reject(value, DataType.DECIMAL)
    if isinstance(value, (int, str)):
        return Decimal(str(value).strip())
    if isinstance(value, float):
        return Decimal(repr(value))
    raise _reject(value, DataType.DECIMAL)


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "t", "1"):
            return True
        if lowered in ("false", "f", "0"):
            return False
    raise _reject(value, DataType.BOOLEAN)


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_date(value)
    if parsed is None:
        raise _reject(value, DataType.DATE)
    return parsed


def _to_timestamp(value: Any) -> datetime:
    parsed = value if isinstance(value, datetime) else parse_datetime(value)
    if parsed is None:
        raise _reject(value, DataType.TIMESTAMP)
    # timestamp without time zone: normalise to naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_timestamptz(value: Any) -> datetime:
    parsed = value if isinstance(value, datetime) else parse_datetime(value)
    if parsed is None:
        raise _reject(value, DataType.TIMESTAMPTZ)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_json(value: Any) -> str:
    # Scalars are valid JSON documents too
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


_CONVERTERS = {
    DataType.TEXT: _to_text,
    DataType.INTEGER: _to_integer,
    DataType.FLOAT: _to_float,
    DataType.DECIMAL: _to_decimal,
    DataType.BOOLEAN: _to_boolean,
    DataType.DATE: _to_date,
    DataType.TIMESTAMP: _to_timestamp,
    DataType.TIMESTAMPTZ: _to_timestamptz,
    DataType.JSON: _to_json,
}
