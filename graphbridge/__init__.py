"""
graphbridge - query remote GraphQL APIs as read-only foreign tables

This package provides a foreign-data bridge runtime: foreign servers and
tables are declared with OPTIONS-style dictionaries (or a YAML setup file),
and scans are translated into paginated GraphQL queries whose results come
back as typed rows. The built-in catalog describes the Linear API.
"""

__version__ = "0.1.0"

# Main API
from graphbridge.core.bridge import Bridge, ScanResult
from graphbridge.core.models import ColumnDefinition, Predicate, ScanRequest
from graphbridge.errors import (
    BridgeError,
    ConfigurationError,
    RemoteError,
    ScanError,
    SchemaMismatch,
    UnsupportedOperation,
)

__all__ = [
    "__version__",
    "Bridge",
    "ScanResult",
    "ColumnDefinition",
    "Predicate",
    "ScanRequest",
    "BridgeError",
    "ConfigurationError",
    "RemoteError",
    "ScanError",
    "SchemaMismatch",
    "UnsupportedOperation",
]
