"""
Error taxonomy for graphbridge

Errors fall into three scopes:

- Creation scope: ConfigurationError (nothing is registered)
- Scan scope: SchemaMismatch, RemoteError variants, ScanError (scan aborts)
- Row scope: RowCoercionError (row is skipped, scan continues)

Messages never include the credential. Remote errors carry a short,
redacted body preview at most.
"""

from typing import Any


class BridgeError(Exception):
    """Base class for every error raised by graphbridge"""


class ConfigurationError(BridgeError):
    """Invalid server/table options, or an invalid setup file"""

    def __init__(self, message: str, subject: str | None = None):
        self.subject = subject
        if subject:
            message = f"{subject}: {message}"
        super().__init__(message)


class SchemaMismatch(BridgeError):
    """A requested column or object is not known to the catalog"""

    def __init__(self, message: str, table: str | None = None, column: str | None = None):
        self.table = table
        self.column = column
        super().__init__(message)


class UnsupportedOperation(BridgeError):
    """Operation the bridge does not implement (re-scan, insert, update, delete)"""


class RemoteError(BridgeError):
    """
    Failure talking to the remote API

    Attributes:
        retryable: Whether the client may retry the call
        status_code: HTTP status if the remote answered at all
    """

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class Unauthorized(RemoteError):
    """Bad or expired credential. Fatal, never retried."""


class RateLimited(RemoteError):
    """Remote asked us to slow down. Retried, honouring retry_after."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class Transient(RemoteError):
    """Network failure, timeout or 5xx. Retried with backoff."""

    retryable = True


class MalformedResponse(RemoteError):
    """Payload is not JSON or does not have the expected shape. Fatal."""


class QueryRejected(RemoteError):
    """The remote returned GraphQL errors for the query itself. Fatal."""

    def __init__(self, message: str, errors: list[Any] | None = None, status_code: int | None = None):
        super().__init__(message, status_code)
        self.errors = errors or []


class RowCoercionError(BridgeError):
    """A single remote record could not be turned into a row"""

    def __init__(self, message: str, column: str, record_index: int | None = None):
        self.column = column
        self.record_index = record_index
        super().__init__(message)


class ScanError(BridgeError):
    """
    Scan-scoped execution error surfaced to the host

    Raised after any rows that were already emitted; carries enough
    context to diagnose the failure without the credential.
    """

    def __init__(self, table: str, object_name: str, cause: BaseException):
        self.table = table
        self.object_name = object_name
        self.cause = cause
        super().__init__(
            f"Scan of foreign table '{table}' (object '{object_name}') failed: "
            f"{type(cause).__name__}: {cause}"
        )
