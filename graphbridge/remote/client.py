"""
Remote Client - executes GraphQL requests against a foreign server

Failures are classified into:
- Unauthorized      401/403 or GraphQL AUTHENTICATION_ERROR/FORBIDDEN, never retried
- RateLimited       429 or GraphQL RATELIMITED, retried honouring Retry-After
- Transient         network errors, timeouts, 5xx, retried with backoff
- MalformedResponse body is not JSON or lacks `data`, never retried
- QueryRejected     any other GraphQL `errors`, never retried

Attempts are bounded (3 by default) so a table scan cannot stall forever.
"""

import logging
import random
import time
from typing import Any, Callable, Dict, Optional

import httpx

from graphbridge.core.models import ClientSettings, Credential, RemoteQuerySpec
from graphbridge.errors import (
    MalformedResponse,
    QueryRejected,
    RateLimited,
    RemoteError,
    Transient,
    Unauthorized,
)

logger = logging.getLogger(__name__)

USER_AGENT = "graphbridge/0.1.0"

_AUTH_CODES = {"AUTHENTICATION_ERROR", "UNAUTHENTICATED", "FORBIDDEN"}
_RATE_LIMIT_CODES = {"RATELIMITED", "RATE_LIMITED"}


class RemoteClient:
    """
    GraphQL client for one foreign server endpoint

    The underlying httpx.Client keeps a connection pool and is safe to share
    between threads, so one RemoteClient serves every concurrent scan of a
    server.

    Example:
        client = RemoteClient("https://api.linear.app/graphql")
        payload = client.execute(spec, server.credential)
    """

    def __init__(
        self,
        api_url: str,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize client

        Args:
            api_url: GraphQL endpoint
            settings: Timeout, retry and backoff settings
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Function used to wait between attempts
        """
        self.api_url = api_url
        self.settings = settings or ClientSettings()
        self.sleep = sleep
        self.http = httpx.Client(
            timeout=self.settings.timeout,
            transport=transport,
            headers={"content-type": "application/json", "user-agent": USER_AGENT},
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def execute(self, spec: RemoteQuerySpec, credential: Credential) -> Dict[str, Any]:
        """
        Send a query, retrying retryable failures

        Args:
            spec: Query document and variables
            credential: Credential of the owning server

        Returns:
            Parsed response document (with a `data` object)

        Raises:
            RemoteError: Classified failure after retries are exhausted
        """
        return self.post(spec.payload(), credential)

    def post(self, body: Dict[str, Any], credential: Credential) -> Dict[str, Any]:
        """Send any GraphQL body (queries and introspection)"""
        attempts = max(1, self.settings.max_attempts)
        attempt = 1

        while True:
            try:
                return self._send(body, credential)
            except RemoteError as e:
                if not e.retryable or attempt >= attempts:
                    if e.retryable:
                        logger.error(f"Giving up on {self.api_url} after {attempt} attempt(s): {e}")
                    raise

                delay = self._backoff(attempt, e)
                logger.warning(
                    f"{type(e).__name__} from {self.api_url} "
                    f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}"
                )
            self.sleep(delay)
            attempt += 1

    def _backoff(self, attempt: int, error: RemoteError) -> float:
        """Exponential backoff with jitter, raised to any server retry hint"""
        settings = self.settings
        delay = settings.backoff_base * (2 ** (attempt - 1))
        delay += random.uniform(0, settings.backoff_base)
        if isinstance(error, RateLimited) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return min(delay, settings.max_backoff)

    def _send(self, body: Dict[str, Any], credential: Credential) -> Dict[str, Any]:
        """One attempt: POST, classify, parse"""
        headers = {}
        auth = credential.header_value()
        if auth is not None:
            headers["authorization"] = auth

        try:
            response = self.http.post(self.api_url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise Transient(f"Request to {self.api_url} timed out after {self.settings.timeout}s") from e
        except httpx.TransportError as e:
            raise Transient(credential.redact(f"Error calling {self.api_url}: {e}")) from e

        status = response.status_code

        if status in (401, 403):
            raise Unauthorized(
                f"{self.api_url} rejected the credential (HTTP {status})", status_code=status
            )
        if status == 429:
            raise RateLimited(
                f"{self.api_url} is rate limiting requests (HTTP 429)",
                status_code=status,
                retry_after=_retry_after(response),
            )
        if status >= 500:
            raise Transient(
                f"{self.api_url} returned HTTP {status}: {_preview(response, credential)}",
                status_code=status,
            )

        try:
            document = response.json()
        except ValueError as e:
            raise MalformedResponse(
                f"Failed to parse JSON response (HTTP {status}): {_preview(response, credential)}",
                status_code=status,
            ) from e

        if not isinstance(document, dict):
            raise MalformedResponse(
                f"Expected a JSON object, got {type(document).__name__}", status_code=status
            )

        errors = document.get("errors")
        if errors:
            raise _classify_graphql_errors(errors, status, response, credential)

        if status >= 400:
            raise QueryRejected(
                f"{self.api_url} returned HTTP {status}: {_preview(response, credential)}",
                status_code=status,
            )

        if not isinstance(document.get("data"), dict):
            raise MalformedResponse("Response has no 'data' object", status_code=status)

        return document


def _classify_graphql_errors(
    errors: Any, status: int, response: httpx.Response, credential: Credential
) -> RemoteError:
    if not isinstance(errors, list):
        return MalformedResponse(f"'errors' is not a list: {_preview(response, credential)}", status)

    codes = set()
    messages = []
    for error in errors:
        if not isinstance(error, dict):
            continue
        extensions = error.get("extensions") or {}
        code = extensions.get("code") or extensions.get("type")
        if isinstance(code, str):
            codes.add(code.upper().replace(" ", "_"))
        if error.get("message"):
            messages.append(str(error["message"]))

    summary = credential.redact("; ".join(messages) or "unknown error")

    if codes & _AUTH_CODES:
        return Unauthorized(f"Authentication failed: {summary}", status_code=status)
    if codes & _RATE_LIMIT_CODES:
        return RateLimited(
            f"Rate limited: {summary}", status_code=status, retry_after=_retry_after(response)
        )
    return QueryRejected(f"GraphQL errors: {summary}", errors=errors, status_code=status)


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored"""
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _preview(response: httpx.Response, credential: Credential, size: int = 200) -> str:
    return credential.redact(response.text[:size])
