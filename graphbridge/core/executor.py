"""
Scan Executor - drives one scan of a foreign table

State machine:

    INIT --prepare--> READY --> FETCHING --> EMITTING --+--> DONE
                                   ^                    |
                                   +----- cursor -------+
    any --fatal error--> FAILED        any --cancel()--> CANCELLED

Rows are produced lazily, page by page. A scan is consumed exactly once;
iterating it a second time raises UnsupportedOperation.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from graphbridge.core.models import ForeignTable, RemoteQuerySpec, ScanRequest
from graphbridge.errors import RemoteError, ScanError, UnsupportedOperation
from graphbridge.remote.mapper import RowMapper
from graphbridge.remote.translator import QueryTranslator

logger = logging.getLogger(__name__)


class ScanState(Enum):
    INIT = "init"
    READY = "ready"
    FETCHING = "fetching"
    EMITTING = "emitting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScanStats:
    """Counters for one scan"""

    remote_calls: int = 0
    pages: int = 0
    rows_emitted: int = 0
    rows_skipped: int = 0

    def __str__(self) -> str:
        return (
            f"{self.remote_calls} remote call(s), {self.pages} page(s), "
            f"{self.rows_emitted} row(s) emitted, {self.rows_skipped} skipped"
        )


class ScanExecutor:
    """
    Pull-based scan over one foreign table

    Example:
        executor = ScanExecutor(table, ScanRequest("issues", ("id", "title")), client, catalog)
        for row in executor:
            print(row["id"], row["title"])
        print(executor.stats)
    """

    def __init__(
        self,
        table: ForeignTable,
        request: ScanRequest,
        client,
        catalog,
        prefetch: bool = False,
    ):
        """
        Initialize executor

        Args:
            table: Table being scanned
            request: Columns, predicates and limit
            client: RemoteClient of the table's server
            catalog: SchemaCatalog (resolves deferred objects)
            prefetch: Fetch the next page in the background while the
                current one is consumed
        """
        self.table = table
        self.request = request
        self.client = client
        self.catalog = catalog
        self.prefetch = prefetch

        self.state = ScanState.INIT
        self.stats = ScanStats()
        self.spec: Optional[RemoteQuerySpec] = None
        self.limit: Optional[int] = None
        self.mapper = RowMapper(table_name=table.qualified_name, strict=table.strict)

        self._cancelled = threading.Event()
        self._started = False

    def prepare(self) -> RemoteQuerySpec:
        """
        INIT -> READY: validate the request and build the first remote query

        No remote call is made here unless the table's object has to be
        discovered by introspection.

        Raises:
            SchemaMismatch: If a requested column or the object is unknown
        """
        if self.spec is not None:
            return self.spec

        try:
            definition = self.catalog.resolve_object(self.table, self.client)
            translator = QueryTranslator(
                definition,
                table_options=self.table.options,
                page_size=self.table.server.settings.page_size,
            )
            spec = translator.translate(self.request, self.table.columns)

            # Rows still have to pass host-side predicates, so the limit
            # cannot bound the remote scan
            if spec.residual and self.request.limit is not None:
                logger.debug(
                    f"Limit {self.request.limit} on '{self.table.qualified_name}' "
                    f"left to the host because of residual predicates"
                )
                spec = translator.translate(replace(self.request, limit=None), self.table.columns)
                self.limit = None
            else:
                self.limit = self.request.limit
        except Exception:
            self.state = ScanState.FAILED
            raise

        self.spec = spec
        self.state = ScanState.READY
        return spec

    def cancel(self) -> None:
        """Abandon the scan; no remote call is made after this"""
        if not self._cancelled.is_set():
            logger.info(f"Scan of '{self.table.qualified_name}' cancelled")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if self._started:
            raise UnsupportedOperation(
                f"Scan of '{self.table.qualified_name}' was already consumed; re-scan is not supported"
            )
        self._started = True
        return self._run()

    def _run(self) -> Iterator[Dict[str, Any]]:
        spec = self.prepare()
        table_name = self.table.qualified_name

        if self.limit == 0:
            self.state = ScanState.DONE
            return

        logger.info(f"GraphQL query for '{table_name}': {spec.document}")
        logger.debug(f"Variables: {json.dumps(dict(spec.variables), default=str)}")

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="graphbridge-prefetch") if self.prefetch else None
        pending: Optional[Future] = None

        try:
            while True:
                if self._cancelled.is_set():
                    self.state = ScanState.CANCELLED
                    return

                self.state = ScanState.FETCHING
                if pending is not None:
                    payload = pending.result()
                    pending = None
                else:
                    payload = self._fetch(spec)

                page = self.mapper.to_page(payload, spec)
                self.stats.pages += 1
                logger.info(
                    f"Page {self.stats.pages} of '{table_name}': {len(page.records)} record(s)"
                    + ("" if page.is_last else ", more available")
                )

                next_spec = None
                if not page.is_last:
                    next_spec = spec.next_page(page.cursor, self._next_page_size(len(page.records)))
                    if pool is not None and self._should_prefetch(len(page.records)):
                        pending = pool.submit(self._fetch, next_spec)

                self.state = ScanState.EMITTING
                start = self.stats.rows_emitted + self.stats.rows_skipped
                for row in self.mapper.iter_rows(page.records, spec.columns, start):
                    if self._cancelled.is_set():
                        self.state = ScanState.CANCELLED
                        return
                    self.stats.rows_emitted += 1
                    yield row
                    if self._limit_reached():
                        break
                self.stats.rows_skipped = self.mapper.skipped

                if self._limit_reached() or next_spec is None:
                    break

                if self.limit is not None:
                    # rows were skipped; the remaining page size may have changed
                    next_spec = spec.next_page(page.cursor, self._next_page_size(0))
                spec = next_spec

            self.state = ScanState.DONE
            logger.info(f"Scan of '{table_name}' finished: {self.stats}")

        except RemoteError as e:
            self.state = ScanState.FAILED
            self.stats.rows_skipped = self.mapper.skipped
            logger.error(
                f"Scan of '{table_name}' failed after {self.stats.rows_emitted} row(s): "
                f"{type(e).__name__}: {e}"
            )
            raise ScanError(table_name, self.table.object_name, e) from e

        except GeneratorExit:
            # consumer stopped pulling rows
            self._cancelled.set()
            self.state = ScanState.CANCELLED
            raise

        finally:
            if pending is not None:
                pending.cancel()
            if pool is not None:
                pool.shutdown(wait=False, cancel_futures=True)

    def _fetch(self, spec: RemoteQuerySpec) -> Dict[str, Any]:
        self.stats.remote_calls += 1
        return self.client.execute(spec, self.table.server.credential)

    def _limit_reached(self) -> bool:
        return self.limit is not None and self.stats.rows_emitted >= self.limit

    def _next_page_size(self, pending_rows: int) -> Optional[int]:
        """Page size for the next request, assuming pending_rows will be emitted first"""
        if self.limit is None or self.spec is None or self.spec.page_size is None:
            return None
        remaining = self.limit - self.stats.rows_emitted - pending_rows
        return max(1, min(self.table.server.settings.page_size, remaining))

    def _should_prefetch(self, pending_rows: int) -> bool:
        if self._cancelled.is_set():
            return False
        if self.limit is None:
            return True
        return self.stats.rows_emitted + pending_rows < self.limit

    def explain(self) -> str:
        """Describe the remote query this scan sends"""
        spec = self.prepare()
        lines = [
            f"Foreign Scan on {self.table.qualified_name} "
            f"(object {self.table.object_name}, server {self.table.server.name})",
            f"  Remote query: {spec.document}",
            f"  Variables: {json.dumps(dict(spec.variables), default=str)}",
        ]
        if spec.pushed:
            lines.append("  Pushed filter: " + " AND ".join(str(p) for p in spec.pushed))
        if spec.residual:
            lines.append("  Host filter: " + " AND ".join(str(p) for p in spec.residual))
        if self.request.limit is not None:
            where = "remote" if self.limit is not None else "host"
            lines.append(f"  Limit: {self.request.limit} ({where})")
        if self.stats.remote_calls:
            lines.append(f"  Stats: {self.stats}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ScanExecutor({self.table.qualified_name!r}, state={self.state.value})"
