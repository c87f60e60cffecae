"""
Main Bridge API - user-facing interface for graphbridge

A Bridge owns foreign servers, foreign tables, one remote client per server
and the schema catalog. Nothing is global: several bridges (and several
servers with different credentials inside one bridge) coexist safely.

Example:
    >>> from graphbridge import Bridge
    >>> bridge = Bridge()
    >>> bridge.create_server("linear_server", {
    ...     "api_url": "https://api.linear.app/graphql",
    ...     "api_key": "lin_api_...",
    ...     "fdw_package_url": "file:///linear_fdw.wasm",
    ...     "fdw_package_name": "supabase:linear-fdw",
    ...     "fdw_package_version": "0.1.0",
    ... })
    >>> bridge.create_table("issues", "linear_server", {"object": "issues"},
    ...                     columns=["id text", "title text"])
    >>> for row in bridge.select("issues", predicates=[("title", "ILIKE", "%bug%")], limit=10):
    ...     print(row)
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import httpx

from graphbridge.catalog.catalog import SchemaCatalog
from graphbridge.config import ConfigurationResolver, SecretStore, parse_column, read_setup
from graphbridge.core.executor import ScanExecutor, ScanStats
from graphbridge.core.models import ColumnDefinition, ForeignServer, ForeignTable, Predicate, ScanRequest
from graphbridge.errors import BridgeError, ConfigurationError, SchemaMismatch, UnsupportedOperation
from graphbridge.operators.base import Operator
from graphbridge.operators.filter import Filter
from graphbridge.operators.limit import Limit
from graphbridge.operators.project import Project
from graphbridge.operators.scan import Scan
from graphbridge.remote.client import RemoteClient

logger = logging.getLogger(__name__)

PredicateLike = Union[Predicate, Sequence[Any]]
ColumnLike = Union[ColumnDefinition, str, Mapping[str, Any]]


class ScanResult:
    """
    Scan result - lazy iterator over the rows of one scan

    Consumed once. Rows are fetched page by page as they are pulled.
    """

    def __init__(self, executor: ScanExecutor, root: Optional[Operator] = None, columns: Optional[List[str]] = None):
        """
        Initialize scan result

        Args:
            executor: Foreign scan
            root: Host-side operator tree on top of the scan (select only)
            columns: Output column names
        """
        self.executor = executor
        self.root = root
        self.columns = columns if columns is not None else [c.name for c in executor.spec.columns]

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if self.root is not None:
            return iter(self.root)
        return iter(self.executor)

    @property
    def stats(self) -> ScanStats:
        return self.executor.stats

    @property
    def residual(self) -> tuple[Predicate, ...]:
        """Predicates the remote did not evaluate"""
        return self.executor.spec.residual

    def cancel(self) -> None:
        self.executor.cancel()

    def to_list(self) -> List[Dict[str, Any]]:
        """
        Materialize all rows into a list

        Returns:
            List of all result rows
        """
        return list(self)

    def to_dataframe(self):
        """
        Convert rows to a pandas DataFrame

        Returns:
            pandas.DataFrame with one column per output column
        """
        try:
            import pandas as pd
        except ImportError as e:
            raise ImportError("Pandas is required for to_dataframe(). Install `graphbridge[pandas]`") from e

        return pd.DataFrame(self.to_list(), columns=self.columns)

    def explain(self) -> str:
        """
        Get the scan plan

        Example:
            >>> print(bridge.select("issues", ["id"], [("title", "LIKE", "a%")], limit=5).explain())
            Limit(5)
              Project(id)
                Filter(title LIKE 'a%')
                  Scan(issues)
            Foreign Scan on issues (object issues, server linear_server)
              Remote query: query GraphbridgeScan(...) { ... }
        """
        lines = self.root.explain() if self.root is not None else []
        lines.append(self.executor.explain())
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ScanResult({self.executor.table.qualified_name!r}, columns={self.columns})"


class Bridge:
    """
    Registry of foreign servers and tables, and the entry point for scans
    """

    def __init__(
        self,
        catalog: Optional[SchemaCatalog] = None,
        secrets: Optional[SecretStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize bridge

        Args:
            catalog: Schema catalog (default: built-in Linear objects)
            secrets: Store used to resolve api_key_id options
            transport: httpx transport for every remote client (tests)
            sleep: Function used by remote clients between retries
        """
        self.catalog = catalog or SchemaCatalog()
        self.resolver = ConfigurationResolver(self.catalog, secrets)
        self.servers: Dict[str, ForeignServer] = {}
        self.tables: Dict[str, ForeignTable] = {}
        self._clients: Dict[str, RemoteClient] = {}
        self._transport = transport
        self._sleep = sleep
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    def create_server(self, name: str, options: Mapping[str, Any], replace: bool = False) -> ForeignServer:
        """
        CREATE SERVER name OPTIONS (...)

        Args:
            name: Server name
            options: Server options
            replace: Drop an existing server (and its tables) first

        Raises:
            ConfigurationError: If the options are invalid or the name is taken
        """
        server = self.resolver.resolve_server(name, options)
        with self._lock:
            if name in self.servers:
                if not replace:
                    raise ConfigurationError("server already exists", f"server '{name}'")
                self.drop_server(name, cascade=True)
            self.servers[name] = server
        logger.info(f"Created server '{name}'")
        return server

    def drop_server(self, name: str, cascade: bool = False, if_exists: bool = False) -> None:
        """
        DROP SERVER name [CASCADE]

        Raises:
            ConfigurationError: If the server is unknown, or has tables and
                cascade is False
        """
        with self._lock:
            if name not in self.servers:
                if if_exists:
                    return
                raise ConfigurationError("server does not exist", f"server '{name}'")

            dependent = [key for key, table in self.tables.items() if table.server.name == name]
            if dependent and not cascade:
                raise ConfigurationError(
                    f"cannot drop server because foreign table(s) depend on it: {', '.join(dependent)}",
                    f"server '{name}'",
                )
            for key in dependent:
                del self.tables[key]

            del self.servers[name]
            client = self._clients.pop(name, None)
            self.catalog.forget(name)

        if client is not None:
            client.close()
        logger.info(f"Dropped server '{name}'" + (f" and {len(dependent)} table(s)" if dependent else ""))

    def server(self, name: str) -> ForeignServer:
        try:
            return self.servers[name]
        except KeyError:
            raise ConfigurationError("server does not exist", f"server '{name}'") from None

    def client(self, server: Union[str, ForeignServer]) -> RemoteClient:
        """Remote client shared by every scan of a server"""
        server = self.server(server) if isinstance(server, str) else server
        with self._lock:
            client = self._clients.get(server.name)
            if client is None:
                client = self._new_client(server)
                self._clients[server.name] = client
            return client

    def _new_client(self, server: ForeignServer) -> RemoteClient:
        return RemoteClient(server.api_url, server.settings, transport=self._transport, sleep=self._sleep)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def create_table(
        self,
        name: str,
        server: str,
        options: Mapping[str, Any],
        columns: Optional[Iterable[ColumnLike]] = None,
        schema: Optional[str] = None,
        if_not_exists: bool = False,
        validate: bool = True,
    ) -> ForeignTable:
        """
        CREATE FOREIGN TABLE name (...) SERVER server OPTIONS (...)

        Args:
            name: Table name
            server: Owning server name
            options: Table options (object is required)
            columns: Column declarations; the catalog's columns if omitted
            schema: Namespace
            if_not_exists: Return the existing table instead of failing
            validate: Compare the declaration with remote introspection;
                mismatches are logged as warnings and never block creation

        Raises:
            ConfigurationError: If options or columns are invalid
        """
        owner = self.server(server)
        declared = None if columns is None else [_as_column(col) for col in columns]
        table = self.resolver.resolve_table(name, owner, options, declared, schema)

        with self._lock:
            existing = self.tables.get(table.qualified_name)
            if existing is not None:
                if if_not_exists:
                    logger.info(f"Foreign table '{table.qualified_name}' already exists, skipping")
                    return existing
                raise ConfigurationError("foreign table already exists", f"foreign table '{table.qualified_name}'")
            self.tables[table.qualified_name] = table

        logger.info(
            f"Created foreign table '{table.qualified_name}' on '{owner.name}' "
            f"(object '{table.object_name}', {len(table.columns)} column(s))"
        )
        if validate:
            self.catalog.validate_table(table, self.client(owner))
        return table

    def drop_table(self, name: str, if_exists: bool = False) -> None:
        with self._lock:
            try:
                table = self.table(name)
            except SchemaMismatch:
                if if_exists:
                    return
                raise
            del self.tables[table.qualified_name]
        logger.info(f"Dropped foreign table '{table.qualified_name}'")

    def table(self, name: str) -> ForeignTable:
        """
        Look up a table by qualified name, or by bare name if unambiguous

        Raises:
            SchemaMismatch: If no (single) table matches
        """
        if name in self.tables:
            return self.tables[name]

        matches = [t for t in self.tables.values() if t.name == name]
        if len(matches) == 1:
            return matches[0]
        if matches:
            options = ", ".join(t.qualified_name for t in matches)
            raise SchemaMismatch(f"Table name '{name}' is ambiguous: {options}", table=name)
        raise SchemaMismatch(f"Foreign table '{name}' does not exist", table=name)

    def describe(self, table: str) -> List[ColumnDefinition]:
        """Columns of a declared table"""
        return list(self.table(table).columns)

    def import_foreign_schema(
        self,
        server: str,
        into: str,
        remote_schema: Optional[str] = None,
        limit_to: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> List[ForeignTable]:
        """
        IMPORT FOREIGN SCHEMA remote [LIMIT TO | EXCEPT (...)] FROM SERVER server INTO into

        Tables that already exist are kept (create-if-not-exists semantics).

        Returns:
            Tables that were newly created

        Raises:
            BridgeError: If introspection fails; nothing is registered
        """
        owner = self.server(server)
        if remote_schema:
            logger.debug(f"Remote schema name '{remote_schema}' is informational only")

        tables = self.catalog.import_foreign_schema(
            owner, self.client(owner), local_schema=into, limit_to=limit_to, exclude=exclude
        )
        return self._register_imported(tables)

    def _register_imported(self, tables: Iterable[ForeignTable]) -> List[ForeignTable]:
        created = []
        with self._lock:
            for table in tables:
                if table.qualified_name in self.tables:
                    logger.info(f"Foreign table '{table.qualified_name}' already exists, skipping")
                    continue
                self.tables[table.qualified_name] = table
                created.append(table)
        return created

    def export_ddl(self, tables: Optional[Iterable[ForeignTable]] = None) -> str:
        """CREATE FOREIGN TABLE statements for tables (default: all)"""
        selected = list(self.tables.values()) if tables is None else list(tables)
        return "\n\n".join(self.catalog.ddl(table) for table in selected)

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def scan(
        self,
        table: str,
        columns: Sequence[str] = (),
        predicates: Iterable[PredicateLike] = (),
        limit: Optional[int] = None,
        prefetch: bool = False,
    ) -> ScanResult:
        """
        Foreign scan: rows exactly as the bridge produces them

        Predicates that could not be pushed are NOT applied; see
        ScanResult.residual, or use select().

        Raises:
            SchemaMismatch: Before any remote call, for unknown columns
        """
        executor = self._executor(table, columns, predicates, limit, prefetch)
        executor.prepare()
        return ScanResult(executor)

    def select(
        self,
        table: str,
        columns: Sequence[str] = (),
        predicates: Iterable[PredicateLike] = (),
        limit: Optional[int] = None,
        prefetch: bool = False,
    ) -> ScanResult:
        """
        SELECT columns FROM table WHERE predicates LIMIT limit

        Runs the foreign scan and applies residual predicates, the
        projection and (when it could not be pushed) the limit on the host.
        """
        foreign = self.table(table)
        preds = [_as_predicate(p) for p in predicates]
        output = list(columns) or foreign.column_names()

        needed = list(output)
        for predicate in preds:
            if predicate.column not in needed:
                needed.append(predicate.column)

        executor = self._executor(foreign.qualified_name, needed, preds, limit, prefetch)
        spec = executor.prepare()

        root: Operator = Scan(executor, foreign.qualified_name)
        if spec.residual:
            root = Filter(root, list(spec.residual))
        root = Project(root, output)
        if limit is not None and executor.limit is None:
            root = Limit(root, limit)

        return ScanResult(executor, root, output)

    def explain(
        self,
        table: str,
        columns: Sequence[str] = (),
        predicates: Iterable[PredicateLike] = (),
        limit: Optional[int] = None,
    ) -> str:
        """Plan of select() without running it"""
        return self.select(table, columns, predicates, limit).explain()

    def _executor(
        self,
        table: str,
        columns: Sequence[str],
        predicates: Iterable[PredicateLike],
        limit: Optional[int],
        prefetch: bool,
    ) -> ScanExecutor:
        foreign = self.table(table)
        request = ScanRequest(
            table=foreign.qualified_name,
            columns=tuple(columns),
            predicates=tuple(_as_predicate(p) for p in predicates),
            limit=limit,
        )
        return ScanExecutor(foreign, request, self.client(foreign.server), self.catalog, prefetch=prefetch)

    def insert(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        raise UnsupportedOperation(f"Foreign table '{table}' is read-only: INSERT is not supported")

    def update(self, table: str, values: Mapping[str, Any], predicates: Iterable[PredicateLike] = ()) -> None:
        raise UnsupportedOperation(f"Foreign table '{table}' is read-only: UPDATE is not supported")

    def delete(self, table: str, predicates: Iterable[PredicateLike] = ()) -> None:
        raise UnsupportedOperation(f"Foreign table '{table}' is read-only: DELETE is not supported")

    # ------------------------------------------------------------------
    # Setup files
    # ------------------------------------------------------------------

    def load_setup(
        self,
        path: Union[str, Path],
        environ: Optional[Mapping[str, str]] = None,
        validate: bool = True,
    ) -> List[ForeignTable]:
        """
        Apply a YAML setup file atomically

        Servers, tables and imports are all resolved first; the bridge is
        only changed if every step succeeds. Declared tables are then
        checked against remote introspection (see create_table).

        Returns:
            Tables created by the file (declared and imported)

        Raises:
            BridgeError: On the first failing step; nothing is registered
        """
        document = read_setup(path, environ)

        servers: Dict[str, ForeignServer] = {}
        replaced = []
        for entry in document.get("servers", []):
            name = entry["name"]
            if name in servers:
                raise ConfigurationError("declared twice in setup file", f"server '{name}'")
            if name in self.servers:
                if not entry.get("replace", False):
                    raise ConfigurationError("server already exists", f"server '{name}'")
                replaced.append(name)
            servers[name] = self.resolver.resolve_server(name, entry["options"])

        def owner(name: str) -> ForeignServer:
            if name in servers:
                return servers[name]
            if name in self.servers and name not in replaced:
                return self.servers[name]
            raise ConfigurationError("server does not exist", f"server '{name}'")

        tables: Dict[str, ForeignTable] = {}
        for entry in document.get("tables", []):
            columns = entry.get("columns")
            declared = None if columns is None else [parse_column(col) for col in columns]
            table = self.resolver.resolve_table(
                entry["name"], owner(entry["server"]), entry["options"], declared, entry.get("schema")
            )
            if table.qualified_name in tables:
                raise ConfigurationError("declared twice in setup file", f"foreign table '{table.qualified_name}'")
            tables[table.qualified_name] = table

        declared_tables = list(tables.values())

        staged_clients: Dict[str, RemoteClient] = {}
        try:
            for entry in document.get("imports", []):
                server = owner(entry["server"])
                if server.name in servers:
                    client = staged_clients.get(server.name)
                    if client is None:
                        client = staged_clients[server.name] = self._new_client(server)
                else:
                    client = self.client(server)
                for table in self.catalog.import_foreign_schema(
                    server, client, local_schema=entry["into"],
                    limit_to=entry.get("limit_to"), exclude=entry.get("except"),
                ):
                    key = table.qualified_name
                    existing = self.tables.get(key)
                    if key in tables or (existing is not None and existing.server.name not in replaced):
                        logger.info(f"Foreign table '{key}' already exists, skipping")
                        continue
                    tables[key] = table
        except BridgeError:
            for client in staged_clients.values():
                client.close()
            for name in servers:
                self.catalog.forget(name)
            raise

        with self._lock:
            dropped = {key for key, table in self.tables.items() if table.server.name in replaced}
            conflicts = [key for key in tables if key in self.tables and key not in dropped]
            if conflicts:
                for client in staged_clients.values():
                    client.close()
                raise ConfigurationError(f"foreign table(s) already exist: {', '.join(conflicts)}", str(path))
            for name in replaced:
                self.drop_server(name, cascade=True)
            self.servers.update(servers)
            self._clients.update(staged_clients)
            self.tables.update(tables)

        logger.info(f"Applied setup {path}: {len(servers)} server(s), {len(tables)} table(s)")
        if validate:
            for table in declared_tables:
                self.catalog.validate_table(table, self.client(table.server))
        return list(tables.values())

    def close(self) -> None:
        """Close every remote client"""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()

    def __enter__(self) -> "Bridge":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Bridge(servers={list(self.servers)}, tables={list(self.tables)})"


def _as_predicate(value: PredicateLike) -> Predicate:
    if isinstance(value, Predicate):
        return value
    if isinstance(value, str):
        raise TypeError(f"Predicate must be a Predicate or (column, operator[, value]) tuple, got {value!r}")
    return Predicate(*value)


def _as_column(value: ColumnLike) -> ColumnDefinition:
    if isinstance(value, ColumnDefinition):
        return value
    return parse_column(value)
