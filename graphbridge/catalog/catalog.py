"""
Schema Catalog - column metadata for remote objects

Responsibilities:
1. describe(object) for objects the catalog knows about
2. Best-effort validation of declared tables against remote introspection
   (mismatches are warnings; the declaration is authoritative)
3. IMPORT FOREIGN SCHEMA: live introspection, then one table per remote
   object type found. Import is all-or-nothing.
4. Resolving deferred objects (unknown at creation time) at scan time
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from graphbridge.catalog.objects import LINEAR_OBJECTS, NESTED, SINGLE, ObjectDefinition
from graphbridge.core.models import ColumnDefinition, ForeignServer, ForeignTable
from graphbridge.core.types import GRAPHQL_SCALARS, DataType
from graphbridge.errors import BridgeError, RemoteError, SchemaMismatch

logger = logging.getLogger(__name__)

INTROSPECTION_QUERY = """
query GraphbridgeIntrospection {
  __schema {
    queryType { name }
    types {
      kind
      name
      fields {
        name
        type { kind name ofType { kind name ofType { kind name ofType { kind name } } } }
      }
    }
  }
}
""".strip()


@dataclass(frozen=True)
class RemoteSchema:
    """
    Introspected remote schema, reduced to what the catalog needs

    Attributes:
        query_type: Name of the root query type
        types: type name -> {field name -> named (unwrapped) field type}
    """

    query_type: str
    types: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def fields(self, type_name: Optional[str]) -> Dict[str, str]:
        return self.types.get(type_name or "", {})

    def root_fields(self) -> Dict[str, str]:
        return self.fields(self.query_type)

    def node_type(self, obj: ObjectDefinition) -> Optional[str]:
        """Type of the records an object definition returns, None if absent remotely"""
        root_type = self.root_fields().get(obj.root_field)
        if root_type is None:
            return None
        if obj.kind == SINGLE:
            return root_type
        if obj.kind == NESTED:
            root_type = self.fields(root_type).get(obj.nested_field or "")
            if root_type is None:
                return None
        return self.fields(root_type).get("nodes")

    def resolve_path(self, type_name: str, path: Iterable[str]) -> Optional[str]:
        """Follow a field path from a type; returns the terminal type name"""
        current = type_name
        for part in path:
            next_type = self.fields(current).get(part)
            if next_type is None:
                return None
            current = next_type
        return current

    @classmethod
    def from_introspection(cls, payload: Dict[str, Any]) -> "RemoteSchema":
        schema = (payload.get("data") or {}).get("__schema")
        if not isinstance(schema, dict):
            raise SchemaMismatch("Remote API did not return an introspection schema")

        query_type = ((schema.get("queryType") or {}).get("name")) or "Query"
        types: Dict[str, Dict[str, str]] = {}
        for type_info in schema.get("types") or []:
            name = type_info.get("name")
            if not name or name.startswith("__"):
                continue
            fields = {}
            for field_info in type_info.get("fields") or []:
                named = _named_type(field_info.get("type"))
                if named:
                    fields[field_info["name"]] = named
            types[name] = fields

        return cls(query_type=query_type, types=types)


def _named_type(type_ref: Optional[Dict[str, Any]]) -> Optional[str]:
    """Unwrap NON_NULL / LIST wrappers down to the named type"""
    while type_ref:
        if type_ref.get("name"):
            return type_ref["name"]
        type_ref = type_ref.get("ofType")
    return None


class SchemaCatalog:
    """
    Catalog of remote object definitions plus introspection cache

    The catalog never owns network resources; callers pass the RemoteClient
    of the server being introspected.
    """

    def __init__(self, objects: Optional[Dict[str, ObjectDefinition]] = None):
        """
        Initialize catalog

        Args:
            objects: Object registry (default: the built-in Linear objects)
        """
        self.objects: Dict[str, ObjectDefinition] = dict(LINEAR_OBJECTS if objects is None else objects)
        self._schemas: Dict[str, RemoteSchema] = {}
        self._lock = threading.Lock()

    def register_object(self, definition: ObjectDefinition) -> None:
        """Add or replace an object definition"""
        self.objects[definition.name] = definition

    def is_known(self, object_name: str) -> bool:
        return object_name in self.objects

    def object_definition(self, object_name: str) -> ObjectDefinition:
        """Registered definition, or a deferred guess for unknown objects"""
        definition = self.objects.get(object_name)
        if definition is None:
            return ObjectDefinition.generic(object_name)
        return definition

    def describe(self, object_name: str) -> List[ColumnDefinition]:
        """
        Columns exposed by a remote object

        Raises:
            SchemaMismatch: If the object is not in the catalog
        """
        definition = self.objects.get(object_name)
        if definition is None:
            available = ", ".join(sorted(self.objects))
            raise SchemaMismatch(f"Unknown object '{object_name}'. Known objects: {available}")
        return list(definition.columns)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def introspect(self, server: ForeignServer, client, refresh: bool = False) -> RemoteSchema:
        """
        Fetch (or reuse) the remote schema of a server

        Raises:
            RemoteError: If the introspection call fails
            SchemaMismatch: If the remote does not support introspection
        """
        with self._lock:
            cached = self._schemas.get(server.name)
        if cached is not None and not refresh:
            return cached

        logger.info(f"Introspecting remote schema of server '{server.name}'")
        payload = client.post({"query": INTROSPECTION_QUERY}, server.credential)
        schema = RemoteSchema.from_introspection(payload)
        logger.info(f"Server '{server.name}' exposes {len(schema.types)} type(s)")

        with self._lock:
            self._schemas[server.name] = schema
        return schema

    def forget(self, server_name: str) -> None:
        """Drop the cached schema of a server"""
        with self._lock:
            self._schemas.pop(server_name, None)

    def validate_table(self, table: ForeignTable, client) -> List[str]:
        """
        Compare a declared table with the remote schema

        Best effort: introspection failures are logged and yield no warnings.

        Returns:
            Human-readable mismatch warnings (also logged)
        """
        definition = self.object_definition(table.object_name)
        try:
            schema = self.introspect(table.server, client)
        except (RemoteError, SchemaMismatch) as e:
            logger.info(f"Skipping remote validation of '{table.name}': {e}")
            return []

        warnings = []
        node_type = schema.node_type(definition)
        if node_type is None:
            warnings.append(
                f"object '{table.object_name}' (root field '{definition.root_field}') "
                f"was not found in the remote schema"
            )
        else:
            for column in table.columns:
                remote_type = schema.resolve_path(node_type, column.path)
                if remote_type is None:
                    warnings.append(
                        f"column '{column.name}' maps to '{'.'.join(column.path)}', "
                        f"which {node_type} does not have"
                    )
                elif not _compatible(column.type, GRAPHQL_SCALARS.get(remote_type)):
                    warnings.append(
                        f"column '{column.name}' is declared {column.type.sql_name} "
                        f"but the remote field is {remote_type}"
                    )

        for warning in warnings:
            logger.warning(f"Foreign table '{table.qualified_name}': {warning}")
        return warnings

    def resolve_object(self, table: ForeignTable, client) -> ObjectDefinition:
        """
        Definition used to scan a table, confirming deferred objects remotely

        Raises:
            SchemaMismatch: If a deferred object does not exist remotely
        """
        definition = self.object_definition(table.object_name)
        if not definition.deferred:
            return definition

        try:
            schema = self.introspect(table.server, client)
        except RemoteError as e:
            raise SchemaMismatch(
                f"Cannot discover object '{table.object_name}': introspection failed ({e})",
                table=table.name,
            ) from e

        node_type = schema.node_type(definition)
        if node_type is None:
            raise SchemaMismatch(
                f"Object '{table.object_name}' was not found on server '{table.server.name}' "
                f"(no connection field '{definition.root_field}')",
                table=table.name,
            )

        confirmed = definition.confirmed(node_type)
        logger.info(f"Discovered object '{table.object_name}' as {node_type} connection")
        return confirmed

    # ------------------------------------------------------------------
    # IMPORT FOREIGN SCHEMA
    # ------------------------------------------------------------------

    def import_foreign_schema(
        self,
        server: ForeignServer,
        client,
        local_schema: Optional[str] = None,
        limit_to: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> List[ForeignTable]:
        """
        Synthesize foreign tables for every remote object type found

        Args:
            server: Server to import from
            client: RemoteClient for the server
            local_schema: Namespace the tables are created in
            limit_to: Only import these object names (LIMIT TO)
            exclude: Skip these object names (EXCEPT)

        Returns:
            Immutable table definitions, in registry order

        Raises:
            BridgeError: If introspection fails; no tables are produced
        """
        try:
            schema = self.introspect(server, client, refresh=True)
        except BridgeError as e:
            logger.error(f"Schema import from '{server.name}' failed: {e}")
            raise

        wanted = set(limit_to) if limit_to is not None else None
        excluded = set(exclude or ())

        tables = []
        for definition in self.objects.values():
            if wanted is not None and definition.name not in wanted:
                continue
            if definition.name in excluded:
                continue

            node_type = schema.node_type(definition)
            if node_type is None:
                logger.debug(f"Object '{definition.name}' not present on '{server.name}', skipped")
                continue

            columns = tuple(
                col for col in definition.columns if schema.resolve_path(node_type, col.path) is not None
            )
            if not columns:
                logger.warning(f"Object '{definition.name}' has no resolvable columns, skipped")
                continue

            tables.append(
                ForeignTable(
                    name=definition.name,
                    server=server,
                    object_name=definition.name,
                    columns=columns,
                    options={opt: placeholder_for(definition, opt) for opt in definition.required_options},
                    schema=local_schema,
                )
            )

        logger.info(f"Imported {len(tables)} foreign table(s) from server '{server.name}'")
        return tables

    def ddl(self, table: ForeignTable) -> str:
        """CREATE FOREIGN TABLE statement, preceded by the object's query shape"""
        definition = self.object_definition(table.object_name)
        return f"-- GraphQL: {definition.shape()}\n{table.to_sql()}"


def placeholder_for(definition: ObjectDefinition, option: str) -> str:
    """'YOUR_ISSUE_ID' style value for options a user must fill in after import"""
    subject = definition.root_field if option == "id" else option.removesuffix("_id")
    return f"YOUR_{subject.upper()}_ID"


def _compatible(declared: DataType, remote: Optional[DataType]) -> bool:
    if remote is None or declared == remote:
        return True
    if declared in (DataType.TEXT, DataType.JSON):
        return True
    if declared.is_numeric() and remote.is_numeric():
        return True
    if declared.is_temporal() and remote.is_temporal():
        return True
    return False
