"""
Plain records shared by every bridge component

These dataclasses are the configuration and request values that flow
through a scan. Everything that outlives a single scan (servers, tables,
columns, credentials) is frozen, so it can be shared between concurrent
scans without locking.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from graphbridge.core.types import DataType


@dataclass(frozen=True)
class PackageIdentity:
    """Identity of the wrapper module a server was created with"""

    name: str  # e.g. 'supabase:linear-fdw'
    version: str  # e.g. '0.1.0'
    url: str  # e.g. 'file:///linear_fdw.wasm'

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class Credential:
    """
    Server-scoped API token

    The token is excluded from repr() and equality output so it cannot leak
    through logs, tracebacks or error messages.
    """

    token: str = field(repr=False)
    scheme: str = "raw"  # 'raw' sends the key verbatim, 'bearer' prefixes it

    @property
    def is_anonymous(self) -> bool:
        return not self.token

    def header_value(self) -> str | None:
        """Value for the Authorization header, or None for anonymous access"""
        if self.is_anonymous:
            return None
        if self.scheme == "bearer":
            return f"Bearer {self.token}"
        return self.token

    def redact(self, text: str) -> str:
        """Remove the token from arbitrary text"""
        if self.token and self.token in text:
            return text.replace(self.token, "***")
        return text

    def __repr__(self) -> str:
        state = "anonymous" if self.is_anonymous else "***"
        return f"Credential({state}, scheme={self.scheme!r})"


@dataclass(frozen=True)
class ClientSettings:
    """Per-server remote call settings"""

    timeout: float = 30.0
    max_attempts: int = 3
    backoff_base: float = 0.5
    max_backoff: float = 30.0
    page_size: int = 50


@dataclass(frozen=True)
class ForeignServer:
    """A configured remote endpoint plus the credential used to reach it"""

    name: str
    package: PackageIdentity
    api_url: str
    credential: Credential
    settings: ClientSettings = ClientSettings()
    allow_anonymous: bool = False

    def __repr__(self) -> str:
        return f"ForeignServer({self.name!r}, {self.api_url!r}, package={self.package})"


@dataclass(frozen=True)
class ColumnDefinition:
    """
    One column of a foreign table

    Attributes:
        name: Column name as seen by the host engine
        type: Semantic column type
        nullable: If False, a row missing this value is skipped
        remote_path: Dotted path of the remote field (e.g. 'state.id');
            derived from the name when not given
        subfields: Selection set under remote_path for object-valued fields
        pushdown: Whether filters on this column may be sent to the remote
    """

    name: str
    type: DataType = DataType.TEXT
    nullable: bool = True
    remote_path: str | None = None
    subfields: tuple[str, ...] = ()
    pushdown: bool = False

    @property
    def path(self) -> tuple[str, ...]:
        """Remote field path as a tuple of GraphQL field names"""
        if self.remote_path:
            return tuple(self.remote_path.split("."))
        return (snake_to_camel(self.name),)

    def to_sql(self) -> str:
        sql = f"{self.name} {self.type.sql_name}"
        if not self.nullable:
            sql += " not null"
        return sql


@dataclass(frozen=True)
class ForeignTable:
    """A read-only table backed by one remote object on one server"""

    name: str
    server: ForeignServer
    object_name: str
    columns: tuple[ColumnDefinition, ...]
    options: Mapping[str, str] = field(default_factory=dict, hash=False)
    schema: str | None = None  # namespace the table was imported into
    strict: bool = False

    def __post_init__(self):
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def column(self, name: str) -> ColumnDefinition | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def to_sql(self) -> str:
        """Render the table as a CREATE FOREIGN TABLE statement"""
        cols = ",\n".join(f"  {col.to_sql()}" for col in self.columns)
        opts = {"object": self.object_name}
        opts.update({k: v for k, v in self.options.items() if k != "object"})
        opts_sql = ",\n".join(f"  {k} '{_quote(v)}'" for k, v in opts.items())
        return (
            f"create foreign table if not exists {self.qualified_name} (\n{cols}\n)"
            f" server {self.server.name} options (\n{opts_sql}\n);"
        )


@dataclass(frozen=True)
class Predicate:
    """A single WHERE condition: column operator value"""

    column: str
    operator: str  # '=', '<>', '<', 'LIKE', 'ILIKE', 'IS NULL', ...
    value: Any = None

    def __post_init__(self):
        object.__setattr__(self, "operator", normalize_operator(self.operator))

    def __str__(self) -> str:
        if self.operator in ("IS NULL", "IS NOT NULL"):
            return f"{self.column} {self.operator}"
        return f"{self.column} {self.operator} {self.value!r}"


@dataclass(frozen=True)
class ScanRequest:
    """What the host wants from one scan"""

    table: str
    columns: tuple[str, ...] = ()  # empty means every declared column
    predicates: tuple[Predicate, ...] = ()
    limit: int | None = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")


@dataclass(frozen=True)
class RemoteQuerySpec:
    """
    A remote request built by the translator

    Attributes:
        document: GraphQL query text
        variables: GraphQL variables (filter, parent id, page arguments)
        records_path: Path from the response root to the records
        page_info_path: Path to pageInfo, None if the object is not paginated
        page_size: Value sent as `first`, None if no page-size limit is sent
        pushed: Predicates translated into the remote filter
        residual: Predicates the host must apply after the scan
        columns: Columns selected, in request order
    """

    document: str
    variables: Mapping[str, Any]
    records_path: tuple[str, ...]
    page_info_path: tuple[str, ...] | None = None
    page_size: int | None = None
    pushed: tuple[Predicate, ...] = ()
    residual: tuple[Predicate, ...] = ()
    columns: tuple[ColumnDefinition, ...] = ()

    @property
    def paginated(self) -> bool:
        return self.page_info_path is not None

    def next_page(self, cursor: str, page_size: int | None = None) -> "RemoteQuerySpec":
        """Spec for the page after `cursor`, optionally with a smaller page size"""
        variables = dict(self.variables)
        variables["after"] = cursor
        size = self.page_size
        if page_size is not None and size is not None:
            size = page_size
            variables["first"] = size
        return replace(self, variables=variables, page_size=size)

    def payload(self) -> dict[str, Any]:
        """JSON body sent to the remote"""
        return {"query": self.document, "variables": dict(self.variables)}


@dataclass(frozen=True)
class RemotePage:
    """One fetched batch of remote records plus the continuation cursor"""

    records: tuple[Any, ...]
    cursor: str | None = None

    @property
    def is_last(self) -> bool:
        return self.cursor is None


_OPERATOR_ALIASES = {
    "==": "=",
    "!=": "<>",
    "~~": "LIKE",
    "!~~": "NOT LIKE",
    "~~*": "ILIKE",
    "!~~*": "NOT ILIKE",
}

SUPPORTED_OPERATORS = frozenset(
    ["=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE", "IS NULL", "IS NOT NULL"]
)


def normalize_operator(operator: str) -> str:
    """Map SQL/PostgreSQL operator spellings onto one canonical form"""
    op = " ".join(str(operator).strip().upper().split())
    op = _OPERATOR_ALIASES.get(op, op)
    if op not in SUPPORTED_OPERATORS:
        raise ValueError(f"Unsupported operator '{operator}'")
    return op


def snake_to_camel(name: str) -> str:
    """Convert a snake_case column name into a camelCase GraphQL field name"""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _quote(value: Any) -> str:
    return str(value).replace("'", "''")
