"""
Query Translator - turns a ScanRequest into a GraphQL request

Pushdown policy:
- Only columns marked pushdown-eligible, on objects with a filter input
  type, are considered
- Only equality and contains-style LIKE/ILIKE are pushed:
      col = 'x'          -> {field: {eq: 'x'}}
      col LIKE '%x%'     -> {field: {contains: 'x'}}
      col ILIKE '%x%'    -> {field: {containsIgnoreCase: 'x'}}
- Everything else stays residual and is applied by the host after the scan

Values are always sent as GraphQL variables, never spliced into the
document text.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from graphbridge.catalog.objects import NESTED, SINGLE, ObjectDefinition
from graphbridge.core.models import ColumnDefinition, Predicate, RemoteQuerySpec, ScanRequest
from graphbridge.errors import ConfigurationError, SchemaMismatch

logger = logging.getLogger(__name__)

OPERATION_NAME = "GraphbridgeScan"

PAGE_INFO_SELECTION = "pageInfo { hasNextPage endCursor }"

_SCALAR_TYPES = (str, int, float, bool)


class QueryTranslator:
    """
    Translate relational scan requests for one foreign table

    Example:
        translator = QueryTranslator(LINEAR_OBJECTS["issues"], page_size=50)
        spec = translator.translate(
            ScanRequest("linear_issues", ("id", "title"), (Predicate("id", "=", "X"),)),
            table.columns,
        )
        # spec.document:
        # query GraphbridgeScan($first: Int, $after: String, $filter: IssueFilter) {
        #   issues(first: $first, after: $after, filter: $filter) {
        #     nodes { id title } pageInfo { hasNextPage endCursor } } }
    """

    def __init__(
        self,
        object_definition: ObjectDefinition,
        table_options: Optional[Dict[str, str]] = None,
        page_size: Optional[int] = 50,
    ):
        """
        Initialize translator

        Args:
            object_definition: Where the table's object lives in the remote schema
            table_options: Foreign table options (supplies parent ids)
            page_size: Default page size for paginated objects
        """
        self.object = object_definition
        self.table_options = dict(table_options or {})
        self.page_size = page_size

    def translate(self, request: ScanRequest, columns: Tuple[ColumnDefinition, ...]) -> RemoteQuerySpec:
        """
        Build the first-page request for a scan

        Args:
            request: Requested columns, predicates and limit
            columns: The table's declared columns

        Returns:
            RemoteQuerySpec for the first page

        Raises:
            SchemaMismatch: If a requested or filtered column is not declared
        """
        selected = self.resolve_columns(request, columns)
        by_name = {col.name: col for col in columns}

        for predicate in request.predicates:
            if predicate.column not in by_name:
                raise SchemaMismatch(
                    f"Predicate column '{predicate.column}' is not a column of '{request.table}'",
                    table=request.table,
                    column=predicate.column,
                )

        pushed, residual, filter_value = self._split_predicates(request.predicates, by_name)

        page_size = self._page_size(request.limit)
        variables: Dict[str, Any] = {}
        if page_size is not None:
            variables["first"] = page_size
            variables["after"] = None
        if filter_value:
            variables["filter"] = filter_value

        document, records_path, page_info_path = self._build_document(selected, bool(filter_value), variables)

        spec = RemoteQuerySpec(
            document=document,
            variables=variables,
            records_path=records_path,
            page_info_path=page_info_path,
            page_size=page_size,
            pushed=tuple(pushed),
            residual=tuple(residual),
            columns=tuple(selected),
        )

        if residual:
            logger.debug(
                f"{len(residual)} predicate(s) left for host evaluation on '{request.table}': "
                + ", ".join(str(p) for p in residual)
            )
        return spec

    def resolve_columns(
        self, request: ScanRequest, columns: Tuple[ColumnDefinition, ...]
    ) -> List[ColumnDefinition]:
        """Requested columns in request order; every declared column if none requested"""
        if not request.columns:
            return list(columns)

        by_name = {col.name: col for col in columns}
        selected = []
        for name in request.columns:
            if name not in by_name:
                available = ", ".join(by_name)
                raise SchemaMismatch(
                    f"Column '{name}' not found in foreign table '{request.table}'. "
                    f"Available columns: {available}",
                    table=request.table,
                    column=name,
                )
            selected.append(by_name[name])
        return selected

    def _page_size(self, limit: Optional[int]) -> Optional[int]:
        if not self.object.supports_page_size or self.page_size is None:
            return None
        if limit is not None:
            return max(1, min(self.page_size, limit))
        return self.page_size

    def _split_predicates(
        self, predicates: Tuple[Predicate, ...], by_name: Dict[str, ColumnDefinition]
    ) -> Tuple[List[Predicate], List[Predicate], Dict[str, Any]]:
        """
        Decide which predicates go to the remote filter

        Returns:
            (pushed, residual, filter variable)
        """
        pushed: List[Predicate] = []
        residual: List[Predicate] = []
        filter_value: Dict[str, Any] = {}

        for predicate in predicates:
            column = by_name[predicate.column]
            comparator = self._comparator(predicate, column)

            if comparator is None or not _merge_filter(filter_value, column.path, *comparator):
                residual.append(predicate)
                continue

            pushed.append(predicate)

        return pushed, residual, filter_value

    def _comparator(self, predicate: Predicate, column: ColumnDefinition) -> Optional[Tuple[str, Any]]:
        """GraphQL comparator for a predicate, or None if it cannot be pushed"""
        if not self.object.supports_filter or not column.pushdown or column.subfields:
            return None
        if not isinstance(predicate.value, _SCALAR_TYPES):
            return None

        if predicate.operator == "=":
            return "eq", predicate.value

        if predicate.operator in ("LIKE", "ILIKE") and isinstance(predicate.value, str):
            ignore_case = predicate.operator == "ILIKE"
            needle = _contains_needle(predicate.value)
            if needle is not None:
                return ("containsIgnoreCase" if ignore_case else "contains"), needle
            literal = _literal_pattern(predicate.value)
            if literal is not None:
                return ("eqIgnoreCase" if ignore_case else "eq"), literal

        return None

    def _build_document(
        self, columns: List[ColumnDefinition], has_filter: bool, variables: Dict[str, Any]
    ) -> Tuple[str, Tuple[str, ...], Optional[Tuple[str, ...]]]:
        """Render the GraphQL document and locate records/pageInfo in the response"""
        obj = self.object
        fields = render_selection(build_selection(columns))

        declarations: List[str] = []
        connection_args: List[str] = []
        if "first" in variables:
            declarations += ["$first: Int", "$after: String"]
            connection_args += ["first: $first", "after: $after"]
        if has_filter:
            declarations.append(f"$filter: {obj.filter_type}")
            connection_args.append("filter: $filter")

        args = f"({', '.join(connection_args)})" if connection_args else ""

        if obj.kind == SINGLE:
            variables["id"] = self._parent_id()
            document = (
                f"query {OPERATION_NAME}($id: String!) "
                f"{{ {obj.root_field}(id: $id) {{ {fields} }} }}"
            )
            return document, ("data", obj.root_field), None

        connection = f"{{ nodes {{ {fields} }} {PAGE_INFO_SELECTION} }}"

        if obj.kind == NESTED:
            variables["parentId"] = self._parent_id()
            declarations.insert(0, "$parentId: String!")
            document = (
                f"query {OPERATION_NAME}({', '.join(declarations)}) "
                f"{{ {obj.root_field}(id: $parentId) {{ {obj.nested_field}{args} {connection} }} }}"
            )
            base = ("data", obj.root_field, obj.nested_field)
            return document, base + ("nodes",), base + ("pageInfo",)

        decl = f"({', '.join(declarations)})" if declarations else ""
        document = f"query {OPERATION_NAME}{decl} {{ {obj.root_field}{args} {connection} }}"
        base = ("data", obj.root_field)
        return document, base + ("nodes",), base + ("pageInfo",)

    def _parent_id(self) -> str:
        option = self.object.parent_option
        value = self.table_options.get(option)
        if not value:
            raise ConfigurationError(
                f"Missing required option '{option}' for object '{self.object.name}'"
            )
        return value


def build_selection(columns: List[ColumnDefinition]) -> Dict[str, dict]:
    """Merge column paths into a nested selection tree"""
    tree: Dict[str, dict] = {}
    for column in columns:
        node = tree
        for part in column.path:
            node = node.setdefault(part, {})
        for sub in column.subfields:
            node.setdefault(sub, {})
    return tree


def render_selection(tree: Dict[str, dict]) -> str:
    """Render a selection tree: {'state': {'id': {}}} -> 'state { id }'"""
    parts = []
    for name, children in tree.items():
        if children:
            parts.append(f"{name} {{ {render_selection(children)} }}")
        else:
            parts.append(name)
    return " ".join(parts)


def _merge_filter(filter_value: Dict[str, Any], path: Tuple[str, ...], op: str, value: Any) -> bool:
    """
    Add {path: {op: value}} to the filter variable

    Returns False when the same comparator is already set for that path,
    in which case the caller keeps the predicate residual.
    """
    node = filter_value
    for part in path:
        existing = node.get(part)
        if existing is not None and not isinstance(existing, dict):
            return False
        node = node.setdefault(part, {})
    if op in node:
        return False
    node[op] = value
    return True


def _like_tokens(pattern: str) -> List[Tuple[bool, str]]:
    """
    Split a LIKE pattern into (is_wildcard, text) tokens

    Read left to right like the host-side LIKE matcher: a backslash escapes
    the next character (a trailing one stands for itself).
    """
    tokens: List[Tuple[bool, str]] = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            tokens.append((False, next(chars, "\\")))
        elif ch in "%_":
            tokens.append((True, ch))
        else:
            tokens.append((False, ch))
    return tokens


def _contains_needle(pattern: str) -> Optional[str]:
    """'%foo%' -> 'foo'; None if the pattern is anything but a plain contains"""
    tokens = _like_tokens(pattern)
    if len(tokens) < 3 or tokens[0] != (True, "%") or tokens[-1] != (True, "%"):
        return None
    inner = tokens[1:-1]
    if any(wildcard for wildcard, _ in inner):
        return None
    return "".join(text for _, text in inner)


def _literal_pattern(pattern: str) -> Optional[str]:
    """A LIKE pattern without wildcards matches exactly its (unescaped) text"""
    tokens = _like_tokens(pattern)
    if any(wildcard for wildcard, _ in tokens):
        return None
    return "".join(text for _, text in tokens)
