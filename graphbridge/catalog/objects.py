"""
Remote object definitions

An object definition tells the translator where a remote resource lives in
the GraphQL schema (root field, nesting, filter input type) and gives the
catalog the column list used when tables are imported.

The built-in registry describes the Linear GraphQL API.
"""

from dataclasses import dataclass, replace

from graphbridge.core.models import ColumnDefinition, snake_to_camel
from graphbridge.core.types import DataType, parse_type_name

CONNECTION = "connection"  # { issues(first, after, filter) { nodes { ... } pageInfo { ... } } }
SINGLE = "single"  # { issue(id: $id) { ... } }
NESTED = "nested"  # { project(id: $id) { issues(first, after, filter) { nodes { ... } } } }


@dataclass(frozen=True)
class ObjectDefinition:
    """
    Where and how a remote object type is queried

    Attributes:
        name: Value of the table's `object` option
        root_field: Top-level GraphQL query field
        kind: CONNECTION, SINGLE or NESTED
        graphql_type: Node type name, used to match introspection results
        nested_field: Connection field under root_field (NESTED only)
        parent_option: Table option holding the id passed to root_field
        filter_type: GraphQL input type of the `filter` argument
        columns: Columns synthesized on schema import
        anonymous: Whether the object can be read without a credential
        deferred: True when the definition was guessed from the object name
            and must be confirmed by introspection before scanning
    """

    name: str
    root_field: str
    kind: str = CONNECTION
    graphql_type: str | None = None
    nested_field: str | None = None
    parent_option: str | None = None
    filter_type: str | None = None
    columns: tuple[ColumnDefinition, ...] = ()
    anonymous: bool = False
    deferred: bool = False

    @property
    def required_options(self) -> tuple[str, ...]:
        return (self.parent_option,) if self.parent_option else ()

    @property
    def paginated(self) -> bool:
        return self.kind in (CONNECTION, NESTED)

    @property
    def supports_page_size(self) -> bool:
        return self.paginated

    @property
    def supports_filter(self) -> bool:
        return self.paginated and self.filter_type is not None

    def shape(self) -> str:
        """Human-readable query shape, used as the DDL comment on import"""
        if self.kind == SINGLE:
            return f"{{ {self.root_field}(id: ${self.parent_option}) {{ ...fields }} }}"
        if self.kind == NESTED:
            return (
                f"{{ {self.root_field}(id: ${self.parent_option}) "
                f"{{ {self.nested_field} {{ nodes {{ ...fields }} }} }} }}"
            )
        return f"{{ {self.root_field} {{ nodes {{ ...fields }} }} }}"

    def column(self, name: str) -> ColumnDefinition | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @classmethod
    def generic(cls, name: str) -> "ObjectDefinition":
        """Guess a connection definition for an object nobody declared"""
        return cls(name=name, root_field=snake_to_camel(name), kind=CONNECTION, deferred=True)

    def confirmed(self, graphql_type: str | None) -> "ObjectDefinition":
        return replace(self, graphql_type=graphql_type or self.graphql_type, deferred=False)


# Relation columns hold a field of a related object rather than a scalar
RELATION_PATHS = {
    "state": "state.name",
    "state_id": "state.id",
    "team_id": "team.id",
    "assignee_id": "assignee.id",
    "creator_id": "creator.id",
    "parent_id": "parent.id",
    "project_id": "project.id",
    "cycle_id": "cycle.id",
    "lead_id": "lead.id",
}

# Columns whose equality filters the remote evaluates exactly
_PUSHDOWN_COLUMNS = frozenset(["id"]) | frozenset(k for k in RELATION_PATHS if k.endswith("_id"))


def column(spec: str, **overrides) -> ColumnDefinition:
    """Build a column from 'name type', applying the Linear field conventions"""
    name, _, type_name = spec.strip().partition(" ")
    kwargs = {
        "name": name,
        "type": parse_type_name(type_name or "text"),
        "remote_path": RELATION_PATHS.get(name),
        "pushdown": name in _PUSHDOWN_COLUMNS,
    }
    if name == "labels":
        kwargs.update(type=DataType.JSON, remote_path="labels.nodes", subfields=("id", "name", "color"))
    kwargs.update(overrides)
    return ColumnDefinition(**kwargs)


def _columns(*specs: str) -> tuple[ColumnDefinition, ...]:
    return tuple(column(spec) for spec in specs)


_ISSUE_COLUMNS = _columns(
    "id text",
    "title text",
    "description text",
    "number float",
    "priority float",
    "estimate float",
    "sub_issue_sort_order float",
    "priority_sort_order float",
    "state text",
    "state_id text",
    "team_id text",
    "assignee_id text",
    "creator_id text",
    "parent_id text",
    "project_id text",
    "cycle_id text",
    "created_at timestamptz",
    "updated_at timestamptz",
    "started_at timestamptz",
    "completed_at timestamptz",
    "archived_at timestamptz",
    "sort_order float",
    "due_date timestamptz",
    "url text",
)

# Issue lists reached through a parent object expose a narrower column set
_NESTED_EXCLUDED = ("sub_issue_sort_order", "priority_sort_order", "parent_id", "sort_order", "due_date")
_NESTED_ISSUE_COLUMNS = tuple(
    col for col in _ISSUE_COLUMNS if col.name not in _NESTED_EXCLUDED + ("cycle_id",)
)

_TEAM_COLUMNS = _columns(
    "id text",
    "name text",
    "key text",
    "description text",
    "icon text",
    "color text",
    "cycles_enabled boolean",
    "cycle_start_day float",
    "cycle_duration float",
    "timezone text",
    "triage_enabled boolean",
    "private boolean",
    "created_at timestamptz",
    "updated_at timestamptz",
    "archived_at timestamptz",
)

_PROJECT_COLUMNS = _columns(
    "id text",
    "name text",
    "description text",
    "icon text",
    "color text",
    "state text",
    "slug text",
    "team_id text",
    "creator_id text",
    "lead_id text",
    "sort_order float",
    "start_date timestamptz",
    "target_date timestamptz",
    "completed_at timestamptz",
    "created_at timestamptz",
    "updated_at timestamptz",
    "archived_at timestamptz",
    "url text",
)

_USER_COLUMNS = _columns(
    "id text",
    "name text",
    "display_name text",
    "email text",
    "avatar_url text",
    "description text",
    "timezone text",
    "last_seen timestamptz",
    "active boolean",
    "url text",
    "created_at timestamptz",
    "updated_at timestamptz",
    "archived_at timestamptz",
)

_CYCLE_COLUMNS = _columns(
    "id text",
    "number float",
    "name text",
    "description text",
    "start_date timestamptz",
    "end_date timestamptz",
    "completed_at timestamptz",
    "team_id text",
    "created_at timestamptz",
    "updated_at timestamptz",
    "archived_at timestamptz",
)

_WORKFLOW_STATE_COLUMNS = _columns(
    "id text",
    "name text",
    "description text",
    "color text",
    "type text",
    "position float",
    "team_id text",
    "created_at timestamptz",
    "updated_at timestamptz",
    "archived_at timestamptz",
)

_ISSUE_LABEL_COLUMNS = _columns(
    "id text",
    "name text",
    "description text",
    "color text",
    "team_id text",
    "created_at timestamptz",
    "updated_at timestamptz",
    "archived_at timestamptz",
)

# Project state is a plain string field, not a relation
_PROJECT_COLUMNS = tuple(
    replace(col, remote_path=None) if col.name == "state" else col for col in _PROJECT_COLUMNS
)


LINEAR_OBJECTS: dict[str, ObjectDefinition] = {
    obj.name: obj
    for obj in (
        ObjectDefinition("issues", "issues", CONNECTION, "Issue", filter_type="IssueFilter",
                         columns=_ISSUE_COLUMNS),
        ObjectDefinition("issue", "issue", SINGLE, "Issue", parent_option="id", columns=_ISSUE_COLUMNS),
        ObjectDefinition("teams", "teams", CONNECTION, "Team", filter_type="TeamFilter",
                         columns=_TEAM_COLUMNS),
        ObjectDefinition("team", "team", SINGLE, "Team", parent_option="id", columns=_TEAM_COLUMNS),
        ObjectDefinition("projects", "projects", CONNECTION, "Project", filter_type="ProjectFilter",
                         columns=_PROJECT_COLUMNS),
        ObjectDefinition("project", "project", SINGLE, "Project", parent_option="id",
                         columns=_PROJECT_COLUMNS),
        ObjectDefinition("project_issues", "project", NESTED, "Issue", nested_field="issues",
                         parent_option="project_id", filter_type="IssueFilter",
                         columns=_NESTED_ISSUE_COLUMNS),
        ObjectDefinition("users", "users", CONNECTION, "User", filter_type="UserFilter",
                         columns=_USER_COLUMNS),
        ObjectDefinition("user", "user", SINGLE, "User", parent_option="id", columns=_USER_COLUMNS),
        ObjectDefinition("user_assigned_issues", "user", NESTED, "Issue", nested_field="assignedIssues",
                         parent_option="user_id", filter_type="IssueFilter",
                         columns=tuple(c for c in _NESTED_ISSUE_COLUMNS if c.name != "state_id")),
        ObjectDefinition("cycles", "cycles", CONNECTION, "Cycle", filter_type="CycleFilter",
                         columns=_CYCLE_COLUMNS),
        ObjectDefinition("cycle_issues", "cycle", NESTED, "Issue", nested_field="issues",
                         parent_option="cycle_id", filter_type="IssueFilter",
                         columns=tuple(c for c in _ISSUE_COLUMNS
                                       if c.name not in _NESTED_EXCLUDED + ("state_id",))),
        ObjectDefinition("workflow_states", "workflowStates", CONNECTION, "WorkflowState",
                         filter_type="WorkflowStateFilter", columns=_WORKFLOW_STATE_COLUMNS),
        ObjectDefinition("issue_labels", "issueLabels", CONNECTION, "IssueLabel",
                         filter_type="IssueLabelFilter", columns=_ISSUE_LABEL_COLUMNS),
    )
}
