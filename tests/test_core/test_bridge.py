"""
Tests for the Bridge API: servers, tables, scans and setup files
"""

import httpx
import pytest

from graphbridge.core.models import Predicate
from graphbridge.errors import BridgeError, ConfigurationError, ScanError, SchemaMismatch, UnsupportedOperation
from conftest import LINEAR_TYPES, issue, make_schema


@pytest.fixture
def five_issues(fake_graphql):
    fake_graphql.collections["issues"] = [issue(n) for n in range(1, 6)]
    return fake_graphql


class TestServers:
    """Test CREATE / DROP SERVER"""

    def test_duplicate_server(self, bridge, server_options):
        with pytest.raises(ConfigurationError, match="already exists"):
            bridge.create_server("linear_server", server_options)

    def test_replace_drops_dependent_tables(self, bridge, server_options):
        bridge.create_server("linear_server", server_options, replace=True)
        assert "linear_issues" not in bridge.tables
        assert "linear_server" in bridge.servers

    def test_drop_server_with_tables_requires_cascade(self, bridge):
        with pytest.raises(ConfigurationError, match="linear_issues"):
            bridge.drop_server("linear_server")
        assert "linear_server" in bridge.servers

    def test_drop_server_cascade(self, bridge):
        bridge.drop_server("linear_server", cascade=True)
        assert bridge.servers == {}
        assert bridge.tables == {}

    def test_drop_unknown_server(self, bridge):
        with pytest.raises(ConfigurationError):
            bridge.drop_server("nope")
        bridge.drop_server("nope", if_exists=True)

    def test_invalid_server_is_not_registered(self, bridge, server_options):
        with pytest.raises(ConfigurationError):
            bridge.create_server("other", dict(server_options, api_url="not a url"))
        assert "other" not in bridge.servers

    def test_servers_keep_their_own_credentials(self, bridge, fake_graphql, server_options):
        bridge.create_server("other", dict(server_options, api_key="other_key"))
        bridge.create_table("other_issues", "other", {"object": "issues"}, columns=["id text"], validate=False)

        bridge.scan("linear_issues").to_list()
        bridge.scan("other_issues").to_list()

        keys = [r["headers"]["authorization"] for r in fake_graphql.requests]
        assert keys == ["lin_api_secret_token", "other_key"]

    def test_one_client_per_server(self, bridge):
        assert bridge.client("linear_server") is bridge.client("linear_server")


class TestTables:
    """Test CREATE / DROP FOREIGN TABLE"""

    def test_create_table(self, bridge):
        table = bridge.table("linear_issues")
        assert table.object_name == "issues"
        assert table.column_names() == ["id", "title"]

    def test_unknown_server(self, bridge):
        with pytest.raises(ConfigurationError, match="server 'nope'"):
            bridge.create_table("t", "nope", {"object": "issues"})

    def test_duplicate_table(self, bridge):
        with pytest.raises(ConfigurationError, match="already exists"):
            bridge.create_table("linear_issues", "linear_server", {"object": "issues"})

    def test_if_not_exists_keeps_existing(self, bridge):
        existing = bridge.table("linear_issues")
        assert bridge.create_table("linear_issues", "linear_server", {"object": "teams"}, if_not_exists=True) is existing

    def test_bare_and_qualified_names(self, bridge):
        bridge.create_table("issues", "linear_server", {"object": "issues"}, schema="linear")
        assert bridge.table("issues").qualified_name == "linear.issues"
        assert bridge.table("linear.issues").qualified_name == "linear.issues"

    def test_ambiguous_name(self, bridge):
        bridge.create_table("issues", "linear_server", {"object": "issues"}, schema="a")
        bridge.create_table("issues", "linear_server", {"object": "issues"}, schema="b")
        with pytest.raises(SchemaMismatch, match="ambiguous"):
            bridge.table("issues")

    def test_drop_table(self, bridge):
        bridge.drop_table("linear_issues")
        with pytest.raises(SchemaMismatch):
            bridge.table("linear_issues")
        bridge.drop_table("linear_issues", if_exists=True)

    def test_describe(self, bridge):
        assert [c.name for c in bridge.describe("linear_issues")] == ["id", "title"]

    def test_create_validates_by_default(self, bridge, fake_graphql, caplog):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        bridge.create_table("odd", "linear_server", {"object": "issues"}, columns=["id text", "bogus text"])

        assert "__schema" in fake_graphql.bodies[0]["query"]
        assert "column 'bogus'" in caplog.text
        assert "odd" in bridge.tables

    def test_failed_validation_does_not_block_creation(self, bridge, fake_graphql):
        bridge.create_table("odd", "linear_server", {"object": "issues"}, columns=["id text", "bogus text"])
        assert len(fake_graphql.requests) == 1
        assert "odd" in bridge.tables

    def test_validation_can_be_skipped(self, bridge, fake_graphql, caplog):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        bridge.create_table("odd", "linear_server", {"object": "issues"}, columns=["bogus text"], validate=False)
        assert fake_graphql.requests == []
        assert "bogus" not in caplog.text

    def test_writes_are_unsupported(self, bridge):
        with pytest.raises(UnsupportedOperation):
            bridge.insert("linear_issues", [{"id": "x"}])
        with pytest.raises(UnsupportedOperation):
            bridge.update("linear_issues", {"title": "x"})
        with pytest.raises(UnsupportedOperation):
            bridge.delete("linear_issues")


class TestScan:
    """Test foreign scans without host evaluation"""

    def test_scan_rows(self, bridge, five_issues):
        result = bridge.scan("linear_issues", ["id"])
        assert result.columns == ["id"]
        assert [r["id"] for r in result] == [f"ISS-{n}" for n in range(1, 6)]
        assert result.stats.rows_emitted == 5

    def test_residual_predicates_are_reported_not_applied(self, bridge, five_issues):
        result = bridge.scan("linear_issues", predicates=[("title", "LIKE", "%3%")])
        assert result.residual == (Predicate("title", "LIKE", "%3%"),)
        assert len(result.to_list()) == 5

    def test_unknown_column_fails_eagerly(self, bridge, fake_graphql):
        with pytest.raises(SchemaMismatch):
            bridge.scan("linear_issues", ["nope"])
        assert fake_graphql.requests == []

    def test_string_predicate_is_rejected(self, bridge):
        with pytest.raises(TypeError):
            bridge.scan("linear_issues", predicates=["id = 'x'"])

    def test_scan_error(self, bridge, fake_graphql):
        fake_graphql.queue(httpx.Response(401))
        with pytest.raises(ScanError):
            bridge.scan("linear_issues").to_list()

    def test_interleaved_scans_are_independent(self, bridge, five_issues):
        first = iter(bridge.scan("linear_issues", ["id"], predicates=[("id", "=", "ISS-1")]))
        second = iter(bridge.scan("linear_issues", ["id"], predicates=[("id", "=", "ISS-2")]))
        assert next(second)["id"] == "ISS-2"
        assert next(first)["id"] == "ISS-1"


class TestSelect:
    """Test SELECT with host-side evaluation"""

    def test_pushed_and_residual_predicates(self, bridge, five_issues):
        rows = bridge.select(
            "linear_issues", ["id", "title"], [("id", "=", "ISS-2"), ("title", "LIKE", "%2%")]
        ).to_list()

        assert rows == [{"id": "ISS-2", "title": "Issue 2"}]
        assert five_issues.variables[0]["filter"] == {"id": {"eq": "ISS-2"}}

    def test_residual_only(self, bridge, five_issues):
        rows = bridge.select("linear_issues", ["id"], [("title", "ILIKE", "%issue 4")]).to_list()
        assert rows == [{"id": "ISS-4"}]
        assert "filter" not in five_issues.variables[0]

    def test_predicate_columns_are_not_returned(self, bridge, five_issues):
        rows = bridge.select("linear_issues", ["id"], [("title", "=", "Issue 1")]).to_list()
        assert rows == [{"id": "ISS-1"}]
        assert "title" in five_issues.bodies[0]["query"]

    def test_pushed_limit(self, bridge, five_issues):
        rows = bridge.select("linear_issues", ["id"], limit=2).to_list()
        assert len(rows) == 2
        assert five_issues.variables == [{"first": 2, "after": None}]

    def test_host_limit_with_residual_predicates(self, bridge, five_issues):
        result = bridge.select("linear_issues", ["id"], [("title", "LIKE", "Issue%")], limit=2)
        rows = result.to_list()
        assert [r["id"] for r in rows] == ["ISS-1", "ISS-2"]
        assert five_issues.variables[0]["first"] == 50

    def test_all_columns_by_default(self, bridge, five_issues):
        result = bridge.select("linear_issues")
        assert result.columns == ["id", "title"]
        assert result.to_list()[0] == {"id": "ISS-1", "title": "Issue 1"}

    def test_explain(self, bridge):
        text = bridge.explain("linear_issues", ["id"], [("title", "LIKE", "a%")], limit=5)
        lines = text.splitlines()
        assert lines[:4] == [
            "Limit(5)",
            "  Project(id)",
            "    Filter(title LIKE 'a%')",
            "      Scan(linear_issues)",
        ]
        assert "Foreign Scan on linear_issues (object issues, server linear_server)" in text
        assert "Limit: 5 (host)" in text

    def test_to_dataframe(self, bridge, five_issues):
        pd = pytest.importorskip("pandas")
        df = bridge.select("linear_issues", ["title", "id"], limit=3).to_dataframe()
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ["title", "id"]
        assert len(df) == 3


class TestImportForeignSchema:
    """Test IMPORT FOREIGN SCHEMA through the bridge"""

    def test_import_registers_tables(self, bridge, fake_graphql):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        created = bridge.import_foreign_schema("linear_server", "linear", limit_to=["issues", "teams"])

        assert [t.qualified_name for t in created] == ["linear.issues", "linear.teams"]
        assert "linear.issues" in bridge.tables

    def test_existing_tables_are_kept(self, bridge, fake_graphql):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        bridge.create_table("issues", "linear_server", {"object": "issues"}, columns=["id text"], schema="linear")

        created = bridge.import_foreign_schema("linear_server", "linear", limit_to=["issues", "teams"])

        assert [t.qualified_name for t in created] == ["linear.teams"]
        assert bridge.table("linear.issues").column_names() == ["id"]

    def test_failed_import_registers_nothing(self, bridge, fake_graphql):
        before = dict(bridge.tables)
        with pytest.raises(BridgeError):
            bridge.import_foreign_schema("linear_server", "linear")
        assert bridge.tables == before

    def test_export_ddl(self, bridge, fake_graphql):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        created = bridge.import_foreign_schema("linear_server", "linear", limit_to=["issue"])
        ddl = bridge.export_ddl(created)
        assert ddl.startswith("-- GraphQL: { issue(id: $id) { ...fields } }\n")
        assert "create foreign table if not exists linear.issue (" in ddl


SETUP = """
servers:
  - name: setup_server
    options:
      fdw_package_url: file:///linear_fdw.wasm
      fdw_package_name: supabase:linear-fdw
      fdw_package_version: 0.1.0
      api_url: https://api.linear.app/graphql
      api_key: ${SETUP_KEY:lin_api_setup}
tables:
  - name: issues
    schema: linear
    server: setup_server
    columns: [id text, title text]
    options: {object: issues}
"""


class TestLoadSetup:
    """Test applying setup files"""

    def test_applies_servers_and_tables(self, bridge, tmp_path):
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP)

        created = bridge.load_setup(path, environ={})

        assert [t.qualified_name for t in created] == ["linear.issues"]
        assert bridge.server("setup_server").credential.header_value() == "lin_api_setup"
        assert bridge.table("linear.issues").server.name == "setup_server"

    def test_declared_tables_are_validated(self, bridge, fake_graphql, tmp_path, caplog):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP.replace("columns: [id text, title text]", "columns: [id text, bogus text]"))

        bridge.load_setup(path, environ={})

        assert "Foreign table 'linear.issues': column 'bogus'" in caplog.text
        assert "linear.issues" in bridge.tables

    def test_failure_changes_nothing(self, bridge, tmp_path):
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP + """
  - name: broken
    server: no_such_server
    options: {object: issues}
""")
        before_servers, before_tables = dict(bridge.servers), dict(bridge.tables)

        with pytest.raises(ConfigurationError, match="no_such_server"):
            bridge.load_setup(path, environ={})

        assert bridge.servers == before_servers
        assert bridge.tables == before_tables

    def test_failed_import_changes_nothing(self, bridge, tmp_path):
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP + """
imports:
  - server: setup_server
    into: imported
""")
        with pytest.raises(BridgeError):
            bridge.load_setup(path, environ={})
        assert "setup_server" not in bridge.servers

    def test_imports(self, bridge, fake_graphql, tmp_path):
        fake_graphql.schema = make_schema(LINEAR_TYPES)
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP + """
imports:
  - server: setup_server
    into: linear
    limit_to: [issues, teams]
""")
        created = bridge.load_setup(path, environ={})

        # the declared linear.issues wins over the imported one
        assert [t.qualified_name for t in created] == ["linear.issues", "linear.teams"]
        assert bridge.table("linear.issues").column_names() == ["id", "title"]

    def test_existing_server_requires_replace(self, bridge, tmp_path, server_options):
        bridge.create_server("setup_server", server_options)
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP)
        with pytest.raises(ConfigurationError, match="already exists"):
            bridge.load_setup(path, environ={})

    def test_conflicting_table(self, bridge, tmp_path):
        bridge.create_table("issues", "linear_server", {"object": "issues"}, schema="linear")
        path = tmp_path / "setup.yaml"
        path.write_text(SETUP)
        with pytest.raises(ConfigurationError, match="linear.issues"):
            bridge.load_setup(path, environ={})
        assert "setup_server" not in bridge.servers
