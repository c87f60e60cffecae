"""
Tests for the immutable records shared by bridge components
"""

import dataclasses

import pytest

from graphbridge.core.models import (
    ColumnDefinition,
    Credential,
    ForeignTable,
    Predicate,
    RemoteQuerySpec,
    ScanRequest,
    normalize_operator,
    snake_to_camel,
)
from graphbridge.core.types import DataType


class TestCredential:
    """Credentials never leak through repr or messages"""

    def test_repr_masks_token(self):
        credential = Credential("lin_api_secret")
        assert "lin_api_secret" not in repr(credential)
        assert "***" in repr(credential)

    def test_header_value(self):
        assert Credential("key").header_value() == "key"
        assert Credential("key", scheme="bearer").header_value() == "Bearer key"
        assert Credential("").header_value() is None

    def test_anonymous(self):
        assert Credential("").is_anonymous
        assert not Credential("x").is_anonymous

    def test_redact(self):
        credential = Credential("s3cret")
        assert credential.redact("token s3cret rejected") == "token *** rejected"
        assert credential.redact("nothing here") == "nothing here"

    def test_server_repr_hides_token(self, server):
        assert "lin_api_secret_token" not in repr(server)


class TestColumnDefinition:
    """Test column to remote field mapping"""

    def test_path_from_name(self):
        assert ColumnDefinition("created_at").path == ("createdAt",)

    def test_explicit_remote_path(self):
        column = ColumnDefinition("state_id", remote_path="state.id")
        assert column.path == ("state", "id")

    def test_to_sql(self):
        assert ColumnDefinition("id", DataType.TEXT, nullable=False).to_sql() == "id text not null"

    def test_frozen(self):
        column = ColumnDefinition("id")
        with pytest.raises(dataclasses.FrozenInstanceError):
            column.name = "other"


class TestForeignTable:
    """Test foreign table records"""

    def test_qualified_name(self, server):
        table = ForeignTable("issues", server, "issues", (ColumnDefinition("id"),), schema="linear")
        assert table.qualified_name == "linear.issues"

    def test_to_sql(self, server):
        table = ForeignTable(
            "issue",
            server,
            "issue",
            (ColumnDefinition("id"), ColumnDefinition("number", DataType.FLOAT)),
            options={"id": "YOUR_ISSUE_ID"},
        )
        assert table.to_sql() == (
            "create foreign table if not exists issue (\n"
            "  id text,\n"
            "  number float\n"
            ") server linear_server options (\n"
            "  object 'issue',\n"
            "  id 'YOUR_ISSUE_ID'\n"
            ");"
        )

    def test_to_sql_quotes_values(self, server):
        table = ForeignTable("t", server, "issue", (ColumnDefinition("id"),), options={"id": "it's"})
        assert "id 'it''s'" in table.to_sql()

    def test_options_are_read_only(self, server):
        options = {"id": "ISS-1"}
        table = ForeignTable("issue", server, "issue", (ColumnDefinition("id"),), options=options)
        options["id"] = "ISS-2"

        assert table.options == {"id": "ISS-1"}
        with pytest.raises(TypeError):
            table.options["id"] = "ISS-3"

    def test_hashable(self, server):
        table = ForeignTable("issue", server, "issue", (ColumnDefinition("id"),), options={"id": "ISS-1"})
        same = dataclasses.replace(table)
        assert hash(table) == hash(same)
        assert {table, same} == {table}


class TestPredicate:
    """Test predicate normalization"""

    @pytest.mark.parametrize(
        "operator,expected",
        [("==", "="), ("!=", "<>"), ("like", "LIKE"), ("not  ilike", "NOT ILIKE"), ("~~*", "ILIKE"),
         ("is null", "IS NULL")],
    )
    def test_normalize(self, operator, expected):
        assert normalize_operator(operator) == expected
        assert Predicate("title", operator, "x").operator == expected

    def test_unsupported_operator(self):
        with pytest.raises(ValueError, match="Unsupported operator"):
            Predicate("title", "BETWEEN", 1)

    def test_str(self):
        assert str(Predicate("id", "=", "X")) == "id = 'X'"
        assert str(Predicate("title", "is null")) == "title IS NULL"


class TestScanRequest:
    def test_negative_limit(self):
        with pytest.raises(ValueError):
            ScanRequest("issues", limit=-1)

    def test_defaults(self):
        request = ScanRequest("issues")
        assert request.columns == ()
        assert request.limit is None


class TestRemoteQuerySpec:
    """Test continuation of remote queries"""

    def test_next_page_sets_cursor(self):
        spec = RemoteQuerySpec("query", {"first": 50, "after": None}, ("data", "issues", "nodes"),
                               ("data", "issues", "pageInfo"), page_size=50)
        following = spec.next_page("abc")
        assert following.variables == {"first": 50, "after": "abc"}
        # original is untouched
        assert spec.variables["after"] is None

    def test_next_page_shrinks_page(self):
        spec = RemoteQuerySpec("query", {"first": 50, "after": None}, ("data",), ("info",), page_size=50)
        following = spec.next_page("abc", page_size=7)
        assert following.variables["first"] == 7
        assert following.page_size == 7

    def test_payload(self):
        spec = RemoteQuerySpec("query Q { a }", {"x": 1}, ("data", "a"))
        assert spec.payload() == {"query": "query Q { a }", "variables": {"x": 1}}
        assert not spec.paginated


def test_snake_to_camel():
    assert snake_to_camel("id") == "id"
    assert snake_to_camel("sub_issue_sort_order") == "subIssueSortOrder"
