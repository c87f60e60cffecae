"""
Tests for YAML setup files: loading, substitution and validation
"""

import pytest

from graphbridge.config import read_setup, substitute_variables, validate_setup
from graphbridge.errors import ConfigurationError

SETUP = """
servers:
  - name: linear_server
    options:
      fdw_package_url: file:///linear_fdw.wasm
      fdw_package_name: supabase:linear-fdw
      fdw_package_version: 0.1.0
      api_url: https://api.linear.app/graphql
      api_key: ${LINEAR_API_KEY}
      page_size: 25
tables:
  - name: issues
    schema: linear
    server: linear_server
    columns:
      - id text not null
      - title text
      - {name: team_name, type: text, remote_path: team.name}
    options:
      object: issues
      strict: true
imports:
  - server: linear_server
    into: linear_import
    limit_to: [teams]
"""


@pytest.fixture
def setup_file(tmp_path):
    path = tmp_path / "setup.yaml"
    path.write_text(SETUP)
    return path


class TestReadSetup:
    """Test loading setup files"""

    def test_loads_and_substitutes(self, setup_file):
        document = read_setup(setup_file, environ={"LINEAR_API_KEY": "lin_api_abc"})

        server = document["servers"][0]
        assert server["options"]["api_key"] == "lin_api_abc"
        assert server["options"]["fdw_package_version"] == "0.1.0"
        assert server["options"]["page_size"] == 25
        assert document["tables"][0]["options"]["strict"] is True
        assert document["imports"][0]["limit_to"] == ["teams"]

    def test_missing_variable(self, setup_file):
        with pytest.raises(ConfigurationError, match="LINEAR_API_KEY"):
            read_setup(setup_file, environ={})

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert read_setup(path, environ={}) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="cannot read setup file"):
            read_setup(tmp_path / "nope.yaml", environ={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("servers: [unclosed")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            read_setup(path, environ={})

    def test_error_names_the_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("servers: [unclosed")
        with pytest.raises(ConfigurationError, match="bad.yaml"):
            read_setup(path, environ={})


class TestValidateSetup:
    """Test setup document structure"""

    def test_unknown_top_level_key(self):
        with pytest.raises(ConfigurationError, match="<root>"):
            validate_setup({"databases": []})

    def test_server_without_options(self):
        with pytest.raises(ConfigurationError, match="'options' is a required property"):
            validate_setup({"servers": [{"name": "s"}]})

    def test_location_is_reported(self):
        with pytest.raises(ConfigurationError, match="tables.0"):
            validate_setup({"tables": [{"name": "t", "server": "s", "options": {"object": ["issues"]}}]})

    def test_import_requires_target(self):
        with pytest.raises(ConfigurationError):
            validate_setup({"imports": [{"server": "s"}]})

    def test_valid_minimal(self):
        validate_setup({"servers": [], "tables": [], "imports": []})


class TestSubstituteVariables:
    """Test ${VAR} and ${VAR:default} expansion"""

    def test_default(self):
        assert substitute_variables("${MISSING:fallback}", {}) == "fallback"
        assert substitute_variables("${MISSING:}", {}) == ""

    def test_set_variable_wins(self):
        assert substitute_variables("${KEY:fallback}", {"KEY": "set"}) == "set"

    def test_nested_structures(self):
        document = {"a": ["x-${V}", {"b": "${V}"}], "n": 3}
        assert substitute_variables(document, {"V": "1"}) == {"a": ["x-1", {"b": "1"}], "n": 3}

    def test_missing_without_default(self):
        with pytest.raises(ConfigurationError, match="'V' is not set"):
            substitute_variables("${V}", {})
