"""
Pytest configuration and shared fixtures

Remote traffic never leaves the process: every RemoteClient in the tests is
built on an httpx.MockTransport backed by FakeGraphQL, a small scripted
GraphQL server that understands the query shapes graphbridge generates.
"""

import json
import re
from collections import deque

import httpx
import pytest

from graphbridge.core.bridge import Bridge
from graphbridge.core.models import ClientSettings, Credential, ForeignServer, PackageIdentity
from graphbridge.remote.client import RemoteClient

API_URL = "https://api.linear.app/graphql"
API_KEY = "lin_api_secret_token"

_ROOT = re.compile(r"\{\s*(\w+)")
_NESTED = re.compile(r"\{\s*(\w+)\(id: \$parentId\)\s*\{\s*(\w+)")


class FakeGraphQL:
    """
    Scripted GraphQL backend for httpx.MockTransport

    Responses come from, in order of precedence:
    1. the script queue (dicts are JSON bodies; httpx.Response objects are
       returned as-is; exceptions are raised as transport errors)
    2. an introspection schema for __schema queries
    3. in-memory collections, paginated with first/after
    """

    def __init__(self):
        self.requests = []
        self.script = deque()
        self.collections = {}
        self.nested = {}
        self.singles = {}
        self.schema = None

    def queue(self, *responses):
        self.script.extend(responses)
        return self

    @property
    def bodies(self):
        return [r["body"] for r in self.requests]

    @property
    def variables(self):
        return [r["body"].get("variables") or {} for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append({"body": body, "headers": dict(request.headers)})

        if self.script:
            item = self.script.popleft()
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(200, json=item)

        query = body["query"]
        variables = body.get("variables") or {}

        if "__schema" in query:
            if self.schema is None:
                return httpx.Response(200, json={"errors": [{"message": "introspection disabled"}]})
            return httpx.Response(200, json={"data": {"__schema": self.schema}})

        if "parentId" in variables:
            root, field = _NESTED.search(query).groups()
            records = self.nested.get((root, field), {}).get(variables["parentId"])
            if records is None:
                return httpx.Response(200, json={"data": {root: None}})
            return httpx.Response(200, json={"data": {root: {field: self._connection(records, variables)}}})

        root = _ROOT.search(query[query.index("{"):]).group(1)

        if "id" in variables:
            record = self.singles.get(root, {}).get(variables["id"])
            return httpx.Response(200, json={"data": {root: record}})

        records = self.collections.get(root, [])
        return httpx.Response(200, json={"data": {root: self._connection(records, variables)}})

    def _connection(self, records, variables):
        matching = [r for r in records if _matches(r, variables.get("filter") or {})]
        start = int(variables.get("after") or 0)
        first = variables.get("first") or len(matching)
        end = start + first
        return {
            "nodes": matching[start:end],
            "pageInfo": {"hasNextPage": end < len(matching), "endCursor": str(end)},
        }


def _matches(record, condition):
    for key, value in condition.items():
        if key == "eq":
            if record != value:
                return False
        elif key == "eqIgnoreCase":
            if not isinstance(record, str) or record.lower() != str(value).lower():
                return False
        elif key == "contains":
            if not isinstance(record, str) or value not in record:
                return False
        elif key == "containsIgnoreCase":
            if not isinstance(record, str) or str(value).lower() not in record.lower():
                return False
        else:
            child = record.get(key) if isinstance(record, dict) else None
            if not _matches(child, value):
                return False
    return True


def make_schema(types, query_type="Query"):
    """
    Build an introspection __schema payload

    Args:
        types: {type name: {field name: field type name}}
    """
    return {
        "queryType": {"name": query_type},
        "types": [
            {
                "kind": "OBJECT",
                "name": name,
                "fields": [
                    {
                        "name": field_name,
                        "type": {"kind": "NON_NULL", "name": None,
                                 "ofType": {"kind": "OBJECT", "name": type_name, "ofType": None}},
                    }
                    for field_name, type_name in fields.items()
                ],
            }
            for name, fields in types.items()
        ]
        + [{"kind": "SCALAR", "name": s, "fields": None} for s in ("String", "ID", "Float", "Boolean", "DateTime")]
        + [{"kind": "OBJECT", "name": "__Type", "fields": []}],
    }


LINEAR_TYPES = {
    "Query": {
        "issues": "IssueConnection",
        "issue": "Issue",
        "teams": "TeamConnection",
        "team": "Team",
        "project": "Project",
    },
    "IssueConnection": {"nodes": "Issue", "pageInfo": "PageInfo"},
    "TeamConnection": {"nodes": "Team", "pageInfo": "PageInfo"},
    "PageInfo": {"hasNextPage": "Boolean", "endCursor": "String"},
    "Issue": {
        "id": "ID",
        "title": "String",
        "description": "String",
        "number": "Float",
        "priority": "Float",
        "state": "WorkflowState",
        "team": "Team",
        "createdAt": "DateTime",
        "url": "String",
    },
    "WorkflowState": {"id": "ID", "name": "String"},
    "Team": {"id": "ID", "name": "String", "key": "String", "private": "Boolean"},
    "Project": {"id": "ID", "name": "String", "issues": "IssueConnection"},
}


def issue(n, **fields):
    record = {"id": f"ISS-{n}", "title": f"Issue {n}", "createdAt": "2024-01-15T10:30:00.000Z"}
    record.update(fields)
    return record


@pytest.fixture
def fake_graphql():
    """Fresh scripted backend"""
    return FakeGraphQL()


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping"""
    return []


@pytest.fixture
def server_options():
    """Options of the linear_server in the setup script"""
    return {
        "fdw_package_url": "file:///linear_fdw.wasm",
        "fdw_package_name": "supabase:linear-fdw",
        "fdw_package_version": "0.1.0",
        "api_url": API_URL,
        "api_key": API_KEY,
    }


@pytest.fixture
def server():
    """A resolved server with a credential and small backoff"""
    return ForeignServer(
        name="linear_server",
        package=PackageIdentity("supabase:linear-fdw", "0.1.0", "file:///linear_fdw.wasm"),
        api_url=API_URL,
        credential=Credential(API_KEY),
        settings=ClientSettings(backoff_base=0.01, max_backoff=1.0),
    )


@pytest.fixture
def client(fake_graphql, sleeps, server):
    """RemoteClient wired to the fake backend"""
    remote = RemoteClient(server.api_url, server.settings, transport=httpx.MockTransport(fake_graphql),
                          sleep=sleeps.append)
    yield remote
    remote.close()


@pytest.fixture
def bridge(fake_graphql, sleeps, server_options):
    """Bridge with linear_server and the linear_issues (id, title) table"""
    b = Bridge(transport=httpx.MockTransport(fake_graphql), sleep=sleeps.append)
    b.create_server("linear_server", dict(server_options, backoff_base="0.01"))
    b.create_table("linear_issues", "linear_server", {"object": "issues"}, columns=["id text", "title text"],
                   validate=False)
    yield b
    b.close()
