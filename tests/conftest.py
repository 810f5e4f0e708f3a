"""Shared fixtures for the Infoblox CNAME test suite."""

import itertools
import json
import re
from unittest.mock import MagicMock
from urllib.parse import parse_qs, unquote, urlparse

import pytest
import requests_mock

import mcp_cname
from wapi.client import WapiClient, schema_cache, wapi_breaker

HOST = "gm.test.local"
BASE_URL = f"https://{HOST}/wapi/v2.5"

# ── helpers ──────────────────────────────────────────────────────────


def wapi_error(code: str, text: str) -> dict:
    """Simulate a WAPI error body."""
    return {"Error": f"AdmConDataError: None ({text})", "code": code, "text": text}


class FakeAppliance:
    """In-memory record:cname store answering WAPI calls through requests-mock.

    Search honours the case-insensitive ``name:`` modifier, create rejects a
    duplicate alias and PUT hands out a new reference, like a grid master does.
    """

    def __init__(self, mocker: requests_mock.Mocker, base_url: str = BASE_URL):
        self.mocker = mocker
        self.base_url = base_url
        self.records: dict[str, dict] = {}
        self._ids = itertools.count(1)

        object_url = re.compile(re.escape(f"{base_url}/record:cname") + r"(\?.*)?$")
        ref_url = re.compile(re.escape(f"{base_url}/record:cname/"))
        mocker.get(object_url, json=self._search)
        mocker.post(object_url, json=self._create)
        mocker.put(ref_url, json=self._update)
        mocker.delete(ref_url, json=self._delete)

    def _new_ref(self, name: str, view: str) -> str:
        return f"record:cname/ZG5zLmJpbmRfY25hbWUkLl9kZWZhdWx0{next(self._ids)}:{name}/{view}"

    @staticmethod
    def _query(request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlparse(request.url).query).items()}

    def _ref(self, request) -> str:
        prefix = urlparse(self.base_url).path + "/"
        return unquote(urlparse(request.url).path)[len(prefix):]

    def add(self, name: str, canonical: str, view: str = "default") -> dict:
        record = {"_ref": self._new_ref(name, view), "name": name, "canonical": canonical, "view": view}
        self.records[record["_ref"]] = record
        return dict(record)

    def _search(self, request, context):
        query = self._query(request)
        matches = list(self.records.values())
        if "name:" in query:
            matches = [r for r in matches if r["name"].lower() == query["name:"].lower()]
        if "name" in query:
            matches = [r for r in matches if r["name"] == query["name"]]
        if "canonical" in query:
            matches = [r for r in matches if r["canonical"] == query["canonical"]]
        if "view" in query:
            matches = [r for r in matches if r["view"] == query["view"]]
        return {"result": [dict(r) for r in matches]}

    def _create(self, request, context):
        data = request.json()
        if any(r["name"].lower() == data["name"].lower() for r in self.records.values()):
            context.status_code = 400
            return wapi_error(
                "Client.Ibap.Data.Conflict",
                f"IBDataConflictError: IB.Data.Conflict:The record '{data['name']}' already exists.",
            )
        record = self.add(data["name"], data["canonical"], data.get("view", "default"))
        if data.get("use_ttl"):
            self.records[record["_ref"]]["ttl"] = record["ttl"] = data["ttl"]
        context.status_code = 201
        return {"result": record}

    def _update(self, request, context):
        ref = self._ref(request)
        if ref not in self.records:
            context.status_code = 404
            return wapi_error("Client.Ibap.Data.NotFound", f"Reference {ref} not found")
        record = {**self.records.pop(ref), **request.json()}
        record["_ref"] = self._new_ref(record["name"], record["view"])
        self.records[record["_ref"]] = record
        return {"result": dict(record)}

    def _delete(self, request, context):
        ref = self._ref(request)
        if ref not in self.records:
            context.status_code = 404
            return wapi_error("Client.Ibap.Data.NotFound", f"Reference {ref} not found")
        del self.records[ref]
        return {"result": ref}


# ── fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def reset_wapi_state():
    """Close the shared circuit breaker and empty the schema cache."""
    wapi_breaker.close()
    schema_cache.clear()
    yield
    wapi_breaker.close()


@pytest.fixture()
def appliance():
    with requests_mock.Mocker() as mocker:
        yield FakeAppliance(mocker)


@pytest.fixture()
def wapi_client(appliance):
    """A WapiClient wired to the fake appliance."""
    with WapiClient(
        host=HOST, user="admin", password="infoblox", wapi_version="2.5", dns_view="default", timeout=1, tls_verify=False
    ) as c:
        yield c


@pytest.fixture()
def mock_wapi_client(monkeypatch):
    """Patch ``mcp_cname.client`` with a MagicMock."""
    mock = MagicMock()
    mock.host = HOST
    mock.wapi_version = "2.5"
    mock.dns_view = "default"
    mock.base_url = BASE_URL
    monkeypatch.setattr(mcp_cname, "client", mock)
    return mock


@pytest.fixture()
def no_client(monkeypatch):
    """Set the WAPI client to ``None`` to test uninitialised paths."""
    monkeypatch.setattr(mcp_cname, "client", None)


@pytest.fixture()
def mcp_server():
    """Return the FastMCP server instance for Client-based testing."""
    return mcp_cname.mcp


def parse_tool_result(result) -> dict:
    """Parse a FastMCP Client CallToolResult into a dict.

    ``result`` is a ``CallToolResult`` with ``.content`` — a list of
    ``TextContent`` objects.  The first element's ``.text`` is JSON.
    """
    text = result.content[0].text
    return json.loads(text)
