"""Tests for MCP resources."""

import json

from fastmcp import Client


def _load(content) -> dict:
    return json.loads(content[0].text if hasattr(content[0], "text") else str(content[0]))


class TestConnectionStatus:
    async def test_status_fields(self, mcp_server, mock_wapi_client):
        async with Client(mcp_server) as c:
            resources = await c.list_resources()
            status_uri = next(r.uri for r in resources if "status" in str(r.uri))
            data = _load(await c.read_resource(status_uri))
        assert data["wapi_client"] is True
        assert data["host"] == "gm.test.local"
        assert data["wapi_version"] == "2.5"
        assert "credentials_set" in data

    async def test_status_without_client(self, mcp_server, no_client):
        async with Client(mcp_server) as c:
            data = _load(await c.read_resource("infoblox://cname/status"))
        assert data["wapi_client"] is False
