"""Shared fixtures: an in-memory Airtable behind httpx.MockTransport."""

import json
from typing import Any, Optional

import httpx
import pytest

from shared.config import AirtableSettings
from domains.airtable.client import AirtableClient


class FakeAirtable:
    """
    Minimal stand-in for the Airtable REST API.

    Records created with POST can be read back with GET. Every request is
    kept in `requests` so tests can assert on exactly what went out.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.records: dict[str, dict[str, Any]] = {}
        self.fail_with: Optional[httpx.Response] = None
        self._next_id = 1

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return self.fail_with

        parts = request.url.path.strip("/").split("/")[1:]  # drop "v0"

        if parts[:1] == ["meta"]:
            if request.method == "GET":
                return httpx.Response(200, json={"tables": [{"id": "tbl1", "name": "Tasks"}]})
            return httpx.Response(200, json={"id": "new1", **self._body(request)})

        if len(parts) == 2:
            if request.method == "POST":
                record_id = f"rec{self._next_id}"
                self._next_id += 1
                record = {
                    "id": record_id,
                    "createdTime": "2024-01-01T00:00:00.000Z",
                    "fields": self._body(request)["fields"],
                }
                self.records[record_id] = record
                return httpx.Response(200, json=record)
            return httpx.Response(200, json={"records": list(self.records.values())})

        record_id = parts[2]
        if record_id not in self.records:
            return httpx.Response(
                404,
                json={"error": {"type": "NOT_FOUND", "message": "Could not find record"}},
            )

        if request.method == "PATCH":
            self.records[record_id]["fields"].update(self._body(request)["fields"])
        elif request.method == "DELETE":
            self.records.pop(record_id)
            return httpx.Response(200, json={"id": record_id, "deleted": True})

        return httpx.Response(200, json=self.records[record_id])

    @staticmethod
    def _body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content) if request.content else {}

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def fake_airtable() -> FakeAirtable:
    return FakeAirtable()


@pytest.fixture
def airtable_client(fake_airtable):
    return AirtableClient(
        AirtableSettings(api_key="key-test"),
        transport=httpx.MockTransport(fake_airtable),
    )


@pytest.fixture
def router(airtable_client):
    from mcp_server.router import ToolRouter
    from domains.airtable import register_airtable_domain

    router = ToolRouter()
    register_airtable_domain(router, airtable_client)
    return router


@pytest.fixture
def mcp(router):
    from mcp_server.protocol import MCPServer

    return MCPServer(router, name="airtable-mcp-server", version="0.3.1")
