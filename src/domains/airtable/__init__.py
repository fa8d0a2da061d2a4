"""Airtable Domain - bases, tables, fields and records.

Each catalog tool maps to exactly one Airtable API request, except
list_bases which answers locally because the API has no listing endpoint.
"""

from typing import TYPE_CHECKING, Any, Optional

from shared.logging import get_logger
from shared.models import DomainConfig, ToolDefinition, ToolResult
from domains.base import ActionHandler, BaseAdapter
from domains.airtable.client import (
    AirtableAPIError,
    AirtableClient,
    ConfigurationError,
    path,
)
from domains.airtable.tools import AIRTABLE_TOOLS, DOMAIN

if TYPE_CHECKING:
    from mcp_server.router import ToolRouter

logger = get_logger(__name__)


LIST_BASES_TEXT = (
    "Airtable API does not provide an endpoint to list bases. "
    "You need to specify the base ID directly."
)

DEFAULT_MAX_RECORDS = 100


def records_query(
    max_records: Optional[int] = None,
    view: Optional[str] = None,
    filter_by_formula: Optional[str] = None,
    sort: Optional[list[dict[str, Any]]] = None
) -> list[tuple[str, str]]:
    """
    Build the ordered query parameters for a records listing.

    Sort terms are flattened to sort[i][field] / sort[i][direction],
    preserving list order.
    """
    params: list[tuple[str, str]] = []
    if max_records:
        params.append(("maxRecords", str(int(max_records))))
    if view:
        params.append(("view", view))
    if filter_by_formula:
        params.append(("filterByFormula", filter_by_formula))
    for index, term in enumerate(sort or []):
        params.append((f"sort[{index}][field]", term["field"]))
        if term.get("direction"):
            params.append((f"sort[{index}][direction]", term["direction"]))
    return params


def _drop_none(body: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


class AirtableAdapter(BaseAdapter):
    """
    Airtable Domain Adapter.

    Provides tools for:
    - Table and field schema management
    - Record CRUD and formula search
    """

    def __init__(self, config: DomainConfig, client: AirtableClient) -> None:
        super().__init__(config)
        self.client = client

        for tool in AIRTABLE_TOOLS:
            self._tools[tool.name] = tool

        self._handlers: dict[str, ActionHandler] = {
            "list_bases": self._list_bases,
            "list_tables": self._list_tables,
            "create_table": self._create_table,
            "create_field": self._create_field,
            "list_records": self._list_records,
            "create_record": self._create_record,
            "update_record": self._update_record,
            "delete_record": self._delete_record,
            "search_records": self._search_records,
            "get_record": self._get_record,
        }

        missing = set(self._tools) - set(self._handlers)
        extra = set(self._handlers) - set(self._tools)
        if missing or extra:
            raise RuntimeError(
                f"Airtable dispatch table out of sync with catalog "
                f"(missing handlers: {sorted(missing)}, unlisted handlers: {sorted(extra)})"
            )

    @property
    def tools(self) -> list[ToolDefinition]:
        return list(AIRTABLE_TOOLS)

    async def execute(self, action: str, parameters: dict[str, Any]) -> ToolResult:
        """Execute an Airtable action."""
        logger.debug("Airtable action", action=action)

        handler = self._handlers.get(action)
        if not handler:
            return self._not_found(action)

        try:
            return await handler(parameters)
        except AirtableAPIError as e:
            return ToolResult.error(f"Airtable API Error ({e.status_code}): {e.message}")
        except Exception as e:
            logger.error("Airtable action failed", action=action, error=str(e))
            return self._error(str(e) or type(e).__name__)

    async def _list_bases(self, params: dict[str, Any]) -> ToolResult:
        return ToolResult.text(LIST_BASES_TEXT)

    async def _list_tables(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(path("meta", "bases", params["baseId"], "tables"))
        return self._success(data.get("tables"))

    async def _create_table(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(
            path("meta", "bases", params["baseId"], "tables"),
            "POST",
            _drop_none({
                "name": params["name"],
                "description": params.get("description"),
                "fields": params["fields"],
            }),
        )
        return self._success(data, f"Table '{params['name']}' created successfully")

    async def _create_field(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(
            path("meta", "bases", params["baseId"], "tables", params["tableId"], "fields"),
            "POST",
            _drop_none({
                "name": params["name"],
                "type": params["type"],
                "options": params.get("options"),
            }),
        )
        return self._success(data, f"Field '{params['name']}' created successfully")

    async def _list_records(self, params: dict[str, Any]) -> ToolResult:
        query = records_query(
            max_records=params.get("maxRecords", DEFAULT_MAX_RECORDS),
            view=params.get("view"),
            filter_by_formula=params.get("filterByFormula"),
            sort=params.get("sort"),
        )
        data = await self.client.request(
            path(params["baseId"], params["tableId"]), params=query
        )
        return self._success(data.get("records"))

    async def _create_record(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(
            path(params["baseId"], params["tableId"]),
            "POST",
            {"fields": params["fields"]},
        )
        return self._success(data, "Record created successfully")

    async def _update_record(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(
            path(params["baseId"], params["tableId"], params["recordId"]),
            "PATCH",
            {"fields": params["fields"]},
        )
        return self._success(data, "Record updated successfully")

    async def _delete_record(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(
            path(params["baseId"], params["tableId"], params["recordId"]),
            "DELETE",
        )
        return self._success(data, f"Record {params['recordId']} deleted successfully")

    async def _search_records(self, params: dict[str, Any]) -> ToolResult:
        query = [("filterByFormula", params["filterByFormula"])]
        query += records_query(max_records=params.get("maxRecords", DEFAULT_MAX_RECORDS))
        data = await self.client.request(
            path(params["baseId"], params["tableId"]), params=query
        )
        return self._success(data.get("records"))

    async def _get_record(self, params: dict[str, Any]) -> ToolResult:
        data = await self.client.request(
            path(params["baseId"], params["tableId"], params["recordId"])
        )
        return self._success(data)


def register_airtable_domain(
    router: "ToolRouter",
    client: AirtableClient
) -> AirtableAdapter:
    """Register the Airtable domain with the MCP server."""
    config = DomainConfig(
        name=DOMAIN,
        description="Airtable bases, tables, fields and records",
    )

    adapter = AirtableAdapter(config, client)

    router.registry.register_many(adapter.tools)
    router.register_adapter(DOMAIN, adapter.execute)

    logger.info(
        "Domain registered",
        domain=adapter.domain,
        description=adapter.description,
        tool_count=len(adapter.tools)
    )
    return adapter


__all__ = [
    "AirtableAdapter",
    "AirtableAPIError",
    "AirtableClient",
    "ConfigurationError",
    "register_airtable_domain",
    "records_query",
    "LIST_BASES_TEXT",
]
