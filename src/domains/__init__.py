"""Application Domains.

Each domain contains:
- Tool definitions
- Adapter implementation
- Remote API client

Domains are isolated by design with no cross-domain calls or shared state.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from domains.airtable.client import AirtableClient
    from mcp_server.router import ToolRouter


def load_all_domains(router: "ToolRouter", airtable_client: "AirtableClient") -> None:
    """
    Load and register all application domains.

    This is called at MCP Server startup to register all
    domain tools and adapters.
    """
    from domains.airtable import register_airtable_domain

    register_airtable_domain(router, airtable_client)


__all__ = ["load_all_domains"]
