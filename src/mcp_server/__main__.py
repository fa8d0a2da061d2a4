"""Command line entry point: `python -m mcp_server --transport {stdio,http}`."""

import argparse
from typing import Optional, Sequence


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="mcp_server",
        description="Airtable MCP Server",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="stdio for a local MCP client, http for SSE and the REST API",
    )
    args = parser.parse_args(argv)

    if args.transport == "http":
        from mcp_server.main import main as run_http
        run_http()
    else:
        main_stdio()


def main_stdio() -> None:
    """Run the server on stdin/stdout."""
    from mcp_server.transports.stdio import run_stdio
    run_stdio()


if __name__ == "__main__":
    main()
