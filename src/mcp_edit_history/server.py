"""MCP Edit History Server - Main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import HistoryConfig, load_config
from .engine import HistoryEngine
from .store import SetupError
from .tools import execute_tool, make_tools

LOG_LEVEL_ENV = "MCP_EDIT_HISTORY_LOG"

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Send logs to stderr; stdout carries the MCP protocol."""
    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_server(engine: HistoryEngine) -> Server:
    """Create and configure the MCP server.

    Args:
        engine: History engine whose queries are exposed as tools

    Returns:
        Configured MCP Server instance
    """
    server = Server("mcp-edit-history")
    tool_defs = make_tools(engine)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return list of available tools."""
        return [
            Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in tool_defs.values()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        result = await execute_tool(engine, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


async def run_server(engine: HistoryEngine) -> None:
    """Run the MCP server with stdio transport."""
    server = create_server(engine)  # pragma: no cover

    async with stdio_server() as (read_stream, write_stream):  # pragma: no cover
        await server.run(  # pragma: no cover
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def build_config(args: argparse.Namespace) -> HistoryConfig:
    """Load the config file, then apply command-line overrides."""
    start = args.project_root.resolve() if args.project_root else Path.cwd()
    config = load_config(start, args.config)
    if args.project_root:
        config.project_root = args.project_root.resolve()
    if args.data_dir:
        config.data_dir = args.data_dir.resolve()
    return config


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="MCP Edit History Server - Records every saved edit in a working tree"
    )
    parser.add_argument(
        "--project-root",
        "-p",
        type=Path,
        help="Directory to watch (default: git top-level of the current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in project root)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Directory holding per-project history databases",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Log level (default: ${LOG_LEVEL_ENV} or INFO)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = build_config(args)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        engine = HistoryEngine(config)
    except SetupError as e:
        print(f"Error opening history store: {e}", file=sys.stderr)
        sys.exit(1)

    engine.start_capture()
    logger.info("Starting MCP edit history server")

    asyncio.run(run_server(engine))


if __name__ == "__main__":  # pragma: no cover
    main()
