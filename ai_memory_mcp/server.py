#!/usr/bin/env python3
"""
MCP Server for AI Memory MCP
Copyright 2025 Jurden Bruce

"""

import sys
import os
import asyncio
import logging
import traceback

from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from . import __version__
from .config import load_config
from .mcp_tools import get_tool_definitions, handle_tool_call
from .memory_service import MemoryService

logger = logging.getLogger("ai-memory")

# Global service
memory_service = None
config = None
app = Server("ai-memory")


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )
    for logger_name in ["qdrant_client", "sentence_transformers", "urllib3", "httpx"]:
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)


@app.list_tools()
async def handle_list_tools() -> list[Tool]:
    return get_tool_definitions()


@app.call_tool()
async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Dispatch tool calls on behalf of the configured owner"""
    logger.info(f"Tool call: {name}")
    return await handle_tool_call(name, arguments, memory_service, config["default_owner"])


async def main():
    """Main entry point"""
    global memory_service, config

    # Keep library output off stdout while the heavy backends load
    original_stdout_fd = os.dup(1)
    os.dup2(2, 1)

    config = load_config()
    setup_logging(config["log_level"])

    try:
        logger.info(f"Initializing MemoryService at {config['db_path']}")
        memory_service = MemoryService(config)

        # Restore stdout for MCP communication
        os.dup2(original_stdout_fd, 1)
        sys.stdout = os.fdopen(original_stdout_fd, "w")

        logger.info("Starting MCP server...")
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="ai-memory",
                    server_version=__version__,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        logger.error(traceback.format_exc())
        sys.exit(1)
    finally:
        if memory_service:
            await memory_service.shutdown()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
