"""
MCP Tool Definitions and Handlers for AI Memory MCP
Copyright 2025 Jurden Bruce

All tool responses return JSON for AI consumption, not human-formatted text.
"""

import json
import logging
from typing import List, Dict, Any

from mcp.types import Tool, TextContent

from .errors import MemorySystemError, OperationResult, ValidationError
from .models import RelationshipType
from .utils import DateTimeEncoder

logger = logging.getLogger("ai-memory.mcp-tools")


def get_tool_definitions() -> List[Tool]:
    """Return list of available MCP tools"""
    return [
        Tool(
            name="add-memory",
            description="Store a new memory with an automatic vector embedding for semantic search.",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "Memory content to store"},
                    "project": {"type": "string", "description": "Project context (default: 'default')"},
                    "type": {"type": "string", "description": "Memory type: preference, decision, knowledge, pattern, etc."},
                    "metadata": {"type": "object", "description": "Additional metadata", "default": {}},
                },
                "required": ["content"],
            },
        ),
        Tool(
            name="search-memories",
            description="Hybrid search: semantic similarity ranking with project and type filters.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query for semantic matching"},
                    "project": {"type": "string", "description": "Filter by project"},
                    "type": {"type": "string", "description": "Filter by memory type"},
                    "limit": {"type": "integer", "description": "Maximum results", "default": 10, "minimum": 1},
                    "include_relationships": {"type": "boolean", "description": "Include related memories", "default": False},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="create-memory-relationship",
            description="Link two memories with a typed, weighted, directed relationship.",
            inputSchema={
                "type": "object",
                "properties": {
                    "from_memory_id": {"type": "string", "description": "Source memory ID"},
                    "to_memory_id": {"type": "string", "description": "Target memory ID"},
                    "relationship_type": {"type": "string", "enum": RelationshipType.values()},
                    "strength": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.5,
                                 "description": "Relationship strength (0.0-1.0)"},
                },
                "required": ["from_memory_id", "to_memory_id", "relationship_type"],
            },
        ),
        Tool(
            name="switch-project",
            description="Change the current project context.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project": {"type": "string", "description": "Project name to switch to"},
                },
                "required": ["project"],
            },
        ),
        Tool(
            name="get-memory-stats",
            description="Memory statistics: totals, types, projects, average length, recent daily activity.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project": {"type": "string", "description": "Filter by project"},
                },
            },
        ),
        Tool(
            name="get-memory",
            description="Retrieve a specific memory by ID with full details",
            inputSchema={
                "type": "object",
                "properties": {
                    "memory_id": {"type": "string", "description": "Memory ID"},
                },
                "required": ["memory_id"],
            },
        ),
        Tool(
            name="reindex-memories",
            description="Re-upsert index entries for memories stored without one. Pass memory_id for a single memory.",
            inputSchema={
                "type": "object",
                "properties": {
                    "memory_id": {"type": "string", "description": "Only reindex this memory"},
                    "dry_run": {"type": "boolean", "description": "Report without changing anything", "default": False},
                },
            },
        ),
        Tool(
            name="get-memory-health",
            description="Backend availability, embedding cache usage and recent error count.",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


def _required(arguments: Dict[str, Any], key: str):
    if key not in arguments or arguments[key] is None:
        raise ValidationError(f"Missing required argument: {key}")
    return arguments[key]


async def handle_tool_call(name: str, arguments: Dict[str, Any], memory_service, owner: str) -> List[TextContent]:
    """
    Handle MCP tool calls with JSON responses

    Args:
        name: Tool name
        arguments: Tool arguments
        memory_service: MemoryService instance
        owner: Owner identifier supplied by the authentication layer

    Returns:
        List of TextContent with JSON-encoded responses
    """
    arguments = arguments or {}
    try:
        if not isinstance(arguments, dict):
            raise ValidationError("Tool arguments must be an object")

        if name == "add-memory":
            result = await memory_service.create_memory(
                owner,
                _required(arguments, "content"),
                project=arguments.get("project"),
                memory_type=arguments.get("type"),
                metadata=arguments.get("metadata"),
            )

        elif name == "search-memories":
            result = await memory_service.search_memories(
                owner,
                _required(arguments, "query"),
                project=arguments.get("project"),
                memory_type=arguments.get("type"),
                limit=arguments.get("limit", 10),
                include_relationships=arguments.get("include_relationships", False),
            )

        elif name == "create-memory-relationship":
            result = await memory_service.create_relationship(
                owner,
                _required(arguments, "from_memory_id"),
                _required(arguments, "to_memory_id"),
                _required(arguments, "relationship_type"),
                strength=arguments.get("strength", 0.5),
            )

        elif name == "switch-project":
            result = await memory_service.switch_project(owner, _required(arguments, "project"))

        elif name == "get-memory-stats":
            result = await memory_service.get_stats(owner, project=arguments.get("project"))

        elif name == "get-memory":
            result = await memory_service.get_memory(owner, _required(arguments, "memory_id"))

        elif name == "reindex-memories":
            if arguments.get("memory_id"):
                result = await memory_service.reindex_memory(owner, arguments["memory_id"])
            else:
                result = await memory_service.reconcile(owner, dry_run=arguments.get("dry_run", False))

        elif name == "get-memory-health":
            result = OperationResult.ok("Memory system health", memory_service.health())

        else:
            return [TextContent(type="text", text=json.dumps({"error": f"Unknown tool: {name}"}))]

    except MemorySystemError as e:
        # Missing or malformed arguments
        result = OperationResult.failure(e)

    except Exception as e:
        logger.error(f"Tool execution error: {name}: {e}", exc_info=True)
        return [TextContent(type="text", text=json.dumps({
            "error": str(e),
            "tool": name,
            "type": type(e).__name__,
        }, indent=2))]

    if not result.success:
        logger.warning(f"{name} failed ({result.error_kind}): {result.message}")
    return [TextContent(type="text", text=json.dumps(result.to_dict(), indent=2, cls=DateTimeEncoder))]
