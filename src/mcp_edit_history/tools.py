"""MCP tool definitions wrapping the history engine.

Recording changes is internal to the watcher; no tool can write hunks.
"""

from __future__ import annotations

from typing import Any

from .engine import HistoryEngine
from .store import HistoryError, StoreError

FORMAT_PROPERTY = {
    "type": "string",
    "enum": ["json", "markdown"],
    "description": "Result format (default: json)",
}


def make_tools(engine: HistoryEngine) -> dict[str, dict]:
    """Create MCP tool definitions for the history engine.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}
    default_limit = engine.config.default_limit

    # ========== get_file_changes ==========
    tools["get_file_changes"] = {
        "name": "get_file_changes",
        "description": "Get the most recent recorded edits (hunks) to a file, newest first.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "description": "Path to the file (relative paths are resolved against the project root)",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": f"Maximum hunks to return (default: {default_limit})",
                },
                "format": FORMAT_PROPERTY,
            },
            "required": ["file_path"],
        },
    }

    # ========== list_recent_change_groups ==========
    tools["list_recent_change_groups"] = {
        "name": "list_recent_change_groups",
        "description": "List recent save events across the project, one row per change with its hunk count.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": f"Maximum change groups to return (default: {default_limit})",
                },
                "format": FORMAT_PROPERTY,
            },
        },
    }

    # ========== get_changes_by_change_id ==========
    tools["get_changes_by_change_id"] = {
        "name": "get_changes_by_change_id",
        "description": "Get every hunk of one save event, in order.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "change_id": {
                    "type": "string",
                    "description": "Change id from list_recent_change_groups",
                },
                "format": FORMAT_PROPERTY,
            },
            "required": ["change_id"],
        },
    }

    # ========== save_scaffold ==========
    tools["save_scaffold"] = {
        "name": "save_scaffold",
        "description": "Save an implementation plan together with the request that produced it.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "description": {
                    "type": "string",
                    "description": "Description of the feature or project being planned",
                },
                "content": {
                    "type": "string",
                    "description": "The scaffold text",
                },
            },
            "required": ["description", "content"],
        },
    }

    # ========== list_scaffolds ==========
    tools["list_scaffolds"] = {
        "name": "list_scaffolds",
        "description": "Search saved scaffolds by description, or list the most recent ones.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Text to look for in scaffold descriptions",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum scaffolds to return (default: 10)",
                },
                "format": FORMAT_PROPERTY,
            },
        },
    }

    # ========== get_scaffold ==========
    tools["get_scaffold"] = {
        "name": "get_scaffold",
        "description": "Get one saved scaffold by id.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {
                    "type": "integer",
                    "description": "Scaffold id",
                },
                "format": FORMAT_PROPERTY,
            },
            "required": ["id"],
        },
    }

    # ========== history_status ==========
    tools["history_status"] = {
        "name": "history_status",
        "description": "Show where history is stored and whether file changes are being captured.",
        "inputSchema": {
            "type": "object",
            "properties": {},
        },
    }

    return tools


def _render(items: list, arguments: dict[str, Any], key: str) -> dict[str, Any]:
    """Build the success payload for a list of models."""
    if arguments.get("format", "json") == "markdown":
        return {
            "success": True,
            "count": len(items),
            "content": "\n\n".join(item.to_markdown() for item in items),
        }
    return {
        "success": True,
        "count": len(items),
        key: [item.to_dict() for item in items],
    }


async def execute_tool(engine: HistoryEngine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a history tool and return the result.

    Args:
        engine: HistoryEngine instance
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dict with success status and data or error
    """
    try:
        if name == "get_file_changes":
            hunks = engine.get_file_changes(
                file_path=arguments["file_path"],
                limit=arguments.get("limit"),
            )
            return _render(hunks, arguments, "hunks")

        elif name == "list_recent_change_groups":
            groups = engine.list_recent_change_groups(limit=arguments.get("limit"))
            return _render(groups, arguments, "groups")

        elif name == "get_changes_by_change_id":
            hunks = engine.get_changes_by_change_id(arguments["change_id"])
            return _render(hunks, arguments, "hunks")

        elif name == "save_scaffold":
            scaffold_id = engine.save_scaffold(
                description=arguments["description"],
                content=arguments["content"],
            )
            return {
                "success": True,
                "id": scaffold_id,
                "message": f"Scaffold saved with ID {scaffold_id}",
            }

        elif name == "list_scaffolds":
            scaffolds = engine.list_scaffolds(
                query=arguments.get("query"),
                limit=arguments.get("limit", 10),
            )
            return _render(scaffolds, arguments, "scaffolds")

        elif name == "get_scaffold":
            scaffold = engine.get_scaffold(arguments["id"])
            if scaffold is None:
                return {
                    "success": False,
                    "error": f"Scaffold not found: {arguments['id']}",
                    "error_type": "not_found",
                }
            if arguments.get("format", "json") == "markdown":
                return {"success": True, "content": scaffold.to_markdown()}
            return {"success": True, "scaffold": scaffold.to_dict()}

        elif name == "history_status":
            return {
                "success": True,
                **engine.status(),
            }

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
            }

    except KeyError as e:
        return {
            "success": False,
            "error": f"Missing required argument: {e.args[0]}",
            "error_type": "invalid_argument",
        }

    except ValueError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_argument",
        }

    except StoreError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "store_error",
            "suggestion": "The history database is unavailable; check history_status",
        }

    except HistoryError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "history_error",
        }

    except Exception as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }
