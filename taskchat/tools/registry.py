"""Registry for tool registration and execution."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError, create_model

from taskchat.db import Database
from taskchat.tools.base import Tool
from taskchat.tools.task_tools import (
    AddTaskTool,
    DeleteTaskTool,
    ListTasksTool,
    ToggleTaskTool,
    UpdateTaskTool,
)

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Explicit registry of task tools.

    ``execute`` never raises for tool-level problems: unknown names, invalid
    arguments and store failures all come back as text the model can read.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    async def execute(self, tool_name: str, arguments: dict[str, Any], user_id: str) -> str:
        tool = self._tools.get(tool_name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %r", tool_name)
            return f"Unknown tool: {tool_name}"

        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
        except ValueError as exc:
            LOGGER.warning("Rejected arguments for %s: %s", tool_name, exc)
            return f"Error: Invalid input for {tool_name}: {exc}"

        LOGGER.info("Executing tool %s for user %s: %r", tool_name, user_id, validated)
        try:
            return await tool.run(user_id, **validated)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Tool %s failed", tool_name)
            return f"Error: {exc}"


def build_task_registry(db: Database) -> ToolRegistry:
    """Registry holding the five task tools, in catalog order."""

    registry = ToolRegistry()
    registry.register(AddTaskTool(db))
    registry.register(ListTasksTool(db))
    registry.register(ToggleTaskTool(db))
    registry.register(DeleteTaskTool(db))
    registry.register(UpdateTaskTool(db))
    return registry


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(_summarize(exc)) from exc
    return value.model_dump(exclude_none=True)


def _summarize(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
