"""Task management tools exposed to the model.

Title lookups use a case-insensitive substring match. When several tasks
match, the most recently created one is acted on without asking the user
to disambiguate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from taskchat.db import Database
from taskchat.tools.base import Tool

DELETE_COMPLETED_SENTINEL = "__completed__"


class AddTaskTool(Tool):
    """Create a task, optionally with a due date."""

    name = "add_task"
    description = "Add a new task/todo for the user. Can optionally set a due date."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "The title of the task"},
            "due_at": {
                "type": "string",
                "description": (
                    "Optional ISO 8601 due date/time, e.g. '2026-02-15T09:00:00Z'. "
                    "Parse natural language dates relative to the current date."
                ),
            },
        },
        "required": ["title"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, user_id: str, **kwargs: Any) -> str:
        title = kwargs["title"]
        due_at = kwargs.get("due_at") or None
        self._db.add_task(user_id, title, due_at=due_at)
        due = f" (due: {due_at})" if due_at else ""
        return f'Added task: "{title}"{due}'


class ListTasksTool(Tool):
    """List the user's tasks, newest first."""

    name = "list_tasks"
    description = "List all tasks/todos for the user. Can filter by completion status."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "completed": {
                "type": "boolean",
                "description": "Filter by completed status. Omit to list all.",
            },
        },
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, user_id: str, **kwargs: Any) -> str:
        tasks = self._db.list_tasks(user_id, completed=kwargs.get("completed"))
        if not tasks:
            return "No tasks found."
        lines = []
        for index, task in enumerate(tasks, start=1):
            glyph = "✓" if task.completed else " "
            due = f" [due: {format_due_date(task.due_at)}]" if task.due_at else ""
            lines.append(f"{index}. [{glyph}] {task.title}{due}")
        return "\n".join(lines)


class ToggleTaskTool(Tool):
    """Flip the completion flag of a task found by title."""

    name = "toggle_task"
    description = "Toggle the completion status of a task by its title (partial match)"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Title or partial title of the task to toggle"},
        },
        "required": ["title"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, user_id: str, **kwargs: Any) -> str:
        fragment = kwargs["title"]
        task = self._db.find_task(user_id, fragment)
        if task is None:
            return f'No task found matching "{fragment}"'
        self._db.set_task_completed(user_id, task.id, not task.completed)
        verb = "Uncompleted" if task.completed else "Completed"
        return f'{verb}: "{task.title}"'


class DeleteTaskTool(Tool):
    """Delete one task by title, or every completed task."""

    name = "delete_task"
    description = "Delete a task by its title (partial match). Can also delete all completed tasks."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "title": {
                "type": "string",
                "description": (
                    f"Title or partial title. Use '{DELETE_COMPLETED_SENTINEL}' "
                    "to delete all completed tasks."
                ),
            },
        },
        "required": ["title"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, user_id: str, **kwargs: Any) -> str:
        fragment = kwargs["title"]
        if fragment == DELETE_COMPLETED_SENTINEL:
            self._db.delete_completed_tasks(user_id)
            return "Deleted all completed tasks."
        task = self._db.find_task(user_id, fragment)
        if task is None:
            return f'No task found matching "{fragment}"'
        self._db.delete_task(user_id, task.id)
        return f'Deleted: "{task.title}"'


class UpdateTaskTool(Tool):
    """Rename a task found by title."""

    name = "update_task"
    description = "Update the title of an existing task"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "old_title": {"type": "string", "description": "Current title or partial match"},
            "new_title": {"type": "string", "description": "New title for the task"},
        },
        "required": ["old_title", "new_title"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, user_id: str, **kwargs: Any) -> str:
        fragment = kwargs["old_title"]
        new_title = kwargs["new_title"]
        task = self._db.find_task(user_id, fragment)
        if task is None:
            return f'No task found matching "{fragment}"'
        self._db.rename_task(user_id, task.id, new_title)
        return f'Updated "{task.title}" → "{new_title}"'


def format_due_date(due_at: str) -> str:
    """Render a stored ISO-8601 due date as e.g. ``Feb 15, 2026``.

    Values that do not parse are shown verbatim.
    """
    try:
        parsed = datetime.fromisoformat(due_at)
    except ValueError:
        return due_at
    return f"{parsed:%b} {parsed.day}, {parsed.year}"
