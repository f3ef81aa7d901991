"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """Base class for all task tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]

    @abstractmethod
    async def run(self, user_id: str, **kwargs: Any) -> str:
        """Execute tool for ``user_id`` with validated arguments."""
