from __future__ import annotations

"""Tool registry.

The registry maps a tool name to an in-process ``Tool`` implementation and
doubles as a ``ToolInvoker`` for the workflow engine and the tool gateway.
"""

import logging
from typing import Any, Dict, Iterable, List

from ..errors import ToolExecutionError
from .base import Tool, ToolInvoker

logger = logging.getLogger(__name__)


class ToolRegistry(ToolInvoker):
    """
    In-memory mapping of tool names to implementations.

    Notes:
        - ``register`` overwrites any existing mapping for the tool name.
        - ``get`` will raise ``KeyError`` if the tool is missing.
        - ``invoke`` converts every failure into ``ToolExecutionError``.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Register a tool implementation.

        Args:
            tool: The tool instance to register. It must expose a ``name`` attribute.
        """
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        """
        Retrieve a registered tool by name.

        Raises:
            KeyError: If no tool is registered with the given name.
        """
        return self._tools[name]

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def names(self) -> List[str]:
        return sorted(self._tools)

    async def invoke(self, tool_name: str, params: Dict[str, Any]) -> Any:
        """
        Execute a registered tool and return its result payload.

        Raises:
            ToolExecutionError: If the tool is unknown, raises, or reports failure.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise ToolExecutionError(tool_name, "tool not registered")
        try:
            res = await tool.execute(dict(params))
        except ToolExecutionError:
            raise
        except Exception as e:
            logger.warning(f"Tool {tool_name} raised: {e}")
            raise ToolExecutionError(tool_name, str(e)) from e
        if not res.success:
            raise ToolExecutionError(tool_name, res.error or "tool reported failure", details=res.result)
        return res.result
