from __future__ import annotations

"""Tool protocol and invocation data models.

A tool is an opaque, named capability (send a message, create a listing,
collect rent, ...). The agent core never looks inside a tool: it passes a
params dict and interprets only success/failure and the result payload.

Tools should:

- be idempotent on retry with the same params,
- return structured results in ``ToolResult.result``,
- avoid policy decisions themselves (autonomy is resolved before invocation).
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol


@dataclass(frozen=True)
class ToolResult:
    """Structured tool execution result."""

    success: bool
    result: Any = None
    error: Optional[str] = None


class Tool(Protocol):
    """Protocol for in-process tool implementations."""

    name: str

    async def execute(self, params: Dict[str, Any]) -> ToolResult: ...


class ToolInvoker(Protocol):
    """Invoke a tool by name.

    Implementations return the tool's result payload and raise
    ``ToolExecutionError`` for any failure, so callers only need to handle
    one error type at the step boundary.
    """

    async def invoke(self, tool_name: str, params: Dict[str, Any]) -> Any: ...


@dataclass(frozen=True)
class FunctionTool(Tool):
    """
    Adapt an async function into a ``Tool``.

    The function receives the params dict and may return a
    ``ToolResult`` or a bare payload (treated as success).
    """

    name: str
    fn: Callable[[Dict[str, Any]], Awaitable[Any]]

    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        out = await self.fn(params)
        if isinstance(out, ToolResult):
            return out
        return ToolResult(success=True, result=out)
