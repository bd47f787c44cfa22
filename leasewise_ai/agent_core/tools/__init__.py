"""Tool invocation seam.

The agent core calls tools by name through a ``ToolInvoker``:

- ``ToolRegistry``: in-process tools registered by name.
- ``HttpToolInvoker``: tools served by a remote tool service over HTTP.
"""

from .base import FunctionTool, Tool, ToolInvoker, ToolResult
from .http import HttpToolInvoker
from .registry import ToolRegistry

__all__ = [
    "FunctionTool",
    "HttpToolInvoker",
    "Tool",
    "ToolInvoker",
    "ToolRegistry",
    "ToolResult",
]
