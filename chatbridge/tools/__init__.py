"""Tool catalog and execution."""

from chatbridge.tools.base import Tool, normalize_schema
from chatbridge.tools.builtin import CurrentTimeTool, builtin_tools
from chatbridge.tools.registry import ToolRegistry
from chatbridge.tools.validation import ToolValidator

__all__ = [
    "CurrentTimeTool",
    "Tool",
    "ToolRegistry",
    "ToolValidator",
    "builtin_tools",
    "normalize_schema",
]
