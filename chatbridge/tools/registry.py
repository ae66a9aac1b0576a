"""
Tool registry -- the tool catalog and execution collaborator.

``catalog()`` supplies the declarations the caller has enabled;
``execute()`` runs a tool by name and always returns a plain dict.  It
never raises: unknown tools, schema violations, timeouts and exceptions
come back as ``{"error": ..., "error_code": ...}``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from importlib.metadata import entry_points
from typing import Any

from chatbridge.llm.types import ToolDeclaration
from chatbridge.tools.base import Tool
from chatbridge.tools.validation import ToolValidator
from chatbridge.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(
        self,
        *,
        timeout: float = 30.0,
        enabled: list[str] | None = None,
        disabled: list[str] | None = None,
    ):
        self._tools: dict[str, Tool] = {}
        self.timeout = timeout
        self.enabled = set(enabled or [])
        self.disabled = set(disabled or [])

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise KeyError(name)
        return t

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def is_enabled(self, name: str) -> bool:
        if name in self.disabled:
            return False
        return not self.enabled or name in self.enabled

    def catalog(self) -> list[ToolDeclaration]:
        """Declarations for every registered tool the configuration enables."""
        return [t.declaration() for t in self.list() if self.is_enabled(t.name)]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        tool = self.get(name)
        if tool is None or not self.is_enabled(name):
            return _error(f"Unknown tool: {name}", ErrorCode.UNKNOWN_TOOL)

        valid, message = ToolValidator.validate(tool, arguments)
        if not valid:
            return _error(f"Validation error: {message}", ErrorCode.VALIDATION_ERROR)

        start = time.monotonic()
        try:
            result = await asyncio.wait_for(tool.execute(**arguments), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", name, self.timeout)
            return _error(f"Tool timed out after {self.timeout}s", ErrorCode.TIMEOUT)
        except Exception as e:
            logger.warning("Tool %s raised: %s", name, e)
            return _error(f"Tool exception: {e}", ErrorCode.TOOL_EXCEPTION)

        duration_ms = int((time.monotonic() - start) * 1000)
        return _to_payload(result, duration_ms)

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "chatbridge.tools",
        allow_tools: set[str] | None = None,
    ) -> int:
        """Register tools advertised under the *group* entry point.

        Tool classes are constructed with no arguments, or with
        ``timeout=`` when their ``__init__`` accepts it.
        """
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            if allow_tools and ep.name not in allow_tools:
                continue
            tool_cls = ep.load()
            kwargs: dict = {}
            if "timeout" in inspect.signature(tool_cls).parameters:
                kwargs["timeout"] = self.timeout
            self.register(tool_cls(**kwargs))
            loaded += 1
        return loaded


def _error(message: str, code: str) -> dict[str, Any]:
    return {"success": False, "error": message, "error_code": code}


def _to_payload(result: ToolResult, duration_ms: int) -> dict[str, Any]:
    if not result.success:
        return _error(result.error or result.content, result.error_code or ErrorCode.TOOL_EXCEPTION)
    payload: dict[str, Any] = {
        "success": True,
        "content": result.content,
        "duration_ms": duration_ms,
    }
    if result.data is not None:
        payload["data"] = result.data
    if result.metadata:
        payload["metadata"] = dict(result.metadata)
    return payload
