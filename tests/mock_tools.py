"""Mock tool implementations for testing."""

import asyncio

from chatbridge.tools.base import Tool
from chatbridge.types import ToolResult


class EchoTool(Tool):
    def __init__(self):
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message back."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(dict(kwargs))
        return ToolResult(success=True, content=kwargs.get("message", ""))


class SearchTool(Tool):
    @property
    def name(self) -> str:
        return "search"

    @property
    def description(self) -> str:
        return "Searches a tiny in-memory index."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"q": {"type": "string"}},
            "required": ["q"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        q = kwargs["q"]
        return ToolResult(success=True, content="", data={"query": q, "hits": [f"{q} result"]})


class FailingTool(Tool):
    @property
    def name(self) -> str:
        return "failing"

    @property
    def description(self) -> str:
        return "Always raises."

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("boom")


class SlowTool(Tool):
    def __init__(self, delay: float = 5.0, timeout: float | None = None):
        self.delay = delay
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Sleeps before answering."

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        await asyncio.sleep(self.delay)
        return ToolResult(success=True, content="done")


class RaisingExecutor:
    """Tool executor that ignores the catalog and raises on every call."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    async def execute(self, name: str, arguments: dict):
        self.calls.append((name, arguments))
        raise ConnectionError("executor unavailable")
