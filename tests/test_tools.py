"""Tests for the tool catalog, validation and execution."""

import pytest

from chatbridge.tools.base import Tool, normalize_schema
from chatbridge.tools.builtin import CurrentTimeTool, builtin_tools
from chatbridge.tools.registry import ToolRegistry
from chatbridge.tools.validation import ToolValidator
from chatbridge.types import ErrorCode, ToolResult
from tests.mock_tools import EchoTool, FailingTool, SearchTool, SlowTool


class BrokenSchemaTool(Tool):
    @property
    def name(self) -> str:
        return "broken"

    @property
    def description(self) -> str:
        return "Declares an invalid schema."

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {"x": {"type": "nonsense"}}}

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=True, content="unreachable")


@pytest.fixture
def registry():
    r = ToolRegistry(timeout=1.0)
    for tool in (EchoTool(), SearchTool(), FailingTool()):
        r.register(tool)
    return r


class TestCatalog:
    def test_catalog_sorted_declarations(self, registry):
        names = [d.name for d in registry.catalog()]
        assert names == ["echo", "failing", "search"]
        echo = registry.catalog()[0]
        assert echo.parameters["required"] == ["message"]

    def test_duplicate_registration(self, registry):
        with pytest.raises(ValueError):
            registry.register(EchoTool())
        registry.register(EchoTool(), overwrite=True)
        assert len(registry.list()) == 3

    def test_require(self, registry):
        assert registry.require("echo").name == "echo"
        with pytest.raises(KeyError):
            registry.require("nope")

    def test_enabled_allow_list(self):
        r = ToolRegistry(enabled=["search"])
        r.register(EchoTool())
        r.register(SearchTool())
        assert [d.name for d in r.catalog()] == ["search"]

    def test_disabled_wins(self):
        r = ToolRegistry(enabled=["echo"], disabled=["echo"])
        r.register(EchoTool())
        assert r.catalog() == []

    def test_normalize_schema_fills_defaults(self):
        assert normalize_schema({}) == {"type": "object", "properties": {}}
        assert normalize_schema(None) == {"type": "object", "properties": {}}
        schema = {"type": "object", "properties": {"a": {"type": "string"}}}
        assert normalize_schema(schema) == schema

    def test_builtin_tools(self):
        assert [t.name for t in builtin_tools()] == ["get_current_time"]

    def test_plugins_disabled(self, registry):
        assert registry.load_plugins(enabled=False) == 0

    def test_plugins_empty_group(self, registry):
        assert registry.load_plugins(enabled=True, group="chatbridge.tests.nothing") == 0
        assert len(registry.list()) == 3


class TestValidator:
    def test_valid(self):
        assert ToolValidator.validate(EchoTool(), {"message": "x"}) == (True, None)

    def test_missing_required(self):
        ok, message = ToolValidator.validate(EchoTool(), {})
        assert not ok
        assert "'message' is a required property" in message

    def test_wrong_type_reports_path(self):
        ok, message = ToolValidator.validate(EchoTool(), {"message": 5})
        assert not ok
        assert message.startswith("message: ")

    def test_non_object_arguments(self):
        ok, message = ToolValidator.validate(EchoTool(), ["x"])
        assert not ok
        assert "must be a JSON object" in message

    def test_broken_schema(self):
        ok, message = ToolValidator.validate(BrokenSchemaTool(), {"x": 1})
        assert not ok
        assert message.startswith("invalid schema for broken")


class TestExecute:
    async def test_success_payload(self, registry):
        result = await registry.execute("echo", {"message": "hi"})
        assert result["success"] is True
        assert result["content"] == "hi"
        assert isinstance(result["duration_ms"], int)
        assert "data" not in result

    async def test_data_is_included(self, registry):
        result = await registry.execute("search", {"q": "cats"})
        assert result["data"] == {"query": "cats", "hits": ["cats result"]}

    async def test_unknown_tool(self, registry):
        result = await registry.execute("missing", {})
        assert result == {
            "success": False,
            "error": "Unknown tool: missing",
            "error_code": ErrorCode.UNKNOWN_TOOL,
        }

    async def test_disabled_tool_is_unknown(self):
        r = ToolRegistry(disabled=["echo"])
        echo = EchoTool()
        r.register(echo)
        result = await r.execute("echo", {"message": "x"})
        assert result["error_code"] == ErrorCode.UNKNOWN_TOOL
        assert echo.calls == []

    async def test_validation_error(self, registry):
        result = await registry.execute("echo", {})
        assert result["error_code"] == ErrorCode.VALIDATION_ERROR
        assert result["error"].startswith("Validation error: ")

    async def test_exception_becomes_error(self, registry):
        result = await registry.execute("failing", {})
        assert result["error_code"] == ErrorCode.TOOL_EXCEPTION
        assert result["error"] == "Tool exception: boom"

    async def test_timeout(self):
        r = ToolRegistry(timeout=0.01)
        r.register(SlowTool(delay=1.0))
        result = await r.execute("slow", {})
        assert result["error_code"] == ErrorCode.TIMEOUT
        assert result["error"] == "Tool timed out after 0.01s"

    async def test_unsuccessful_result_becomes_error(self):
        r = ToolRegistry()
        r.register(CurrentTimeTool())
        result = await r.execute("get_current_time", {"timezone": "Mars/Olympus_Mons"})
        assert result["success"] is False
        assert result["error"] == "Unknown time zone: Mars/Olympus_Mons"
        assert result["error_code"] == ErrorCode.VALIDATION_ERROR


class TestCurrentTimeTool:
    async def test_defaults_to_utc(self):
        result = await CurrentTimeTool().execute()
        assert result.success
        assert result.data["timezone"] == "UTC"
        assert result.content.endswith("+00:00")

    async def test_explicit_utc(self):
        result = await CurrentTimeTool().execute(timezone="utc")
        assert result.success
        assert result.data["iso"] == result.content
