"""Tools that ship with chatbridge."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chatbridge.tools.base import Tool
from chatbridge.types import ErrorCode, ToolResult


class CurrentTimeTool(Tool):
    """Report the current date and time, optionally in an IANA time zone."""

    @property
    def name(self) -> str:
        return "get_current_time"

    @property
    def description(self) -> str:
        return "Get the current date and time. Optionally pass an IANA time zone name."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "IANA time zone, e.g. 'Europe/Paris'. Defaults to UTC.",
                }
            },
        }

    async def execute(self, **kwargs) -> ToolResult:
        tz_name = kwargs.get("timezone") or "UTC"
        try:
            tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            return ToolResult(
                success=False,
                content=f"Unknown time zone: {tz_name}",
                error=f"Unknown time zone: {tz_name}",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        now = datetime.now(tz)
        return ToolResult(
            success=True,
            content=now.isoformat(),
            data={"iso": now.isoformat(), "timezone": tz_name},
        )


def builtin_tools() -> list[Tool]:
    return [CurrentTimeTool()]
