"""Argument validation against a tool's JSON schema."""

from __future__ import annotations

import jsonschema

from chatbridge.tools.base import Tool, normalize_schema


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: dict) -> tuple[bool, str | None]:
        """Return ``(ok, message)``; a broken tool schema counts as a failure too."""
        if not isinstance(arguments, dict):
            return False, f"arguments for {tool.name} must be a JSON object"
        try:
            jsonschema.validate(instance=arguments, schema=normalize_schema(tool.parameters))
        except jsonschema.ValidationError as e:
            path = "/".join(str(p) for p in e.absolute_path)
            return False, f"{path}: {e.message}" if path else str(e.message)
        except jsonschema.SchemaError as e:
            return False, f"invalid schema for {tool.name}: {e.message}"
        return True, None
