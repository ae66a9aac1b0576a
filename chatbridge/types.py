from dataclasses import dataclass, field


@dataclass
class ToolResult:
    success: bool
    content: str
    data: dict | list | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"
    ARGUMENT_PARSE_ERROR = "argument_parse_error"


class ChatBridgeError(Exception):
    """Base class for errors raised by chatbridge itself."""


class ConfigError(ChatBridgeError):
    """Invalid or unreadable configuration."""
