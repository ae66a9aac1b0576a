"""LLM subsystem -- unified types, provider adapters and response accumulation."""

from chatbridge.llm.types import (
    ConnectionSettings,
    ImagePart,
    Message,
    TextPart,
    ThinkingSettings,
    ToolCall,
    ToolDeclaration,
    UnifiedRequest,
    Usage,
)
from chatbridge.llm.registry import AdapterRegistry
from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.tool_call_assembler import ToolCallAssembler

__all__ = [
    "AdapterRegistry",
    "ConnectionSettings",
    "ImagePart",
    "Message",
    "ResponseAccumulator",
    "TextPart",
    "ThinkingSettings",
    "ToolCall",
    "ToolCallAssembler",
    "ToolDeclaration",
    "UnifiedRequest",
    "Usage",
]
