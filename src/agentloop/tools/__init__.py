"""Tool schemas, results and registry."""

from .base import (
    Tool,
    ToolError,
    ToolErrorCode,
    ToolParameter,
    ToolProvider,
    ToolResult,
    ToolSchema,
    ToolValidationError,
    validate_arguments,
)
from .registry import ToolRegistry, build_tool

__all__ = [
    "Tool",
    "ToolError",
    "ToolErrorCode",
    "ToolParameter",
    "ToolProvider",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "ToolValidationError",
    "build_tool",
    "validate_arguments",
]
