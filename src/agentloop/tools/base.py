"""Base types for the tool system."""

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # JSON Schema type
    description: str
    required: bool = True
    enum: list[str] | None = None
    default: Any = None


@dataclass
class ToolSchema:
    """JSON Schema representation of a tool for LLM function calling."""

    name: str
    description: str
    parameters: list[ToolParameter]

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format.

        Returns:
            Dictionary matching OpenAI's function schema format
        """
        properties = {}
        required = []

        for param in self.parameters:
            param_schema: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                param_schema["enum"] = param.enum
            if param.default is not None:
                param_schema["default"] = param.default

            properties[param.name] = param_schema

            if param.required:
                required.append(param.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }


class ToolErrorCode(str, Enum):
    """Why a tool call failed."""

    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    ARGUMENT_PARSE_ERROR = "ARGUMENT_PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    TIMEOUT = "TIMEOUT"


@dataclass
class ToolError:
    """Failure details attached to an unsuccessful ToolResult."""

    code: str
    message: str


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""

    success: bool
    content: str
    data: Any = None
    error: ToolError | None = None

    @classmethod
    def ok(cls, content: str, data: Any = None) -> "ToolResult":
        return cls(success=True, content=content, data=data)

    @classmethod
    def failure(cls, code: Union[ToolErrorCode, str], message: str) -> "ToolResult":
        """Build a failed result whose content repeats the error message."""
        code_value = code.value if isinstance(code, ToolErrorCode) else code
        return cls(success=False, content=message, error=ToolError(code=code_value, message=message))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "content": self.content}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = {"code": self.error.code, "message": self.error.message}
        return result

    def to_message_content(self) -> str:
        """Serialise the result as the content of a ``tool`` message."""
        return json.dumps(self.to_dict(), default=str, ensure_ascii=False)


class ToolValidationError(ValueError):
    """Arguments do not match a tool's declared parameters."""

    def __init__(self, message: str, tool_name: str, parameter: str):
        super().__init__(message)
        self.tool_name = tool_name
        self.parameter = parameter


def _json_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches_type(expected: str, actual: str) -> bool:
    if expected == actual:
        return True
    # JSON Schema numbers include integers
    return expected == "number" and actual == "integer"


def validate_arguments(schema: ToolSchema, arguments: dict[str, Any]) -> dict[str, Any]:
    """Check ``arguments`` against the schema and fill in declared defaults.

    Arguments the schema does not declare are passed through unchanged.

    Raises:
        ToolValidationError: On a missing required parameter, a JSON type
            mismatch or a value outside the parameter's enum
    """
    validated: dict[str, Any] = {}

    for param in schema.parameters:
        value = arguments.get(param.name)

        if value is None:
            if param.required:
                raise ToolValidationError(
                    f"Missing required parameter: {param.name}", schema.name, param.name
                )
            if param.default is not None:
                validated[param.name] = param.default
            continue

        actual = _json_type(value)
        if not _matches_type(param.type, actual):
            raise ToolValidationError(
                f"Invalid type for parameter {param.name}: expected {param.type}, got {actual}",
                schema.name,
                param.name,
            )
        if param.enum and str(value) not in param.enum:
            raise ToolValidationError(
                f"Invalid value for parameter {param.name}: must be one of [{', '.join(param.enum)}]",
                schema.name,
                param.name,
            )
        validated[param.name] = value

    known = {param.name for param in schema.parameters}
    for key, value in arguments.items():
        if key not in known:
            validated[key] = value

    return validated


# Tool function signature: (optionally async) function returning text or a ToolResult
ToolFunction = Callable[..., Union[Awaitable[Any], Any]]


@dataclass
class Tool:
    """A tool that the agent can use."""

    schema: ToolSchema
    fn: ToolFunction
    accepts_context: bool = False

    @property
    def name(self) -> str:
        return self.schema.name

    async def execute(self, arguments: dict[str, Any], context: Any = None) -> ToolResult:
        """Execute the tool with given arguments.

        Args:
            arguments: Parsed tool arguments
            context: Caller-supplied tool context, passed as ``context=``
                when the function declares it

        Returns:
            Tool execution result
        """
        kwargs = dict(arguments)
        if self.accepts_context:
            kwargs["context"] = context

        if inspect.iscoroutinefunction(self.fn):
            result = await self.fn(**kwargs)
        else:
            # Blocking functions run in a worker thread so siblings keep running
            result = await asyncio.to_thread(self.fn, **kwargs)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, ToolResult):
            return result
        if isinstance(result, str):
            return ToolResult.ok(result)
        if result is None:
            return ToolResult.ok("")
        return ToolResult.ok(json.dumps(result, default=str, ensure_ascii=False), data=result)


class ToolProvider(Protocol):
    """Source of tools consumed by the loop controller."""

    def get_tool_definitions(self) -> list[ToolSchema]: ...

    def get_tool(self, name: str) -> Tool | None: ...
