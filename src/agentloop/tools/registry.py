"""Tool registration and discovery."""

import inspect
import types
from collections.abc import Callable
from typing import Any, Union, get_args, get_origin, get_type_hints

from agentloop.tools.base import Tool, ToolFunction, ToolParameter, ToolSchema

CONTEXT_PARAMETER = "context"


def _python_type_to_json_schema(py_type: Any) -> str:
    """Convert Python type hint to JSON Schema type.

    Args:
        py_type: Python type annotation

    Returns:
        JSON Schema type string
    """
    if py_type is type(None):
        return "null"

    # Unwrap Union types (Optional[X] and X | None)
    origin = get_origin(py_type)
    if origin is Union or origin is types.UnionType:
        non_none = [arg for arg in get_args(py_type) if arg is not type(None)]
        if non_none:
            py_type = non_none[0]
            origin = get_origin(py_type)

    # Parameterised generics such as list[str] map through their origin
    if origin is not None:
        py_type = origin

    type_map = {
        str: "string",
        int: "integer",
        float: "number",
        bool: "boolean",
        list: "array",
        tuple: "array",
        dict: "object",
    }

    return type_map.get(py_type, "string")


def _parameter_description(fn: Callable[..., Any], param_name: str) -> str:
    # Simple parsing: look for "param_name: description" in the docstring
    if fn.__doc__:
        for line in fn.__doc__.split("\n"):
            line = line.strip()
            if line.startswith(f"{param_name}:"):
                return line[len(param_name) + 1 :].strip()
    return f"Parameter {param_name}"


def build_tool(fn: ToolFunction, description: str, name: str | None = None) -> Tool:
    """Introspect ``fn`` into a Tool.

    A parameter named ``context`` receives the loop's tool context and is
    left out of the schema the model sees.
    """
    hints = get_type_hints(fn)
    sig = inspect.signature(fn)

    parameters: list[ToolParameter] = []
    accepts_context = False

    for param_name, param in sig.parameters.items():
        if param_name == CONTEXT_PARAMETER:
            accepts_context = True
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        parameters.append(
            ToolParameter(
                name=param_name,
                type=_python_type_to_json_schema(hints.get(param_name, str)),
                description=_parameter_description(fn, param_name),
                required=param.default is inspect.Parameter.empty,
                default=None if param.default is inspect.Parameter.empty else param.default,
            )
        )

    schema = ToolSchema(
        name=name or fn.__name__,
        description=description,
        parameters=parameters,
    )
    return Tool(schema=schema, fn=fn, accepts_context=accepts_context)


class ToolRegistry:
    """Named collection of tools offered to the model.

    Example:
        registry = ToolRegistry()

        @registry.tool(description="Add two numbers")
        async def add(a: int, b: int) -> str:
            '''Add numbers.

            Args:
                a: First operand
                b: Second operand
            '''
            return str(a + b)
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Remove a tool by name (no-op if missing)."""
        self._tools.pop(name, None)

    def tool(
        self,
        description: str,
        name: str | None = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """Decorator to register a function as a tool.

        Introspects the function signature and docstring to build the tool schema.

        Args:
            description: Human-readable description of what the tool does
            name: Tool name (defaults to the function name)

        Returns:
            Decorator function
        """

        def decorator(fn: ToolFunction) -> ToolFunction:
            self.register(build_tool(fn, description, name))
            return fn

        return decorator

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_tool_definitions(self) -> list[ToolSchema]:
        """Schemas of all registered tools, in registration order."""
        return [tool.schema for tool in self._tools.values()]

    def clear(self) -> None:
        """Remove all tools."""
        self._tools.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
