import inspect
import json
import logging
import re
import types
import typing
from typing import Any, Callable, Literal, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DANGEROUS_TOOLS = frozenset({"delete_file"})


def is_dangerous_tool(name: str) -> bool:
    """Tools whose effects a user should confirm before they run."""
    return name in DANGEROUS_TOOLS


class ToolParameter(BaseModel):
    """JSON schema of one parameter.  Keys such as ``items`` pass through."""

    model_config = ConfigDict(extra="allow")

    type: str = "string"
    description: str = ""
    enum: list[Any] | None = None


class ToolParameters(BaseModel):
    type: Literal["object"] = "object"
    properties: dict[str, ToolParameter] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolDefinition(BaseModel):
    """A capability the model may call, keyed by its unique ``name``."""

    name: str
    description: str = ""
    parameters: ToolParameters = Field(default_factory=ToolParameters)

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.model_dump(exclude_none=True),
            },
        }


class ToolResult(BaseModel):
    success: bool
    result: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, result: Any = None) -> "ToolResult":
        if result is None or isinstance(result, str):
            return cls(success=True, result=result)
        return cls(success=True, result=json.dumps(result))

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


@runtime_checkable
class ToolExecutor(Protocol):
    """Executes a named tool.  Implemented outside the chat core."""

    async def execute_tool(self, name: str, args: dict) -> ToolResult:
        ...


class ToolArgumentError(ValueError):
    """A required argument is missing, of the wrong type or empty."""


_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
}


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read ``name: text`` entries from a Google-style ``Args:`` section."""
    doc = inspect.getdoc(func) or ""
    descriptions: dict[str, str] = {}
    in_args = False
    current = None
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if stripped.endswith(":") and not line.startswith(" "):
            break
        match = re.match(r"^(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)$", stripped)
        if match and line.startswith(("    ", "\t")) and not line.startswith(("        ", "\t\t")):
            current = match.group(1)
            descriptions[current] = match.group(2)
        elif current and stripped:
            descriptions[current] = f"{descriptions[current]} {stripped}".strip()
    return descriptions


def _summary(func: Callable) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.split("\n\n")[0].strip()


def _json_schema(annotation: Any) -> dict:
    """Map a Python annotation onto a JSON schema fragment."""
    origin = typing.get_origin(annotation) or annotation
    args = typing.get_args(annotation)
    if origin in (Union, types.UnionType):
        members = [a for a in args if a is not type(None)]
        return _json_schema(members[0]) if len(members) == 1 else {"type": "string"}
    if origin is Literal:
        return {"type": _JSON_TYPES.get(type(args[0]), "string"), "enum": list(args)}
    schema = {"type": _JSON_TYPES.get(origin, "string")}
    if schema["type"] == "array" and args and args[0] is not Ellipsis:
        schema["items"] = _json_schema(args[0])
    return schema


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    signature = inspect.signature(func)
    hints = typing.get_type_hints(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        properties[name] = {
            **_json_schema(hints.get(name, str)),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    return {"type": "object", "properties": properties}, required


class Tool:
    """A Python function exposed to the model.

    Args:
        func: Sync or async callable; its signature becomes the schema.
        name: Overrides ``func.__name__``.
        description: Overrides the first paragraph of the docstring.
    """

    def __init__(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
    ):
        self.func = func
        self.name = name or func.__name__
        schema, required = _build_parameters_schema(func)
        self.definition = ToolDefinition(
            name=self.name,
            description=description if description is not None else _summary(func),
            parameters=ToolParameters(
                properties=schema["properties"], required=required,
            ),
        )

    @property
    def dangerous(self) -> bool:
        return is_dangerous_tool(self.name)

    def validate(self, args: dict) -> None:
        for name in self.definition.parameters.required:
            if name not in args:
                raise ToolArgumentError(
                    f"Missing argument '{name}' for tool '{self.name}'"
                )
            prop = self.definition.parameters.properties[name]
            value = args[name]
            if prop.type == "string":
                if not isinstance(value, str):
                    raise ToolArgumentError(
                        f"Invalid argument '{name}' for tool '{self.name}': "
                        f"expected string, got {type(value).__name__}"
                    )
                if not value.strip():
                    raise ToolArgumentError(
                        f"Argument '{name}' for tool '{self.name}' cannot be empty"
                    )

    async def __call__(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable | None = None, *, name: str | None = None,
         description: str | None = None):
    """Decorator turning a function into a :class:`Tool`.

    Usable bare (``@tool``) or with overrides (``@tool(name="x")``).
    """
    def wrap(f: Callable) -> Tool:
        return Tool(f, name=name, description=description)
    if func is not None:
        return wrap(func)
    return wrap


class ToolRegistry:
    """A :class:`ToolExecutor` that dispatches to registered :class:`Tool` s."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool | Callable) -> Tool:
        if not isinstance(t, Tool):
            t = Tool(t)
        if t.name in self._tools:
            raise ValueError(f"Tool '{t.name}' is already registered")
        self._tools[t.name] = t
        return t

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    @property
    def definitions(self) -> list[ToolDefinition]:
        return [t.definition for t in self._tools.values()]

    async def execute_tool(self, name: str, args: dict) -> ToolResult:
        tool_obj = self._tools.get(name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {name}")
            return ToolResult.fail(f"Unknown tool: {name}")
        try:
            tool_obj.validate(args)
            return ToolResult.ok(await tool_obj(**args))
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}")
            return ToolResult.fail(str(e) or type(e).__name__)
