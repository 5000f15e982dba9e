"""Tool registry, base tool class and the structured tool result envelope."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from deepcode.exceptions import ToolNotFoundError, ToolValidationError
from deepcode.logging import get_logger
from deepcode.tools.state import ReadTracker, WorkingDirectories

log = get_logger(__name__)


class ToolName(str, Enum):
    """Tools known to the executor."""

    BASH = "bash"
    READ = "read"
    WRITE = "write"
    EDIT = "edit"


class ToolResult(BaseModel):
    """Result envelope serialized into the content of a tool message."""

    ok: bool = True
    name: str
    output: str | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.ok and not (self.error or "").strip():
            self.error = "Tool execution failed"
        return self

    @classmethod
    def failure(cls, name: str, error: str, metadata: dict[str, Any] | None = None) -> "ToolResult":
        return cls(ok=False, name=name, error=error, metadata=metadata)

    def to_payload(self) -> dict[str, Any]:
        """Build the wire payload in stable key order, omitting absent fields."""
        payload: dict[str, Any] = {"ok": self.ok, "name": self.name}
        if self.output is not None:
            payload["output"] = self.output
        if self.error:
            payload["error"] = self.error
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    def to_content(self) -> str:
        """Serialize to the tool message content string."""
        return json.dumps(self.to_payload(), indent=2, ensure_ascii=False)

    @classmethod
    def from_content(cls, content: str) -> "ToolResult":
        """Parse a tool message content string back into a result."""
        return cls.model_validate(json.loads(content))


@dataclass
class ToolCall:
    """A validated tool call emitted by the model."""

    id: str
    name: str
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ToolContext:
    """Per-call execution context handed to every tool."""

    session_id: str
    project_root: Path
    tool_call: ToolCall | None = None
    read_tracker: ReadTracker = field(default_factory=ReadTracker)
    working_dirs: WorkingDirectories = field(default_factory=WorkingDirectories)


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}

    @abstractmethod
    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Execute the tool.

        Args:
            arguments: Parsed JSON arguments from the tool call
            context: Session-scoped execution context

        Returns:
            ToolResult envelope; validation problems are reported, not raised
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for LLM.

        Returns:
            OpenAI function-tool definition
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check that every required argument is present.

        Raises:
            ToolValidationError naming the first missing field
        """
        required = self.parameters.get("required", [])
        properties = self.parameters.get("properties", {})
        for field_name in required:
            if arguments.get(field_name) is None:
                expected = properties.get(field_name, {}).get("type", "value")
                raise ToolValidationError(
                    self.name,
                    f'Missing required "{field_name}" {expected}.',
                )

    def failure(self, error: str, metadata: dict[str, Any] | None = None) -> ToolResult:
        return ToolResult.failure(self.name, error, metadata)

    def success(self, output: str | None = None, metadata: dict[str, Any] | None = None) -> ToolResult:
        return ToolResult(ok=True, name=self.name, output=output, metadata=metadata)

    def require_string(self, arguments: dict[str, Any], field_name: str, allow_blank: bool = False) -> str:
        """Return a string argument or raise a named-field validation error."""
        value = arguments.get(field_name)
        if not isinstance(value, str) or (not allow_blank and not value.strip()):
            raise ToolValidationError(self.name, f'Missing required "{field_name}" string.')
        return value


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions for LLM."""
        return [tool.get_definition() for tool in self._tools.values()]
