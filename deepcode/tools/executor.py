"""Dispatch model-issued tool calls to registered tools."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from deepcode.config import Config, get_config
from deepcode.exceptions import ToolNotFoundError
from deepcode.logging import get_logger
from deepcode.tools.edit import EditTool
from deepcode.tools.read import ReadTool
from deepcode.tools.registry import Tool, ToolCall, ToolContext, ToolRegistry, ToolResult
from deepcode.tools.shell import BashTool
from deepcode.tools.state import ReadTracker, WorkingDirectories
from deepcode.tools.write import WriteTool

log = get_logger(__name__)


@dataclass
class ToolCallExecution:
    """Serialized outcome of one tool call."""

    tool_call_id: str
    name: str
    content: str


def build_default_registry(config: Config | None = None) -> ToolRegistry:
    """Register the built-in tools that are enabled in config."""
    cfg = config or get_config()
    available: list[Tool] = [
        BashTool(cfg.tools.bash),
        ReadTool(cfg.tools.read),
        WriteTool(),
        EditTool(),
    ]
    enabled = set(cfg.tools.enabled)
    registry = ToolRegistry()
    for tool in available:
        if tool.name in enabled:
            registry.register(tool)
    return registry


def parse_tool_call(raw: Any) -> ToolCall | None:
    """Validate the shape of a raw tool call, or return None to drop it."""
    if not isinstance(raw, dict):
        return None
    call_id = raw.get("id")
    if not isinstance(call_id, str):
        return None
    function = raw.get("function")
    if not isinstance(function, dict):
        return None
    name = function.get("name")
    if not isinstance(name, str):
        return None
    arguments = function.get("arguments")
    return ToolCall(
        id=call_id,
        name=name,
        arguments=arguments if isinstance(arguments, str) else "",
    )


def parse_tool_arguments(raw_arguments: str) -> dict[str, Any]:
    """Decode a tool call's argument string.

    Raises:
        ValueError with the message reported back to the model
    """
    if not raw_arguments:
        return {}
    try:
        parsed = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse tool arguments: {e}")
    if not isinstance(parsed, dict):
        raise ValueError("Tool arguments must be a JSON object.")
    return parsed


class ToolExecutor:
    """Runs tool calls for one project, one call at a time."""

    def __init__(
        self,
        project_root: Path | str,
        registry: ToolRegistry | None = None,
        read_tracker: ReadTracker | None = None,
        working_dirs: WorkingDirectories | None = None,
    ):
        self.project_root = Path(project_root)
        self.registry = registry or build_default_registry()
        self.read_tracker = read_tracker or ReadTracker()
        self.working_dirs = working_dirs or WorkingDirectories()

    def get_definitions(self) -> list[dict[str, Any]]:
        return self.registry.get_definitions()

    async def execute_tool_calls(self, session_id: str, tool_calls: list[Any]) -> list[ToolCallExecution]:
        """Execute calls in request order, dropping malformed entries."""
        parsed = [call for call in (parse_tool_call(raw) for raw in tool_calls) if call is not None]
        if len(parsed) != len(tool_calls):
            log.warning("Dropped malformed tool calls", dropped=len(tool_calls) - len(parsed))

        executions: list[ToolCallExecution] = []
        for call in parsed:
            result = await self.execute_tool_call(session_id, call)
            executions.append(
                ToolCallExecution(
                    tool_call_id=call.id,
                    name=call.name,
                    content=result.to_content(),
                )
            )
        return executions

    async def execute_tool_call(self, session_id: str, call: ToolCall) -> ToolResult:
        """Execute a single call; every error becomes a failed result."""
        try:
            tool = self.registry.get(call.name)
        except ToolNotFoundError as e:
            return ToolResult.failure(call.name, str(e))

        try:
            arguments = parse_tool_arguments(call.arguments)
        except ValueError as e:
            return ToolResult.failure(call.name, str(e))

        context = ToolContext(
            session_id=session_id,
            project_root=self.project_root,
            tool_call=call,
            read_tracker=self.read_tracker,
            working_dirs=self.working_dirs,
        )
        log.info("Executing tool", session_id=session_id, tool=call.name, tool_call_id=call.id)
        try:
            tool.validate_arguments(arguments)
            return await tool.execute(arguments, context)
        except Exception as e:
            log.error("Tool execution failed", tool=call.name, error=str(e))
            return ToolResult.failure(call.name, str(e))
