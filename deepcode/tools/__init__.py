"""Tools package for deepcode."""

from deepcode.tools.registry import (
    Tool,
    ToolCall,
    ToolContext,
    ToolName,
    ToolRegistry,
    ToolResult,
)
from deepcode.tools.state import ReadTracker, WorkingDirectories
from deepcode.tools.shell import BashTool
from deepcode.tools.read import ReadTool
from deepcode.tools.write import WriteTool
from deepcode.tools.edit import EditTool
from deepcode.tools.executor import ToolCallExecution, ToolExecutor, build_default_registry

__all__ = [
    "Tool",
    "ToolCall",
    "ToolContext",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "ReadTracker",
    "WorkingDirectories",
    "BashTool",
    "ReadTool",
    "WriteTool",
    "EditTool",
    "ToolCallExecution",
    "ToolExecutor",
    "build_default_registry",
]
