"""Write tool for creating or overwriting files."""

import os
from pathlib import Path
from typing import Any

from deepcode.logging import get_logger
from deepcode.tools.registry import Tool, ToolContext, ToolName, ToolResult

log = get_logger(__name__)


class WriteTool(Tool):
    """Create or overwrite a file. Existing files must be read first."""

    name = ToolName.WRITE.value
    description = "Write a file to the local filesystem."
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "The absolute path to the file to write (must be absolute, not relative)",
            },
            "content": {
                "type": "string",
                "description": "The content to write to the file",
            },
        },
        "required": ["file_path", "content"],
        "additionalProperties": False,
    }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Write content to a file.

        Args:
            arguments: ``file_path`` (absolute) and ``content``
            context: Session context used for the read-before-write check

        Returns:
            ToolResult with the number of UTF-8 bytes written
        """
        file_path = self.require_string(arguments, "file_path")
        if not os.path.isabs(file_path):
            return self.failure("file_path must be an absolute path.")
        content = self.require_string(arguments, "content", allow_blank=True)

        path = Path(file_path)
        if path.exists():
            if path.is_dir():
                return self.failure("file_path points to a directory.")
            if not context.read_tracker.was_read(context.session_id, path):
                return self.failure("Must read existing file before writing.")

        data = content.encode("utf-8")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            log.error("Write failed", path=file_path, error=str(e))
            return self.failure(str(e))

        return self.success(f"Wrote {len(data)} bytes to {file_path}.")
