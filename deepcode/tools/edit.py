"""Edit tool for exact string replacement inside a file."""

import os
from pathlib import Path
from typing import Any

from deepcode.logging import get_logger
from deepcode.tools.registry import Tool, ToolContext, ToolName, ToolResult

log = get_logger(__name__)


class EditTool(Tool):
    """Replace exact occurrences of a string in a previously read file."""

    name = ToolName.EDIT.value
    description = "Perform exact string replacements in files."
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "The absolute path to the file to modify",
            },
            "old_string": {
                "type": "string",
                "description": "The text to replace",
            },
            "new_string": {
                "type": "string",
                "description": "The text to replace it with (must be different from old_string)",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace all occurrences of old_string (default false)",
            },
        },
        "required": ["file_path", "old_string", "new_string"],
        "additionalProperties": False,
    }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        file_path = self.require_string(arguments, "file_path")
        if not os.path.isabs(file_path):
            return self.failure("file_path must be an absolute path.")
        old_string = self.require_string(arguments, "old_string", allow_blank=True)
        new_string = self.require_string(arguments, "new_string", allow_blank=True)
        if old_string == "":
            return self.failure("old_string must not be empty.")
        if old_string == new_string:
            return self.failure("new_string must differ from old_string.")

        path = Path(file_path)
        if not context.read_tracker.was_read(context.session_id, path):
            return self.failure("Must read file before editing.")
        if not path.exists():
            return self.failure(f"File not found: {file_path}")
        if path.is_dir():
            return self.failure("file_path points to a directory.")

        replace_all = arguments.get("replace_all") is True

        try:
            with open(path, encoding="utf-8", newline="") as f:
                raw = f.read()
            matches = raw.count(old_string)
            if matches == 0:
                return self.failure("old_string not found in file.")
            if matches > 1 and not replace_all:
                return self.failure("old_string is not unique; use replace_all or provide more context.")

            updated = raw.replace(old_string, new_string, -1 if replace_all else 1)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(updated)
        except (OSError, ValueError) as e:
            log.error("Edit failed", path=file_path, error=str(e))
            return self.failure(str(e))

        replaced = matches if replace_all else 1
        return self.success(f"Replaced {replaced} occurrence(s) in {file_path}.")
