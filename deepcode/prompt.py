"""System, skill and compaction prompts sent to the model."""

import json
import os
import platform
import subprocess
from pathlib import Path
from typing import Iterable

from deepcode.instructions import InstructionLoader
from deepcode.logging import get_logger

log = get_logger(__name__)


def _uname_info() -> str:
    """Return ``uname -a`` output, falling back to the platform module."""
    try:
        completed = subprocess.run(
            ["uname", "-a"],
            capture_output=True,
            text=True,
            timeout=5,
            check=True,
        )
        return completed.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        return f"{platform.system()} {platform.release()} {platform.machine()}"


def build_runtime_context(project_root: Path | str) -> str:
    """Describe the local workspace as a fenced JSON block."""
    root = str(project_root)
    env = {
        "root path": root,
        "pwd": root,
        "homedir": str(Path.home()),
        "system info": _uname_info(),
    }
    return f"# Local Workspace Environment\n\n```json\n{json.dumps(env, indent=2)}\n```"


def get_system_prompt(project_root: Path | str, loader: InstructionLoader | None = None) -> str:
    """Build the operating instructions for a new session."""
    loader = loader or InstructionLoader()
    base_prompt = loader.load("system_prompt.md")
    tool_docs = loader.load_directory("tools")
    if tool_docs:
        base_prompt = f"{base_prompt}\n\n# Available Tools\n\n" + "\n\n".join(tool_docs)
    return f"{base_prompt}\n\n{build_runtime_context(project_root)}"


def get_skill_prompt(
    name: str,
    path: str,
    document: str,
    loader: InstructionLoader | None = None,
) -> str:
    """Wrap a skill document for injection as a system message."""
    loader = loader or InstructionLoader()
    return loader.render("skill_message.md", name=name, path=path, document=document)


def get_compact_prompt(messages: Iterable[dict], loader: InstructionLoader | None = None) -> str:
    """Build the summarization request for a set of serialized messages."""
    loader = loader or InstructionLoader()
    conversation = "\n".join(
        json.dumps(message, ensure_ascii=False) for message in messages
    )
    return loader.render("compact_prompt.md", conversation=conversation)


def get_compact_resume_prompt(summary: str, loader: InstructionLoader | None = None) -> str:
    """Build the message that replaces compacted history."""
    loader = loader or InstructionLoader()
    return loader.render("compact_resume.md", summary=summary)


def default_project_root() -> Path:
    """Project root used when the host does not supply one."""
    return Path(os.getcwd()).resolve()
