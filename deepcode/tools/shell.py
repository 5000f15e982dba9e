"""Bash tool for executing commands in a login shell."""

import asyncio
import os
import re
import secrets
import signal
from dataclasses import dataclass
from typing import Any

from deepcode.config import BashToolConfig, get_config
from deepcode.logging import get_logger
from deepcode.tools.registry import Tool, ToolContext, ToolName, ToolResult

log = get_logger(__name__)

STATUS_VARIABLE = "__DEEPCODE_STATUS__"
MARKER_PREFIX = "__DEEPCODE_PWD__"


@dataclass
class CommandOutcome:
    """Captured result of one wrapped shell invocation."""

    ok: bool
    output: str
    cwd: str | None
    exit_code: int | None
    signal: str | None
    truncated: bool


def resolve_shell_path() -> str:
    """Use $SHELL when it is bash or zsh, otherwise /bin/bash."""
    env_shell = os.environ.get("SHELL", "")
    if re.search(r"/(bash|zsh)$", env_shell):
        return env_shell
    return "/bin/bash"


def build_shell_init_command(shell_path: str) -> str | None:
    """Source the interactive rc file so aliases and PATH tweaks apply."""
    if shell_path.endswith("/zsh"):
        return 'ZSHRC="${ZDOTDIR:-$HOME}/.zshrc"; if [ -f "$ZSHRC" ]; then . "$ZSHRC"; fi'
    if shell_path.endswith("/bash"):
        return 'BASHRC="${BASH_ENV:-$HOME/.bashrc}"; if [ -f "$BASHRC" ]; then . "$BASHRC"; fi'
    return None


def build_marker() -> str:
    return f"{MARKER_PREFIX}{secrets.token_hex(8)}__"


def wrap_command(command: str, shell_path: str, marker: str) -> str:
    """Wrap a command so the shell reports its final $PWD and keeps the exit status."""
    parts: list[str] = []
    init_command = build_shell_init_command(shell_path)
    if init_command:
        parts.append(init_command)
    parts.extend([
        command,
        f"{STATUS_VARIABLE}=$?",
        f"printf '%s%s\\n' \"{marker}\" \"$PWD\"",
        f"exit ${STATUS_VARIABLE}",
    ])
    return "\n".join(parts)


def strip_marker(stdout: str, marker: str) -> tuple[str, str | None]:
    """Remove the last marker line from stdout and return (output, cwd).

    The marker may follow output that did not end with a newline.
    """
    if not stdout:
        return "", None

    start = stdout.rfind(marker)
    if start < 0:
        return stdout, None
    line_end = stdout.find("\n", start)
    if line_end < 0:
        cwd = stdout[start + len(marker):]
        rest = ""
    else:
        cwd = stdout[start + len(marker):line_end]
        rest = stdout[line_end + 1:]
    return stdout[:start] + rest, cwd.strip() or None


def join_output(stdout: str, stderr: str) -> str:
    if stdout and stderr:
        return f"{stdout}\n{stderr}"
    return stdout or stderr


def truncate_output(output: str, max_chars: int) -> tuple[str, bool]:
    if len(output) <= max_chars:
        return output, False
    return output[:max_chars], True


def _signal_name(number: int) -> str:
    try:
        return signal.Signals(number).name
    except ValueError:
        return str(number)


class BashTool(Tool):
    """Execute shell commands with per-session working directory continuity."""

    name = ToolName.BASH.value
    description = "Execute shell commands in a persistent bash session."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "description": {
                "type": "string",
                "description": "Clear, concise description of what this command does in active voice.",
            },
        },
        "required": ["command"],
        "additionalProperties": False,
    }

    def __init__(self, config: BashToolConfig | None = None):
        self.config = config or get_config().tools.bash

    async def _run(self, shell_path: str, wrapped: str, cwd: str) -> tuple[bytes, bytes, int | None, str | None]:
        """Run the wrapped command, killing it only when the configured timeout expires."""
        process = await asyncio.create_subprocess_exec(
            shell_path,
            "-lc",
            wrapped,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=max(1, int(self.config.timeout)),
            )
        except asyncio.TimeoutError:
            log.warning("Shell command timed out", timeout=self.config.timeout)
            process.kill()
            stdout, stderr = await process.communicate()

        returncode = process.returncode
        if returncode is not None and returncode < 0:
            return stdout, stderr, None, _signal_name(-returncode)
        return stdout, stderr, returncode, None

    def _build_outcome(
        self,
        stdout: str,
        stderr: str,
        marker: str,
        exit_code: int | None,
        signal_name: str | None,
    ) -> CommandOutcome:
        cleaned_stdout, cwd = strip_marker(stdout, marker)
        text, truncated = truncate_output(
            join_output(cleaned_stdout, stderr),
            self.config.max_output_chars,
        )
        return CommandOutcome(
            ok=exit_code == 0 and signal_name is None,
            output=text,
            cwd=cwd,
            exit_code=exit_code,
            signal=signal_name,
            truncated=truncated,
        )

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Execute a shell command.

        Nonzero exit codes and signals are reported in the result. Launch
        failures (missing shell, vanished working directory) raise.
        """
        command = arguments.get("command")
        if not isinstance(command, str) or not command.strip():
            return self.failure('Missing required "command" string.')

        start_cwd = context.working_dirs.get(context.session_id, context.project_root)
        shell_path = resolve_shell_path()
        marker = build_marker()
        wrapped = wrap_command(command, shell_path, marker)

        log.info("Executing shell command", session_id=context.session_id, command=command, cwd=start_cwd)
        raw_stdout, raw_stderr, exit_code, signal_name = await self._run(shell_path, wrapped, start_cwd)

        outcome = self._build_outcome(
            raw_stdout.decode("utf-8", errors="replace"),
            raw_stderr.decode("utf-8", errors="replace"),
            marker,
            exit_code,
            signal_name,
        )
        context.working_dirs.set(context.session_id, outcome.cwd or start_cwd)

        metadata = {
            "exit_code": outcome.exit_code,
            "signal": outcome.signal,
            "cwd": outcome.cwd,
            "truncated": outcome.truncated,
        }
        output = outcome.output or None
        if outcome.ok:
            return self.success(output, metadata)

        if outcome.signal:
            error = f"Command terminated by signal {outcome.signal}."
        elif outcome.exit_code is not None:
            error = f"Command failed with exit code {outcome.exit_code}."
        else:
            error = "Command failed."
        return ToolResult(ok=False, name=self.name, output=output, error=error, metadata=metadata)
