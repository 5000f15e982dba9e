import shutil
from pathlib import Path

import pytest

from deepcode.config import BashToolConfig
from deepcode.tools.registry import ToolContext
from deepcode.tools.shell import BashTool, strip_marker, wrap_command

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="bash is not available")


@pytest.fixture
def isolated_shell(monkeypatch, tmp_path: Path):
    """Run commands with an empty home so no user rc files are sourced."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("SHELL", shutil.which("bash"))
    monkeypatch.delenv("BASH_ENV", raising=False)
    return home


def _context(root: Path, session_id: str = "s1") -> ToolContext:
    return ToolContext(session_id=session_id, project_root=root)


def test_strip_marker_returns_cwd_and_clean_output():
    marker = "__DEEPCODE_PWD__abc__"

    output, cwd = strip_marker(f"hello\n{marker}/tmp/work\n", marker)

    assert output == "hello\n"
    assert cwd == "/tmp/work"


def test_strip_marker_after_unterminated_output():
    marker = "__DEEPCODE_PWD__abc__"

    output, cwd = strip_marker(f"no-newline{marker}/srv\n", marker)

    assert output == "no-newline"
    assert cwd == "/srv"


def test_strip_marker_without_marker_keeps_output():
    assert strip_marker("plain\n", "__DEEPCODE_PWD__abc__") == ("plain\n", None)


def test_wrap_command_sources_rc_and_preserves_status():
    wrapped = wrap_command("make test", "/bin/bash", "__M__")

    lines = wrapped.split("\n")
    assert lines[0].startswith('BASHRC="${BASH_ENV:-$HOME/.bashrc}"')
    assert lines[1] == "make test"
    assert lines[2] == "__DEEPCODE_STATUS__=$?"
    assert lines[-1] == "exit $__DEEPCODE_STATUS__"


@pytest.mark.asyncio
async def test_bash_starts_in_project_root(isolated_shell, tmp_path: Path):
    result = await BashTool(BashToolConfig()).execute({"command": "pwd"}, _context(tmp_path))

    assert result.ok is True
    assert Path(result.output.strip()).resolve() == tmp_path.resolve()
    assert result.metadata["exit_code"] == 0
    assert result.metadata["truncated"] is False


@pytest.mark.asyncio
async def test_bash_keeps_working_directory_between_calls(isolated_shell, tmp_path: Path):
    tool = BashTool(BashToolConfig())
    context = _context(tmp_path)
    (tmp_path / "sub").mkdir()

    first = await tool.execute({"command": "cd sub"}, context)
    second = await tool.execute({"command": "pwd"}, context)

    assert first.ok is True
    assert first.output is None
    assert Path(first.metadata["cwd"]).resolve() == (tmp_path / "sub").resolve()
    assert Path(second.output.strip()).resolve() == (tmp_path / "sub").resolve()


@pytest.mark.asyncio
async def test_bash_working_directory_is_per_session(isolated_shell, tmp_path: Path):
    tool = BashTool(BashToolConfig())
    first = _context(tmp_path, "one")
    other = ToolContext(session_id="two", project_root=tmp_path, working_dirs=first.working_dirs)

    await tool.execute({"command": "cd /"}, first)
    result = await tool.execute({"command": "pwd"}, other)

    assert Path(result.output.strip()).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_bash_reports_nonzero_exit(isolated_shell, tmp_path: Path):
    result = await BashTool(BashToolConfig()).execute(
        {"command": "echo partial; exit 3"},
        _context(tmp_path),
    )

    assert result.ok is False
    assert result.error == "Command failed with exit code 3."
    assert result.output.strip() == "partial"
    assert result.metadata["exit_code"] == 3
    assert result.metadata["signal"] is None


@pytest.mark.asyncio
async def test_bash_joins_stdout_before_stderr(isolated_shell, tmp_path: Path):
    result = await BashTool(BashToolConfig()).execute(
        {"command": "echo out; echo err 1>&2"},
        _context(tmp_path),
    )

    assert result.ok is True
    assert result.output.index("out") < result.output.index("err")


@pytest.mark.asyncio
async def test_bash_truncates_output(isolated_shell, tmp_path: Path):
    tool = BashTool(BashToolConfig(max_output_chars=10))

    result = await tool.execute({"command": "printf 'abcdefghijklmnop'"}, _context(tmp_path))

    assert result.output == "abcdefghij"
    assert result.metadata["truncated"] is True


@pytest.mark.asyncio
async def test_bash_requires_command(tmp_path: Path):
    result = await BashTool(BashToolConfig()).execute({"command": "  "}, _context(tmp_path))

    assert result.ok is False
    assert result.error == 'Missing required "command" string.'
