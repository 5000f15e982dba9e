from pathlib import Path

import pytest

from deepcode.exceptions import ToolValidationError
from deepcode.tools.edit import EditTool
from deepcode.tools.registry import ToolContext


def _read_context(root: Path, *paths: Path) -> ToolContext:
    context = ToolContext(session_id="s1", project_root=root)
    for path in paths:
        context.read_tracker.mark_read("s1", path)
    return context


@pytest.mark.asyncio
async def test_edit_requires_prior_read(tmp_path: Path):
    target = tmp_path / "a.txt"
    target.write_text("foo", encoding="utf-8")
    context = ToolContext(session_id="s1", project_root=tmp_path)

    result = await EditTool().execute(
        {"file_path": str(target), "old_string": "foo", "new_string": "bar"},
        context,
    )

    assert result.ok is False
    assert result.error == "Must read file before editing."
    assert target.read_text(encoding="utf-8") == "foo"


@pytest.mark.asyncio
async def test_edit_refuses_ambiguous_match_without_replace_all(tmp_path: Path):
    target = tmp_path / "a.txt"
    target.write_text("foo and foo", encoding="utf-8")
    context = _read_context(tmp_path, target)

    result = await EditTool().execute(
        {"file_path": str(target), "old_string": "foo", "new_string": "bar"},
        context,
    )

    assert result.ok is False
    assert result.error == "old_string is not unique; use replace_all or provide more context."
    assert target.read_text(encoding="utf-8") == "foo and foo"


@pytest.mark.asyncio
async def test_edit_replace_all_reports_count(tmp_path: Path):
    target = tmp_path / "a.txt"
    target.write_text("foo and foo", encoding="utf-8")
    context = _read_context(tmp_path, target)

    result = await EditTool().execute(
        {"file_path": str(target), "old_string": "foo", "new_string": "bar", "replace_all": True},
        context,
    )

    assert result.ok is True
    assert result.output == f"Replaced 2 occurrence(s) in {target}."
    assert target.read_text(encoding="utf-8") == "bar and bar"


@pytest.mark.asyncio
async def test_edit_replaces_single_occurrence_and_keeps_line_endings(tmp_path: Path):
    target = tmp_path / "a.txt"
    target.write_bytes(b"alpha\r\nbeta\r\n")
    context = _read_context(tmp_path, target)

    result = await EditTool().execute(
        {"file_path": str(target), "old_string": "beta", "new_string": "gamma"},
        context,
    )

    assert result.ok is True
    assert result.output == f"Replaced 1 occurrence(s) in {target}."
    assert target.read_bytes() == b"alpha\r\ngamma\r\n"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("old", "new", "error"),
    [
        ("", "x", "old_string must not be empty."),
        ("same", "same", "new_string must differ from old_string."),
        ("missing", "x", "old_string not found in file."),
    ],
)
async def test_edit_validation_errors(tmp_path: Path, old: str, new: str, error: str):
    target = tmp_path / "a.txt"
    target.write_text("content", encoding="utf-8")
    context = _read_context(tmp_path, target)

    result = await EditTool().execute(
        {"file_path": str(target), "old_string": old, "new_string": new},
        context,
    )

    assert result.ok is False
    assert result.error == error


@pytest.mark.asyncio
async def test_edit_reports_missing_file_after_read_check(tmp_path: Path):
    target = tmp_path / "gone.txt"
    context = _read_context(tmp_path, target)

    result = await EditTool().execute(
        {"file_path": str(target), "old_string": "a", "new_string": "b"},
        context,
    )

    assert result.ok is False
    assert result.error == f"File not found: {target}"


@pytest.mark.asyncio
async def test_edit_requires_new_string(tmp_path: Path):
    target = tmp_path / "a.txt"
    context = _read_context(tmp_path, target)

    with pytest.raises(ToolValidationError, match='Missing required "new_string" string'):
        await EditTool().execute({"file_path": str(target), "old_string": "a"}, context)
