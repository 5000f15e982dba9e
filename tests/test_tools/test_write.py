from pathlib import Path

import pytest

from deepcode.config import ReadToolConfig
from deepcode.tools.read import ReadTool
from deepcode.tools.registry import ToolContext
from deepcode.tools.write import WriteTool


def _context(root: Path, session_id: str = "s1") -> ToolContext:
    return ToolContext(session_id=session_id, project_root=root)


@pytest.mark.asyncio
async def test_write_creates_new_file_with_parent_dirs(tmp_path: Path):
    target = tmp_path / "nested" / "dir" / "out.txt"

    result = await WriteTool().execute({"file_path": str(target), "content": "héllo"}, _context(tmp_path))

    assert result.ok is True
    assert result.output == f"Wrote 6 bytes to {target}."
    assert target.read_text(encoding="utf-8") == "héllo"


@pytest.mark.asyncio
async def test_write_allows_empty_content(tmp_path: Path):
    target = tmp_path / "empty.txt"

    result = await WriteTool().execute({"file_path": str(target), "content": ""}, _context(tmp_path))

    assert result.ok is True
    assert result.output == f"Wrote 0 bytes to {target}."
    assert target.exists()


@pytest.mark.asyncio
async def test_write_requires_read_before_overwriting(tmp_path: Path):
    target = tmp_path / "existing.txt"
    target.write_text("original", encoding="utf-8")
    context = _context(tmp_path)

    refused = await WriteTool().execute({"file_path": str(target), "content": "new"}, context)

    assert refused.ok is False
    assert refused.error == "Must read existing file before writing."
    assert target.read_text(encoding="utf-8") == "original"

    read = await ReadTool(ReadToolConfig()).execute({"file_path": str(target)}, context)
    assert read.ok is True

    written = await WriteTool().execute({"file_path": str(target), "content": "new"}, context)

    assert written.ok is True
    assert target.read_text(encoding="utf-8") == "new"


@pytest.mark.asyncio
async def test_write_read_tracking_is_per_session(tmp_path: Path):
    target = tmp_path / "existing.txt"
    target.write_text("original", encoding="utf-8")
    context = _context(tmp_path, "reader")
    context.read_tracker.mark_read("reader", target)
    other = ToolContext(
        session_id="writer",
        project_root=tmp_path,
        read_tracker=context.read_tracker,
    )

    result = await WriteTool().execute({"file_path": str(target), "content": "new"}, other)

    assert result.ok is False
    assert result.error == "Must read existing file before writing."


@pytest.mark.asyncio
async def test_write_rejects_relative_path(tmp_path: Path):
    result = await WriteTool().execute({"file_path": "out.txt", "content": "x"}, _context(tmp_path))

    assert result.ok is False
    assert result.error == "file_path must be an absolute path."


@pytest.mark.asyncio
async def test_write_rejects_directory(tmp_path: Path):
    folder = tmp_path / "folder"
    folder.mkdir()

    result = await WriteTool().execute({"file_path": str(folder), "content": "x"}, _context(tmp_path))

    assert result.ok is False
    assert result.error == "file_path points to a directory."
