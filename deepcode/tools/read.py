"""Read tool for text files, notebooks, PDFs and images."""

import asyncio
import base64
import json
import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pathspec

from deepcode.config import ReadToolConfig, get_config
from deepcode.logging import get_logger
from deepcode.tools.registry import Tool, ToolContext, ToolName, ToolResult

log = get_logger(__name__)

LINE_NUMBER_WIDTH = 6

DEFAULT_IGNORE = [
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    "out/",
    ".next/",
    ".nuxt/",
    ".venv/",
    "venv/",
    "__pycache__/",
    "*.pyc",
    "*.pyo",
    ".pytest_cache/",
    ".mypy_cache/",
    ".ruff_cache/",
    ".gradle/",
    ".idea/",
    ".vscode/",
    "*.class",
    "*.jar",
    "*.war",
    "target/",
]

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".avif": "image/avif",
}

_PDF_PAGE_PATTERN = re.compile(rb"/Type\s*/Page\b(?!s)")
_LINE_SPLIT = re.compile(r"\r?\n")


@dataclass
class PageRange:
    start: int
    end: int

    @property
    def count(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def _to_int(value: Any, label: str) -> int:
    """Coerce a numeric argument, truncating toward zero."""
    if isinstance(value, bool):
        value = int(value)
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a number.")
    if not math.isfinite(numeric):
        raise ValueError(f"{label} must be a number.")
    return int(numeric)


def parse_offset(value: Any) -> int:
    if value is None:
        return 1
    offset = _to_int(value, "offset")
    if offset < 1:
        raise ValueError("offset must be >= 1.")
    return offset


def parse_limit(value: Any, default: int) -> int:
    if value is None:
        return default
    limit = _to_int(value, "limit")
    if limit <= 0:
        raise ValueError("limit must be > 0.")
    return limit


def parse_page_range(text: str) -> PageRange:
    """Parse ``"N"`` or ``"A-B"`` into a page range."""
    trimmed = text.strip()
    if not trimmed:
        raise ValueError("pages must be a non-empty string.")
    if "," in trimmed:
        raise ValueError('pages must be a single range like "1-5" or "3".')

    parts = [part.strip() for part in trimmed.split("-")]
    if len(parts) == 1:
        page = _positive_page(parts[0])
        return PageRange(page, page)
    if len(parts) == 2:
        start = _positive_page(parts[0])
        end = _positive_page(parts[1])
        if end < start:
            raise ValueError("pages range end must be >= start.")
        return PageRange(start, end)
    raise ValueError('pages must be a single range like "1-5" or "3".')


def _positive_page(value: str) -> int:
    page = _to_int(value, "pages")
    if page < 1:
        raise ValueError("pages must be >= 1.")
    return page


def count_pdf_pages(data: bytes) -> int:
    """Estimate the page count by counting page objects (not page trees)."""
    return len(_PDF_PAGE_PATTERN.findall(data))


def format_with_line_numbers(lines: list[str], start: int, max_line_length: int) -> str:
    return "\n".join(
        f"{start + index:>{LINE_NUMBER_WIDTH}}\t{line[:max_line_length]}"
        for index, line in enumerate(lines)
    )


def _notebook_lines(value: Any) -> list[str]:
    if isinstance(value, list):
        return [re.sub(r"\r?\n$", "", str(item)) for item in value]
    if isinstance(value, str):
        return _LINE_SPLIT.split(value)
    return []


def format_notebook_output(output: dict[str, Any]) -> list[str]:
    lines = _notebook_lines(output.get("text"))

    data = output.get("data")
    if isinstance(data, dict):
        lines.extend(_notebook_lines(data.get("text/plain")))
        for mime in ("image/png", "image/jpeg"):
            payload = data.get(mime)
            if isinstance(payload, str):
                lines.append(f"[{mime} {len(payload)} chars]")

    traceback = output.get("traceback")
    if isinstance(traceback, list):
        lines.extend(_notebook_lines(traceback))

    return lines or ["[output omitted]"]


def render_notebook(raw: str, max_line_length: int) -> str:
    """Flatten notebook cells and outputs into numbered lines."""
    if not raw:
        return "WARNING: File is empty."

    parsed = json.loads(raw)
    cells = parsed.get("cells") if isinstance(parsed, dict) else None
    lines: list[str] = []
    for cell_index, cell in enumerate(cells if isinstance(cells, list) else [], start=1):
        if not isinstance(cell, dict):
            continue
        lines.append(f"# Cell {cell_index} ({cell.get('cell_type') or 'unknown'})")
        lines.extend(_notebook_lines(cell.get("source")))

        outputs = cell.get("outputs")
        for output_index, output in enumerate(outputs if isinstance(outputs, list) else [], start=1):
            if not isinstance(output, dict):
                continue
            output_type = output.get("output_type")
            if not isinstance(output_type, str):
                output_type = "output"
            lines.append(f"# Output {output_index} ({output_type})")
            lines.extend(format_notebook_output(output))

    if not lines:
        return "WARNING: Notebook has no cells."
    return format_with_line_numbers(lines, 1, max_line_length)


def render_text(raw: str, offset: int, limit: int, max_line_length: int) -> str:
    lines = _LINE_SPLIT.split(raw)
    if not raw or lines == [""]:
        return "WARNING: File is empty."
    start = offset - 1
    return format_with_line_numbers(lines[start:start + limit], offset, max_line_length)


def load_ignore_spec(project_root: Path) -> pathspec.GitIgnoreSpec:
    """Default ignore patterns merged with the project's ``.gitignore``."""
    lines = list(DEFAULT_IGNORE)
    gitignore = project_root / ".gitignore"
    if gitignore.is_file():
        try:
            lines.extend(gitignore.read_text(encoding="utf-8").splitlines())
        except OSError as e:
            log.warning("Failed to read .gitignore", path=str(gitignore), error=str(e))
    return pathspec.GitIgnoreSpec.from_lines(lines)


def find_suffix_matches(project_root: Path, suffix: str, spec: pathspec.GitIgnoreSpec) -> list[str]:
    """Walk the project tree and return files whose path ends with ``suffix``."""
    root = str(project_root)
    matches: list[str] = []
    for current, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(current, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/") + "/"
        dirnames[:] = sorted(
            name for name in dirnames
            if not spec.match_file(f"{rel_dir}{name}/")
        )
        for name in sorted(filenames):
            if spec.match_file(f"{rel_dir}{name}"):
                continue
            full_path = os.path.join(current, name)
            if full_path.endswith(suffix):
                matches.append(full_path)
    return matches


def relative_suffix(relative_path: str) -> str | None:
    normalized = re.sub(r"^(\./|\\)+", "", os.path.normpath(relative_path))
    if not normalized.strip() or normalized == ".":
        return None
    return os.sep + normalized


class ReadTool(Tool):
    """Read file contents with line numbers, or binary files as data URIs."""

    name = ToolName.READ.value
    description = "Read a file from the local filesystem."
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "The absolute path to the file to read",
            },
            "offset": {
                "type": "number",
                "description": "The line number to start reading from (1-indexed)",
            },
            "limit": {
                "type": "number",
                "description": "The number of lines to read",
            },
            "pages": {
                "type": "string",
                "description": 'Page range for PDF files (e.g. "1-5" or "3")',
            },
        },
        "required": ["file_path"],
        "additionalProperties": False,
    }

    def __init__(self, config: ReadToolConfig | None = None):
        self.config = config or get_config().tools.read

    async def _resolve_relative(self, file_path: str, project_root: Path) -> tuple[Path | None, str | None]:
        """Resolve a relative path against the project tree.

        Returns:
            (path, None) on success or (None, error message)
        """
        if file_path.startswith("../") or file_path.startswith("..\\"):
            return None, "file_path must be an absolute path."

        suffix = relative_suffix(file_path)
        matches: list[str] = []
        if suffix:
            spec = load_ignore_spec(project_root)
            loop = asyncio.get_running_loop()
            matches = await loop.run_in_executor(
                None,
                find_suffix_matches,
                project_root,
                suffix,
                spec,
            )

        if len(matches) > 1:
            listed = "\n".join(matches[:3])
            more = f"\n...and {len(matches) - 3} more." if len(matches) > 3 else ""
            return None, (
                "file_path must be an absolute path. "
                f"The file_path is ambiguous and may refer to multiple files:\n{listed}{more}"
            )
        if len(matches) == 1:
            return Path(matches[0]), None

        candidate = Path(os.path.normpath(project_root / file_path))
        if candidate.exists():
            return candidate, None
        return None, f"File not found: {file_path}"

    def _read_pdf(self, path: Path, pages: Any) -> ToolResult:
        data = path.read_bytes()
        page_count = count_pdf_pages(data)
        pages_text = pages.strip() if isinstance(pages, str) else ""
        page_range = parse_page_range(pages_text) if pages_text else None

        if page_range is None and page_count > self.config.pdf_large_page_threshold:
            return self.failure(f'PDF has {page_count} pages; provide "pages" to read a range.')
        if page_range is not None and page_range.count > self.config.pdf_max_page_range:
            return self.failure(f"PDF page range exceeds {self.config.pdf_max_page_range} pages.")
        if page_range is not None and page_range.end > page_count:
            return self.failure(f"PDF page range exceeds total page count ({page_count}).")

        return self.success(
            f"data:application/pdf;base64,{base64.b64encode(data).decode('ascii')}",
            {
                "mime": "application/pdf",
                "encoding": "base64",
                "bytes": len(data),
                "page_count": page_count,
                "pages": str(page_range) if page_range else None,
            },
        )

    def _read_image(self, path: Path, mime: str) -> ToolResult:
        data = path.read_bytes()
        return self.success(
            f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}",
            {"mime": mime, "encoding": "base64", "bytes": len(data)},
        )

    def _read(self, path: Path, arguments: dict[str, Any]) -> ToolResult:
        ext = path.suffix.lower()
        if ext == ".ipynb":
            raw = path.read_text(encoding="utf-8", errors="replace")
            return self.success(render_notebook(raw, self.config.max_line_length))
        if ext == ".pdf":
            return self._read_pdf(path, arguments.get("pages"))
        if ext in IMAGE_MIME_TYPES:
            return self._read_image(path, IMAGE_MIME_TYPES[ext])

        offset = parse_offset(arguments.get("offset"))
        limit = parse_limit(arguments.get("limit"), self.config.default_line_limit)
        raw = path.read_text(encoding="utf-8", errors="replace")
        return self.success(render_text(raw, offset, limit, self.config.max_line_length))

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Read a file.

        Args:
            arguments: ``file_path`` plus optional ``offset``, ``limit``, ``pages``
            context: Session context; successful reads are recorded in its tracker

        Returns:
            ToolResult with numbered lines or a base64 data URI
        """
        file_path = self.require_string(arguments, "file_path")

        if os.path.isabs(file_path):
            path = Path(file_path)
        else:
            resolved, error = await self._resolve_relative(file_path, Path(context.project_root))
            if resolved is None:
                return self.failure(error or f"File not found: {file_path}")
            path = resolved

        if not path.exists():
            return self.failure(f"File not found: {path}")
        if path.is_dir():
            return self.failure("file_path points to a directory. Use bash ls for directories.")

        try:
            result = self._read(path, arguments)
        except (OSError, ValueError) as e:
            log.error("Read failed", path=str(path), error=str(e))
            return self.failure(str(e))

        if result.ok:
            context.read_tracker.mark_read(context.session_id, path)
        return result
