"""Load and render LLM instruction templates from disk.

Supports a two-layer override system:
  1. Personal overrides in ``~/.deepcode/instructions/`` (highest priority)
  2. Packaged defaults in ``deepcode/prompts/``

Tool documentation lives under ``tools/`` in either layer; a personal file
with the same name replaces the packaged one.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping


_PERSONAL_DIR = Path("~/.deepcode/instructions").expanduser()


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render instruction templates with personal-override support.

    Resolution order for every template:
      1. ``personal_dir / name``  (``~/.deepcode/instructions/``)
      2. ``base_dir / name``      (packaged ``deepcode/prompts/``)
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("DEEPCODE_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "prompts").resolve()

    def _path(self, name: str) -> Path:
        """Return the effective file path, preferring the personal override."""
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def load(self, name: str) -> str:
        """Load instruction template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(
                f"Instruction template not found: {path}. "
                "Add the file under the prompts folder."
            )
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, template_name: str, /, **variables: object) -> str:
        """Render template with simple ``str.format`` placeholder substitution."""
        template = self.load(template_name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))

    def load_directory(self, subdir: str, suffix: str = ".md") -> list[str]:
        """Load every non-empty ``suffix`` file in ``subdir``, sorted by filename."""
        names: set[str] = set()
        for root in (self.base_dir / subdir, self.personal_dir / subdir):
            if not root.is_dir():
                continue
            names.update(entry.name for entry in root.iterdir() if entry.name.endswith(suffix))

        docs: list[str] = []
        for name in sorted(names):
            try:
                content = self.load(f"{subdir}/{name}")
            except (OSError, UnicodeDecodeError):
                continue
            if content:
                docs.append(content)
        return docs
