"""Skill discovery and slash-command matching."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from deepcode.config import Config, get_config
from deepcode.logging import get_logger

log = get_logger(__name__)

SKILL_FILENAME = "SKILL.md"


@dataclass
class SkillInfo:
    """A skill document that can be attached to a prompt."""

    name: str
    path: str
    description: str = ""


def _parse_frontmatter(content: str) -> dict[str, Any]:
    text = (content or "").replace("\r\n", "\n").replace("\r", "\n")
    if not text.startswith("---"):
        return {}
    end = text.find("\n---", 3)
    if end < 0:
        return {}
    try:
        parsed = yaml.safe_load(text[4:end])
    except yaml.YAMLError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def resolve_skill_path(skill_path: str) -> Path:
    """Expand a display path (``~/...`` or home-relative) to an absolute path."""
    home = Path.home()
    if skill_path.startswith("~/") or skill_path.startswith("~\\"):
        return home / skill_path[2:]
    if os.path.isabs(skill_path):
        return Path(skill_path)
    return home / skill_path


def _read_description(skill_md: Path) -> str:
    try:
        frontmatter = _parse_frontmatter(skill_md.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return ""
    description = frontmatter.get("description")
    return str(description).strip() if description else ""


def _collect_skills(root: str) -> list[SkillInfo]:
    """Return skills found as ``<root>/<dir>/SKILL.md``."""
    display_root = root.rstrip("/\\")
    base = resolve_skill_path(display_root)
    if not base.is_dir():
        return []
    try:
        children = sorted(base.iterdir())
    except OSError as e:
        log.warning("Failed to list skills root", root=str(base), error=str(e))
        return []

    skills: list[SkillInfo] = []
    for child in children:
        if not child.is_dir():
            continue
        skill_md = child / SKILL_FILENAME
        if not skill_md.is_file():
            continue
        skills.append(
            SkillInfo(
                name=child.name.replace("_", "-"),
                path=f"{display_root}/{child.name}/{SKILL_FILENAME}",
                description=_read_description(skill_md),
            )
        )
    return skills


def list_skills(roots: list[str] | None = None, config: Config | None = None) -> list[SkillInfo]:
    """Merge skills across roots; a later root overrides an earlier one by name.

    Args:
        roots: Skill roots in precedence order (defaults to config ``skills.roots``)
        config: Optional config used when ``roots`` is not given

    Returns:
        Skills sorted by name
    """
    if roots is None:
        roots = (config or get_config()).skills.roots
    by_name: dict[str, SkillInfo] = {}
    for root in roots:
        for skill in _collect_skills(root):
            by_name[skill.name] = skill
    return sorted(by_name.values(), key=lambda skill: skill.name)


def load_skill_document(skill: SkillInfo) -> str:
    return resolve_skill_path(skill.path).read_text(encoding="utf-8")


def parse_skill_command(text: str, skills: list[SkillInfo]) -> tuple[SkillInfo | None, str]:
    """Match a leading ``/name`` line against known skills.

    Returns:
        (matched skill, remaining text). When nothing matches the text is
        returned unchanged.
    """
    if not text or not text.startswith("/"):
        return None, text
    lines = text.split("\n")
    first_line = lines[0].strip()
    if not first_line.startswith("/"):
        return None, text
    name = first_line[1:].strip()
    for skill in skills:
        if skill.name == name:
            return skill, "\n".join(lines[1:]).strip()
    return None, text
