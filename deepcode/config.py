"""Configuration management for deepcode."""

import json
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_DATA_DIR = Path("~/.deepcode").expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.yaml"
LEGACY_SETTINGS_PATH = DEFAULT_DATA_DIR / "settings.json"
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_MODEL = "gpt-4o-mini"


class ModelConfig(BaseModel):
    """Model endpoint configuration (OpenAI-compatible chat completions)."""

    model: str = DEFAULT_MODEL
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    temperature: float | None = None
    timeout: float = 600.0


class SessionConfig(BaseModel):
    """Session storage and agent loop configuration."""

    data_dir: str = str(DEFAULT_DATA_DIR)
    max_entries: int = 50
    max_iterations: int = 30
    # Tool results from these tools are hidden from the transcript when ok is not true.
    hide_failed_tools: list[str] = Field(default_factory=lambda: ["bash"])
    notice_role: Literal["assistant", "user", "system"] = "assistant"
    interrupt_notice_role: Literal["assistant", "user", "system"] = "user"


class BashToolConfig(BaseModel):
    """Bash tool configuration."""

    timeout: int = 600
    max_output_chars: int = 30000


class ReadToolConfig(BaseModel):
    """Read tool configuration."""

    default_line_limit: int = 2000
    max_line_length: int = 2000
    pdf_large_page_threshold: int = 10
    pdf_max_page_range: int = 20


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "bash",
        "read",
        "write",
        "edit",
    ]
    bash: BashToolConfig = Field(default_factory=BashToolConfig)
    read: ReadToolConfig = Field(default_factory=ReadToolConfig)


class SkillsConfig(BaseModel):
    """Skill document discovery roots, later roots win on name clashes."""

    roots: list[str] = [
        "~/.claude/skills",
        "~/.deepcode/skills",
    ]


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for deepcode."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="DEEPCODE_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML, then fill model gaps from legacy settings.json."""
        config = cls.from_yaml()
        config.apply_legacy_settings(LEGACY_SETTINGS_PATH)
        return config

    def apply_legacy_settings(self, path: Path | str) -> bool:
        """Fill empty model fields from a ``{"env": {...}}`` settings file.

        Returns True when the file was read. Unreadable files are ignored.
        """
        settings_path = Path(path).expanduser()
        if not settings_path.is_file():
            return False
        try:
            data = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        env = data.get("env") if isinstance(data, dict) else None
        if not isinstance(env, dict):
            return True

        api_key = str(env.get("API_KEY") or "").strip()
        base_url = str(env.get("BASE_URL") or "").strip()
        model = str(env.get("MODEL") or "").strip()
        if api_key and not self.model.api_key:
            self.model.api_key = api_key
        if base_url and "base_url" not in self.model.model_fields_set:
            self.model.base_url = base_url
        if model and "model" not in self.model.model_fields_set:
            self.model.model = model
        return True

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_data_dir(self) -> Path:
        """Resolve the data directory holding per-project session storage."""
        return Path(self.session.data_dir).expanduser().resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
