"""Session index and append-only message logs stored as JSON files."""

import json
import uuid
from datetime import UTC, datetime
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, ValidationError

from deepcode.config import get_config
from deepcode.logging import get_logger

log = get_logger(__name__)

MAX_SESSION_ENTRIES = 50
INDEX_FILENAME = "sessions-index.json"

SessionStatus = Literal["failed", "pending", "processing", "completed", "interrupted"]
MessageRole = Literal["system", "user", "assistant", "tool"]


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


class MessageMeta(BaseModel):
    """Presentation hints for a message."""

    function: Any | None = None
    params_md: str | None = None
    result_md: str | None = None
    as_thinking: bool | None = None


class SessionMessage(BaseModel):
    """One record of a session's message log."""

    id: str = Field(default_factory=_new_id)
    session_id: str
    role: MessageRole
    content: str | None = None
    content_params: Any | None = None
    message_params: dict[str, Any] | None = None
    compacted: bool = False
    visible: bool = True
    create_time: str = Field(default_factory=_utcnow_iso)
    update_time: str = Field(default_factory=_utcnow_iso)
    meta: MessageMeta | None = None


class SessionEntry(BaseModel):
    """Summary of a session kept in the index."""

    id: str = Field(default_factory=_new_id)
    summary: str | None = None
    assistant_reply: str | None = None
    assistant_thinking: str | None = None
    assistant_refusal: str | None = None
    tool_calls: list[Any] | None = None
    status: SessionStatus = "pending"
    fail_reason: str | None = None
    usage: dict[str, Any] | None = None
    create_time: str = Field(default_factory=_utcnow_iso)
    update_time: str = Field(default_factory=_utcnow_iso)


class SessionsIndex(BaseModel):
    """Bounded, ordered collection of session summaries for one project."""

    version: Literal[1] = 1
    entries: list[SessionEntry] = Field(default_factory=list)
    original_path: str = ""


def project_code(project_root: Path | str) -> str:
    """Derive a directory-safe project identifier from an absolute path."""
    return str(project_root).replace("\\", "-").replace("/", "-").replace(":", "")


def _parse_time(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _compare_recent_first(a: SessionEntry, b: SessionEntry) -> int:
    """Order entries by update time, newest first.

    Falls back to comparing the raw strings when either side does not parse.
    """
    a_time = _parse_time(a.update_time)
    b_time = _parse_time(b.update_time)
    if a_time is None or b_time is None:
        if a.update_time == b.update_time:
            return 0
        return -1 if a.update_time > b.update_time else 1
    if a_time == b_time:
        return 0
    return -1 if a_time > b_time else 1


def sort_recent_first(entries: list[SessionEntry]) -> list[SessionEntry]:
    """Return entries sorted by update time, newest first (stable)."""
    return sorted(entries, key=cmp_to_key(_compare_recent_first))


class SessionStore:
    """Per-project session index plus one JSONL message log per session."""

    def __init__(self, project_root: Path | str, data_dir: Path | str | None = None):
        """Initialize session store.

        Args:
            project_root: Absolute workspace path the sessions belong to
            data_dir: Optional data directory override (defaults to config)
        """
        self.project_root = str(project_root)
        if data_dir is None:
            base = get_config().resolved_data_dir()
        else:
            base = Path(data_dir).expanduser()
        self.project_dir = base / "projects" / project_code(self.project_root)
        self.index_path = self.project_dir / INDEX_FILENAME

    def _ensure_project_dir(self) -> Path:
        self.project_dir.mkdir(parents=True, exist_ok=True)
        return self.project_dir

    def messages_path(self, session_id: str) -> Path:
        return self.project_dir / f"{session_id}.jsonl"

    def load_index(self) -> SessionsIndex:
        """Read the index; missing or corrupt files yield an empty index."""
        empty = SessionsIndex(original_path=self.project_root)
        if not self.index_path.exists():
            return empty

        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Session index unreadable", path=str(self.index_path), error=str(e))
            return empty
        if not isinstance(data, dict):
            return empty

        raw_entries = data.get("entries")
        entries: list[SessionEntry] = []
        for raw in raw_entries if isinstance(raw_entries, list) else []:
            try:
                entries.append(SessionEntry.model_validate(raw))
            except ValidationError:
                log.warning("Skipping invalid session entry", path=str(self.index_path))
        return SessionsIndex(
            entries=entries,
            original_path=str(data.get("original_path") or self.project_root),
        )

    def save_index(self, index: SessionsIndex) -> None:
        """Write the whole index file."""
        self._ensure_project_dir()
        normalized = SessionsIndex(entries=index.entries, original_path=self.project_root)
        self.index_path.write_text(normalized.model_dump_json(indent=2), encoding="utf-8")

    def list_entries(self) -> list[SessionEntry]:
        return self.load_index().entries

    def get_entry(self, session_id: str) -> SessionEntry | None:
        for entry in self.load_index().entries:
            if entry.id == session_id:
                return entry
        return None

    def add_entry(self, entry: SessionEntry, max_entries: int = MAX_SESSION_ENTRIES) -> list[str]:
        """Insert an entry, keep the newest ``max_entries`` and drop the rest.

        Returns:
            Ids of the sessions that were evicted (their logs are deleted)
        """
        index = self.load_index()
        index.entries.append(entry)
        ordered = sort_recent_first(index.entries)
        kept = ordered[:max_entries]
        dropped = [item.id for item in ordered[max_entries:]]
        index.entries = kept
        self.save_index(index)
        if dropped:
            log.info("Evicting old sessions", count=len(dropped))
            self.delete_messages(dropped)
        return dropped

    def update_entry(
        self,
        session_id: str,
        updater: Callable[[SessionEntry], SessionEntry],
    ) -> SessionEntry | None:
        """Apply ``updater`` to a copy of the entry and persist it."""
        index = self.load_index()
        for position, entry in enumerate(index.entries):
            if entry.id != session_id:
                continue
            updated = updater(entry.model_copy(deep=True))
            index.entries[position] = updated
            self.save_index(index)
            return updated
        return None

    def append_message(self, session_id: str, message: SessionMessage) -> None:
        """Append one record to the session's log."""
        self._ensure_project_dir()
        line = message.model_dump_json(exclude_none=True)
        with open(self.messages_path(session_id), "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def list_messages(self, session_id: str) -> list[SessionMessage]:
        """Return the session's log in append order, skipping malformed lines."""
        path = self.messages_path(session_id)
        if not path.exists():
            return []
        try:
            raw = path.read_bytes()
        except OSError as e:
            log.warning("Message log unreadable", session_id=session_id, error=str(e))
            return []

        messages: list[SessionMessage] = []
        for raw_line in raw.split(b"\n"):
            try:
                line = raw_line.decode("utf-8")
            except UnicodeDecodeError:
                log.warning("Skipping undecodable message line", session_id=session_id)
                continue
            if not line.strip():
                continue
            try:
                messages.append(SessionMessage.model_validate_json(line))
            except ValidationError:
                continue
        return messages

    def rewrite_messages(self, session_id: str, messages: list[SessionMessage]) -> None:
        """Replace the whole log. Only used by compaction."""
        self._ensure_project_dir()
        path = self.messages_path(session_id)
        tmp_path = path.with_suffix(".jsonl.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            for message in messages:
                f.write(message.model_dump_json(exclude_none=True) + "\n")
        tmp_path.replace(path)

    def delete_messages(self, session_ids: list[str]) -> None:
        """Delete message logs; failures are ignored."""
        for session_id in session_ids:
            path = self.messages_path(session_id)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Failed to delete message log", session_id=session_id, error=str(e))
