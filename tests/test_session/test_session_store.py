import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

from deepcode.session import (
    SessionEntry,
    SessionMessage,
    SessionStore,
    project_code,
    sort_recent_first,
)


def _store(tmp_path: Path) -> SessionStore:
    return SessionStore("/work/my-project", data_dir=tmp_path / "data")


def test_project_code_flattens_separators():
    assert project_code("/Users/dev/app") == "-Users-dev-app"
    assert project_code("C:\\src\\app") == "C-src-app"


def test_store_layout_uses_project_code(tmp_path: Path):
    store = _store(tmp_path)

    assert store.project_dir == tmp_path / "data" / "projects" / "-work-my-project"
    assert store.index_path.name == "sessions-index.json"
    assert store.messages_path("abc").name == "abc.jsonl"


def test_messages_are_listed_in_append_order(tmp_path: Path):
    store = _store(tmp_path)
    for index in range(5):
        store.append_message("s1", SessionMessage(session_id="s1", role="user", content=f"m{index}"))

    assert [message.content for message in store.list_messages("s1")] == ["m0", "m1", "m2", "m3", "m4"]


def test_malformed_message_lines_are_skipped(tmp_path: Path):
    store = _store(tmp_path)
    store.append_message("s1", SessionMessage(session_id="s1", role="user", content="first"))
    with open(store.messages_path("s1"), "a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write(json.dumps({"session_id": "s1", "role": "robot"}) + "\n")
        f.write("\n")
    store.append_message("s1", SessionMessage(session_id="s1", role="assistant", content="second"))

    assert [message.content for message in store.list_messages("s1")] == ["first", "second"]


def test_missing_log_is_empty(tmp_path: Path):
    assert _store(tmp_path).list_messages("nope") == []


def test_corrupt_index_reads_as_empty(tmp_path: Path):
    store = _store(tmp_path)
    store.project_dir.mkdir(parents=True)
    store.index_path.write_text("{broken", encoding="utf-8")

    index = store.load_index()

    assert index.entries == []
    assert index.original_path == "/work/my-project"


def test_invalid_index_entries_are_skipped(tmp_path: Path):
    store = _store(tmp_path)
    store.project_dir.mkdir(parents=True)
    store.index_path.write_text(
        json.dumps({"version": 1, "entries": [{"id": "ok"}, {"id": "bad", "status": "exploded"}]}),
        encoding="utf-8",
    )

    assert [entry.id for entry in store.list_entries()] == ["ok"]


def test_index_file_shape(tmp_path: Path):
    store = _store(tmp_path)
    store.add_entry(SessionEntry(id="s1", summary="hello"))

    data = json.loads(store.index_path.read_text(encoding="utf-8"))

    assert data["version"] == 1
    assert data["original_path"] == "/work/my-project"
    assert data["entries"][0]["id"] == "s1"


def test_retention_keeps_newest_entries_and_deletes_old_logs(tmp_path: Path):
    store = _store(tmp_path)
    base = datetime(2024, 1, 1, tzinfo=UTC)
    dropped_total: list[str] = []
    for index in range(60):
        stamp = (base + timedelta(minutes=index)).isoformat()
        session_id = f"s{index:02d}"
        store.append_message(session_id, SessionMessage(session_id=session_id, role="user", content="x"))
        dropped_total += store.add_entry(
            SessionEntry(id=session_id, create_time=stamp, update_time=stamp),
            max_entries=50,
        )

    entries = store.list_entries()
    assert len(entries) == 50
    assert entries[0].id == "s59"
    assert entries[-1].id == "s10"
    assert sorted(dropped_total) == [f"s{index:02d}" for index in range(10)]
    assert not store.messages_path("s00").exists()
    assert store.messages_path("s10").exists()


def test_sort_falls_back_to_raw_strings_when_unparseable():
    entries = [
        SessionEntry(id="a", update_time="not-a-date-a"),
        SessionEntry(id="b", update_time="not-a-date-b"),
    ]

    assert [entry.id for entry in sort_recent_first(entries)] == ["b", "a"]


def test_update_entry_persists_changes(tmp_path: Path):
    store = _store(tmp_path)
    store.add_entry(SessionEntry(id="s1"))

    updated = store.update_entry("s1", lambda entry: entry.model_copy(update={"status": "completed"}))

    assert updated is not None
    assert store.get_entry("s1").status == "completed"
    assert store.update_entry("missing", lambda entry: entry) is None


def test_rewrite_messages_replaces_log(tmp_path: Path):
    store = _store(tmp_path)
    store.append_message("s1", SessionMessage(session_id="s1", role="user", content="old"))

    store.rewrite_messages("s1", [SessionMessage(session_id="s1", role="system", content="new")])

    assert [message.content for message in store.list_messages("s1")] == ["new"]


def test_undecodable_message_line_is_skipped(tmp_path: Path):
    store = _store(tmp_path)
    store.append_message("s1", SessionMessage(session_id="s1", role="user", content="hello"))
    with open(store.messages_path("s1"), "ab") as f:
        f.write(b'{"session_id": "s1", "role": "user", "content": "\xe2\x82\n')
    store.append_message("s1", SessionMessage(session_id="s1", role="assistant", content="after"))

    assert [message.content for message in store.list_messages("s1")] == ["hello", "after"]
