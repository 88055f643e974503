import json
from pathlib import Path

import pytest

from src.xano_es_sync.checkpoint import InMemoryCheckpointStore, JsonFileCheckpointStore
from src.xano_es_sync.models import Checkpoint


def test_missing_file_loads_zero_checkpoint(tmp_path: Path):
    checkpoint = JsonFileCheckpointStore(tmp_path / "checkpoint.json").load()

    assert checkpoint.last_processed_page == 0
    assert checkpoint.last_processed_record_id == 0


@pytest.mark.parametrize("content", [
    "",
    '{"lastProcessedPage": 4, "lastProcess',  # half-written
    "[1, 2]",
    "null",
    '{"lastProcessedPage": -1, "lastProcessedRecordId": 10}',
    '{"lastProcessedPage": "four", "lastProcessedRecordId": 10}',
])
def test_corrupt_file_degrades_to_full_restart(tmp_path: Path, content):
    path = tmp_path / "checkpoint.json"
    path.write_text(content, encoding="utf-8")

    checkpoint = JsonFileCheckpointStore(path).load()

    assert checkpoint.last_processed_page == 0
    assert checkpoint.last_processed_record_id == 0


def test_save_writes_camel_case_json_with_timestamp(tmp_path: Path):
    path = tmp_path / "checkpoint.json"
    store = JsonFileCheckpointStore(path)

    store.save(Checkpoint(last_processed_page=12, last_processed_record_id=24000))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["lastProcessedPage"] == 12
    assert data["lastProcessedRecordId"] == 24000
    assert isinstance(data["timestamp"], str)

    loaded = store.load()
    assert loaded.last_processed_page == 12
    assert loaded.last_processed_record_id == 24000


def test_save_overwrites_and_leaves_no_temp_files(tmp_path: Path):
    path = tmp_path / "state" / "checkpoint.json"
    store = JsonFileCheckpointStore(path)

    store.save(Checkpoint(last_processed_page=1, last_processed_record_id=10))
    store.save(Checkpoint(last_processed_page=2, last_processed_record_id=20))

    assert store.load().last_processed_page == 2
    assert [p.name for p in path.parent.iterdir()] == ["checkpoint.json"]


def test_failed_save_keeps_previous_checkpoint(tmp_path: Path, monkeypatch):
    path = tmp_path / "checkpoint.json"
    store = JsonFileCheckpointStore(path)
    store.save(Checkpoint(last_processed_page=3, last_processed_record_id=30))

    import src.xano_es_sync.checkpoint as checkpoint_mod

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(checkpoint_mod.os, "replace", failing_replace)

    with pytest.raises(OSError, match="disk full"):
        store.save(Checkpoint(last_processed_page=4, last_processed_record_id=40))

    monkeypatch.undo()
    assert store.load().last_processed_page == 3
    assert [p.name for p in tmp_path.iterdir()] == ["checkpoint.json"]


def test_checkpoint_accepts_field_names_and_aliases():
    by_alias = Checkpoint.model_validate({"lastProcessedPage": 2, "lastProcessedRecordId": 5})
    by_name = Checkpoint(last_processed_page=2, last_processed_record_id=5)

    assert by_alias.last_processed_page == by_name.last_processed_page == 2


def test_in_memory_store_records_history():
    store = InMemoryCheckpointStore()

    store.save(Checkpoint(last_processed_page=1, last_processed_record_id=3))

    assert store.load().last_processed_page == 1
    assert store.load().timestamp is not None
    assert len(store.history) == 1
