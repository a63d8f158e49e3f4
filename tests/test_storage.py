"""Tests for sect_chronicle.storage — JSON record store."""

import json
from unittest.mock import patch

import pytest

from sect_chronicle.models import CharacterState, GameProgress
from sect_chronicle.storage import Storage


@pytest.fixture
def store(data_dir) -> Storage:
    return Storage(data_dir)


def test_put_and_get(store, data_dir):
    store.put("character", CharacterState(id="c1", name="沈青"))
    assert store.get("character", "c1")["name"] == "沈青"
    raw = (data_dir / "records" / "character.json").read_text(encoding="utf-8")
    assert "沈青" in raw  # stored unescaped


def test_get_missing(store):
    assert store.get("character", "nope") is None
    assert store.get_all("character") == []


def test_progress_keyed_by_character(store):
    store.put("progress", GameProgress(character_id="c1", flags={"甲"}))
    record = store.get("progress", "c1")
    assert record["flags"] == ["甲"]
    assert GameProgress.model_validate(record).flags == {"甲"}


def test_upsert_replaces(store):
    store.put("character", {"id": "c1", "name": "甲"})
    store.put("character", {"id": "c1", "name": "乙"})
    assert [r["name"] for r in store.get_all("character")] == ["乙"]


def test_find(store):
    store.put_many([
        ("save_slot", {"id": "s1", "character_id": "c1"}),
        ("save_slot", {"id": "s2", "character_id": "c2"}),
        ("save_slot", {"id": "s3", "character_id": "c1"}),
    ])
    assert {r["id"] for r in store.find("save_slot", "character_id", "c1")} == {"s1", "s3"}


def test_unknown_kind(store):
    with pytest.raises(ValueError):
        store.put("dragon", {"id": "x"})
    with pytest.raises(ValueError):
        store.get("dragon", "x")


def test_unknown_kind_in_batch_writes_nothing(store, data_dir):
    with pytest.raises(ValueError):
        store.put_many([("character", {"id": "c1", "name": "甲"}), ("dragon", {"id": "x"})])
    assert store.get("character", "c1") is None
    assert list((data_dir / "records").iterdir()) == []


def test_missing_key(store):
    with pytest.raises(ValueError):
        store.put("character", {"name": "无名"})


def test_delete(store):
    store.put("character", {"id": "c1", "name": "甲"})
    assert store.delete("character", "c1") is True
    assert store.delete("character", "c1") is False
    assert store.get("character", "c1") is None


def test_put_many_writes_both_files(store, data_dir):
    store.put_many([
        ("character", CharacterState(id="c1", name="甲", gold=5)),
        ("progress", GameProgress(character_id="c1")),
    ])
    files = sorted(p.name for p in (data_dir / "records").iterdir())
    assert files == ["character.json", "progress.json"]


def test_failed_stage_leaves_previous_files(store, data_dir):
    store.put_many([
        ("character", {"id": "c1", "name": "甲", "gold": 1}),
        ("progress", {"character_id": "c1", "events": []}),
    ])
    original_stage = Storage._stage
    calls = {"n": 0}

    def flaky_stage(self, kind, records):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("disk full")
        return original_stage(self, kind, records)

    with patch.object(Storage, "_stage", flaky_stage):
        with pytest.raises(OSError):
            store.put_many([
                ("character", {"id": "c1", "name": "甲", "gold": 99}),
                ("progress", {"character_id": "c1", "events": ["新事"]}),
            ])

    assert store.get("character", "c1")["gold"] == 1
    assert store.get("progress", "c1")["events"] == []
    leftovers = [p.name for p in (data_dir / "records").iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []
    assert json.loads((data_dir / "records" / "character.json").read_text(encoding="utf-8"))
