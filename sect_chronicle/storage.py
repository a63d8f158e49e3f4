"""JSON file document store.

All records live in flat JSON files under a configurable base directory,
one file per record kind, each a JSON object keyed by the record's key.
There is no database or ORM — reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      records/
        character.json    ← {id: CharacterState}
        sect.json         ← {id: Sect}
        item.json         ← {id: item dict}
        save_slot.json    ← {id: SaveSlot}, indexed by character_id / timestamp
        progress.json     ← {character_id: GameProgress}

Every write goes to a temp file first and is swapped in with os.replace, so
a failed write leaves the previous file intact. put_many() stages all files
before swapping any of them in.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

KEY_FIELDS: dict[str, str] = {
    "character": "id",
    "sect": "id",
    "item": "id",
    "save_slot": "id",
    "progress": "character_id",
}

Record = dict[str, Any]


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._root = base_path / "records"
        self._root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _kind_file(self, kind: str) -> Path:
        if kind not in KEY_FIELDS:
            raise ValueError(f"Unknown record kind {kind!r}")
        return self._root / f"{kind}.json"

    def _read_kind(self, kind: str) -> dict[str, Record]:
        path = self._kind_file(kind)
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def _stage(self, kind: str, records: dict[str, Record]) -> Path:
        target = self._kind_file(kind)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        return tmp

    @staticmethod
    def _as_record(record: BaseModel | Record) -> Record:
        if isinstance(record, BaseModel):
            return record.model_dump(mode="json")
        return dict(record)

    def _key_of(self, kind: str, record: Record) -> str:
        self._kind_file(kind)  # rejects unknown kinds
        field = KEY_FIELDS[kind]
        key = record.get(field)
        if not key:
            raise ValueError(f"{kind} record has no {field!r}")
        return str(key)

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    def get(self, kind: str, key: str) -> Record | None:
        return self._read_kind(kind).get(key)

    def get_all(self, kind: str) -> list[Record]:
        return list(self._read_kind(kind).values())

    def find(self, kind: str, field: str, value: Any) -> list[Record]:
        """All records of a kind whose field equals value."""
        return [r for r in self._read_kind(kind).values() if r.get(field) == value]

    def put(self, kind: str, record: BaseModel | Record) -> Record:
        """Upsert a record by its key field."""
        return self.put_many([(kind, record)])[0]

    def put_many(self, items: list[tuple[str, BaseModel | Record]]) -> list[Record]:
        """Upsert several records; every touched file is staged before any is replaced."""
        by_kind: dict[str, dict[str, Record]] = {}
        written: list[Record] = []
        for kind, record in items:
            data = self._as_record(record)
            key = self._key_of(kind, data)
            if kind not in by_kind:
                by_kind[kind] = self._read_kind(kind)
            by_kind[kind][key] = data
            written.append(data)

        staged: list[tuple[Path, Path]] = []
        try:
            for kind, records in by_kind.items():
                staged.append((self._stage(kind, records), self._kind_file(kind)))
        except OSError:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise

        for tmp, target in staged:
            os.replace(tmp, target)
        logger.debug("stored %d record(s) in %s", len(written), ", ".join(by_kind))
        return written

    def delete(self, kind: str, key: str) -> bool:
        records = self._read_kind(kind)
        if key not in records:
            return False
        del records[key]
        os.replace(self._stage(kind, records), self._kind_file(kind))
        return True
