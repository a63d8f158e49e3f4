"""Named save slots — snapshots of character, progress and conversation history.

Slots live in the save_slot record kind and are looked up by character_id,
newest first.
"""

import logging
import uuid
from datetime import datetime, timezone

from sect_chronicle.models import SaveSlot
from sect_chronicle.pipeline.orchestrator import NoActiveCharacter, TurnOrchestrator
from sect_chronicle.storage import Storage

logger = logging.getLogger(__name__)


def save_slot(orchestrator: TurnOrchestrator, name: str) -> SaveSlot:
    """Snapshot the active character into a new slot."""
    if orchestrator.character is None or orchestrator.progress is None:
        raise NoActiveCharacter("No character loaded")
    slot = SaveSlot(
        id=uuid.uuid4().hex[:12],
        character_id=orchestrator.character.id,
        name=name,
        timestamp=datetime.now(timezone.utc).isoformat(),
        character=orchestrator.character.model_copy(deep=True),
        progress=orchestrator.progress.model_copy(deep=True),
        history=list(orchestrator.history),
    )
    orchestrator.storage.put("save_slot", slot)
    logger.info("saved slot %s (%s) for %s", slot.id, name, slot.character_id)
    return slot


def list_slots(storage: Storage, character_id: str) -> list[SaveSlot]:
    """All slots of one character, newest first."""
    slots = [SaveSlot.model_validate(r) for r in storage.find("save_slot", "character_id", character_id)]
    return sorted(slots, key=lambda s: s.timestamp, reverse=True)


def load_slot(orchestrator: TurnOrchestrator, slot_id: str) -> SaveSlot:
    """Restore a slot as the active game and write it back as current state."""
    raw = orchestrator.storage.get("save_slot", slot_id)
    if raw is None:
        raise KeyError(slot_id)
    slot = SaveSlot.model_validate(raw)
    orchestrator.storage.put_many([("character", slot.character), ("progress", slot.progress)])
    orchestrator.activate(
        slot.character.model_copy(deep=True),
        slot.progress.model_copy(deep=True),
        history=slot.history,
    )
    return slot


def delete_slot(storage: Storage, slot_id: str) -> bool:
    return storage.delete("save_slot", slot_id)
