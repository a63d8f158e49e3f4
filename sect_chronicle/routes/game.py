"""Character, turn, clock and save-slot endpoints."""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from sect_chronicle import saves
from sect_chronicle.calendar import describe
from sect_chronicle.llm import LLMError, NoCredentialAvailable
from sect_chronicle.models import CharacterState
from sect_chronicle.pipeline.orchestrator import NoActiveCharacter, NoCredential, SaveFailed
from sect_chronicle.providers import UnknownProviderError
from sect_chronicle.session import GameSession

from .models import CreateCharacter, CreateSaveSlot, TurnBody, get_session

router = APIRouter()


@router.post("/characters")
async def create_character(body: CreateCharacter, session: GameSession = Depends(get_session)):
    """Create a character with a fresh progress record and make it active."""
    character = CharacterState(
        id=body.id or uuid.uuid4().hex[:12],
        name=body.name,
        sect_id=body.sect_id,
        realm=body.realm,
        location=body.location,
        gold=body.gold,
    )
    if session.storage.get("character", character.id) is not None:
        raise HTTPException(409, "Character already exists")
    session.orchestrator.create_character(character)
    return character


@router.get("/characters")
async def list_characters(session: GameSession = Depends(get_session)):
    """List all stored characters."""
    return session.storage.get_all("character")


@router.post("/characters/{character_id}/load")
async def load_character(character_id: str, session: GameSession = Depends(get_session)):
    """Make a stored character the active one."""
    try:
        return session.orchestrator.load_character(character_id)
    except NoActiveCharacter:
        raise HTTPException(404, "Character not found")


@router.get("/state")
async def get_state(session: GameSession = Depends(get_session)):
    """Active character and progress."""
    orch = session.orchestrator
    if orch.character is None:
        raise HTTPException(400, "No character loaded")
    return {
        "character": orch.character,
        "progress": orch.progress,
        "pending_save": orch.has_pending_save,
    }


@router.post("/turn")
async def take_turn(body: TurnBody, session: GameSession = Depends(get_session)):
    """Send a player action through the narrative turn engine."""
    async with session.turn_lock:
        try:
            result = await session.orchestrator.process_action(body.action, body.npc)
        except (NoActiveCharacter, NoCredential, NoCredentialAvailable, UnknownProviderError) as e:
            raise HTTPException(400, str(e))
        except SaveFailed as e:
            return {**e.turn.model_dump(mode="json"), "error": str(e)}
        except LLMError as e:
            raise HTTPException(502, f"Generation failed, please retry: {e}")
    return result.model_dump(mode="json")


@router.post("/turn/retry-save")
async def retry_save(session: GameSession = Depends(get_session)):
    """Repeat the persistence write of the last turn."""
    async with session.turn_lock:
        try:
            saved = session.orchestrator.retry_save()
        except NoActiveCharacter as e:
            raise HTTPException(400, str(e))
        except OSError as e:
            raise HTTPException(503, f"Save failed: {e}")
    return {"saved": saved}


@router.get("/clock")
async def get_clock(session: GameSession = Depends(get_session)):
    """Current in-game time."""
    clock = session.orchestrator.calendar.clock
    return {"clock": clock, "label": describe(clock)}


@router.get("/saves")
async def list_saves(session: GameSession = Depends(get_session)):
    """Save slots of the active character, newest first."""
    orch = session.orchestrator
    if orch.character is None:
        raise HTTPException(400, "No character loaded")
    return saves.list_slots(session.storage, orch.character.id)


@router.post("/saves")
async def create_save(body: CreateSaveSlot, session: GameSession = Depends(get_session)):
    """Snapshot the active game into a new slot."""
    try:
        return saves.save_slot(session.orchestrator, body.name)
    except NoActiveCharacter as e:
        raise HTTPException(400, str(e))


@router.post("/saves/{slot_id}/load")
async def load_save(slot_id: str, session: GameSession = Depends(get_session)):
    """Restore a save slot as the active game."""
    async with session.turn_lock:
        try:
            return saves.load_slot(session.orchestrator, slot_id)
        except KeyError:
            raise HTTPException(404, "Save slot not found")


@router.delete("/saves/{slot_id}")
async def delete_save(slot_id: str, session: GameSession = Depends(get_session)):
    """Delete a save slot."""
    if not saves.delete_slot(session.storage, slot_id):
        raise HTTPException(404, "Save slot not found")
    return {"ok": True}
