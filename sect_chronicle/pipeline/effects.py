"""Apply parsed settlement effects to character and progress records.

apply_settlement() works on the records it is given and returns whether
anything changed; the orchestrator hands it deep copies so a failure never
leaves the live state half-updated.

Rules:
  items gained   inventory[name] += count
  items lost     inventory[name] -= count, clamped at 0 (entry removed at 0)
  relations      relations[npc] += delta, unbounded
  location       replaced verbatim
  gold           balance += delta, floored at 0
  quest start    added to active unless already active or completed
  quest done     moved from active to completed
  skills         skills[name] += delta
  flags          set-added (idempotent)
  event          appended to the event log (kept to MAX_EVENTS)
  encounter      recorded as last_encounter, relation entry created at 0
"""

import logging

from sect_chronicle.models import CharacterState, GameProgress, SettlementEffects

logger = logging.getLogger(__name__)

MAX_EVENTS = 50


def _add_items(character: CharacterState, effects: SettlementEffects) -> None:
    for item in effects.items_gained:
        character.inventory[item.name] = character.inventory.get(item.name, 0) + item.count
    for item in effects.items_lost:
        remaining = character.inventory.get(item.name, 0) - item.count
        if remaining < 0:
            logger.debug("clamping %s at 0 (had %d, lost %d)",
                         item.name, character.inventory.get(item.name, 0), item.count)
        if remaining > 0:
            character.inventory[item.name] = remaining
        else:
            character.inventory.pop(item.name, None)


def _apply_quests(progress: GameProgress, effects: SettlementEffects) -> None:
    started = effects.quest_started
    if started and started not in progress.active_quests and started not in progress.completed_quests:
        progress.active_quests.append(started)

    done = effects.quest_completed
    if done:
        if done in progress.active_quests:
            progress.active_quests.remove(done)
        if done not in progress.completed_quests:
            progress.completed_quests.append(done)


def apply_settlement(
    character: CharacterState, progress: GameProgress, effects: SettlementEffects
) -> bool:
    """Mutate character/progress in place. Returns True if any field changed."""
    before = (character.model_dump(), progress.model_dump())

    _add_items(character, effects)

    for rel in effects.relation_deltas:
        progress.relations[rel.npc] = progress.relations.get(rel.npc, 0) + rel.delta

    if effects.encounter_npc:
        progress.last_encounter = effects.encounter_npc
        progress.relations.setdefault(effects.encounter_npc, 0)

    if effects.location_path is not None:
        character.location = effects.location_path

    if effects.gold_delta is not None:
        character.gold = max(0, character.gold + effects.gold_delta)

    _apply_quests(progress, effects)

    for skill in effects.skill_deltas:
        character.skills[skill.skill] = character.skills.get(skill.skill, 0) + skill.delta

    progress.flags |= effects.flags_raised

    if effects.event:
        progress.events.append(effects.event)
        del progress.events[:-MAX_EVENTS]

    return (character.model_dump(), progress.model_dump()) != before
