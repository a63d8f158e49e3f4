"""Turn orchestrator — runs one player action end-to-end.

Turn flow:
  1. Fail fast: NoActiveCharacter / NoCredential.
  2. Resolve the character's location in the world atlas (prompt context only;
     a miss just means no location section).
  3. Append the action to the bounded conversation history.
  4. Gateway call, then parse. A gateway failure (or a failure while settling)
     aborts the turn: history is rolled back and state is untouched.
  5. TIME+ > 0 advances the calendar; the clock delta rides on the result.
  6. Apply the settlement to copies of character + progress, commit them,
     then write both records in one put_many. A failed write raises
     SaveFailed carrying the turn (saved=False); retry_save() repeats only
     the write.
  7. Append the narrative to history and return the turn.
"""

from __future__ import annotations

import logging
from collections import deque

from sect_chronicle.calendar import Calendar
from sect_chronicle.credentials import CredentialPool
from sect_chronicle.llm import CompletionGateway
from sect_chronicle.lore import LocationContext, WorldAtlas
from sect_chronicle.models import (
    CharacterState,
    CompletionRequest,
    GameProgress,
    ParsedTurn,
    Role,
    Sect,
    TurnResult,
)
from sect_chronicle.prompts import PromptError, build_context, build_system_prompt
from sect_chronicle.storage import Storage

from .effects import apply_settlement
from .segments import parse_narrator_output, turn_to_text

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAPACITY = 10
SAVE_ATTEMPTS = 2


class TurnError(RuntimeError):
    """A turn could not be run or completed; the message is user-facing."""


class NoActiveCharacter(TurnError):
    pass


class NoCredential(TurnError):
    pass


class SaveFailed(TurnError):
    """The turn was generated and applied in memory but not written."""

    def __init__(self, turn: TurnResult, message: str = "Turn not yet saved") -> None:
        super().__init__(message)
        self.turn = turn


class TurnOrchestrator:
    def __init__(
        self,
        *,
        storage: Storage,
        gateway: CompletionGateway,
        pool: CredentialPool,
        calendar: Calendar | None = None,
        atlas: WorldAtlas | None = None,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        temperature: float = 0.8,
        max_output_tokens: int = 2048,
        system_prompt: str | None = None,
    ) -> None:
        self.storage = storage
        self.gateway = gateway
        self.pool = pool
        self.calendar = calendar or Calendar()
        self.atlas = atlas
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.system_prompt = system_prompt or None
        self.history: deque[tuple[Role, str]] = deque(maxlen=history_capacity)
        self.character: CharacterState | None = None
        self.progress: GameProgress | None = None
        self._pending_save = False

    # ------------------------------------------------------------------
    # Character lifecycle
    # ------------------------------------------------------------------

    def create_character(self, character: CharacterState) -> GameProgress:
        """Persist a new character with a fresh progress record and make it active."""
        progress = GameProgress(character_id=character.id, clock=self.calendar.fresh_clock())
        self.storage.put_many([("character", character), ("progress", progress)])
        self.activate(character, progress)
        return progress

    def load_character(self, character_id: str) -> CharacterState:
        raw = self.storage.get("character", character_id)
        if raw is None:
            raise NoActiveCharacter(f"Character {character_id!r} not found")
        character = CharacterState.model_validate(raw)
        raw_progress = self.storage.get("progress", character_id)
        if raw_progress is None:
            progress = GameProgress(character_id=character_id, clock=self.calendar.fresh_clock())
        else:
            progress = GameProgress.model_validate(raw_progress)
        self.activate(character, progress)
        return character

    def activate(
        self,
        character: CharacterState,
        progress: GameProgress,
        history: list[tuple[Role, str]] | None = None,
    ) -> None:
        """Make a character the active one, restoring its clock and history."""
        self.character = character
        self.progress = progress
        self.calendar.restore(progress.clock)
        self.history.clear()
        self.history.extend(history or [])
        self._pending_save = False

    @property
    def has_pending_save(self) -> bool:
        return self._pending_save

    # ------------------------------------------------------------------
    # The turn
    # ------------------------------------------------------------------

    async def process_action(self, action: str, current_npc: str | None = None) -> TurnResult:
        """Execute one player action and return the parsed, applied turn."""
        if self.character is None or self.progress is None:
            raise NoActiveCharacter("No character loaded — create or load one first")
        provider_id = self.gateway.provider_id
        if not self.pool.has_credentials(provider_id):
            raise NoCredential(f"No provider credential configured for {provider_id!r}")

        location = self._resolve_location(self.character.location)
        request = self._build_request(action, current_npc, location)

        history_before = list(self.history)
        self.history.append(("user", action))
        completed = False
        try:
            raw = await self.gateway.complete(request)
            turn = parse_narrator_output(raw)
            result = self._settle(turn)
            completed = True
        finally:
            if not completed:
                self.history.clear()
                self.history.extend(history_before)

        self.history.append(("assistant", turn_to_text(turn)))

        if self._pending_save:
            try:
                self._write()
            except OSError as e:
                logger.warning("save after turn failed: %s", e)
                result.saved = False
                raise SaveFailed(result) from e
        return result

    def retry_save(self) -> bool:
        """Repeat the persistence write for the last turn. Returns False if nothing was pending."""
        if self.character is None or self.progress is None:
            raise NoActiveCharacter("No character loaded")
        if not self._pending_save:
            return False
        self._write()
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_location(self, path: str) -> LocationContext | None:
        if self.atlas is None or not path:
            return None
        try:
            return self.atlas.resolve(path)
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning("location lookup for %r failed: %s", path, e)
            return None

    def _load_sect(self, sect_id: str | None) -> Sect | None:
        if not sect_id:
            return None
        raw = self.storage.get("sect", sect_id)
        return Sect.model_validate(raw) if raw else None

    def _build_request(
        self, action: str, npc: str | None, location: LocationContext | None
    ) -> CompletionRequest:
        ctx = build_context(
            self.character,
            self.progress,
            sect=self._load_sect(self.character.sect_id),
            location=location,
            npc=npc,
        )
        try:
            system_prompt = build_system_prompt(ctx, self.system_prompt)
        except PromptError as e:
            logger.warning("custom system prompt failed (%s), using default", e)
            system_prompt = build_system_prompt(ctx)

        return CompletionRequest(
            system_prompt=system_prompt,
            prior_turns=list(self.history),
            user_turn=action,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

    def _settle(self, turn: ParsedTurn) -> TurnResult:
        """Advance the clock and apply effects all-or-nothing, then commit."""
        effects = turn.settlement
        clock_before = self.calendar.clock
        character = self.character.model_copy(deep=True)
        progress = self.progress.model_copy(deep=True)

        delta = None
        try:
            if effects.hours_elapsed:
                delta = self.calendar.advance(effects.hours_elapsed)
                progress.clock = self.calendar.clock
            changed = apply_settlement(character, progress, effects)
        except Exception:
            self.calendar.restore(clock_before)
            raise

        self.character = character
        self.progress = progress
        if changed or delta is not None:
            self._pending_save = True

        return TurnResult(
            narrative_text=turn.narrative_text,
            choices=turn.choices,
            settlement=turn.settlement,
            clock_delta=delta,
        )

    def _write(self) -> None:
        records = [("character", self.character), ("progress", self.progress)]
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            try:
                self.storage.put_many(records)
                break
            except OSError:
                if attempt == SAVE_ATTEMPTS:
                    raise
                logger.warning("save attempt %d failed, retrying", attempt)
        self._pending_save = False
