"""Core domain models.

Every record crossing a boundary (provider wire, parser output, persistence)
is one of these types. Pydantic is used for validation and serialisation at
every data boundary.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Liveness = Literal["active", "failed"]
Role = Literal["user", "assistant"]
Season = Literal["spring", "summer", "autumn", "winter"]
RequestShape = Literal["openai", "anthropic", "gemini"]


# ---------------------------------------------------------------------------
# Provider side
# ---------------------------------------------------------------------------

class Credential(BaseModel):
    """One API key bound to a provider, independently markable as failed."""

    id: str
    provider_id: str
    secret: str
    model_override: str | None = None
    liveness: Liveness = "active"


class ProviderProfile(BaseModel):
    """Static descriptor of a chat-completion vendor."""

    provider_id: str
    endpoint_template: str  # may contain {model}
    request_shape: RequestShape
    response_shape: str
    model_catalog: list[str] = Field(default_factory=list)
    default_model: str = ""


class CompletionRequest(BaseModel):
    """Provider-agnostic completion request, built once per turn."""

    system_prompt: str
    prior_turns: list[tuple[Role, str]] = Field(default_factory=list)
    user_turn: str
    temperature: float = 0.8
    max_output_tokens: int = 2048


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class ItemDelta(BaseModel):
    name: str
    count: int


class RelationDelta(BaseModel):
    npc: str
    delta: int


class SkillDelta(BaseModel):
    skill: str
    delta: int


class SettlementEffects(BaseModel):
    """Structured effects extracted from a settlement block.

    None / empty means "no change". A present zero (e.g. gold_delta=0) is
    still a present field.
    """

    event: str | None = None
    encounter_npc: str | None = None
    items_gained: list[ItemDelta] = Field(default_factory=list)
    items_lost: list[ItemDelta] = Field(default_factory=list)
    relation_deltas: list[RelationDelta] = Field(default_factory=list)
    location_path: str | None = None
    hours_elapsed: int | None = Field(default=None, ge=0)
    gold_delta: int | None = None
    quest_started: str | None = None
    quest_completed: str | None = None
    skill_deltas: list[SkillDelta] = Field(default_factory=list)
    flags_raised: set[str] = Field(default_factory=set)

    def is_empty(self) -> bool:
        return self == SettlementEffects()


class ParsedTurn(BaseModel):
    narrative_text: str
    choices: list[str] = Field(min_length=1, max_length=4)
    settlement: SettlementEffects = Field(default_factory=SettlementEffects)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

class GameClock(BaseModel):
    model_config = ConfigDict(frozen=True)

    hour_of_day: int = Field(default=0, ge=0, le=11)
    total_days_elapsed: int = Field(default=1, ge=1)
    season: Season = "spring"
    weather: str = "晴"


class ClockDelta(BaseModel):
    """What one advance() did to the clock."""

    hours: int
    days_rolled: int
    season_changed: bool
    weather_rerolled: bool
    before: GameClock
    after: GameClock


class TurnResult(ParsedTurn):
    """A parsed turn plus what the orchestrator did with it."""

    clock_delta: ClockDelta | None = None
    saved: bool = True


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class Sect(BaseModel):
    id: str
    name: str
    description: str = ""


class CharacterState(BaseModel):
    """The player character."""

    id: str
    name: str
    sect_id: str | None = None
    realm: str = "炼气期"
    attributes: dict[str, int] = Field(default_factory=dict)
    inventory: dict[str, int] = Field(default_factory=dict)
    skills: dict[str, int] = Field(default_factory=dict)
    gold: int = 0
    location: str = ""


class GameProgress(BaseModel):
    """Per-character progress record, keyed by character_id."""

    character_id: str
    relations: dict[str, int] = Field(default_factory=dict)
    active_quests: list[str] = Field(default_factory=list)
    completed_quests: list[str] = Field(default_factory=list)
    flags: set[str] = Field(default_factory=set)
    events: list[str] = Field(default_factory=list)
    last_encounter: str | None = None
    clock: GameClock = Field(default_factory=GameClock)


class SaveSlot(BaseModel):
    """A named snapshot of one character's game."""

    id: str
    character_id: str
    name: str
    timestamp: str  # ISO-8601 UTC
    character: CharacterState
    progress: GameProgress
    history: list[tuple[Role, str]] = Field(default_factory=list)
