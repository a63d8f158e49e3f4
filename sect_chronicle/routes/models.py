"""Pydantic request models for API endpoints."""

from fastapi import Request
from pydantic import BaseModel

from sect_chronicle.session import GameSession


def get_session(request: Request) -> GameSession:
    return request.app.state.session


class CreateCharacter(BaseModel):
    name: str
    id: str | None = None
    sect_id: str | None = None
    realm: str = "炼气期"
    location: str = ""
    gold: int = 0


class TurnBody(BaseModel):
    action: str
    npc: str | None = None


class CreateSaveSlot(BaseModel):
    name: str


class CheckConnectionBody(BaseModel):
    provider: str | None = None
