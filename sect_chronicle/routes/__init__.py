"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings, providers, check-connection)
and game (characters, turn, retry-save, clock, state, save slots). The
running GameSession lives on app.state.session.
"""

from fastapi import APIRouter

from .game import router as game_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(game_router)
