"""Health check, settings, provider catalog and connection check endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from sect_chronicle import config as app_config
from sect_chronicle.providers import UnknownProviderError, provider_ids
from sect_chronicle.session import GameSession

from .models import CheckConnectionBody, get_session

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(session: GameSession = Depends(get_session)):
    """Get global settings, with credential secrets masked."""
    return app_config.redacted(session.config)


@router.patch("/settings")
async def update_settings(body: dict, session: GameSession = Depends(get_session)):
    """Update global settings (partial merge; credentials replaced wholesale)."""
    try:
        config = session.update_config(body)
    except UnknownProviderError as e:
        raise HTTPException(400, str(e))
    except ValidationError as e:
        raise HTTPException(400, f"Invalid credential entry: {e.errors()[0]['msg']}")
    return app_config.redacted(config)


@router.get("/providers")
async def list_providers(session: GameSession = Depends(get_session)):
    """List known providers with their model catalogs."""
    result = []
    for provider_id in provider_ids():
        try:
            profile = session.gateway.profile(provider_id)
        except UnknownProviderError:
            continue  # custom provider without an endpoint
        result.append({
            "id": provider_id,
            "models": profile.model_catalog,
            "default_model": profile.default_model,
            "credentials": len(session.pool.for_provider(provider_id)),
        })
    return result


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody, session: GameSession = Depends(get_session)):
    """Quick round trip against a provider with its next credential."""
    try:
        ok = await session.gateway.check_connection(body.provider)
    except UnknownProviderError as e:
        raise HTTPException(400, str(e))
    return {"ok": ok}
