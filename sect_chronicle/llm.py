"""Completion gateway — "generate text for this turn" over a flaky provider.

The orchestrator calls:

    text = await gateway.complete(request)

and the gateway handles the two orthogonal retry dimensions:

    credential rotation  — CredentialExhausted (HTTP 401/403/429): mark the
                           key failed, move straight on to the next one.
                           Up to max_attempts (3) rotations.
    transient backoff    — anything else (network error, 5xx, unreadable
                           body, per-attempt deadline): sleep a fixed
                           backoff and run selection again. Up to
                           max_retries (3) retries.

Attempts run strictly one after another. Cancelling the awaiting task stops
the loop at once and never marks a credential failed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from sect_chronicle.credentials import CredentialPool
from sect_chronicle.models import CompletionRequest, Credential, ProviderProfile
from sect_chronicle.providers import (
    CredentialExhausted,
    ProviderAdapter,
    TransportError,
    adapter_for,
    resolve_profile,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MAX_RETRIES = 3
BACKOFF_SECONDS = 2.0
ATTEMPT_TIMEOUT = 60.0


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Base class for gateway failures surfaced to the caller."""


class NoCredentialAvailable(LLMError):
    """The active provider has no credential configured."""


class AllAttemptsFailed(LLMError):
    """Credential rotation or transient retries ran out."""


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class CompletionGateway:
    """Retrying, credential-rotating client for the configured provider.

    Args:
        pool:            Shared credential pool.
        config:          App config dict (provider, models, custom_provider).
        max_attempts:    Credential-rotation ceiling.
        max_retries:     Transient-failure retry ceiling.
        backoff:         Fixed delay between transient retries, in seconds.
        attempt_timeout: Deadline for a single provider round trip.
        sleep:           Injected for tests; defaults to asyncio.sleep.
    """

    def __init__(
        self,
        pool: CredentialPool,
        config: dict[str, Any] | None = None,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        max_retries: int = MAX_RETRIES,
        backoff: float = BACKOFF_SECONDS,
        attempt_timeout: float = ATTEMPT_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._config: dict[str, Any] = dict(config or {})
        self._max_attempts = max_attempts
        self._max_retries = max_retries
        self._backoff = backoff
        self._attempt_timeout = attempt_timeout
        self._sleep = sleep

    @property
    def provider_id(self) -> str:
        return self._config.get("provider", "openai")

    def configure(self, config: dict[str, Any]) -> None:
        """Pick up a new provider / model / custom endpoint selection."""
        self._config = dict(config)

    def profile(self, provider_id: str | None = None) -> ProviderProfile:
        return resolve_profile(provider_id or self.provider_id, self._config)

    def list_models(self, provider_id: str | None = None) -> list[str]:
        return list(self.profile(provider_id).model_catalog)

    async def complete(self, request: CompletionRequest) -> str:
        profile = self.profile()
        adapter = adapter_for(profile)
        attempts = 0
        retries = 0

        while True:
            credential = self._pool.select(profile.provider_id)
            if credential is None:
                raise NoCredentialAvailable(
                    f"No credential configured for provider {profile.provider_id!r}"
                )

            try:
                return await self._attempt(profile, adapter, request, credential)
            except CredentialExhausted as e:
                attempts += 1
                self._pool.mark_failed(credential.id)
                logger.info(
                    "credential %s rejected (HTTP %d), rotation %d/%d",
                    credential.id, e.status, attempts, self._max_attempts,
                )
                if attempts >= self._max_attempts:
                    raise AllAttemptsFailed(
                        f"All credential attempts for {profile.provider_id} were rejected"
                    ) from e
            except (TransportError, httpx.HTTPError, asyncio.TimeoutError) as e:
                retries += 1
                if retries > self._max_retries:
                    raise AllAttemptsFailed(
                        f"{profile.provider_id} unavailable after {self._max_retries} retries: {e}"
                    ) from e
                logger.warning(
                    "transient failure from %s (%s), retry %d/%d in %.1fs",
                    profile.provider_id, str(e) or type(e).__name__,
                    retries, self._max_retries, self._backoff,
                )
                await self._sleep(self._backoff)

    async def check_connection(self, provider_id: str | None = None) -> bool:
        """One minimal round trip with the next credential; pool state untouched."""
        profile = self.profile(provider_id)
        credential = self._pool.peek(profile.provider_id)
        if credential is None:
            return False
        probe = CompletionRequest(system_prompt="ping", user_turn="ping", max_output_tokens=1)
        try:
            await self._attempt(profile, adapter_for(profile), probe, credential)
        except (CredentialExhausted, TransportError, httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.info("connection check for %s failed: %s", profile.provider_id, e)
            return False
        return True

    # ------------------------------------------------------------------
    # One round trip
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        profile: ProviderProfile,
        adapter: ProviderAdapter,
        request: CompletionRequest,
        credential: Credential,
    ) -> str:
        return await asyncio.wait_for(
            self._send(profile, adapter, request, credential),
            timeout=self._attempt_timeout,
        )

    async def _send(
        self,
        profile: ProviderProfile,
        adapter: ProviderAdapter,
        request: CompletionRequest,
        credential: Credential,
    ) -> str:
        wire = adapter.build_request(profile, request, credential)
        logger.debug(
            "llm call provider=%s credential=%s url=%s prompt_len=%d",
            profile.provider_id, credential.id, wire.url,
            len(request.system_prompt) + len(request.user_turn),
        )

        async with httpx.AsyncClient(timeout=self._attempt_timeout) as client:
            resp = await client.post(
                wire.url, json=wire.body, headers=wire.headers, params=wire.params or None,
            )

        try:
            body = resp.json()
        except ValueError:
            body = None

        text = adapter.parse_response(profile, resp.status_code, body)
        logger.debug("llm response provider=%s len=%d", profile.provider_id, len(text))
        return text
