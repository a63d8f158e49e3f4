"""Credential pool — per-provider API keys with a liveness flag each.

Selection is round-robin from a per-provider cursor so that one bad key
does not starve the others. When every key of a provider has failed, the
next select() resets them all to active and hands out the first one: the
pool is never permanently empty for a configured provider.

The liveness map is the only state shared between call paths, so every
mutation happens under one lock.
"""

from __future__ import annotations

import logging
import threading

from sect_chronicle.models import Credential

logger = logging.getLogger(__name__)


class CredentialPool:
    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self._lock = threading.Lock()
        self._credentials: list[Credential] = []
        self._cursors: dict[str, int] = {}
        self.replace(credentials or [])

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def replace(self, credentials: list[Credential]) -> None:
        """Swap in a new credential list (configuration replace)."""
        with self._lock:
            self._credentials = [c.model_copy() for c in credentials]
            self._cursors = {}

    def for_provider(self, provider_id: str) -> list[Credential]:
        with self._lock:
            return [c.model_copy() for c in self._by_provider(provider_id)]

    def has_credentials(self, provider_id: str) -> bool:
        with self._lock:
            return any(c.secret for c in self._by_provider(provider_id))

    # ------------------------------------------------------------------
    # Selection and liveness
    # ------------------------------------------------------------------

    def select(self, provider_id: str) -> Credential | None:
        """Return the next active credential for a provider, or None if it has none."""
        with self._lock:
            candidates = [c for c in self._by_provider(provider_id) if c.secret]
            if not candidates:
                return None

            start = self._cursors.get(provider_id, 0) % len(candidates)
            for offset in range(len(candidates)):
                index = (start + offset) % len(candidates)
                if candidates[index].liveness == "active":
                    self._cursors[provider_id] = index + 1
                    return candidates[index].model_copy()

            # Full-pool exhaustion: bring everyone back, start over.
            logger.info("all %d credentials for %s failed — resetting pool",
                        len(candidates), provider_id)
            self._reset_locked(provider_id)
            self._cursors[provider_id] = 1
            return candidates[0].model_copy()

    def peek(self, provider_id: str) -> Credential | None:
        """The credential select() would hand out next, without moving the cursor or resetting."""
        with self._lock:
            candidates = [c for c in self._by_provider(provider_id) if c.secret]
            if not candidates:
                return None
            start = self._cursors.get(provider_id, 0) % len(candidates)
            for offset in range(len(candidates)):
                candidate = candidates[(start + offset) % len(candidates)]
                if candidate.liveness == "active":
                    return candidate.model_copy()
            return candidates[0].model_copy()

    def mark_failed(self, credential_id: str) -> None:
        self._set_liveness(credential_id, "failed")

    def mark_active(self, credential_id: str) -> None:
        self._set_liveness(credential_id, "active")

    def reset(self, provider_id: str) -> None:
        with self._lock:
            self._reset_locked(provider_id)

    def liveness(self, credential_id: str) -> str | None:
        with self._lock:
            for c in self._credentials:
                if c.id == credential_id:
                    return c.liveness
        return None

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _by_provider(self, provider_id: str) -> list[Credential]:
        return [c for c in self._credentials if c.provider_id == provider_id]

    def _reset_locked(self, provider_id: str) -> None:
        for c in self._by_provider(provider_id):
            c.liveness = "active"

    def _set_liveness(self, credential_id: str, liveness: str) -> None:
        with self._lock:
            for c in self._credentials:
                if c.id == credential_id:
                    if c.liveness != liveness:
                        logger.info("credential %s -> %s", credential_id, liveness)
                    c.liveness = liveness
                    return
        logger.warning("unknown credential id %r", credential_id)
