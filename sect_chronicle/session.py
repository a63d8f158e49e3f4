"""One running game: storage, credential pool, gateway and orchestrator wired from config."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from pathlib import Path
from typing import Any

from sect_chronicle import config as app_config
from sect_chronicle.calendar import Calendar
from sect_chronicle.credentials import CredentialPool
from sect_chronicle.llm import CompletionGateway
from sect_chronicle.lore import WorldAtlas
from sect_chronicle.pipeline.orchestrator import TurnOrchestrator
from sect_chronicle.storage import Storage

logger = logging.getLogger(__name__)


class GameSession:
    def __init__(
        self,
        data_dir: Path,
        atlas: WorldAtlas | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.data_dir = data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        self.storage = Storage(data_dir)
        self.config = app_config.get_config(data_dir)
        self.pool = CredentialPool(app_config.credentials(self.config))
        self.gateway = self._make_gateway(self.config)
        self.orchestrator = TurnOrchestrator(
            storage=self.storage,
            gateway=self.gateway,
            pool=self.pool,
            calendar=Calendar(rng=rng),
            atlas=atlas,
            history_capacity=self.config["history_capacity"],
            temperature=self.config["temperature"],
            max_output_tokens=self.config["max_output_tokens"],
            system_prompt=self.config["system_prompt"],
        )
        # turns are sequential per session
        self.turn_lock = asyncio.Lock()

    def _make_gateway(self, config: dict[str, Any]) -> CompletionGateway:
        return CompletionGateway(
            self.pool,
            config,
            backoff=config["backoff_seconds"],
            attempt_timeout=config["attempt_timeout"],
        )

    def update_config(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Persist a partial config update and apply it to the live engine."""
        self.config = app_config.update_config(self.data_dir, fields)
        if "credentials" in fields:
            self.pool.replace(app_config.credentials(self.config))

        self.gateway = self._make_gateway(self.config)
        orch = self.orchestrator
        orch.gateway = self.gateway
        orch.temperature = self.config["temperature"]
        orch.max_output_tokens = self.config["max_output_tokens"]
        orch.system_prompt = self.config["system_prompt"] or None
        if orch.history.maxlen != self.config["history_capacity"]:
            orch.history = deque(orch.history, maxlen=self.config["history_capacity"])
        logger.info("config updated: provider=%s", self.config["provider"])
        return self.config
