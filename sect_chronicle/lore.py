"""Read-only world atlas: realm → region → place → building.

The atlas is static lore loaded from JSON and only used to enrich the
narrator prompt. A lookup never fails the turn: an unknown path yields
None, a partially known path yields the tiers that matched.

JSON format:

    {"realms": [
      {"name": "东胜神洲", "description": "...", "regions": [
        {"name": "青云山", "description": "...", "places": [
          {"name": "青云宗", "description": "...", "buildings": [
            {"name": "藏经阁", "description": "..."}]}]}]}]}
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TIERS = ("realm", "region", "place", "building")
_CHILDREN = {"realm": "regions", "region": "places", "place": "buildings"}
_PATH_SPLIT_RE = re.compile(r"\s*(?:/|>|·|→)\s*")


class LocationTier(BaseModel):
    tier: str
    name: str
    description: str = ""


class LocationContext(BaseModel):
    """The tiers a location path resolved to, outermost first."""

    tiers: list[LocationTier] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        return " / ".join(t.name for t in self.tiers)

    def describe(self) -> str:
        return "\n".join(
            f"{t.name}：{t.description}" if t.description else t.name for t in self.tiers
        )


def split_path(path: str) -> list[str]:
    return [part for part in _PATH_SPLIT_RE.split(path.strip()) if part]


class WorldAtlas:
    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._realms: list[dict[str, Any]] = list((data or {}).get("realms", []))

    @classmethod
    def load(cls, path: Path) -> WorldAtlas:
        return cls(json.loads(Path(path).read_text(encoding="utf-8")))

    @property
    def realms(self) -> list[str]:
        return [r["name"] for r in self._realms]

    def resolve(self, path: str | None) -> LocationContext | None:
        """Walk a location path down the four tiers.

        The walk may start at any tier: a path whose first segment is a
        region (or place) is searched for beneath every realm.
        """
        parts = split_path(path or "")
        if not parts:
            return None

        start = self._find_start(parts[0])
        if start is None:
            logger.debug("location %r not in atlas", path)
            return None

        start_tier, node, ancestry = start
        tiers = ancestry + [_tier(start_tier, node)]
        tier, current = start_tier, node
        for part in parts[1:]:
            child_key = _CHILDREN.get(tier)
            if child_key is None:
                break
            child = _named(current.get(child_key, []), part)
            if child is None:
                break
            tier = TIERS[TIERS.index(tier) + 1]
            current = child
            tiers.append(_tier(tier, child))
        return LocationContext(tiers=tiers)

    def _find_start(self, name: str) -> tuple[str, dict[str, Any], list[LocationTier]] | None:
        """Return (tier, node, ancestor tiers) for the outermost node called name."""
        realm = _named(self._realms, name)
        if realm is not None:
            return "realm", realm, []
        for realm in self._realms:
            region = _named(realm.get("regions", []), name)
            if region is not None:
                return "region", region, [_tier("realm", realm)]
        for realm in self._realms:
            for region in realm.get("regions", []):
                place = _named(region.get("places", []), name)
                if place is not None:
                    return "place", place, [_tier("realm", realm), _tier("region", region)]
        return None


def _named(nodes: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    for node in nodes:
        if node.get("name") == name:
            return node
    return None


def _tier(tier: str, node: dict[str, Any]) -> LocationTier:
    return LocationTier(tier=tier, name=node["name"], description=node.get("description", ""))
