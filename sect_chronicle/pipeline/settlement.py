"""Settlement block extraction and the line-oriented directive grammar.

The narrator appends a settlement block to its prose:

    【结算开始】
    ITEM+:培元丹×2
    GOLD+:10
    TIME+:2
    【结算结束】

Every non-blank line inside the block is tried against a fixed set of
prefix-keyed directives. Each directive maps a line to an optional typed
value; a line that matches no prefix, or whose number fails to parse, maps
to nothing and is dropped. Parsing never raises.

Grammar (":" or "：" after the prefix, list bullets before it tolerated):

    EVENT:text              ENCOUNTER:npc
    ITEM+:name×count        ITEM-:name×count      (count defaults to 1)
    RELATION:name+n         RELATION:name-n
    LOCATION:path           TIME+:hours
    GOLD+:n                 GOLD-:n
    QUEST_START:name        QUEST_DONE:name
    SKILL+:name·n           FLAG:name

A directive spanning several lines is not supported; only its first line is
seen.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from sect_chronicle.models import ItemDelta, RelationDelta, SettlementEffects, SkillDelta

logger = logging.getLogger(__name__)

OPEN_MARKER = "【结算开始】"
CLOSE_MARKER = "【结算结束】"

_BLOCK_RE = re.compile(
    re.escape(OPEN_MARKER) + r"(.*?)(?:" + re.escape(CLOSE_MARKER) + r"|\Z)",
    re.DOTALL,
)
_BULLET_RE = re.compile(r"^(?:[-*•·]|\d+[.、)])\s*")
_INT_RE = re.compile(r"^[+-]?\d{1,9}$")  # at most 9 digits
_COUNT_SEPARATORS = "×xX*"
_SKILL_SEPARATORS = "·:："
_RELATION_RE = re.compile(r"^(.+?)\s*([+-]\s*\d+)$")


def split_settlement(text: str) -> tuple[str, list[str]]:
    """Return (text with every settlement block removed, block bodies in order).

    An opening marker with no closing marker runs to the end of the text.
    """
    bodies = [m.group(1) for m in _BLOCK_RE.finditer(text)]
    stripped = _BLOCK_RE.sub("", text).replace(CLOSE_MARKER, "")
    return stripped, bodies


# ---------------------------------------------------------------------------
# Value parsers — each returns None when the payload is unusable
# ---------------------------------------------------------------------------

def _to_int(raw: str) -> int | None:
    cleaned = raw.strip().replace(" ", "")
    if not _INT_RE.match(cleaned):
        return None
    return int(cleaned)


def _text(payload: str) -> str | None:
    return payload.strip() or None


def _amount(payload: str) -> int | None:
    value = _to_int(payload)
    if value is None or value < 0:
        return None
    return value


def _item(payload: str) -> ItemDelta | None:
    name, count = payload, "1"
    for sep in _COUNT_SEPARATORS:
        head, found, tail = payload.rpartition(sep)
        if found and _to_int(tail) is not None:
            name, count = head, tail
            break
        if found and sep == "×":
            # explicit separator with a bad number: drop the line
            return None
    name = name.strip()
    value = _to_int(count)
    if not name or value is None or value <= 0:
        return None
    return ItemDelta(name=name, count=value)


def _relation(payload: str) -> RelationDelta | None:
    m = _RELATION_RE.match(payload.strip())
    if not m:
        return None
    value = _to_int(m.group(2))
    if value is None:
        return None
    npc = m.group(1).strip().rstrip(":：").strip()
    if not npc:
        return None
    return RelationDelta(npc=npc, delta=value)


def _skill(payload: str) -> SkillDelta | None:
    for sep in _SKILL_SEPARATORS:
        head, found, tail = payload.rpartition(sep)
        if found:
            value = _to_int(tail)
            if value is None or not head.strip():
                return None
            return SkillDelta(skill=head.strip(), delta=value)
    return None


# prefix -> (effects field, value parser, combine mode)
#   "set"  last value wins
#   "sum"  numeric values add up
#   "neg"  numeric values subtract
#   "list" values are appended
#   "flag" values are added to a set
_DIRECTIVES: list[tuple[str, str, Callable[[str], Any], str]] = [
    ("QUEST_START", "quest_started", _text, "set"),
    ("QUEST_DONE", "quest_completed", _text, "set"),
    ("ENCOUNTER", "encounter_npc", _text, "set"),
    ("RELATION", "relation_deltas", _relation, "list"),
    ("LOCATION", "location_path", _text, "set"),
    ("SKILL+", "skill_deltas", _skill, "list"),
    ("ITEM+", "items_gained", _item, "list"),
    ("ITEM-", "items_lost", _item, "list"),
    ("EVENT", "event", _text, "set"),
    ("TIME+", "hours_elapsed", _amount, "sum"),
    ("GOLD+", "gold_delta", _amount, "sum"),
    ("GOLD-", "gold_delta", _amount, "neg"),
    ("FLAG", "flags_raised", _text, "flag"),
]


def parse_directive(line: str) -> tuple[str, str, Any] | None:
    """Map one line to (field, combine mode, value), or None if it is not a directive."""
    stripped = _BULLET_RE.sub("", line.strip())
    for prefix, field, parser, mode in _DIRECTIVES:
        if not stripped.upper().startswith(prefix):
            continue
        rest = stripped[len(prefix):].lstrip()
        if not rest or rest[0] not in ":：":
            continue
        value = parser(rest[1:])
        if value is None:
            logger.debug("dropping malformed directive %r", line)
            return None
        return field, mode, value
    return None


def parse_settlement(body: str) -> SettlementEffects:
    """Fold every recognised directive line of a block body into one effects record."""
    values: dict[str, Any] = {}
    for line in body.splitlines():
        if not line.strip():
            continue
        parsed = parse_directive(line)
        if parsed is None:
            continue
        field, mode, value = parsed
        if mode == "set":
            values[field] = value
        elif mode == "sum":
            values[field] = values.get(field, 0) + value
        elif mode == "neg":
            values[field] = values.get(field, 0) - value
        elif mode == "list":
            values.setdefault(field, []).append(value)
        elif mode == "flag":
            values.setdefault(field, set()).add(value)
    return SettlementEffects(**values)


def extract_settlement(text: str) -> tuple[str, SettlementEffects]:
    """Strip settlement blocks from text and parse their directives."""
    stripped, bodies = split_settlement(text)
    if not bodies:
        return text, SettlementEffects()
    return stripped, parse_settlement("\n".join(bodies))
