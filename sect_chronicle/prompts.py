"""Handlebars rendering of the narrator system prompt.

The system prompt is where the model learns the settlement mini-protocol;
the grammar written here must match pipeline/settlement.py.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from sect_chronicle.calendar import describe as describe_clock
from sect_chronicle.lore import LocationContext
from sect_chronicle.models import CharacterState, GameProgress, Sect
from sect_chronicle.pipeline.settlement import CLOSE_MARKER, OPEN_MARKER

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DEFAULT_SYSTEM_PROMPT = """\
你是一部修仙题材文字冒险游戏的叙事者。根据玩家的行动续写故事，语言简洁生动。

## 时间
{{clock}}

## 角色
{{char.name}}，{{char.realm}}{{#if sect.name}}，{{sect.name}}弟子{{/if}}。
{{#if char.inventory}}
随身物品：{{#each char.inventory}}{{name}}×{{count}} {{/each}}
{{/if}}
灵石：{{char.gold}}
{{#if progress.active_quests}}
进行中的任务：{{#each progress.active_quests}}{{this}} {{/each}}
{{/if}}
{{#if char.skills}}
功法：{{#take char.skills 6}}{{name}}（{{level}}） {{/take}}
{{/if}}
{{#if progress.events}}
近来经历：{{#last progress.events 5}}{{this}}；{{/last}}
{{/if}}

{{#if location.summary}}
## 当前位置
{{location.summary}}
{{{location.text}}}

{{/if}}
{{#if npc}}
## 当前交谈对象
{{npc.name}}（好感 {{npc.relation}}）

{{/if}}
## 输出格式
先写剧情正文，然后另起一行写“选项：”，列出 2 到 4 个编号的行动选项。
最后附上结算块，每行一条指令，没有变化的项不要写：

{{open_marker}}
EVENT:事件简述
ENCOUNTER:遇到的人物
ITEM+:物品名×数量
ITEM-:物品名×数量
RELATION:人物名+数值 或 RELATION:人物名-数值
LOCATION:界域/区域/地点/建筑
TIME+:经过的时辰数
GOLD+:获得的灵石
GOLD-:花费的灵石
QUEST_START:任务名
QUEST_DONE:任务名
SKILL+:功法名·提升数值
FLAG:剧情标记
{{close_marker}}\
"""


# ── Handlebars helpers ────────────────────────────────


def _render_each(options, items) -> list:
    out: list = []
    for item in items:
        out.extend(options["fn"](item))
    return out


def _helper_take(this, options, items, count):
    """{{#take list N}}...{{/take}} renders the block for the first N items."""
    return _render_each(options, list(items or [])[:max(int(count), 0)])


def _helper_last(this, options, items, count):
    """{{#last list N}}...{{/last}} renders the block for the last N items."""
    n = max(int(count), 0)
    return _render_each(options, list(items or [])[-n:] if n else [])


_HELPERS: dict[str, Callable] = {"take": _helper_take, "last": _helper_last}


def _compiled(template: str) -> Callable:
    compiled = _cache.get(template)
    if compiled is None:
        compiled = _cache[template] = _compiler.compile(template)
    return compiled


def render_prompt(template: str, context: dict[str, Any]) -> str:
    """Render a Handlebars template; compiled templates are cached by source."""
    try:
        return str(_compiled(template)(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_context(
    character: CharacterState,
    progress: GameProgress,
    *,
    sect: Sect | None = None,
    location: LocationContext | None = None,
    npc: str | None = None,
) -> dict[str, Any]:
    """Assemble template variables from the loaded game state."""
    ctx: dict[str, Any] = {
        "char": {
            "name": character.name,
            "realm": character.realm,
            "gold": character.gold,
            "location": character.location,
            "inventory": [
                {"name": name, "count": count}
                for name, count in sorted(character.inventory.items())
            ],
            "skills": [
                {"name": name, "level": level}
                for name, level in sorted(character.skills.items())
            ],
        },
        "progress": {
            "active_quests": list(progress.active_quests),
            "completed_quests": list(progress.completed_quests),
            "flags": sorted(progress.flags),
            "events": list(progress.events),
        },
        "clock": describe_clock(progress.clock),
        "open_marker": OPEN_MARKER,
        "close_marker": CLOSE_MARKER,
    }
    if sect is not None:
        ctx["sect"] = {"name": sect.name, "description": sect.description}
    if location is not None:
        ctx["location"] = {"summary": location.summary, "text": location.describe()}
    if npc:
        ctx["npc"] = {"name": npc, "relation": progress.relations.get(npc, 0)}
    return ctx


def build_system_prompt(context: dict[str, Any], template: str | None = None) -> str:
    """Render the narrator system prompt, built-in unless a custom template is given.

    pybars renders some malformed templates (an argument-less {{#if}}, an
    unclosed block) to an empty string instead of failing, so a custom
    template must produce text that still carries the settlement markers.
    """
    prompt = render_prompt(template or DEFAULT_SYSTEM_PROMPT, context).strip()
    if template and (not prompt or OPEN_MARKER not in prompt or CLOSE_MARKER not in prompt):
        raise PromptError("Custom template rendered no settlement instructions")
    return prompt
