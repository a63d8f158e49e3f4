"""Narrator output parsing into prose, choices and settlement effects.

parse_narrator_output() is total: whatever the model sends, the player gets
some narrative text (possibly empty) and between one and four choices.

Choice detection is line-based and best effort:
  - a heading line ("选项：", "【你的选择】", "可选行动", "你可以：" ...) or a
    numbered/bulleted short line switches into collecting mode;
  - while collecting, numbered lines and short plain lines become choices;
  - a long line ends collecting mode.
The options section is not cut out of the narrative; only settlement
blocks are.
If nothing is recognised, the three DEFAULT_CHOICES are offered.
"""

from __future__ import annotations

import re

from sect_chronicle.models import ParsedTurn

from .settlement import extract_settlement

DEFAULT_CHOICES = ["继续探索", "原地休整", "查看四周"]
MAX_CHOICES = 4
MAX_CHOICE_LEN = 40

_HEADING_WORDS = ("选项", "选择", "行动", "你可以", "可选", "options", "choices", "actions")
_DECORATION = "#*_【】[]「」《》 \t"
_SENTENCE_END = ("。", "…", "”", "」")

_NUMBERED_RE = re.compile(
    r"^(?:(?:\d{1,2}\s*[.、．)）]|[（(]\d{1,2}[)）]|[①②③④⑤⑥⑦⑧⑨⑩]|[A-Da-d][.、．)）])\s*"
    r"|[-*•]\s+)(.+)$"
)


def _is_heading(line: str) -> bool:
    if line.endswith(("。", "！", "？", "!", "?")):
        return False
    core = line.strip(_DECORATION).rstrip(":：").strip(_DECORATION).lower()
    if not core or len(core) > 12:
        return False
    return any(core.startswith(w) or core.endswith(w) for w in _HEADING_WORDS)


def _clean_choice(text: str) -> str:
    return text.strip().strip("*_").strip()


def find_choices(text: str) -> list[str]:
    """Pick the choice lines out of narrator text. The text itself is left as is."""
    choices: list[str] = []
    collecting = False

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        if _is_heading(stripped):
            collecting = True
            continue

        numbered = _NUMBERED_RE.match(stripped)
        if numbered:
            candidate = _clean_choice(numbered.group(1))
            if candidate and len(candidate) <= MAX_CHOICE_LEN:
                collecting = True
                choices.append(candidate)
                continue

        if (
            collecting
            and len(stripped) <= MAX_CHOICE_LEN
            and not stripped.endswith(_SENTENCE_END)
        ):
            choices.append(_clean_choice(stripped))
            continue

        collecting = False

    unique: list[str] = []
    for choice in choices:
        if choice and choice not in unique:
            unique.append(choice)
    return unique[:MAX_CHOICES]


def parse_narrator_output(raw_text: str) -> ParsedTurn:
    """Parse raw model text into a ParsedTurn. Never raises.

    The narrative is the whole text with settlement blocks removed; an
    options section stays in it and is also returned as choices.
    """
    if not raw_text or not raw_text.strip():
        return ParsedTurn(narrative_text="", choices=list(DEFAULT_CHOICES))

    text, settlement = extract_settlement(raw_text)
    choices = find_choices(text) or list(DEFAULT_CHOICES)
    return ParsedTurn(narrative_text=text.strip(), choices=choices, settlement=settlement)


def turn_to_text(turn: ParsedTurn) -> str:
    """Render a parsed turn back to plain text for conversation history.

    Choices the narrative does not already show (the defaults) are appended
    as a numbered list.
    """
    if all(choice in turn.narrative_text for choice in turn.choices):
        return turn.narrative_text
    lines = [turn.narrative_text, "", "选项："]
    lines.extend(f"{i}. {c}" for i, c in enumerate(turn.choices, 1))
    return "\n".join(lines).strip()
