"""Tests for narrator output parsing — prose, choices and defaults."""

import pytest

from sect_chronicle.models import ItemDelta, ParsedTurn
from sect_chronicle.pipeline.segments import (
    DEFAULT_CHOICES,
    find_choices,
    parse_narrator_output,
    turn_to_text,
)


def test_reference_turn():
    raw = (
        "...prose...\n\n选项：\n1. 前进\n2. 等待\n\n"
        "【结算开始】\nITEM+:培元丹×2\nGOLD+:10\nTIME+:2\n【结算结束】"
    )
    turn = parse_narrator_output(raw)
    assert turn.narrative_text == "...prose...\n\n选项：\n1. 前进\n2. 等待"
    assert turn.choices == ["前进", "等待"]
    assert turn.settlement.items_gained == [ItemDelta(name="培元丹", count=2)]
    assert turn.settlement.gold_delta == 10
    assert turn.settlement.hours_elapsed == 2


@pytest.mark.parametrize("raw", ["", "   ", "\n\n"])
def test_empty_output_gets_defaults(raw):
    turn = parse_narrator_output(raw)
    assert turn.narrative_text == ""
    assert turn.choices == DEFAULT_CHOICES
    assert turn.settlement.is_empty()


@pytest.mark.parametrize("raw", [
    "你推开山门，一阵清风拂面。",
    "  \n夜色渐深，远处传来钟声。\n\n你在客栈中辗转难眠，心中惦念着明日的试炼。\n  ",
])
def test_plain_prose_is_whole_narrative(raw):
    turn = parse_narrator_output(raw)
    assert turn.narrative_text == raw.strip()
    assert turn.choices == DEFAULT_CHOICES
    assert turn.settlement.is_empty()


@pytest.mark.parametrize("raw,choices", [
    ("前方有一条岔路。\n\n选项：\n1. 向左\n2. 向右", ["向左", "向右"]),
    ("\n剑光一闪。\n\n\n\n【你的选择】\n拔剑迎战\n转身逃走\n", ["拔剑迎战", "转身逃走"]),
    ("师兄看着你。\n你可以：\n- 拜访师兄\n- 去藏经阁  ", ["拜访师兄", "去藏经阁"]),
])
def test_options_without_settlement_keep_whole_narrative(raw, choices):
    turn = parse_narrator_output(raw)
    assert turn.narrative_text == raw.strip()
    assert turn.choices == choices
    assert turn.settlement.is_empty()


def test_settlement_never_leaks_into_prose():
    turn = parse_narrator_output("你得到了一枚丹药。\n【结算开始】\nITEM+:培元丹×1\n【结算结束】")
    assert turn.narrative_text == "你得到了一枚丹药。"
    assert "ITEM" not in turn.narrative_text
    assert turn.choices == DEFAULT_CHOICES


def test_settlement_only_output():
    turn = parse_narrator_output("【结算开始】\nGOLD+:1\n【结算结束】")
    assert turn.narrative_text == ""
    assert turn.choices == DEFAULT_CHOICES
    assert turn.settlement.gold_delta == 1


class TestChoiceDetection:
    def test_bracket_heading_and_plain_lines(self):
        assert find_choices("剑光一闪。\n\n【你的选择】\n拔剑迎战\n转身逃走") == ["拔剑迎战", "转身逃走"]

    def test_bullets_after_heading(self):
        assert find_choices("师兄看着你。\n你可以：\n- 拜访师兄\n- 去藏经阁") == ["拜访师兄", "去藏经阁"]

    def test_numbered_without_heading(self):
        assert find_choices("前方有岔路。\n1、向左\n2、向右") == ["向左", "向右"]

    def test_parenthesised_and_circled_numbers(self):
        assert find_choices("（1）打坐\n（2）练剑\n③ 下山") == ["打坐", "练剑", "下山"]

    def test_capped_at_four(self):
        text = "选项：\n" + "\n".join(f"{i}. 行动{i}" for i in range(1, 7))
        assert find_choices(text) == ["行动1", "行动2", "行动3", "行动4"]

    def test_duplicates_removed(self):
        assert find_choices("选项：\n1. 等待\n2. 等待\n3. 离开") == ["等待", "离开"]

    def test_bold_markup_stripped(self):
        assert find_choices("**选项：**\n1. **前往丹房**") == ["前往丹房"]

    def test_long_line_ends_collecting(self):
        long_line = "你沉思良久，" * 10
        assert find_choices(f"选项：\n1. 前进\n{long_line}\n短句") == ["前进"]

    def test_sentence_after_heading_is_not_a_choice(self):
        assert find_choices("选项：\n他转身离去。") == []

    def test_markdown_bold_line_is_not_a_bullet(self):
        assert find_choices("**青云宗**山门巍峨") == []


class TestTurnToText:
    def test_narrative_already_showing_choices(self):
        turn = ParsedTurn(narrative_text="山门在望。\n选项：\n1. 进山\n2. 回头", choices=["进山", "回头"])
        assert turn_to_text(turn) == "山门在望。\n选项：\n1. 进山\n2. 回头"

    def test_default_choices_appended(self):
        turn = ParsedTurn(narrative_text="山门在望。", choices=["进山", "回头"])
        assert turn_to_text(turn) == "山门在望。\n\n选项：\n1. 进山\n2. 回头"


def test_huge_number_in_settlement_does_not_abort_parse():
    raw = "正文\n【结算开始】\nTIME+:" + "9" * 5000 + "\nGOLD+:10\n【结算结束】"
    turn = parse_narrator_output(raw)
    assert turn.narrative_text == "正文"
    assert turn.settlement.hours_elapsed is None
    assert turn.settlement.gold_delta == 10
