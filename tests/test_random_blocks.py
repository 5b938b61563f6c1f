from __future__ import annotations

from bms_stems.chart.parse import parse_chart
from bms_stems.chart.random_blocks import resolve_random_blocks


def test_random_1_merges_if_1_branch() -> None:
    lines = ["#RANDOM 1", "#IF 1", "a", "#ENDIF", "#ENDRANDOM", "b"]
    out, unsupported = resolve_random_blocks(lines)
    assert out == ["a", "b"]
    assert unsupported == []


def test_real_randomness_is_reported_and_branches_dropped(log_messages: list[str]) -> None:
    lines = ["x", "#RANDOM 2", "shared", "#IF 1", "one", "#ENDIF", "#IF 2", "two", "#ENDIF", "#ENDRANDOM", "y"]
    out, unsupported = resolve_random_blocks(lines, first_line=10)

    assert out == ["x", "shared", "y"]
    assert len(unsupported) == 1
    assert unsupported[0].feature == "random"
    assert unsupported[0].line == 11
    assert any("Unsupported chart feature" in m for m in log_messages)


def test_endrandom_is_optional() -> None:
    lines = ["#RANDOM 1", "#IF 1", "a", "#ENDIF", "#RANDOM 1", "#IF 1", "b", "#ENDIF"]
    out, unsupported = resolve_random_blocks(lines)
    assert out == ["a", "b"]
    assert unsupported == []


def test_nested_random_inside_resolved_branch() -> None:
    lines = [
        "#RANDOM 1",
        "#IF 1",
        "#RANDOM 2",
        "#IF 1",
        "x",
        "#ENDIF",
        "#ENDRANDOM",
        "y",
        "#ENDIF",
        "#ENDRANDOM",
    ]
    out, unsupported = resolve_random_blocks(lines)
    assert out == ["y"]
    assert [u.line for u in unsupported] == [3]


def test_orphan_if_content_is_dropped(log_messages: list[str]) -> None:
    out, unsupported = resolve_random_blocks(["#IF 1", "a", "#ENDIF", "b", "#ENDIF"])
    assert out == ["b"]
    assert unsupported == []
    assert any("#IF outside #RANDOM" in m for m in log_messages)
    assert any("Stray #ENDIF" in m for m in log_messages)


def test_chart_reports_unsupported_blocks_with_line_numbers() -> None:
    text = "\n".join(
        [
            "*---------------------- HEADER FIELD",
            "#WAV01 a.wav",
            "#WAV02 b.wav",
            "*---------------------- MAIN DATA FIELD",
            "#00011:01",
            "#RANDOM 2",
            "#IF 1",
            "#00111:02",
            "#ENDIF",
            "#ENDRANDOM",
        ]
    )
    c = parse_chart(text)
    assert [t.object_id for t in c.triggers] == ["01"]
    assert c.bar_count == 1
    assert [u.line for u in c.unsupported] == [6]
