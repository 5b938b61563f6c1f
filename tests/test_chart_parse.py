from __future__ import annotations

import re
from pathlib import Path

import pytest

from bms_stems.chart.classify import classify_line
from bms_stems.chart.parse import load_chart, parse_chart, split_sections
from bms_stems.errors import FormatError
from bms_stems.model.types import (
    AudioTrigger,
    MeterOverride,
    ObjectId,
    StopDirective,
    TempoChangeDirective,
    is_audio_channel,
)


def _chart(header: list[str], data: list[str]) -> str:
    return "\n".join(
        ["*---------------------- HEADER FIELD", *header, "*---------------------- MAIN DATA FIELD", *data]
    )


def test_missing_section_markers_are_fatal() -> None:
    with pytest.raises(FormatError):
        parse_chart("#BPM 120\n#00111:01\n")
    with pytest.raises(FormatError):
        parse_chart("*---------------------- HEADER FIELD\n#BPM 120\n")


def test_split_sections() -> None:
    sections = split_sections("; generated\n" + _chart(["#BPM 120"], ["#00111:01"]))
    assert sections.header == ["#BPM 120"]
    assert sections.data == ["#00111:01"]
    assert sections.header_line == 3
    assert sections.data_line == 5


def test_header_definitions_and_instruments() -> None:
    text = _chart(
        [
            "#TITLE Example Song",
            "#ARTIST someone",
            "#BPM 150",
            "#WAV01 Kick_01.wav",
            "#WAV02 Kick_02.wav",
            "#WAV03 snare.wav",
            "#OGG04 drums\\Hat_closed_1.ogg",
            "#BPM01 180",
            "#STOP01 96",
        ],
        ["#00011:01"],
    )
    c = parse_chart(text)

    assert c.initial_bpm == 150.0
    assert c.title == "Example Song"
    assert c.artist == "someone"
    assert len(c.audio_defs) == 4
    assert c.audio_defs.get(ObjectId("04")).file == "drums\\Hat_closed_1.ogg"
    assert c.instruments() == ["Kick", "snare", "Hat"]
    assert c.bpm_defs.get(ObjectId("01")).bpm == 180.0
    assert c.stop_defs.get(ObjectId("01")).units == 96.0


def test_default_bpm_when_header_has_none() -> None:
    c = parse_chart(_chart(["#WAV01 a.wav"], ["#00011:01"]))
    assert c.initial_bpm == 130.0


def test_custom_separator() -> None:
    c = parse_chart(_chart(["#WAV01 Bass-A_1.wav"], []), separator=re.compile("-"))
    assert c.instruments() == ["Bass"]


def test_triggers_sorted_by_position_with_lowercase_ids() -> None:
    text = _chart(
        ["#WAV0a lead_1.wav", "#WAV01 kick.wav"],
        [
            "#00111:0a",
            "#00011:01000100",
            "#00001:0001",
            "#00017:01",  # channel 17 carries no keysound
        ],
    )
    c = parse_chart(text)

    assert c.bar_count == 2
    pos = [(t.bar, t.fraction, t.object_id) for t in c.triggers]
    assert pos == [(0, 0.0, "01"), (0, 0.5, "01"), (0, 0.5, "01"), (1, 0.0, "0A")]
    assert ObjectId("0A") in c.audio_defs


def test_meter_override_stored_in_beats() -> None:
    c = parse_chart(_chart([], ["#00102:0.75", "#00211:01"]))
    assert c.meters == {1: 3.0}
    assert c.meter(0) == 4.0
    assert c.meter(1) == 3.0


def test_odd_length_line_is_skipped(log_messages: list[str]) -> None:
    c = parse_chart(_chart(["#WAV01 a.wav"], ["#00011:010", "#00012:01"]))
    assert [t.channel for t in c.triggers] == ["12"]
    assert any("Odd-length" in m for m in log_messages)


def test_tempo_and_stop_directives() -> None:
    c = parse_chart(_chart([], ["#00003:0078", "#00108:01", "#00209:0001"]))
    assert c.tempo_directives[0] == TempoChangeDirective(bar=0, fraction=0.5, bpm=120.0)
    assert c.tempo_directives[1].ref == "01"
    assert c.stop_directives == (StopDirective(bar=2, fraction=0.5, ref=ObjectId("01")),)
    assert c.bar_count == 3


def test_classify_line_kinds() -> None:
    assert classify_line("#TITLE x").bar is None
    assert classify_line("; comment").events == []

    cl = classify_line("#00202:1.5")
    assert cl.events == [MeterOverride(bar=2, factor=1.5)]
    assert cl.events[0].meter == 6.0

    cl = classify_line("#00316:0000ZZ00")
    assert cl.events == [AudioTrigger(bar=3, fraction=0.5, channel="16", object_id=ObjectId("ZZ"))]

    assert classify_line("#00002:-1").events == []
    assert classify_line("#00011:0000").bar == 0


def test_audio_channels() -> None:
    assert is_audio_channel("01")
    assert is_audio_channel("11")
    assert is_audio_channel("69")
    assert not is_audio_channel("10")
    assert not is_audio_channel("17")
    assert not is_audio_channel("02")
    assert not is_audio_channel("71")


def test_object_id_validation() -> None:
    assert ObjectId("zz") == "ZZ"
    assert ObjectId("00").is_empty
    with pytest.raises(ValueError):
        ObjectId("a")


def test_load_chart_reads_shift_jis(tmp_path: Path) -> None:
    p = tmp_path / "song.bms"
    p.write_bytes(_chart(["#TITLE 曲", "#WAV01 a.wav"], ["#00011:01"]).encode("cp932"))
    c = load_chart(p)
    assert c.title == "曲"
    assert len(c.triggers) == 1
