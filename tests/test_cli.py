from __future__ import annotations

import sys
import wave
from pathlib import Path
from typing import Iterator

import pytest
from loguru import logger

from bms_stems.__main__ import build_parser, main, resolve_config
from bms_stems.audio.decode import decode_audio
from bms_stems.pipeline import convert_chart
from bms_stems.util.config import StemConfig


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    yield
    logger.remove()
    logger.add(sys.stderr)


def _write_wav(path: Path, n: int, value: int = 16384) -> None:
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(2)
        wf.setsampwidth(2)
        wf.setframerate(44100)
        wf.writeframes(int.to_bytes(value, 2, "little", signed=True) * (2 * n))


def _song(tmp_path: Path) -> Path:
    _write_wav(tmp_path / "Kick_01.wav", 100)
    _write_wav(tmp_path / "Kick_02.wav", 100, value=-16384)
    _write_wav(tmp_path / "Lead.wav", 50)
    chart = tmp_path / "song.bme"
    chart.write_text(
        "\n".join(
            [
                "*---------------------- HEADER FIELD",
                "#TITLE test",
                "#BPM 120",
                "#WAV01 Kick_01.wav",
                "#WAV02 Kick_02.wav",
                "#WAV03 Lead.wav",
                "*---------------------- MAIN DATA FIELD",
                "#00011:0102",
                "#00101:03",
                "#00311:00",
            ]
        ),
        encoding="utf-8",
    )
    return chart


def test_missing_chart_argument_exits() -> None:
    with pytest.raises(SystemExit, match="Please provide the path"):
        main([])


def test_invalid_format_exits_before_reading_chart(tmp_path: Path) -> None:
    with pytest.raises(SystemExit, match="--format"):
        main([str(tmp_path / "whatever.bms"), "-f", "mp3"])


def test_chart_without_markers_exits(tmp_path: Path) -> None:
    p = tmp_path / "bad.bms"
    p.write_text("#BPM 120\n", encoding="utf-8")
    with pytest.raises(SystemExit, match="HEADER FIELD"):
        main([str(p)])


def test_flags_override_config_file(tmp_path: Path) -> None:
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("format: ogg\nlog_level: warn\n", encoding="utf-8")
    args = build_parser().parse_args(["song.bms", "--config", str(cfg), "-f", "WAV", "-v", "--no-decode-cache"])
    resolved = resolve_config(args)
    assert resolved == StemConfig(format="wav", log_level="debug", decode_cache=False)


def test_end_to_end_wav_stems(tmp_path: Path) -> None:
    chart = _song(tmp_path)
    out = tmp_path / "out"
    main([str(chart), "--outDir", str(out), "--log", "error"])

    assert sorted(p.name for p in out.iterdir()) == ["Kick.wav", "Lead.wav"]

    kick = decode_audio(out / "Kick.wav")
    assert kick.sample_rate == 44100
    assert len(kick) == 352800
    assert kick.channels[0][:100] == [0.5] * 100
    # Kick_02 sits half a bar in: 1 s at 120 BPM.
    assert kick.channels[1][44100:44200] == [-0.5] * 100

    lead = decode_audio(out / "Lead.wav")
    assert lead.channels[0][88200:88250] == [0.5] * 50


def test_convert_chart_default_out_dir(tmp_path: Path) -> None:
    chart = _song(tmp_path)
    res = convert_chart(chart)
    assert res.sample_rate == 44100
    assert res.song_seconds == pytest.approx(8.0)
    assert sorted(Path(p).name for p in res.stems) == ["Kick.wav", "Lead.wav"]
    assert all(Path(p).parent == (tmp_path / "stems").resolve() for p in res.stems)


def test_convert_chart_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        convert_chart(tmp_path / "nope.bms")


def test_version_and_doctor(capsys: pytest.CaptureFixture[str]) -> None:
    main(["--version"])
    assert capsys.readouterr().out.startswith("bms-stems ")

    main(["--doctor"])
    assert "bms-stems doctor:" in capsys.readouterr().out
