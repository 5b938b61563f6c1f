from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from bms_stems.chart.classify import classify_line
from bms_stems.chart.random_blocks import resolve_random_blocks
from bms_stems.errors import FormatError
from bms_stems.model.types import (
    DEFAULT_BPM,
    AudioDef,
    AudioTrigger,
    BpmDef,
    Chart,
    DefTable,
    MeterOverride,
    ObjectId,
    StopDef,
    StopDirective,
    TempoChangeDirective,
    UnsupportedFeature,
    instrument_name,
)

HEADER_MARK = "HEADER FIELD"
DATA_MARK = "MAIN DATA FIELD"

DEFAULT_SEPARATOR = re.compile("_")

_RE_BPM = re.compile(r"^#BPM\s+(\S+)", re.IGNORECASE)
_RE_BPM_DEF = re.compile(r"^#BPM([0-9A-Za-z]{2})\s+(\S+)", re.IGNORECASE)
_RE_AUDIO_DEF = re.compile(r"^#(?:WAV|OGG)([0-9A-Za-z]{2})\s+(.+?)\s*$", re.IGNORECASE)
_RE_STOP_DEF = re.compile(r"^#STOP([0-9A-Za-z]{2})\s+(\S+)", re.IGNORECASE)
_RE_META = re.compile(r"^#(TITLE|ARTIST)\s+(.+?)\s*$", re.IGNORECASE)


def _section_bounds(lines: list[str]) -> tuple[int, int]:
    header_at: int | None = None
    data_at: int | None = None
    for i, ln in enumerate(lines):
        s = ln.strip()
        if not s.startswith("*"):
            continue
        u = s.upper()
        if header_at is None and HEADER_MARK in u:
            header_at = i
        elif header_at is not None and DATA_MARK in u:
            data_at = i
            break

    if header_at is None:
        raise FormatError(f"chart has no '{HEADER_MARK}' section marker")
    if data_at is None:
        raise FormatError(f"chart has no '{DATA_MARK}' section marker")
    return header_at, data_at


@dataclass(frozen=True)
class ChartSections:
    header: list[str]
    data: list[str]
    header_line: int  # 1-based line number of header[0]
    data_line: int


def split_sections(text: str) -> ChartSections:
    """Split chart text at its section markers.

    Charts written by the common editors carry comment lines such as
    `*---------------------- HEADER FIELD` and
    `*---------------------- MAIN DATA FIELD`; both are required.
    """

    lines = text.splitlines()
    header_at, data_at = _section_bounds(lines)
    # The first line of each section follows its marker.
    return ChartSections(
        header=lines[header_at + 1 : data_at],
        data=lines[data_at + 1 :],
        header_line=header_at + 2,
        data_line=data_at + 2,
    )


def _float(value: str, what: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid {} value {!r}. Skipping.", what, value)
        return None


def parse_chart(text: str, *, separator: re.Pattern[str] = DEFAULT_SEPARATOR) -> Chart:
    sections = split_sections(text)
    header, u1 = resolve_random_blocks(sections.header, first_line=sections.header_line)
    data, u2 = resolve_random_blocks(sections.data, first_line=sections.data_line)
    unsupported: list[UnsupportedFeature] = u1 + u2

    bpm: float | None = None
    meta: dict[str, str] = {}
    audio: dict[ObjectId, AudioDef] = {}
    bpms: dict[ObjectId, BpmDef] = {}
    stops: dict[ObjectId, StopDef] = {}

    meters: dict[int, float] = {}
    triggers: list[AudioTrigger] = []
    tempo: list[TempoChangeDirective] = []
    stop_marks: list[StopDirective] = []
    max_bar = -1

    # Definitions may appear in either section; data lines only make sense after the marker
    # but are accepted wherever they are.
    for raw in header + data:
        s = raw.strip()
        if not s.startswith("#"):
            continue

        m = _RE_BPM.match(s)
        if m:
            v = _float(m.group(1), "#BPM")
            if v is not None and v > 0:
                bpm = v
            elif v is not None:
                logger.warning("Non-positive #BPM {}. Ignoring.", v)
            continue

        m = _RE_BPM_DEF.match(s)
        if m:
            v = _float(m.group(2), f"#BPM{m.group(1)}")
            if v is not None:
                oid = ObjectId(m.group(1))
                bpms[oid] = BpmDef(id=oid, bpm=v)
            continue

        m = _RE_STOP_DEF.match(s)
        if m:
            v = _float(m.group(2), f"#STOP{m.group(1)}")
            if v is not None:
                oid = ObjectId(m.group(1))
                stops[oid] = StopDef(id=oid, units=v)
            continue

        m = _RE_AUDIO_DEF.match(s)
        if m:
            oid = ObjectId(m.group(1))
            f = m.group(2)
            audio[oid] = AudioDef(id=oid, file=f, instrument=instrument_name(f, separator))
            continue

        m = _RE_META.match(s)
        if m:
            meta[m.group(1).lower()] = m.group(2)
            continue

        cl = classify_line(s)
        if cl.bar is None:
            continue
        max_bar = max(max_bar, cl.bar)
        for ev in cl.events:
            if isinstance(ev, AudioTrigger):
                triggers.append(ev)
            elif isinstance(ev, TempoChangeDirective):
                tempo.append(ev)
            elif isinstance(ev, StopDirective):
                stop_marks.append(ev)
            elif isinstance(ev, MeterOverride):
                meters[ev.bar] = ev.meter

    # Playback order: by bar, then position in the bar; line order breaks ties.
    triggers.sort(key=lambda t: (t.bar, t.fraction))
    tempo.sort(key=lambda t: (t.bar, t.fraction))
    stop_marks.sort(key=lambda t: (t.bar, t.fraction))

    return Chart(
        initial_bpm=bpm if bpm is not None else DEFAULT_BPM,
        bar_count=max_bar + 1,
        meters=meters,
        audio_defs=DefTable("Audio file", audio),
        bpm_defs=DefTable("BPM", bpms),
        stop_defs=DefTable("STOP", stops),
        triggers=tuple(triggers),
        tempo_directives=tuple(tempo),
        stop_directives=tuple(stop_marks),
        unsupported=tuple(unsupported),
        title=meta.get("title"),
        artist=meta.get("artist"),
    )


def read_chart_text(path: str | Path) -> str:
    """Read a chart file, falling back to Shift_JIS for legacy charts."""
    raw = Path(path).read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("{} is not UTF-8, decoding as Shift_JIS", path)
        return raw.decode("cp932", errors="replace")


def load_chart(path: str | Path, *, separator: re.Pattern[str] = DEFAULT_SEPARATOR) -> Chart:
    return parse_chart(read_chart_text(path), separator=separator)
