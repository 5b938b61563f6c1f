from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

from bms_stems.model.types import (
    AudioTrigger,
    ChartEvent,
    MeterOverride,
    ObjectId,
    RandomBlockBoundary,
    StopDirective,
    TempoChangeDirective,
    is_audio_channel,
)

CH_METER = "02"
CH_BPM_HEX = "03"
CH_BPM_REF = "08"
CH_STOP = "09"

_DATA_RE = re.compile(r"^#(\d{3})([0-9A-Za-z]{2}):\s*(\S*)\s*$")
_RANDOM_RE = re.compile(r"^#(RANDOM|IF|ENDIF|ENDRANDOM|END\s+IF)\b\s*(\S*)", re.IGNORECASE)


@dataclass
class ClassifiedLine:
    """Result of classifying one chart line.

    `bar` is set for every well-formed data line, including lines whose slots are
    all empty, so the caller can still count the bar.
    """

    bar: int | None = None
    channel: str | None = None
    events: list[ChartEvent] = field(default_factory=list)


def random_boundary(line: str) -> RandomBlockBoundary | None:
    m = _RANDOM_RE.match(line.strip())
    if not m:
        return None
    kind = re.sub(r"\s+", "", m.group(1)).lower()
    value: int | None = None
    if kind in {"random", "if"}:
        try:
            value = int(m.group(2))
        except ValueError:
            logger.warning("Malformed #{} directive: {}", kind.upper(), line.strip())
    return RandomBlockBoundary(kind=kind, value=value)


def _slots(body: str) -> list[str]:
    return [body[i : i + 2] for i in range(0, len(body), 2)]


def _object_id(tok: str, line: str) -> ObjectId | None:
    try:
        return ObjectId(tok)
    except ValueError:
        logger.warning("Invalid object id {!r} in line {}. Skipping.", tok, line)
        return None


def classify_line(line: str) -> ClassifiedLine:
    """Classify a single chart line into typed events.

    Data lines look like `#BBBCC:OBJECTS`: a 3-digit bar, a 2-character channel and
    an even-length sequence of 2-character slots spread evenly over the bar.
    Header lines and comments classify to an empty result.
    """

    s = line.strip()
    if not s.startswith("#"):
        return ClassifiedLine()

    boundary = random_boundary(s)
    if boundary is not None:
        return ClassifiedLine(events=[boundary])

    m = _DATA_RE.match(s)
    if not m:
        return ClassifiedLine()

    bar = int(m.group(1))
    channel = m.group(2).upper()
    body = m.group(3)
    out = ClassifiedLine(bar=bar, channel=channel)

    if channel == CH_METER:
        try:
            factor = float(body)
        except ValueError:
            logger.warning("Invalid bar meter {!r} in line {}. Skipping.", body, s)
            return out
        if factor <= 0:
            logger.warning("Non-positive bar meter {!r} in line {}. Skipping.", body, s)
            return out
        out.events.append(MeterOverride(bar=bar, factor=factor))
        return out

    if len(body) % 2:
        logger.warning("Odd-length object sequence in line {}. Skipping.", s)
        return out

    slots = _slots(body)
    n = len(slots)
    for i, tok in enumerate(slots):
        if tok == "00":
            continue
        fraction = i / n
        if channel == CH_BPM_HEX:
            try:
                bpm = float(int(tok, 16))
            except ValueError:
                logger.warning("Invalid tempo {!r} in line {}. Skipping.", tok, s)
                continue
            out.events.append(TempoChangeDirective(bar=bar, fraction=fraction, bpm=bpm))
            continue

        oid = _object_id(tok, s)
        if oid is None:
            continue
        if channel == CH_BPM_REF:
            out.events.append(TempoChangeDirective(bar=bar, fraction=fraction, ref=oid))
        elif channel == CH_STOP:
            out.events.append(StopDirective(bar=bar, fraction=fraction, ref=oid))
        elif is_audio_channel(channel):
            out.events.append(AudioTrigger(bar=bar, fraction=fraction, channel=channel, object_id=oid))

    return out
