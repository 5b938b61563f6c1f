from __future__ import annotations

from pathlib import Path
from typing import Mapping

from loguru import logger

from bms_stems.audio.decode import DecodedAudio
from bms_stems.audio.sources import SampleLoader
from bms_stems.model.types import Chart, ObjectId
from bms_stems.timeline.resolver import Timeline


class StemBuffer:
    """Growable stereo buffer holding one instrument's render.

    The buffer starts at the song length, filled with silence. Writing past the
    end replaces both channels with longer copies; existing samples are carried
    over unchanged, so growth never loses data.
    """

    def __init__(self, name: str, length: int = 0) -> None:
        self.name = name
        self.left: list[float] = [0.0] * int(length)
        self.right: list[float] = [0.0] * int(length)
        self.triggers = 0

    def __len__(self) -> int:
        return len(self.left)

    def __repr__(self) -> str:
        return f"StemBuffer({self.name!r}, {len(self)} samples)"

    def ensure_length(self, n: int) -> bool:
        """Grow to at least `n` samples. Returns True if the buffer was replaced."""
        cur = len(self.left)
        if n <= cur:
            return False
        left = [0.0] * n
        right = [0.0] * n
        left[:cur] = self.left
        right[:cur] = self.right
        self.left = left
        self.right = right
        logger.debug("Stem {} grown from {} to {} samples", self.name, cur, n)
        return True

    def add(self, offset: int, left: list[float], right: list[float]) -> None:
        """Sum samples into the buffer starting at `offset` (no clipping)."""
        if offset < 0:
            raise ValueError("offset must be >= 0")
        n = max(len(left), len(right))
        if n == 0:
            return
        self.ensure_length(offset + n)
        end_l = offset + len(left)
        end_r = offset + len(right)
        self.left[offset:end_l] = [a + b for a, b in zip(self.left[offset:end_l], left)]
        self.right[offset:end_r] = [a + b for a, b in zip(self.right[offset:end_r], right)]
        self.triggers += 1


def _stereo(audio: DecodedAudio) -> tuple[list[float], list[float]]:
    if audio.channel_count == 1:
        return audio.channels[0], audio.channels[0]
    return audio.channels[0], audio.channels[1]


def mix_chart(
    chart: Chart,
    timeline: Timeline,
    *,
    files: Mapping[ObjectId, Path],
    loader: SampleLoader,
) -> dict[str, StemBuffer]:
    """Render every audio trigger of the chart into per-instrument stems.

    Triggers are processed in playback order, one at a time: each one is looked up,
    positioned on the timeline, decoded and summed into its instrument's buffer
    before the next one starts.
    """

    sample_rate = loader.sample_rate
    length = timeline.song_length_samples(sample_rate)
    stems = {name: StemBuffer(name, length) for name in chart.instruments()}

    mono: set[Path] = set()
    cursor = timeline.start(sample_rate)
    for trig in chart.triggers:
        if trig.bar != cursor.bar:
            logger.debug("Processing bar {}", trig.bar)
            cursor = timeline.seek(cursor, trig.bar)

        audio_def = chart.audio_defs.resolve(trig.object_id, where=f"bar {trig.bar}")
        if audio_def is None:
            continue

        offset, cursor = timeline.locate(cursor, trig.fraction)

        path = files[audio_def.id]
        audio = loader.load(path)
        if audio is None or len(audio) == 0:
            continue

        if audio.channel_count == 1 and path not in mono:
            mono.add(path)
            logger.warning("{} is mono; duplicating it to both channels.", path.name)
        left, right = _stereo(audio)
        stems[audio_def.instrument].add(offset, left, right)

    return stems
