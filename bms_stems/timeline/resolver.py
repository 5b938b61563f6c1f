from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Mapping, Sequence

from loguru import logger

from bms_stems.model.types import DEFAULT_BPM, DEFAULT_METER, Chart

# Seconds per 192nd-note unit at 1 BPM: 60 s * 4 beats / 192.
STOP_UNIT_SECONDS = 1.25


@dataclass(frozen=True)
class BpmChangeEvent:
    bar: int
    fraction: float
    bpm: float


@dataclass(frozen=True)
class StopEvent:
    bar: int
    fraction: float
    seconds: float


@dataclass(frozen=True)
class TimelineCursor:
    """Running position of the mixing loop.

    The cursor is a value: `Timeline.seek` and `Timeline.locate` return a new one
    instead of mutating it. `beat` is the last located position in the bar, as a
    fraction of the bar.
    """

    sample_rate: int
    bar: int = 0
    bar_start_sample: int = 0
    bar_start_bpm: float = DEFAULT_BPM
    beat: float = 0.0


def stop_seconds(units: float, bpm: float) -> float:
    return units * STOP_UNIT_SECONDS / bpm


def _floor(x: float) -> int:
    # Rounding first keeps exact sample counts (e.g. 22050.000000000004) from drifting.
    return int(math.floor(round(x, 6)))


def _ceil(x: float) -> int:
    return int(math.ceil(round(x, 6)))


def _pos(ev: BpmChangeEvent | StopEvent) -> tuple[int, float]:
    return (ev.bar, ev.fraction)


class Timeline:
    """Maps chart positions (bar, fraction of bar) to song time.

    A bar lasts `meter * 60 / bpm` seconds, split at every tempo change inside it,
    plus the length of the stops it contains. Meters are in quarter-note beats.
    """

    def __init__(
        self,
        *,
        initial_bpm: float = DEFAULT_BPM,
        bar_count: int = 0,
        meters: Mapping[int, float] | None = None,
        tempo_changes: Sequence[BpmChangeEvent] = (),
        stops: Sequence[StopEvent] = (),
    ) -> None:
        if initial_bpm <= 0:
            raise ValueError("initial_bpm must be > 0")
        self.initial_bpm = float(initial_bpm)
        self.bar_count = int(bar_count)
        self._meters = dict(meters or {})
        self.tempo_changes: tuple[BpmChangeEvent, ...] = tuple(sorted(tempo_changes, key=_pos))
        self.stops: tuple[StopEvent, ...] = tuple(sorted(stops, key=_pos))

        self._changes_by_bar: dict[int, list[BpmChangeEvent]] = {}
        for ch in self.tempo_changes:
            self._changes_by_bar.setdefault(ch.bar, []).append(ch)
        self._stops_by_bar: dict[int, list[StopEvent]] = {}
        for st in self.stops:
            self._stops_by_bar.setdefault(st.bar, []).append(st)

        # Tempo in effect at the start of each bar.
        last_bar = max([self.bar_count - 1] + [ch.bar for ch in self.tempo_changes])
        self._start_bpm: list[float] = []
        bpm = self.initial_bpm
        for bar in range(last_bar + 2):
            self._start_bpm.append(bpm)
            for ch in self._changes_by_bar.get(bar, ()):
                bpm = ch.bpm

    @classmethod
    def from_chart(cls, chart: Chart) -> "Timeline":
        """Resolve the chart's tempo and stop directives against its definitions."""

        changes: list[BpmChangeEvent] = []
        for d in chart.tempo_directives:
            bpm = d.bpm
            if d.ref is not None:
                bd = chart.bpm_defs.resolve(d.ref, where=f"bar {d.bar}")
                if bd is None:
                    continue
                bpm = bd.bpm
            if bpm is None or bpm <= 0:
                logger.warning("Non-positive tempo {} at bar {}. Skipping.", bpm, d.bar)
                continue
            changes.append(BpmChangeEvent(bar=d.bar, fraction=d.fraction, bpm=float(bpm)))

        tempo_only = cls(
            initial_bpm=chart.initial_bpm,
            bar_count=chart.bar_count,
            meters=chart.meters,
            tempo_changes=changes,
        )

        stops: list[StopEvent] = []
        for d in chart.stop_directives:
            sd = chart.stop_defs.resolve(d.ref, where=f"bar {d.bar}")
            if sd is None:
                continue
            # A tempo change at the same position applies before the stop is measured.
            secs = stop_seconds(sd.units, tempo_only.bpm_at(d.bar, d.fraction))
            if secs < 0:
                logger.warning("Negative stop duration {:.4f}s at bar {} (#STOP{}). Treating as zero.", secs, d.bar, d.ref)
                secs = 0.0
            stops.append(StopEvent(bar=d.bar, fraction=d.fraction, seconds=secs))

        return cls(
            initial_bpm=chart.initial_bpm,
            bar_count=chart.bar_count,
            meters=chart.meters,
            tempo_changes=changes,
            stops=stops,
        )

    # --- tempo / length queries ---

    def meter(self, bar: int) -> float:
        return float(self._meters.get(bar, DEFAULT_METER))

    def bar_start_bpm(self, bar: int) -> float:
        if bar < len(self._start_bpm):
            return self._start_bpm[bar]
        return self._start_bpm[-1]

    def bpm_at(self, bar: int, fraction: float) -> float:
        """Tempo in effect at a position, including a change placed exactly there."""
        bpm = self.bar_start_bpm(bar)
        for ch in self._changes_by_bar.get(bar, ()):
            if ch.fraction > fraction:
                break
            bpm = ch.bpm
        return bpm

    def beat_seconds(self, bar: int, fraction: float, *, start_bpm: float | None = None) -> float:
        """Seconds from the start of `bar` to `fraction`, ignoring stops.

        Each stretch between in-bar tempo changes is measured with the tempo that
        applied immediately before the next change. `start_bpm` overrides the
        tempo in effect when the bar starts.
        """

        meter = self.meter(bar)
        bpm = self.bar_start_bpm(bar) if start_bpm is None else start_bpm
        pos = 0.0
        total = 0.0
        for ch in self._changes_by_bar.get(bar, ()):
            if ch.fraction >= fraction:
                break
            total += (ch.fraction - pos) * meter * 60.0 / bpm
            pos = ch.fraction
            bpm = ch.bpm
        total += (fraction - pos) * meter * 60.0 / bpm
        return total

    def stop_seconds_before(self, bar: int, fraction: float) -> float:
        """Total stop time in `bar` that elapses before a note at `fraction` sounds.

        A note placed on the same position as a stop sounds when the stop starts.
        """
        return sum(st.seconds for st in self._stops_by_bar.get(bar, ()) if st.fraction < fraction)

    def bar_seconds(self, bar: int) -> float:
        return self.beat_seconds(bar, 1.0) + sum(st.seconds for st in self._stops_by_bar.get(bar, ()))

    def song_length_seconds(self) -> float:
        return sum(self.bar_seconds(bar) for bar in range(self.bar_count))

    def song_length_samples(self, sample_rate: int) -> int:
        return _ceil(self.song_length_seconds() * sample_rate)

    def bar_samples(self, bar: int, sample_rate: int) -> int:
        return _floor(self.bar_seconds(bar) * sample_rate)

    # --- cursor ---

    def start(self, sample_rate: int) -> TimelineCursor:
        bpm = self.bar_start_bpm(0)
        return TimelineCursor(sample_rate=int(sample_rate), bar_start_bpm=bpm)

    def seek(self, cursor: TimelineCursor, bar: int) -> TimelineCursor:
        """Move the cursor to the start of `bar`.

        Bars skipped on the way are accumulated whole, in samples, from their meter,
        tempo and stops.
        """

        if bar < cursor.bar:
            cursor = self.start(cursor.sample_rate)
        if bar == cursor.bar:
            return cursor

        samples = cursor.bar_start_sample
        for j in range(cursor.bar, bar):
            samples += self.bar_samples(j, cursor.sample_rate)
        bpm = self.bar_start_bpm(bar)
        return replace(cursor, bar=bar, bar_start_sample=samples, bar_start_bpm=bpm, beat=0.0)

    def locate(self, cursor: TimelineCursor, fraction: float) -> tuple[int, TimelineCursor]:
        """Absolute sample offset of `fraction` within the cursor's bar.

        The offset is recomputed from the bar's starting tempo for every trigger,
        rather than continued from the tempo the previous trigger left behind.
        Positions within a bar must be located in playback order.
        """

        if fraction < cursor.beat:
            raise ValueError(f"position {fraction} in bar {cursor.bar} is before the cursor ({cursor.beat})")
        secs = self.beat_seconds(cursor.bar, fraction, start_bpm=cursor.bar_start_bpm)
        secs += self.stop_seconds_before(cursor.bar, fraction)
        offset = cursor.bar_start_sample + _floor(secs * cursor.sample_rate)
        return offset, replace(cursor, beat=fraction)
