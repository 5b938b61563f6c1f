from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Generic, Iterator, Mapping, TypeVar, Union

from loguru import logger

DEFAULT_BPM = 130.0
DEFAULT_METER = 4.0

# Lane sub-indices that never carry keysounds.
_LANE_SKIP_UNITS = {0, 7}

_OBJECT_ID_RE = re.compile(r"[0-9A-Z]{2}")


class ObjectId(str):
    """Two-character base-36 object identifier.

    Identifiers are case-insensitive in charts; they are normalized to upper case
    so `#WAV0a` and `0A` in a data line refer to the same definition.
    """

    __slots__ = ()

    def __new__(cls, value: str) -> "ObjectId":
        v = str(value).strip().upper()
        if not _OBJECT_ID_RE.fullmatch(v):
            raise ValueError(f"invalid object id: {value!r}")
        return super().__new__(cls, v)

    @property
    def is_empty(self) -> bool:
        return self == "00"


def is_audio_channel(channel: str) -> bool:
    """Return True for channels whose objects trigger a keysound.

    Channel 01 is background audio. Lane channels are 11-69 with a unit digit
    other than 0 and 7.
    """

    if not channel.isdigit():
        return False
    ch = int(channel)
    if ch == 1:
        return True
    tens, units = divmod(ch, 10)
    return 1 <= tens <= 6 and units not in _LANE_SKIP_UNITS


def instrument_name(file: str, separator: re.Pattern[str]) -> str:
    """Derive the instrument a sample belongs to from its file name.

    `drums/Kick_03.wav` -> `Kick` with the default `_` separator.
    """

    base = PurePosixPath(file.replace("\\", "/")).name
    if "." in base:
        base = base.rsplit(".", 1)[0]
    return separator.split(base, maxsplit=1)[0]


@dataclass(frozen=True)
class AudioDef:
    id: ObjectId
    file: str
    instrument: str


@dataclass(frozen=True)
class BpmDef:
    id: ObjectId
    bpm: float


@dataclass(frozen=True)
class StopDef:
    id: ObjectId
    units: float  # 192nd notes


T = TypeVar("T")


class DefTable(Generic[T]):
    """Read-only mapping from object id to a definition record.

    `resolve` is the single place where an unknown reference is reported, so every
    lookup miss (audio, tempo, stop) is warned the same way.
    """

    def __init__(self, kind: str, defs: Mapping[ObjectId, T] | None = None) -> None:
        self.kind = kind
        self._defs: Mapping[ObjectId, T] = MappingProxyType(dict(defs or {}))

    def __contains__(self, oid: object) -> bool:
        return oid in self._defs

    def __iter__(self) -> Iterator[ObjectId]:
        return iter(self._defs)

    def __len__(self) -> int:
        return len(self._defs)

    def __repr__(self) -> str:
        return f"DefTable({self.kind!r}, {len(self)} defs)"

    def get(self, oid: ObjectId) -> T | None:
        return self._defs.get(oid)

    def values(self) -> list[T]:
        return list(self._defs.values())

    def resolve(self, oid: ObjectId, *, where: str = "") -> T | None:
        d = self._defs.get(oid)
        if d is None:
            suffix = f" ({where})" if where else ""
            logger.warning("{} id {} definition not found{}. Skipping.", self.kind, oid, suffix)
        return d


# --- chart events (produced by the line classifier) ---


@dataclass(frozen=True)
class AudioTrigger:
    bar: int
    fraction: float
    channel: str
    object_id: ObjectId


@dataclass(frozen=True)
class TempoChangeDirective:
    """Tempo change inside a bar.

    Channel 03 carries the tempo inline as hex (`bpm`); channel 08 refers to a
    `#BPMxx` definition (`ref`).
    """

    bar: int
    fraction: float
    bpm: float | None = None
    ref: ObjectId | None = None


@dataclass(frozen=True)
class StopDirective:
    bar: int
    fraction: float
    ref: ObjectId


@dataclass(frozen=True)
class MeterOverride:
    bar: int
    factor: float

    @property
    def meter(self) -> float:
        return self.factor * DEFAULT_METER


@dataclass(frozen=True)
class RandomBlockBoundary:
    kind: str  # random | if | endif | endrandom
    value: int | None = None


ChartEvent = Union[AudioTrigger, TempoChangeDirective, StopDirective, MeterOverride, RandomBlockBoundary]


@dataclass(frozen=True)
class UnsupportedFeature:
    """A chart construct that was recognized but not resolved."""

    feature: str
    line: int
    detail: str = ""


@dataclass(frozen=True)
class Chart:
    initial_bpm: float = DEFAULT_BPM
    bar_count: int = 0
    meters: Mapping[int, float] = field(default_factory=dict)
    audio_defs: DefTable[AudioDef] = field(default_factory=lambda: DefTable("Audio file"))
    bpm_defs: DefTable[BpmDef] = field(default_factory=lambda: DefTable("BPM"))
    stop_defs: DefTable[StopDef] = field(default_factory=lambda: DefTable("STOP"))
    triggers: tuple[AudioTrigger, ...] = ()
    tempo_directives: tuple[TempoChangeDirective, ...] = ()
    stop_directives: tuple[StopDirective, ...] = ()
    unsupported: tuple[UnsupportedFeature, ...] = ()
    title: str | None = None
    artist: str | None = None

    def meter(self, bar: int) -> float:
        return float(self.meters.get(bar, DEFAULT_METER))

    def instruments(self) -> list[str]:
        """Instrument names in first-definition order, without duplicates."""
        seen: dict[str, None] = {}
        for d in self.audio_defs.values():
            seen.setdefault(d.instrument, None)
        return list(seen)
