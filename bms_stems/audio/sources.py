from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Callable

from loguru import logger

from bms_stems.audio.decode import DecodedAudio, decode_audio, probe_sample_rate
from bms_stems.errors import DecodeError
from bms_stems.model.types import Chart, ObjectId

Decoder = Callable[..., DecodedAudio]


def _toggle_ext(ext: str) -> str:
    return "ogg" if ext.lower() == "wav" else "wav"


def _with_ext(file: str, ext: str) -> str:
    stem, dot, _old = file.rpartition(".")
    return f"{stem}.{ext}" if dot else f"{file}.{ext}"


def _chart_path(base_dir: Path, file: str) -> Path:
    # Charts authored on Windows use backslashes.
    return base_dir / PurePosixPath(file.replace("\\", "/"))


def resolve_audio_files(chart: Chart, base_dir: str | Path) -> dict[ObjectId, Path]:
    """Map every audio id to a file path relative to the chart directory.

    Chart authors often convert their samples without updating the chart, so if
    the first referenced file is missing, every definition's extension is
    toggled between wav and ogg.
    """

    base = Path(base_dir)
    defs = chart.audio_defs.values()
    if not defs:
        return {}

    files = {d.id: d.file for d in defs}
    first = defs[0].file
    if not _chart_path(base, first).exists():
        ext = _toggle_ext(first.rpartition(".")[2] if "." in first else "")
        logger.info("{} not found; assuming all audio files use .{}", first, ext)
        files = {oid: _with_ext(f, ext) for oid, f in files.items()}

    return {oid: _chart_path(base, f) for oid, f in files.items()}


class SampleLoader:
    """Decodes referenced samples to the mix sample rate.

    With `cache=True` each file is decoded once per run; otherwise every trigger
    decodes its file again. Both give the same samples, so the mix is identical.
    Files that fail to decode are reported and yield `None`.
    """

    def __init__(self, *, sample_rate: int, cache: bool = True, decoder: Decoder = decode_audio) -> None:
        self.sample_rate = int(sample_rate)
        self.cache = cache
        self.decoder = decoder
        self._cache: dict[Path, DecodedAudio | None] = {}
        self.decodes = 0

    def load(self, path: Path) -> DecodedAudio | None:
        if self.cache and path in self._cache:
            return self._cache[path]

        self.decodes += 1
        try:
            audio: DecodedAudio | None = self.decoder(path, sample_rate=self.sample_rate)
        except DecodeError as e:
            logger.warning("{}. Skipping.", e)
            audio = None

        if self.cache:
            self._cache[path] = audio
        return audio


DEFAULT_SAMPLE_RATE = 44100


def detect_sample_rate(files: dict[ObjectId, Path]) -> int:
    """Sample rate of the first referenced file whose header can be read."""

    for path in files.values():
        try:
            return probe_sample_rate(path)
        except DecodeError as e:
            logger.debug("cannot read sample rate of {}: {}", path, e)
    logger.warning("No referenced audio file could be read; using {} Hz.", DEFAULT_SAMPLE_RATE)
    return DEFAULT_SAMPLE_RATE
