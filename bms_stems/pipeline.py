from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from bms_stems.audio.mix_engine import mix_chart
from bms_stems.audio.sources import SampleLoader, detect_sample_rate, resolve_audio_files
from bms_stems.audio.stems import export_stems
from bms_stems.chart.parse import load_chart
from bms_stems.model.types import UnsupportedFeature
from bms_stems.timeline.resolver import Timeline
from bms_stems.util.config import StemConfig


@dataclass
class ConversionResult:
    stems: list[str] = field(default_factory=list)
    sample_rate: int = 0
    song_seconds: float = 0.0
    unsupported: list[UnsupportedFeature] = field(default_factory=list)


def convert_chart(chart_path: str | Path, cfg: StemConfig | None = None) -> ConversionResult:
    """Split a chart into per-instrument stems.

    chart text -> Chart -> Timeline -> mixed StemBuffers -> encoded files.
    Fatal problems (bad config, missing chart, missing section markers) raise
    before anything is written.
    """

    cfg = (cfg or StemConfig()).validate()
    src = Path(chart_path).expanduser()
    if not src.is_file():
        raise FileNotFoundError(f"chart not found: {src}")

    chart = load_chart(src, separator=cfg.separator_pattern())
    if chart.title or chart.artist:
        logger.info("Chart: {} / {}", chart.title or "?", chart.artist or "?")

    timeline = Timeline.from_chart(chart)
    seconds = timeline.song_length_seconds()
    logger.info("Song lasts {:.3f} seconds, with bpm {:g}.", seconds, chart.initial_bpm)

    out_dir = cfg.resolve_out_dir(src)
    files = resolve_audio_files(chart, src.parent)
    if not files:
        logger.warning("Chart defines no audio files; nothing to render.")
        return ConversionResult(song_seconds=seconds, unsupported=list(chart.unsupported))

    sample_rate = detect_sample_rate(files)
    instruments = chart.instruments()
    logger.info("There are {} instrument tracks for this song.", len(instruments))

    loader = SampleLoader(sample_rate=sample_rate, cache=cfg.decode_cache)
    stems = mix_chart(chart, timeline, files=files, loader=loader)
    logger.debug("{} decodes for {} triggers", loader.decodes, len(chart.triggers))

    outs = export_stems(stems, out_dir=out_dir, fmt=cfg.format, sample_rate=sample_rate)
    if chart.unsupported:
        logger.info("Chart uses {} unsupported #RANDOM block(s); stems may be incomplete.", len(chart.unsupported))
    logger.info("Done.")

    return ConversionResult(
        stems=outs,
        sample_rate=sample_rate,
        song_seconds=seconds,
        unsupported=list(chart.unsupported),
    )
