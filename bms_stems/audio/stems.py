from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

from loguru import logger

from bms_stems.audio.encode import OUTPUT_FORMATS, OggEncoder, encode_stem
from bms_stems.audio.mix_engine import StemBuffer
from bms_stems.errors import ConfigError


def _sanitize_filename(s: str) -> str:
    s = s.strip()
    s = re.sub(r'[\\/:*?"<>|\x00-\x1f]+', "_", s)
    return s or "untitled"


def export_stems(
    stems: Mapping[str, StemBuffer],
    *,
    out_dir: str | Path,
    fmt: str = "wav",
    sample_rate: int = 44100,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    """Write one `<instrument>.<fmt>` file per stem.

    OGG output streams every stem through one encoder instance, reconfigured for
    each stem; `ffmpeg` names the encoder executable.
    """

    if fmt not in OUTPUT_FORMATS:
        raise ConfigError(f"output format must be one of {', '.join(OUTPUT_FORMATS)}")

    od = Path(out_dir).expanduser()
    od.mkdir(parents=True, exist_ok=True)
    logger.info("Saving {} stem tracks to {}...", len(stems), od)

    outs: list[str] = []
    with OggEncoder(ffmpeg=ffmpeg) as ogg:
        for name, stem in stems.items():
            data = encode_stem(fmt, stem.left, stem.right, sample_rate=sample_rate, ogg=ogg)
            out = od / f"{_sanitize_filename(name)}.{fmt}"
            out.write_bytes(data)
            logger.debug("wrote {} ({} samples, {} triggers)", out, len(stem), stem.triggers)
            outs.append(str(out))

    return outs
