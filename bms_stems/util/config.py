from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from bms_stems.audio.encode import OUTPUT_FORMATS
from bms_stems.errors import ConfigError
from bms_stems.util.log import LOG_LEVELS

DEFAULT_STEMS_DIRNAME = "stems"


@dataclass
class StemConfig:
    format: str = "wav"
    separator: str = "_"  # regular expression
    out_dir: str | None = None  # default: <chart dir>/stems
    log_level: str = "info"
    decode_cache: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "separator": self.separator,
            "out_dir": self.out_dir,
            "log_level": self.log_level,
            "decode_cache": self.decode_cache,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "StemConfig":
        return StemConfig(
            format=str(d.get("format", "wav") or "wav").strip().lower(),
            separator=str(d.get("separator", "_") or "_"),
            out_dir=(str(d["out_dir"]) if d.get("out_dir") else None),
            log_level=str(d.get("log_level", "info") or "info").strip().lower(),
            decode_cache=bool(d.get("decode_cache", True)),
        )

    def merged(self, **overrides: Any) -> "StemConfig":
        """Return a copy with every non-None override applied."""
        d = self.to_dict()
        d.update({k: v for k, v in overrides.items() if v is not None})
        return StemConfig.from_dict(d)

    def validate(self) -> "StemConfig":
        if self.format not in OUTPUT_FORMATS:
            raise ConfigError(f'Option --format must be one of {", ".join(repr(f) for f in OUTPUT_FORMATS)}.')
        try:
            re.compile(self.separator)
        except re.error as e:
            raise ConfigError(f"invalid separator pattern {self.separator!r}: {e}") from e
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return self

    def separator_pattern(self) -> re.Pattern[str]:
        return re.compile(self.separator)

    def resolve_out_dir(self, chart_path: str | Path) -> Path:
        if self.out_dir:
            return Path(self.out_dir).expanduser().resolve()
        return (Path(chart_path).expanduser().resolve().parent / DEFAULT_STEMS_DIRNAME).resolve()


def load_config(path: str | Path) -> StemConfig:
    """Load a YAML (or JSON) config file.

    Keys match `StemConfig` fields; unknown keys are ignored.
    """

    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config file {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config file must be a mapping/object")
    return StemConfig.from_dict(data)

