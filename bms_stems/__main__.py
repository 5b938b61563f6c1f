from __future__ import annotations

import argparse
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from bms_stems.errors import BmsStemsError
from bms_stems.pipeline import convert_chart
from bms_stems.util.config import StemConfig, load_config
from bms_stems.util.log import LOG_LEVELS, setup_logging


@dataclass
class DoctorResult:
    ok: bool
    notes: list[str]


def _which(cmd: str) -> str | None:
    return shutil.which(cmd)


def _doctor() -> DoctorResult:
    notes: list[str] = []
    ok = True

    for tool, why in (("ffmpeg", "OGG input/output"), ("ffprobe", "reading non-WAV samples")):
        found = _which(tool)
        if found:
            notes.append(f"{tool}: OK ({found})")
        else:
            ok = False
            notes.append(f"{tool}: MISSING (needed for {why}; WAV-only charts still work)")

    notes.append(f"python: {sys.version.split()[0]}")
    notes.append(f"platform: {sys.platform}")
    return DoctorResult(ok=ok, notes=notes)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bms-stems",
        add_help=True,
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "bms-stems: split a BMS chart into per-instrument stem tracks\n\n"
            "Samples are grouped by file name: everything before the first separator\n"
            "match is the instrument (Kick_01.wav, Kick_02.wav -> Kick.wav).\n"
        ),
    )

    p.add_argument("chart", nargs="?", default=None, help="Path to the .bms/.bme chart")
    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("--doctor", action="store_true", help="Check for optional deps (ffmpeg/ffprobe).")
    p.add_argument("--config", default=None, help="YAML/JSON config file (flags override it)")
    p.add_argument("-f", "--format", default=None, help="Output format: wav (default) or ogg")
    p.add_argument("-s", "--separator", default=None, help="Instrument name separator regex (default: _)")
    p.add_argument(
        "-o",
        "--out-dir",
        "--outDir",
        dest="out_dir",
        default=None,
        help="Output directory (default: <chart dir>/stems)",
    )
    p.add_argument("--log", default=None, choices=sorted(LOG_LEVELS), help="Log level (default: info)")
    p.add_argument("-v", "--verbose", action="store_true", help="Shorthand for --log debug")
    p.add_argument(
        "--no-decode-cache",
        dest="decode_cache",
        action="store_false",
        default=None,
        help="Decode every trigger's sample again instead of reusing it",
    )
    return p


def resolve_config(args: argparse.Namespace) -> StemConfig:
    """defaults -> config file -> command-line flags."""
    cfg = load_config(args.config) if args.config else StemConfig()
    log_level = args.log or ("debug" if args.verbose else None)
    return cfg.merged(
        format=(args.format.lower() if args.format else None),
        separator=args.separator,
        out_dir=args.out_dir,
        log_level=log_level,
        decode_cache=args.decode_cache,
    )


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            from importlib.metadata import version

            v = version("bms-stems")
        except Exception:
            v = "0.0.0"
        print(f"bms-stems {v}")
        return

    if args.doctor:
        res = _doctor()
        status = "OK" if res.ok else "MISSING_DEPS"
        print(f"bms-stems doctor: {status}")
        for n in res.notes:
            print(f"- {n}")
        if not res.ok:
            print("\nLinux (Debian/Ubuntu): sudo apt-get install ffmpeg")
            print("macOS: brew install ffmpeg")
        return

    try:
        cfg = resolve_config(args).validate()
    except BmsStemsError as e:
        raise SystemExit(f"ERROR: {e}")

    setup_logging(cfg.log_level)

    if not args.chart:
        raise SystemExit("ERROR: Please provide the path to the bms file.")

    chart = Path(args.chart).expanduser()
    if not chart.is_file():
        raise SystemExit(f"ERROR: chart not found: {chart}")

    logger.info("Stems will be saved as {} files.", cfg.format)
    try:
        convert_chart(chart, cfg)
    except BmsStemsError as e:
        raise SystemExit(f"ERROR: {e}")


if __name__ == "__main__":
    main()
