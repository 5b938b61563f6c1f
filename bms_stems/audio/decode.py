from __future__ import annotations

import json
import struct
import subprocess
import sys
import wave
from array import array
from dataclasses import dataclass
from pathlib import Path

from bms_stems.errors import DecodeError

WAV_EXTS = {".wav", ".wave"}

_FMT_PCM = 1
_FMT_FLOAT = 3
_FMT_EXTENSIBLE = 0xFFFE


@dataclass(frozen=True)
class DecodedAudio:
    """Planar float samples in [-1, 1], one list per channel."""

    channels: list[list[float]]
    sample_rate: int

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    def __len__(self) -> int:
        return len(self.channels[0]) if self.channels else 0


def _pcm_to_float(data: bytes, width: int) -> list[float]:
    if width == 1:
        # 8-bit is unsigned in WAV: 0..255 with 128 as zero.
        return [(b - 128) / 128.0 for b in data]
    if width == 2:
        a = array("h")
        a.frombytes(data[: len(data) - (len(data) % 2)])
        if sys.byteorder != "little":
            a.byteswap()
        return [v / 32768.0 for v in a]
    if width == 3:
        return [
            int.from_bytes(data[i : i + 3], "little", signed=True) / 8388608.0 for i in range(0, len(data) - 2, 3)
        ]
    if width == 4:
        a = array("i")
        a.frombytes(data[: len(data) - (len(data) % 4)])
        if sys.byteorder != "little":
            a.byteswap()
        return [v / 2147483648.0 for v in a]
    raise DecodeError(f"unsupported PCM sample width: {width} bytes")


def _split_channels(samples: list[float], ch: int) -> list[list[float]]:
    if ch <= 1:
        return [samples]
    return [samples[c::ch] for c in range(ch)]


def _riff_chunks(buf: bytes, endian: str) -> dict[bytes, bytes]:
    """First payload of every chunk id after the 12-byte RIFF/RIFX header."""
    chunks: dict[bytes, bytes] = {}
    pos = 12
    while pos + 8 <= len(buf):
        cid = buf[pos : pos + 4]
        (size,) = struct.unpack_from(endian + "I", buf, pos + 4)
        body = pos + 8
        chunks.setdefault(cid, buf[body : body + size])
        # Chunks are word-aligned.
        pos = body + size + (size & 1)
    return chunks


def _read_riff(path: Path) -> DecodedAudio:
    """RIFF reader for what `wave` rejects (IEEE float, extensible headers)."""

    buf = path.read_bytes()
    container, form = buf[0:4], buf[8:12]
    if len(buf) < 12 or form != b"WAVE" or container not in {b"RIFF", b"RIFX"}:
        raise DecodeError(f"not a WAV file: {path}")
    little = container == b"RIFF"
    endian = "<" if little else ">"
    chunks = _riff_chunks(buf, endian)
    fmt_chunk = chunks.get(b"fmt ")
    data_chunk = chunks.get(b"data")

    if fmt_chunk is None or data_chunk is None:
        raise DecodeError(f"missing fmt/data chunk in WAV: {path}")
    if len(fmt_chunk) < 16:
        raise DecodeError(f"invalid fmt chunk in WAV: {path}")

    fmt_tag, ch, sr, _byte_rate, _block_align, bits = struct.unpack_from(endian + "HHIIHH", fmt_chunk)
    if fmt_tag == _FMT_EXTENSIBLE and len(fmt_chunk) >= 26:
        # The sub-format GUID starts with the real format tag.
        (fmt_tag,) = struct.unpack_from(endian + "H", fmt_chunk, 24)

    if fmt_tag == _FMT_PCM:
        if not little:
            raise DecodeError(f"big-endian PCM WAV is not supported: {path}")
        samples = _pcm_to_float(data_chunk, max(1, int(bits // 8)))
    elif fmt_tag == _FMT_FLOAT:
        if bits not in {32, 64}:
            raise DecodeError(f"unsupported float WAV bit depth: {bits}")
        arr = array("f") if bits == 32 else array("d")
        arr.frombytes(data_chunk[: len(data_chunk) - (len(data_chunk) % arr.itemsize)])
        if (sys.byteorder == "little") != little:
            arr.byteswap()
        samples = [float(x) for x in arr]
    else:
        raise DecodeError(f"unsupported WAV format tag: {fmt_tag}")

    return DecodedAudio(channels=_split_channels(samples, int(ch)), sample_rate=int(sr))


def _read_wav(path: Path) -> DecodedAudio:
    try:
        with wave.open(str(path), "rb") as wf:
            sr = int(wf.getframerate())
            ch = int(wf.getnchannels())
            sw = int(wf.getsampwidth())
            data = wf.readframes(wf.getnframes())
    except wave.Error:
        return _read_riff(path)
    except EOFError as e:
        raise DecodeError(f"truncated WAV file: {path}") from e

    return DecodedAudio(channels=_split_channels(_pcm_to_float(data, sw), ch), sample_rate=sr)


def _ffprobe_stream(path: Path) -> dict[str, int]:
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-select_streams",
        "a:0",
        "-show_entries",
        "stream=channels,sample_rate",
        "-of",
        "json",
        str(path),
    ]
    try:
        pr = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=True)
    except FileNotFoundError as e:
        raise DecodeError(f"ffprobe not found; it is needed to read {path.suffix} files") from e
    except subprocess.CalledProcessError as e:
        raise DecodeError(f"ffprobe failed on {path}: {(e.stderr or '').strip()}") from e

    info = json.loads(pr.stdout or "{}")
    streams = info.get("streams") or []
    if not streams:
        raise DecodeError(f"no audio stream in {path}")
    s = streams[0] or {}
    return {"channels": int(s.get("channels") or 0), "sample_rate": int(s.get("sample_rate") or 0)}


def _read_ffmpeg(path: Path, *, sample_rate: int | None = None) -> DecodedAudio:
    info = _ffprobe_stream(path)
    ch = max(1, info["channels"])
    sr = int(sample_rate or info["sample_rate"])

    cmd = ["ffmpeg", "-hide_banner", "-loglevel", "error", "-i", str(path)]
    if sample_rate:
        cmd += ["-ar", str(int(sample_rate))]
    cmd += ["-f", "f32le", "-"]
    try:
        p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise DecodeError(f"ffmpeg not found; it is needed to decode {path.suffix} files") from e
    if p.returncode != 0:
        raise DecodeError(f"ffmpeg failed to decode {path}: {p.stderr.decode('utf-8', 'replace').strip()}")

    buf = p.stdout or b""
    a = array("f")
    a.frombytes(buf[: len(buf) - (len(buf) % 4)])
    if sys.byteorder != "little":
        a.byteswap()
    return DecodedAudio(channels=_split_channels(a.tolist(), ch), sample_rate=sr)


def resample_linear(samples: list[float], src_rate: int, dst_rate: int) -> list[float]:
    """Linear-interpolation resampling; the last sample is held past the end."""
    if src_rate == dst_rate:
        return samples
    n = len(samples)
    if n == 0:
        return []
    step = src_rate / float(dst_rate)
    last = n - 1
    out: list[float] = []
    for i in range(max(1, int(n * dst_rate / src_rate))):
        pos = i * step
        j = min(int(pos), last)
        a = samples[j]
        b = samples[j + 1] if j < last else a
        out.append(a + (b - a) * (pos - j))
    return out


def probe_sample_rate(path: str | Path) -> int:
    p = Path(path)
    if not p.exists():
        raise DecodeError(f"audio file not found: {p}")
    if p.suffix.lower() in WAV_EXTS:
        try:
            with wave.open(str(p), "rb") as wf:
                return int(wf.getframerate())
        except wave.Error:
            return _read_riff(p).sample_rate
    return _ffprobe_stream(p)["sample_rate"]


def decode_audio(path: str | Path, *, sample_rate: int | None = None) -> DecodedAudio:
    """Decode an audio file to planar floats.

    WAV is read in-process; anything else (OGG, MP3, FLAC) goes through ffmpeg.
    When `sample_rate` is given the result is resampled to it.
    """

    p = Path(path)
    if not p.exists():
        raise DecodeError(f"audio file not found: {p}")

    if p.suffix.lower() not in WAV_EXTS:
        return _read_ffmpeg(p, sample_rate=sample_rate)

    audio = _read_wav(p)
    if sample_rate and audio.sample_rate != sample_rate:
        audio = DecodedAudio(
            channels=[resample_linear(c, audio.sample_rate, sample_rate) for c in audio.channels],
            sample_rate=int(sample_rate),
        )
    return audio
