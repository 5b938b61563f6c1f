from __future__ import annotations

import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import IO

from loguru import logger

from bms_stems.audio.wav import encode_wav_float, interleave
from bms_stems.errors import EncodeError

OUTPUT_FORMATS = ("wav", "ogg")

# Vorbis VBR quality 5 (~160 kbps) is transparent for most material.
OGG_QUALITY = 5.0

# Frames per write into the encoder.
CHUNK_FRAMES = 1 << 16


class OggEncoder:
    """Streaming OGG Vorbis encoder backed by an ffmpeg subprocess.

    Usage per stem:

        enc.configure(sample_rate=44100, channels=2, quality=5)
        out = bytearray()
        out += enc.encode(left, right)   # any number of times
        out += enc.finalize()            # flushes the trailing frames

    One instance can be reused for many stems; `configure` tears down whatever
    the previous stem left behind so no encoder state leaks between stems.
    ffmpeg writes into a temporary file rather than a pipe, so feeding large
    stems never deadlocks on a full stdout pipe. The encoder reads that file
    through its own handle: sharing ffmpeg's handle would share its file offset.
    """

    def __init__(self, *, ffmpeg: str = "ffmpeg") -> None:
        self.ffmpeg = ffmpeg
        self._proc: subprocess.Popen[bytes] | None = None
        self._out: IO[bytes] | None = None
        self._out_path: Path | None = None
        self._err: IO[bytes] | None = None
        self.sample_rate = 0
        self.channels = 0

    def __enter__(self) -> "OggEncoder":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def configure(self, *, sample_rate: int, channels: int = 2, quality: float = OGG_QUALITY) -> None:
        self.close()
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        fd, name = tempfile.mkstemp(prefix="bms_stems_ogg_", suffix=".ogg")
        self._out_path = Path(name)
        sink = os.fdopen(fd, "wb")
        self._out = open(name, "rb")
        self._err = tempfile.TemporaryFile(prefix="bms_stems_ogg_err_")

        cmd = [
            self.ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "f32le",
            "-ar",
            str(self.sample_rate),
            "-ac",
            str(self.channels),
            "-i",
            "pipe:0",
            "-codec:a",
            "libvorbis",
            "-q:a",
            str(float(quality)),
            "-f",
            "ogg",
            "pipe:1",
        ]
        try:
            self._proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=sink, stderr=self._err)
        except (FileNotFoundError, PermissionError) as e:
            sink.close()
            self.close()
            raise EncodeError(f"{self.ffmpeg} not found or not executable; it is needed for OGG output") from e
        # The child holds its own copy of the write handle.
        sink.close()
        logger.debug("OGG encoder configured: {} Hz, {} ch, q={}", self.sample_rate, self.channels, quality)

    def _drain(self) -> bytes:
        assert self._out is not None
        chunk = self._out.read()
        return chunk

    def _stderr_text(self) -> str:
        if self._err is None:
            return ""
        self._err.seek(0)
        return self._err.read().decode("utf-8", "replace").strip()

    def encode(self, left: list[float], right: list[float]) -> bytes:
        """Feed planar stereo samples; return whatever encoded bytes are ready."""
        if self._proc is None or self._proc.stdin is None:
            raise EncodeError("OGG encoder used before configure()")
        data = interleave(left, right)
        if sys.byteorder != "little":
            data.byteswap()
        try:
            self._proc.stdin.write(data.tobytes())
            self._proc.stdin.flush()
        except BrokenPipeError as e:
            self._proc.wait()
            raise EncodeError(f"ffmpeg stopped while encoding: {self._stderr_text()}") from e
        return self._drain()

    def finalize(self) -> bytes:
        """Close the input, wait for ffmpeg and return the trailing bytes."""
        if self._proc is None or self._proc.stdin is None:
            raise EncodeError("OGG encoder used before configure()")
        try:
            self._proc.stdin.close()
        except BrokenPipeError:
            pass
        rc = self._proc.wait()
        if rc != 0:
            msg = self._stderr_text()
            self.close()
            raise EncodeError(f"ffmpeg exited with {rc} while encoding OGG: {msg}")
        tail = self._drain()
        self.close()
        return tail

    def close(self) -> None:
        if self._proc is not None:
            if self._proc.poll() is None:
                self._proc.kill()
                self._proc.wait()
            if self._proc.stdin is not None and not self._proc.stdin.closed:
                try:
                    self._proc.stdin.close()
                except BrokenPipeError:
                    pass
            self._proc = None
        for fh in (self._out, self._err):
            if fh is not None:
                fh.close()
        self._out = None
        self._err = None
        if self._out_path is not None:
            self._out_path.unlink(missing_ok=True)
            self._out_path = None


def encode_ogg(encoder: OggEncoder, left: list[float], right: list[float], *, sample_rate: int) -> bytes:
    encoder.configure(sample_rate=sample_rate, channels=2, quality=OGG_QUALITY)
    out = bytearray()
    n = max(len(left), len(right))
    for start in range(0, n, CHUNK_FRAMES):
        end = start + CHUNK_FRAMES
        out += encoder.encode(left[start:end], right[start:end])
    out += encoder.finalize()
    return bytes(out)


def encode_stem(
    fmt: str,
    left: list[float],
    right: list[float],
    *,
    sample_rate: int,
    ogg: OggEncoder | None = None,
) -> bytes:
    if fmt == "wav":
        return encode_wav_float(left, right, sample_rate=sample_rate)
    if fmt == "ogg":
        if ogg is None:
            raise EncodeError("OGG output needs an OggEncoder")
        return encode_ogg(ogg, left, right, sample_rate=sample_rate)
    raise EncodeError(f"output format must be one of {', '.join(OUTPUT_FORMATS)}")
