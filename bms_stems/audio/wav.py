from __future__ import annotations

import struct
import sys
from array import array

_FMT_FLOAT = 3


def interleave(left: list[float], right: list[float]) -> array:
    """Interleave two channels into a float32 array, padding the shorter one with silence."""
    n = max(len(left), len(right))
    frames = [0.0] * (2 * n)
    frames[0 : 2 * len(left) : 2] = left
    frames[1 : 2 * len(right) : 2] = right
    return array("f", frames)


def encode_wav_float(left: list[float], right: list[float], *, sample_rate: int) -> bytes:
    """Encode a stereo pair as a 32-bit IEEE float WAV (format tag 3).

    Samples are written as-is: nothing is clipped or normalized.
    """

    data = interleave(left, right)
    if sys.byteorder != "little":
        data.byteswap()
    payload = data.tobytes()

    channels = 2
    bits = 32
    block_align = channels * bits // 8
    byte_rate = int(sample_rate) * block_align

    fmt = struct.pack("<HHIIHH", _FMT_FLOAT, channels, int(sample_rate), byte_rate, block_align, bits)
    # Non-PCM formats carry a (here empty) extension size and a fact chunk.
    fmt += struct.pack("<H", 0)
    fact = struct.pack("<I", len(payload) // block_align)

    body = b"WAVE"
    body += b"fmt " + struct.pack("<I", len(fmt)) + fmt
    body += b"fact" + struct.pack("<I", len(fact)) + fact
    body += b"data" + struct.pack("<I", len(payload)) + payload
    return b"RIFF" + struct.pack("<I", len(body)) + body

