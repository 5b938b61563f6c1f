"""Audio side of the stem converter.

Samples are decoded in-process for WAV and through ffmpeg for everything else.
Stems are mixed into plain float lists and written as 32-bit float WAV, or
streamed through ffmpeg's Vorbis encoder for OGG.
"""
