from __future__ import annotations


class BmsStemsError(Exception):
    """Base class for fatal conversion errors."""


class FormatError(BmsStemsError):
    """The chart text is missing its header/data section markers."""


class ConfigError(BmsStemsError):
    """Invalid output format, separator pattern, log level or config file."""


class DecodeError(BmsStemsError):
    """A referenced audio file could not be decoded."""


class EncodeError(BmsStemsError):
    """A stem could not be encoded."""
