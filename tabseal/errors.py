"""
errors.py - the few exceptions tabseal raises.

Decode paths never raise for a bad or tampered envelope; they return a
negative result instead. Exceptions are kept for caller mistakes (bad
arguments) and for token storage that cannot be used.
"""


class TabsealError(Exception):
    """Base exception for all tabseal errors."""


class InvalidArgument(TabsealError, ValueError):
    """A command is longer than 32 characters, or a key is empty."""


class TokenStoreError(TabsealError):
    """The token file could not be read or written after initialize()."""


class FrameError(TabsealError, ValueError):
    """A stream frame is too large or its body is not valid UTF-8."""


class FrameEncodingError(FrameError):
    """A frame arrived whole but its body is not valid UTF-8."""
