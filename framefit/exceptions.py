"""
Custom exception hierarchy for framefit.

All framefit exceptions inherit from FrameFitError so callers can catch
the entire family with a single except clause.  Cancellation is kept
apart from failure: EncodeCancelled is never a subclass of
EncodeFailedError.
"""

from __future__ import annotations


class FrameFitError(Exception):
    """Base exception for all framefit errors."""


class EmptyInputError(FrameFitError):
    """Raised when an encode is requested on zero frames."""


class FrameSizeMismatchError(FrameFitError):
    """Raised when an input sequence does not have uniform dimensions."""


class OptionsError(FrameFitError, ValueError):
    """Raised when encode options are out of range or malformed."""


class EncodeFailedError(FrameFitError):
    """Raised when a container encoder reports a hard failure."""

    def __init__(self, message: str, tool_output: str = "") -> None:
        super().__init__(message)
        self.tool_output = tool_output


class EncoderNotFoundError(FrameFitError):
    """Raised when an external encoder binary is not on $PATH."""


class EncodeCancelled(FrameFitError):
    """Raised when the caller's cancellation token fires mid-encode."""
