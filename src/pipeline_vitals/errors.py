"""Exception types raised at the storage and subprocess seams."""

from __future__ import annotations


class VitalsError(RuntimeError):
    """Base class for recoverable vitals-engine failures."""


class LockTimeout(VitalsError):
    """Raised when a progress-file lock is not acquired within its bounded wait."""


class MalformedInput(VitalsError):
    """Raised when an input document exists but cannot be parsed."""
