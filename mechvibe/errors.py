from __future__ import annotations


class MechVibeError(Exception):
    """Base error for the mechvibe engine."""


class InvalidParameterError(MechVibeError):
    """Raised when a render or settings parameter is out of range."""


class UnknownProfileError(InvalidParameterError):
    """Raised when a switch profile id is not registered."""


class ResourceUnavailableError(MechVibeError):
    """Raised when a real sample cannot be fetched or decoded."""


class OutputUnavailableError(MechVibeError):
    """Raised when the output sink is not running."""
