"""Error taxonomy shared by the scheduling services."""

from __future__ import annotations


class SchedulingError(Exception):
    """Base exception for scheduling core failures."""


class ValidationError(SchedulingError, ValueError):
    """Raised when input is malformed or a required field is missing."""


class ConflictError(SchedulingError):
    """Raised when a resource claim collides with an existing one."""


class NotFoundError(SchedulingError):
    """Raised when a referenced job or resource does not exist."""


class InternalError(SchedulingError):
    """Raised for unexpected failures inside the scheduling core."""


class GenerationCancelledError(SchedulingError):
    """Raised at a checkpoint once cancellation has been requested."""
