"""
Error taxonomy for the toggles feature.

Every error carries the HTTP status the API layer answers with, so
route handlers never map exceptions by hand.
"""

from __future__ import annotations

from typing import Any


class FlagpoleError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFoundError(FlagpoleError):
    status_code = 404


class NoRowsError(NotFoundError):
    """Raised by stores when a lookup matches nothing."""


class ValidationError(FlagpoleError):
    status_code = 422


class ConflictError(FlagpoleError):
    status_code = 409


class DependencyError(FlagpoleError):
    """A store or notifier call failed for a reason other than a miss."""
    status_code = 500


class NotificationError(DependencyError):
    pass


class IntegrityError(DependencyError):
    """A status row references a feature or environment that is not known."""

    def __init__(self, message: str, row: Any = None):
        super().__init__(message)
        self.row = row
