"""
Exceptions raised by the storage layer.

A record that does not exist is not an error: lookups return ``None`` and
list queries return ``[]``.
"""

from __future__ import annotations

from typing import Sequence


class StorageError(Exception):
    """Base class for storage failures."""


class BackendUnavailableError(StorageError):
    """The configured store could not be reached or is misconfigured."""


class DuplicateKeyError(StorageError):
    """A create collided with a unique constraint."""

    def __init__(self, entity: str, fields: Sequence[str], message: str | None = None):
        self.entity = entity
        self.fields = tuple(fields)
        super().__init__(
            message or f"{entity} with the same {', '.join(self.fields)} already exists"
        )


class InvalidValueError(StorageError, ValueError):
    """A value or field name the store refuses to accept."""
