# arena_evo/errors.py
from __future__ import annotations


class ArenaEvoError(Exception):
    """Base class for engine errors."""


class ShapeMismatchError(ArenaEvoError):
    """A vector's length disagrees with the configured architecture."""

    def __init__(self, what: str, expected: int, got: int) -> None:
        super().__init__(f"{what} size mismatch: expected {expected}, got {got}")
        self.what = what
        self.expected = int(expected)
        self.got = int(got)


class PersistenceError(ArenaEvoError):
    """Missing file, malformed document or failed write."""


class SchemaMismatchError(PersistenceError):
    """A weight document declares a different kind or shape than the live network."""
