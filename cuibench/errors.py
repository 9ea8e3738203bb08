"""Exception taxonomy shared by the loaders, the ranker and the metrics.

    CuiBenchError
        ├── NotFoundError         query entity absent from an embedding
        └── InvalidArgumentError  bad metric input, ragged vectors, bad table schema

Zero-norm vectors are not an error: cosine similarity against them is
defined as 0 and reported through DegenerateInputWarning / the log.
"""
from __future__ import annotations

from typing import Optional


class CuiBenchError(Exception):
    """Base exception for cuibench errors."""
    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


class NotFoundError(CuiBenchError, KeyError):
    """Entity ID is not a row of the embedding."""
    pass


class InvalidArgumentError(CuiBenchError, ValueError):
    """Input violates a metric or schema precondition."""
    pass


class DegenerateInputWarning(UserWarning):
    """Embedding holds zero-norm rows (their similarity is recovered as 0)."""
    pass
