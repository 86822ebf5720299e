"""
Pipeline error types.

Only infrastructure failures are raised. Value anomalies are repaired or
nulled with an annotation, and extraction problems come back as result
objects with ok=False.
"""

from typing import List


class ScorePipelineError(Exception):
    """Base class for score pipeline errors."""


class DocumentStorageError(ScorePipelineError):
    """Storing or fetching a document failed. Fatal for the request."""

    def __init__(self, message: str, handle: str = ""):
        super().__init__(message)
        self.handle = handle


class UnknownLayoutError(ScorePipelineError, ValueError):
    """A layout hint named no registered layout variant."""

    def __init__(self, name: str, known: List[str]):
        super().__init__(f"Unknown layout variant '{name}' (known: {', '.join(known)})")
        self.name = name
        self.known = list(known)
