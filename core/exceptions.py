# core/exceptions.py

"""
Exceptions raised by the similarity engine.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class DimensionMismatch(EngineError, ValueError):
    """
    A stored or supplied vector does not have the expected dimension.

    Raised when:
    - A byte buffer is not exactly dimension * 4 bytes long
    - A vector handed to the index does not have `dimension` elements
    """

    def __init__(self, expected: int, actual: int, unit: str = "values"):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected} {unit}, got {actual}"
        )
        self.expected = expected
        self.actual = actual
        self.unit = unit


class InvalidThreshold(EngineError, ValueError):
    """Duplicate detection threshold outside (0, 1]."""

    def __init__(self, threshold):
        super().__init__(
            f"threshold must be a number greater than 0 and at most 1, got {threshold!r}"
        )
        self.threshold = threshold


class EncodingFailure(EngineError):
    """
    The external encoder could not produce a vector.

    Retry policy belongs to whoever runs the encoding task.
    """

    def __init__(self, message: str, owner_id: str = None):
        super().__init__(message)
        self.owner_id = owner_id


class IndexClosed(EngineError):
    """Operation attempted on a vector index after close()."""
    pass
