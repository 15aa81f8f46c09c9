# core/codec.py

"""
Fixed-length float vector <-> byte buffer conversion.

This is the only place where raw bytes are reinterpreted as floats. Stored
vectors are exactly EMBEDDING_DIMENSION * 4 bytes of little-endian float32.
"""

import numpy as np

from core.exceptions import DimensionMismatch

EMBEDDING_DIMENSION = 512
BYTES_PER_VALUE = 4
VECTOR_DTYPE = np.dtype('<f4')


def expected_byte_length(dimension: int = EMBEDDING_DIMENSION) -> int:
    return dimension * BYTES_PER_VALUE


def as_vector(values, dimension: int = EMBEDDING_DIMENSION) -> np.ndarray:
    """
    Coerce a sequence of numbers to a 1-D float32 array of length `dimension`.

    Raises:
        DimensionMismatch: if the input does not hold exactly `dimension` values
    """
    vector = np.asarray(values, dtype=np.float32)
    if vector.ndim != 1:
        vector = vector.reshape(-1)
    if vector.shape[0] != dimension:
        raise DimensionMismatch(dimension, vector.shape[0])
    return vector


def encode(vector, dimension: int = EMBEDDING_DIMENSION) -> bytes:
    """
    Encode a vector as little-endian float32 bytes.

    Args:
        vector: Sequence or array with exactly `dimension` values
        dimension: Expected vector length

    Returns:
        Exactly dimension * 4 bytes
    """
    return as_vector(vector, dimension).astype(VECTOR_DTYPE, copy=False).tobytes()


def decode(data: bytes, dimension: int = EMBEDDING_DIMENSION) -> np.ndarray:
    """
    Decode little-endian float32 bytes into a vector.

    The returned array owns its memory, so it stays valid after `data` is
    released.

    Raises:
        DimensionMismatch: if len(data) != dimension * 4
    """
    expected = expected_byte_length(dimension)
    if len(data) != expected:
        raise DimensionMismatch(expected, len(data), unit="bytes")
    return np.frombuffer(data, dtype=VECTOR_DTYPE).astype(np.float32)
