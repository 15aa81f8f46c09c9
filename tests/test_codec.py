# tests/test_codec.py

import numpy as np
import pytest

from core import codec
from core.exceptions import DimensionMismatch


def test_encoded_length():
    vector = np.linspace(-1, 1, codec.EMBEDDING_DIMENSION, dtype=np.float32)
    data = codec.encode(vector)

    assert isinstance(data, bytes)
    assert len(data) == 2048


def test_decode_restores_exact_values(rng):
    vector = rng.standard_normal(codec.EMBEDDING_DIMENSION).astype(np.float32)
    vector[0] = np.float32(1e-30)
    vector[1] = np.float32(-3.4e38)

    decoded = codec.decode(codec.encode(vector))

    assert decoded.dtype == np.float32
    assert np.array_equal(decoded, vector)


def test_encode_is_little_endian():
    vector = np.zeros(4, dtype=np.float32)
    vector[0] = 1.0

    data = codec.encode(vector, dimension=4)

    assert data[:4] == b'\x00\x00\x80\x3f'


def test_encode_accepts_lists():
    data = codec.encode([0.5, 0.25], dimension=2)
    assert list(codec.decode(data, dimension=2)) == [0.5, 0.25]


@pytest.mark.parametrize("length", [0, 4, 2044, 2047, 2052])
def test_decode_rejects_wrong_length(length):
    with pytest.raises(DimensionMismatch) as exc_info:
        codec.decode(b'\x00' * length)

    assert exc_info.value.expected == 2048
    assert exc_info.value.actual == length


def test_encode_rejects_wrong_dimension():
    with pytest.raises(DimensionMismatch):
        codec.encode(np.zeros(511, dtype=np.float32))


def test_decoded_vector_owns_its_memory():
    data = bytearray(codec.encode(np.ones(8, dtype=np.float32), dimension=8))
    decoded = codec.decode(bytes(data), dimension=8)

    decoded[0] = 5.0  # writable, not a read-only view of the buffer
    assert decoded[0] == 5.0
