# tests/conftest.py

"""
Shared fixtures: in-memory collaborators and vector helpers.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import numpy as np
import pytest

from core.codec import EMBEDDING_DIMENSION
from core.exceptions import EncodingFailure
from core.models import ImageAttribute, ImageMetadata, InteractionEvent, Label
from core.ports import (AttributeStore, EncoderService, InteractionHistoryStore,
                        LabelStore, MetadataStore)
from core.vector_index import SqliteVectorIndex

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def unit(index: int, dimension: int = EMBEDDING_DIMENSION) -> np.ndarray:
    """Standard basis vector e_index"""
    vector = np.zeros(dimension, dtype=np.float32)
    vector[index] = 1.0
    return vector


def random_unit_vector(rng: np.random.Generator,
                       dimension: int = EMBEDDING_DIMENSION) -> np.ndarray:
    vector = rng.standard_normal(dimension).astype(np.float32)
    return vector / np.linalg.norm(vector)


class InMemoryMetadataStore(MetadataStore):

    def __init__(self):
        self.records: Dict[str, ImageMetadata] = {}

    def add(self, image_id: str, minutes: int = 0, title: Optional[str] = None):
        self.records[image_id] = ImageMetadata(
            id=image_id,
            title=title or image_id,
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )

    def get(self, image_id: str) -> Optional[ImageMetadata]:
        return self.records.get(image_id)


class InMemoryHistoryStore(InteractionHistoryStore):
    """Events are given newest first"""

    def __init__(self, events: Optional[List[InteractionEvent]] = None):
        self.events = list(events or [])
        self.requested_limits: List[int] = []

    def find_recent(self, limit: int) -> List[InteractionEvent]:
        self.requested_limits.append(limit)
        return self.events[:limit]


class InMemoryLabelStore(LabelStore):

    def __init__(self, labels: Optional[List[Label]] = None):
        self.labels = {label.id: label for label in labels or []}

    def list_labels(self) -> List[Label]:
        return list(self.labels.values())

    def get(self, label_id: str) -> Optional[Label]:
        return self.labels.get(label_id)


class InMemoryAttributeStore(AttributeStore):

    def __init__(self, attributes: Optional[List[ImageAttribute]] = None):
        self.attributes = list(attributes or [])

    def find_by_image(self, image_id: str) -> List[ImageAttribute]:
        return [a for a in self.attributes if a.image_id == image_id]


class FakeEncoder(EncoderService):
    """
    Deterministic encoder: image bytes and text map to fixed vectors.

    Unknown inputs raise EncodingFailure.
    """

    def __init__(self, images: Optional[Dict[bytes, np.ndarray]] = None,
                 texts: Optional[Dict[str, np.ndarray]] = None):
        self.images = dict(images or {})
        self.texts = dict(texts or {})

    @property
    def model_name(self) -> str:
        return "fake-clip"

    def encode_image(self, image_data: bytes) -> np.ndarray:
        if image_data not in self.images:
            raise EncodingFailure("unreadable image")
        return self.images[image_data]

    def encode_text(self, text: str) -> np.ndarray:
        if text not in self.texts:
            raise EncodingFailure(f"cannot encode {text!r}")
        return self.texts[text]


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def memory_index():
    index = SqliteVectorIndex(db_path=None, table="image_embeddings")
    yield index
    index.close()


@pytest.fixture
def label_index():
    index = SqliteVectorIndex(db_path=None, table="label_embeddings")
    yield index
    index.close()


@pytest.fixture
def sqlite_index(tmp_path):
    index = SqliteVectorIndex(db_path=str(tmp_path / "embeddings.db"))
    yield index
    index.close()


@pytest.fixture
def metadata_store():
    return InMemoryMetadataStore()
