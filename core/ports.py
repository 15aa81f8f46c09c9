# core/ports.py

"""
Interfaces of the collaborators the engine consumes.

Concrete adapters live outside the engine (web app, database layer, model
server). Tests supply in-memory implementations.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from core.models import ImageAttribute, ImageMetadata, InteractionEvent, Label


class EncoderService(ABC):
    """
    Produces embedding vectors from image bytes or text.

    Implementations raise EncodingFailure when the model cannot produce a
    vector.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @abstractmethod
    def encode_image(self, image_data: bytes) -> np.ndarray:
        """
        Args:
            image_data: Raw encoded image file contents

        Returns:
            float32 vector of the engine's dimension
        """
        pass

    @abstractmethod
    def encode_text(self, text: str) -> np.ndarray:
        pass


class MetadataStore(ABC):
    """Maps image ids to presentation metadata"""

    @abstractmethod
    def get(self, image_id: str) -> Optional[ImageMetadata]:
        pass


class InteractionHistoryStore(ABC):

    @abstractmethod
    def find_recent(self, limit: int) -> List[InteractionEvent]:
        """
        Most recent view events, newest first.

        Args:
            limit: Maximum number of events to return
        """
        pass


class LabelStore(ABC):

    @abstractmethod
    def list_labels(self) -> List[Label]:
        pass

    @abstractmethod
    def get(self, label_id: str) -> Optional[Label]:
        pass


class AttributeStore(ABC):
    """Attributes (label + keywords) already assigned to images"""

    @abstractmethod
    def find_by_image(self, image_id: str) -> List[ImageAttribute]:
        pass
