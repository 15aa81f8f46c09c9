# core/models.py

"""
Data models shared by the similarity engine components.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

import numpy as np


@dataclass(frozen=True)
class SimilarityResult:
    """A stored vector and its distance to a query"""
    owner_id: str
    distance: float


@dataclass(frozen=True)
class ScoredResult:
    """Similarity result with a display score in (0, 1]"""
    owner_id: str
    distance: float
    score: float


@dataclass(frozen=True)
class DuplicateMember:
    owner_id: str
    distance: float


@dataclass
class DuplicateGroup:
    """
    An original image and the images within threshold of it.

    Attributes:
        original_id: Oldest image of the group
        members: Duplicates of the original, nearest first
    """
    original_id: str
    members: List[DuplicateMember] = field(default_factory=list)

    @property
    def member_ids(self) -> List[str]:
        return [m.owner_id for m in self.members]


@dataclass
class FindDuplicatesResult:
    groups: List[DuplicateGroup]
    threshold: float

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    @property
    def total_duplicates(self) -> int:
        return sum(len(g.members) for g in self.groups)

    def to_dict(self) -> dict:
        return {
            'threshold': self.threshold,
            'total_groups': self.total_groups,
            'total_duplicates': self.total_duplicates,
            'groups': [
                {
                    'original_id': g.original_id,
                    'members': [
                        {'owner_id': m.owner_id, 'distance': m.distance}
                        for m in g.members
                    ],
                }
                for g in self.groups
            ],
        }


@dataclass(frozen=True)
class ImageMetadata:
    """Presentation data for an image, owned by the metadata store"""
    id: str
    title: str
    created_at: datetime
    thumbnail_path: Optional[str] = None


@dataclass(frozen=True)
class InteractionEvent:
    """
    A single view of an image.

    `duration_ms` may be None when the client did not report how long the
    image was on screen.
    """
    owner_id: str
    duration_ms: Optional[float] = None
    viewed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Label:
    id: str
    name: str


@dataclass(frozen=True)
class ImageAttribute:
    image_id: str
    label_id: str
    keywords: Optional[str] = None

    def keyword_list(self) -> List[str]:
        if not self.keywords:
            return []
        return [k.strip() for k in self.keywords.split(',') if k.strip()]


# Recommendation outcomes

class RecommendationReason(Enum):
    """Why a recommendation request produced no results"""
    NO_HISTORY = "no_history"
    NO_EMBEDDINGS = "no_embeddings"
    NO_SIMILAR = "no_similar"


class EmptyPreferenceCause(Enum):
    NO_HISTORY = "no_history"
    NO_EMBEDDINGS = "no_embeddings"
    ZERO_MAGNITUDE = "zero_magnitude"


@dataclass(frozen=True)
class EmptyPreference:
    """No usable preference vector could be derived from the history"""
    cause: EmptyPreferenceCause


@dataclass
class PreferenceVector:
    """
    Unit-length query vector built from a user's recent views.

    Attributes:
        vector: float32 array with L2 norm 1
        weights: Accumulated view weight per embedded owner
        seen_ids: Every owner present in the history, embedded or not
    """
    vector: np.ndarray
    weights: dict
    seen_ids: List[str]


@dataclass(frozen=True)
class Recommendation:
    owner_id: str
    distance: float
    score: float
    metadata: Optional[ImageMetadata] = None


@dataclass
class RecommendationsResult:
    recommendations: List[Recommendation] = field(default_factory=list)
    reason: Optional[RecommendationReason] = None

    @property
    def is_empty(self) -> bool:
        return not self.recommendations


# Attribute suggestion outcomes

class SuggestionError(Enum):
    IMAGE_NOT_EMBEDDED = "IMAGE_NOT_EMBEDDED"
    NO_LABELS_EMBEDDED = "NO_LABELS_EMBEDDED"


@dataclass(frozen=True)
class SuggestedKeyword:
    keyword: str
    count: int


@dataclass
class AttributeSuggestion:
    label_id: str
    label_name: str
    score: float
    suggested_keywords: List[SuggestedKeyword] = field(default_factory=list)


@dataclass
class SuggestAttributesResult:
    image_id: str
    suggestions: List[AttributeSuggestion] = field(default_factory=list)


# Embedding generation outcomes

class GenerationError(Enum):
    NOT_FOUND = "NOT_FOUND"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"


@dataclass(frozen=True)
class GenerationResult:
    owner_id: str
    dimension: int
    model: str
    generated_at: datetime


@dataclass
class BatchGenerationResult:
    total: int = 0
    success: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)


@dataclass
class SyncResult:
    synced: int = 0
    skipped: int = 0
