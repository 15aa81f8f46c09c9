# components/preference.py

from collections import OrderedDict
from typing import Iterable, Union

import numpy as np

from core.models import (EmptyPreference, EmptyPreferenceCause,
                         InteractionEvent, PreferenceVector)
from core.vector_index import VectorIndex

MIN_DURATION_MS = 1000.0  # Views shorter than this still count as one second


class PreferenceVectorBuilder:
    """
    Derives a single query vector from recent interaction history.

    Each view is weighted by how long the image was on screen, floored at
    `min_duration_ms` so instant views keep some influence. The result is
    the weighted centroid of the viewed images' embeddings, scaled to unit
    length.
    """

    def __init__(self, index: VectorIndex, min_duration_ms: float = MIN_DURATION_MS):
        self.index = index
        self.min_duration_ms = min_duration_ms

    def event_weight(self, event: InteractionEvent) -> float:
        duration = event.duration_ms
        if duration is None:
            duration = self.min_duration_ms
        return max(float(duration), self.min_duration_ms)

    def accumulate_weights(self, events: Iterable[InteractionEvent]) -> "OrderedDict[str, float]":
        """Sum view weights per owner, in first-seen order"""
        weights = OrderedDict()
        for event in events:
            weights[event.owner_id] = weights.get(event.owner_id, 0.0) + self.event_weight(event)
        return weights

    def build(self, events: Iterable[InteractionEvent]) -> Union[PreferenceVector, EmptyPreference]:
        """
        Args:
            events: View events, already filtered for recency by the caller

        Returns:
            PreferenceVector, or EmptyPreference explaining why none exists
        """
        weights = self.accumulate_weights(events)
        if not weights:
            return EmptyPreference(EmptyPreferenceCause.NO_HISTORY)

        total = np.zeros(self.index.dimension, dtype=np.float64)
        total_weight = 0.0
        embedded = {}
        for owner_id, weight in weights.items():
            embedding = self.index.get(owner_id)
            if embedding is None:
                continue
            total += embedding.astype(np.float64) * weight
            total_weight += weight
            embedded[owner_id] = weight

        if not embedded:
            return EmptyPreference(EmptyPreferenceCause.NO_EMBEDDINGS)
        if total_weight <= 0:
            return EmptyPreference(EmptyPreferenceCause.ZERO_MAGNITUDE)

        centroid = total / total_weight
        magnitude = np.linalg.norm(centroid)
        if not np.isfinite(magnitude) or magnitude == 0:
            return EmptyPreference(EmptyPreferenceCause.ZERO_MAGNITUDE)

        return PreferenceVector(
            vector=(centroid / magnitude).astype(np.float32),
            weights=embedded,
            seen_ids=list(weights),
        )
