# components/recommendation.py

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from components.preference import PreferenceVectorBuilder
from components.similarity_search import SimilaritySearchService
from core.models import (EmptyPreference, EmptyPreferenceCause, InteractionEvent,
                         Recommendation, RecommendationReason, RecommendationsResult)
from core.ports import InteractionHistoryStore, MetadataStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_HISTORY_DAYS = 30
DEFAULT_HISTORY_LIMIT = 100

_EMPTY_REASONS = {
    EmptyPreferenceCause.NO_HISTORY: RecommendationReason.NO_HISTORY,
    EmptyPreferenceCause.NO_EMBEDDINGS: RecommendationReason.NO_EMBEDDINGS,
    EmptyPreferenceCause.ZERO_MAGNITUDE: RecommendationReason.NO_SIMILAR,
}


class RecommendationEngine:
    """
    Personalised feed: images closest to the user's preference vector that
    the user has not viewed yet.
    """

    def __init__(self,
                 search: SimilaritySearchService,
                 preference_builder: PreferenceVectorBuilder,
                 history_store: Optional[InteractionHistoryStore] = None,
                 metadata_store: Optional[MetadataStore] = None,
                 history_days: int = DEFAULT_HISTORY_DAYS,
                 history_limit: int = DEFAULT_HISTORY_LIMIT,
                 limit: int = DEFAULT_LIMIT):
        self.search = search
        self.preference_builder = preference_builder
        self.history_store = history_store
        self.metadata_store = metadata_store
        self.history_days = history_days
        self.history_limit = history_limit
        self.limit = limit

    def recommend(self, events: List[InteractionEvent],
                  limit: Optional[int] = None) -> RecommendationsResult:
        """
        Args:
            events: Recent view events
            limit: Maximum number of recommendations

        Returns:
            RecommendationsResult; `reason` is set whenever it is empty
        """
        limit = self.limit if limit is None else limit
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        preference = self.preference_builder.build(events)
        if isinstance(preference, EmptyPreference):
            return RecommendationsResult(reason=_EMPTY_REASONS[preference.cause])

        seen = set(preference.seen_ids)
        # Over-fetch by |seen| in case the index counts excluded rows toward limit
        results = self.search.find_nearest(preference.vector,
                                           limit + len(seen), exclude=seen)
        results = results[:limit]
        if not results:
            return RecommendationsResult(reason=RecommendationReason.NO_SIMILAR)

        recommendations = []
        for result in results:
            metadata = None
            if self.metadata_store is not None:
                metadata = self.metadata_store.get(result.owner_id)
                if metadata is None:
                    logger.debug(f"Dropping recommendation {result.owner_id}: no metadata")
                    continue
            recommendations.append(Recommendation(
                owner_id=result.owner_id,
                distance=result.distance,
                score=self.search.to_score(result.distance),
                metadata=metadata,
            ))

        if not recommendations:
            return RecommendationsResult(reason=RecommendationReason.NO_SIMILAR)
        return RecommendationsResult(recommendations=recommendations)

    def recent_history(self, now: Optional[datetime] = None) -> List[InteractionEvent]:
        """Events from the history store no older than `history_days`"""
        if self.history_store is None:
            raise RuntimeError("RecommendationEngine has no history store")

        events = self.history_store.find_recent(self.history_limit)
        recent = []
        for event in events:
            if event.viewed_at is None:
                recent.append(event)
                continue
            reference = now
            if reference is None:
                aware = event.viewed_at.tzinfo is not None
                reference = datetime.now(timezone.utc) if aware else datetime.now()
            if event.viewed_at >= reference - timedelta(days=self.history_days):
                recent.append(event)
        return recent

    def recommend_for_history(self, limit: Optional[int] = None,
                              now: Optional[datetime] = None) -> RecommendationsResult:
        return self.recommend(self.recent_history(now), limit)
