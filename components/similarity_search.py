# components/similarity_search.py

from typing import Iterable, List, Optional

from core.models import ScoredResult, SimilarityResult
from core.vector_index import VectorIndex


def to_score(distance: float) -> float:
    """Convert an L2 distance to a similarity score in (0, 1]"""
    return 1.0 / (1.0 + distance)


def within_threshold(distance: float, threshold: float) -> bool:
    return distance <= threshold


class SimilaritySearchService:
    """
    Policy layer over a VectorIndex: turns raw distances into the scores
    and threshold checks each feature needs.
    """

    def __init__(self, index: VectorIndex,
                 default_results: int = 10,
                 max_results: int = 100):
        self.index = index
        self.default_results = default_results
        self.max_results = max_results

    to_score = staticmethod(to_score)
    within_threshold = staticmethod(within_threshold)

    def find_nearest(self, query, limit: int,
                     exclude: Iterable[str] = ()) -> List[SimilarityResult]:
        return self.index.find_nearest(query, limit, exclude)

    def score_results(self, results: Iterable[SimilarityResult]) -> List[ScoredResult]:
        return [
            ScoredResult(owner_id=r.owner_id, distance=r.distance,
                         score=to_score(r.distance))
            for r in results
        ]

    def find_similar(self, owner_id: str,
                     limit: Optional[int] = None) -> Optional[List[ScoredResult]]:
        """
        Images most similar to a stored image.

        Args:
            owner_id: Image whose vector is used as the query
            limit: Number of results, 1..max_results (default_results if None)

        Returns:
            Scored results excluding the image itself, or None when the image
            has no stored vector
        """
        if limit is None:
            limit = self.default_results
        if not 1 <= limit <= self.max_results:
            raise ValueError(f"limit must be an integer between 1 and {self.max_results}")

        vector = self.index.get(owner_id)
        if vector is None:
            return None

        results = self.index.find_nearest(vector, limit, exclude={owner_id})
        return self.score_results(results)
