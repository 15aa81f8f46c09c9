# components/duplicate_detector.py

import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from tqdm import tqdm

from components.similarity_search import SimilaritySearchService
from core.exceptions import InvalidThreshold
from core.models import DuplicateGroup, DuplicateMember, FindDuplicatesResult
from core.ports import MetadataStore

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_THRESHOLD = 0.1


def validate_threshold(threshold) -> float:
    """Accept numbers in (0, 1]; anything else raises InvalidThreshold"""
    if isinstance(threshold, bool):
        raise InvalidThreshold(threshold)
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise InvalidThreshold(threshold) from None
    if not 0 < value <= 1:  # also rejects NaN
        raise InvalidThreshold(threshold)
    return value


class DuplicateDetector:
    """
    Groups near-identical images by embedding distance.

    Single greedy pass over images ordered oldest first: the first image not
    yet assigned becomes the original of a group, and its unassigned
    neighbours within the threshold become the members. Grouping is
    pairwise against the original only, never transitive.

    `neighbor_limit` is the first page size of each neighbour query; the
    query widens until it reaches past the threshold.
    """

    def __init__(self,
                 search: SimilaritySearchService,
                 metadata_store: MetadataStore,
                 neighbor_limit: int = 100,
                 show_progress: bool = False):
        self.search = search
        self.metadata_store = metadata_store
        self.neighbor_limit = neighbor_limit
        self.show_progress = show_progress

    def _ordered_owners(self) -> List[str]:
        """Owners with both a vector and metadata, oldest first"""
        dated = []
        for owner_id in self.search.index.list_owner_ids():
            metadata = self.metadata_store.get(owner_id)
            if metadata is None:
                continue
            dated.append((metadata.created_at, owner_id))
        dated.sort(key=lambda item: (_sort_key(item[0]), item[1]))
        return [owner_id for _, owner_id in dated]

    def find_duplicates(self,
                        threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
                        progress_callback: Optional[Callable[[int, int], None]] = None
                        ) -> FindDuplicatesResult:
        """
        Find duplicate groups in the library.

        Args:
            threshold: Maximum distance to the original, in (0, 1]
            progress_callback: Called with (processed, total) per image

        Returns:
            FindDuplicatesResult with disjoint groups in original order
        """
        threshold = validate_threshold(threshold)

        owners = self._ordered_owners()
        # Images without metadata and images already processed never join a group
        excluded: Set[str] = set(self.search.index.list_owner_ids()) - set(owners)
        groups: List[DuplicateGroup] = []

        total = len(owners)
        for i, owner_id in enumerate(tqdm(owners, desc="Finding duplicates",
                                          disable=not self.show_progress)):
            if progress_callback:
                progress_callback(i + 1, total)

            if owner_id in excluded:
                continue

            vector = self.search.index.get(owner_id)
            if vector is None:
                # Removed since the owner list was taken
                continue

            # An original without members is also beyond the threshold of
            # every later image, so it can be excluded either way
            excluded.add(owner_id)
            members = [
                DuplicateMember(owner_id=n.owner_id, distance=n.distance)
                for n in self._neighbours_within(vector, threshold, excluded)
            ]
            if not members:
                continue

            excluded.update(m.owner_id for m in members)
            groups.append(DuplicateGroup(original_id=owner_id, members=members))

        result = FindDuplicatesResult(groups=groups, threshold=threshold)
        logger.info(
            f"Found {result.total_groups} duplicate groups with "
            f"{result.total_duplicates} duplicates among {total} images"
        )
        return result

    def _neighbours_within(self, vector, threshold: float, excluded: Set[str]):
        """All non-excluded neighbours within `threshold`, nearest first"""
        limit = self.neighbor_limit
        while True:
            neighbours = self.search.find_nearest(vector, limit, exclude=excluded)
            if len(neighbours) < limit:
                break
            if not self.search.within_threshold(neighbours[-1].distance, threshold):
                break
            limit *= 2
        return [n for n in neighbours
                if self.search.within_threshold(n.distance, threshold)]


def _sort_key(created_at):
    # Mixed naive/aware timestamps cannot be compared directly
    if isinstance(created_at, datetime):
        return created_at.timestamp()
    return created_at
