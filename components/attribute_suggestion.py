# components/attribute_suggestion.py

from collections import Counter, defaultdict
from typing import Dict, List, Optional, Union

from components.similarity_search import to_score
from core.models import (AttributeSuggestion, SuggestAttributesResult,
                         SuggestedKeyword, SuggestionError)
from core.ports import AttributeStore, LabelStore
from core.vector_index import VectorIndex

DEFAULT_THRESHOLD = 0.2
DEFAULT_LIMIT = 10
SIMILAR_IMAGE_LIMIT = 10
KEYWORD_LIMIT = 5


class AttributeSuggestionEngine:
    """
    Proposes labels for an image by matching its embedding against the
    text embeddings of every label.

    Label vectors live in their own index keyed by label id. When an
    attribute store is supplied, each suggestion also carries the keywords
    that the image's nearest neighbours use with the same label.
    """

    def __init__(self,
                 image_index: VectorIndex,
                 label_index: VectorIndex,
                 label_store: LabelStore,
                 attribute_store: Optional[AttributeStore] = None,
                 threshold: float = DEFAULT_THRESHOLD,
                 limit: int = DEFAULT_LIMIT,
                 similar_image_limit: int = SIMILAR_IMAGE_LIMIT,
                 keyword_limit: int = KEYWORD_LIMIT):
        self.image_index = image_index
        self.label_index = label_index
        self.label_store = label_store
        self.attribute_store = attribute_store
        self.threshold = threshold
        self.limit = limit
        self.similar_image_limit = similar_image_limit
        self.keyword_limit = keyword_limit

    def suggest(self, image_id: str,
                threshold: Optional[float] = None,
                limit: Optional[int] = None
                ) -> Union[SuggestAttributesResult, SuggestionError]:
        """
        Args:
            image_id: Image to suggest labels for
            threshold: Minimum score (0-1) a label needs to be suggested
            limit: Maximum number of suggestions

        Returns:
            Suggestions sorted by descending score, or a SuggestionError
        """
        threshold = self.threshold if threshold is None else threshold
        limit = self.limit if limit is None else limit
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        image_vector = self.image_index.get(image_id)
        if image_vector is None:
            return SuggestionError.IMAGE_NOT_EMBEDDED

        label_count = self.label_index.count()
        if label_count == 0:
            return SuggestionError.NO_LABELS_EMBEDDED

        # Every label, nearest first, so scores come out in descending order
        scored_labels = []
        for result in self.label_index.find_nearest(image_vector, label_count):
            label = self.label_store.get(result.owner_id)
            if label is not None:
                scored_labels.append((label, to_score(result.distance)))
        if not scored_labels:
            # Only vectors of deleted labels are left
            return SuggestionError.NO_LABELS_EMBEDDED

        keywords_by_label = self._keywords_from_similar_images(image_id, image_vector)

        suggestions = []
        for label, score in scored_labels:
            if score < threshold:
                break
            suggestions.append(AttributeSuggestion(
                label_id=label.id,
                label_name=label.name,
                score=score,
                suggested_keywords=self._top_keywords(keywords_by_label.get(label.id)),
            ))
            if len(suggestions) >= limit:
                break

        return SuggestAttributesResult(image_id=image_id, suggestions=suggestions)

    def _keywords_from_similar_images(self, image_id: str,
                                      image_vector) -> Dict[str, Counter]:
        """Keyword frequencies per label across the image's nearest images"""
        keywords_by_label: Dict[str, Counter] = defaultdict(Counter)
        if self.attribute_store is None or self.similar_image_limit < 1:
            return keywords_by_label

        similar = self.image_index.find_nearest(image_vector, self.similar_image_limit,
                                                exclude={image_id})
        for result in similar:
            for attribute in self.attribute_store.find_by_image(result.owner_id):
                keywords_by_label[attribute.label_id].update(attribute.keyword_list())
        return keywords_by_label

    def _top_keywords(self, counts: Optional[Counter]) -> List[SuggestedKeyword]:
        if not counts:
            return []
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [SuggestedKeyword(keyword=k, count=c) for k, c in ranked[:self.keyword_limit]]
