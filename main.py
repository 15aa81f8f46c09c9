import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from components.attribute_suggestion import AttributeSuggestionEngine
from components.duplicate_detector import DuplicateDetector
from components.embedding_generator import EmbeddingGenerator, is_generation_error
from components.preference import PreferenceVectorBuilder
from components.recommendation import RecommendationEngine
from components.similarity_search import SimilaritySearchService
from config import SystemConfig
from core.background import BackgroundTaskRunner
from core.ports import (AttributeStore, EncoderService, InteractionHistoryStore,
                        LabelStore, MetadataStore)
from core.vector_index import VectorIndex, create_vector_index
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

IMAGE_INDEX = "image_embeddings"
LABEL_INDEX = "label_embeddings"


@dataclass
class PhotoEngine:
    """All engine components, wired once per process"""
    config: SystemConfig
    image_index: VectorIndex
    label_index: VectorIndex
    search: SimilaritySearchService
    duplicates: Optional[DuplicateDetector] = None
    recommendations: Optional[RecommendationEngine] = None
    suggestions: Optional[AttributeSuggestionEngine] = None
    generator: Optional[EmbeddingGenerator] = None
    runner: Optional[BackgroundTaskRunner] = None

    def close(self):
        """Release background workers and index resources"""
        if self.runner is not None:
            self.runner.shutdown(wait=True)
        self.image_index.close()
        self.label_index.close()
        logger.info("Engine closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def initialize_directories(config: SystemConfig):
    """Create necessary directories"""
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)
    if config.vector_index.backend == "sqlite":
        Path(config.vector_index.database_path).parent.mkdir(parents=True, exist_ok=True)
    elif config.vector_index.backend == "faiss":
        Path(config.vector_index.index_dir).mkdir(parents=True, exist_ok=True)


def build_engine(config: SystemConfig,
                 metadata_store: Optional[MetadataStore] = None,
                 label_store: Optional[LabelStore] = None,
                 history_store: Optional[InteractionHistoryStore] = None,
                 attribute_store: Optional[AttributeStore] = None,
                 encoder: Optional[EncoderService] = None) -> PhotoEngine:
    """
    Wire the engine from explicit collaborators.

    Components whose collaborators are missing are left as None.
    """
    config.validate()
    initialize_directories(config)

    image_index = create_vector_index(config.vector_index, IMAGE_INDEX)
    label_index = create_vector_index(config.vector_index, LABEL_INDEX)

    search = SimilaritySearchService(
        image_index,
        default_results=config.similarity_search.default_results,
        max_results=config.similarity_search.max_results
    )
    engine = PhotoEngine(config=config, image_index=image_index,
                         label_index=label_index, search=search)

    if metadata_store is not None:
        engine.duplicates = DuplicateDetector(
            search, metadata_store,
            neighbor_limit=config.duplicate_detection.neighbor_limit
        )

    engine.recommendations = RecommendationEngine(
        search,
        PreferenceVectorBuilder(image_index,
                                min_duration_ms=config.recommendation.min_duration_ms),
        history_store=history_store,
        metadata_store=metadata_store,
        history_days=config.recommendation.history_days,
        history_limit=config.recommendation.history_limit,
        limit=config.recommendation.limit
    )

    if label_store is not None:
        engine.suggestions = AttributeSuggestionEngine(
            image_index, label_index, label_store,
            attribute_store=attribute_store,
            threshold=config.attribute_suggestion.threshold,
            limit=config.attribute_suggestion.limit,
            similar_image_limit=config.attribute_suggestion.similar_image_limit,
            keyword_limit=config.attribute_suggestion.keyword_limit
        )

    if encoder is not None:
        engine.runner = BackgroundTaskRunner(n_workers=config.background.n_workers,
                                             is_failure=is_generation_error)
        engine.generator = EmbeddingGenerator(encoder, image_index,
                                              label_index=label_index,
                                              label_store=label_store,
                                              runner=engine.runner)

    logger.info(f"Engine ready: {image_index.count()} image vectors, "
                f"{label_index.count()} label vectors "
                f"({config.vector_index.backend} backend)")
    return engine


def main(config_path: str = "config.yaml") -> PhotoEngine:
    """Load configuration, set up logging and build an engine"""
    config = SystemConfig.load(config_path)
    setup_logging(config)
    logger.info("Starting photo similarity engine")
    return build_engine(config)


if __name__ == "__main__":
    main().close()
