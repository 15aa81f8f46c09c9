from dataclasses import dataclass, field
from pathlib import Path

import yaml

from core.codec import EMBEDDING_DIMENSION


@dataclass
class VectorIndexConfig:
    """Configuration for vector storage"""
    backend: str = "sqlite"  # Options: sqlite, faiss, memory
    database_path: str = "data/embeddings.db"
    index_dir: str = "data/indexes"  # Used by the faiss backend
    dimension: int = EMBEDDING_DIMENSION


@dataclass
class SimilaritySearchConfig:
    """Configuration for the similar-images feature"""
    default_results: int = 10
    max_results: int = 100


@dataclass
class DuplicateDetectionConfig:
    """Configuration for duplicate detection"""
    threshold: float = 0.1  # Maximum L2 distance between duplicates
    neighbor_limit: int = 100  # Neighbours fetched per image


@dataclass
class RecommendationConfig:
    """Configuration for the recommendation feed"""
    limit: int = 10
    history_days: int = 30
    history_limit: int = 100
    min_duration_ms: float = 1000.0


@dataclass
class AttributeSuggestionConfig:
    """Configuration for label suggestions"""
    threshold: float = 0.2
    limit: int = 10
    similar_image_limit: int = 10
    keyword_limit: int = 5


@dataclass
class BackgroundConfig:
    """Configuration for background embedding generation"""
    n_workers: int = 2


@dataclass
class SystemConfig:
    """System-wide configuration"""
    log_dir: str = "logs"
    log_level: str = "INFO"

    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)
    similarity_search: SimilaritySearchConfig = field(
        default_factory=SimilaritySearchConfig
    )
    duplicate_detection: DuplicateDetectionConfig = field(
        default_factory=DuplicateDetectionConfig
    )
    recommendation: RecommendationConfig = field(
        default_factory=RecommendationConfig
    )
    attribute_suggestion: AttributeSuggestionConfig = field(
        default_factory=AttributeSuggestionConfig
    )
    background: BackgroundConfig = field(default_factory=BackgroundConfig)

    def validate(self):
        """Raise ValueError on out-of-range settings"""
        if self.vector_index.backend not in ("sqlite", "faiss", "memory"):
            raise ValueError(f"Unknown vector index backend: {self.vector_index.backend}")
        if self.vector_index.dimension != EMBEDDING_DIMENSION:
            raise ValueError(
                f"vector_index.dimension must be {EMBEDDING_DIMENSION}, "
                f"got {self.vector_index.dimension}"
            )
        threshold = self.duplicate_detection.threshold
        if not 0 < threshold <= 1:
            raise ValueError(f"duplicate_detection.threshold must be in (0, 1], got {threshold}")
        if self.duplicate_detection.neighbor_limit < 1:
            raise ValueError("duplicate_detection.neighbor_limit must be >= 1")
        if not 1 <= self.similarity_search.default_results <= self.similarity_search.max_results:
            raise ValueError("similarity_search.default_results must be in [1, max_results]")
        if self.recommendation.limit < 1:
            raise ValueError("recommendation.limit must be >= 1")
        if self.recommendation.min_duration_ms < 0:
            raise ValueError("recommendation.min_duration_ms must be >= 0")
        if not 0 <= self.attribute_suggestion.threshold <= 1:
            raise ValueError("attribute_suggestion.threshold must be in [0, 1]")
        if self.attribute_suggestion.limit < 1:
            raise ValueError("attribute_suggestion.limit must be >= 1")
        if self.background.n_workers < 1:
            raise ValueError("background.n_workers must be >= 1")
        return self

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        config_dict = {
            'log_dir': self.log_dir,
            'log_level': self.log_level,
            'vector_index': {
                'backend': self.vector_index.backend,
                'database_path': self.vector_index.database_path,
                'index_dir': self.vector_index.index_dir,
                'dimension': self.vector_index.dimension
            },
            'similarity_search': {
                'default_results': self.similarity_search.default_results,
                'max_results': self.similarity_search.max_results
            },
            'duplicate_detection': {
                'threshold': self.duplicate_detection.threshold,
                'neighbor_limit': self.duplicate_detection.neighbor_limit
            },
            'recommendation': {
                'limit': self.recommendation.limit,
                'history_days': self.recommendation.history_days,
                'history_limit': self.recommendation.history_limit,
                'min_duration_ms': self.recommendation.min_duration_ms
            },
            'attribute_suggestion': {
                'threshold': self.attribute_suggestion.threshold,
                'limit': self.attribute_suggestion.limit,
                'similar_image_limit': self.attribute_suggestion.similar_image_limit,
                'keyword_limit': self.attribute_suggestion.keyword_limit
            },
            'background': {
                'n_workers': self.background.n_workers
            }
        }

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        config.log_dir = config_dict.get('log_dir', config.log_dir)
        config.log_level = config_dict.get('log_level', config.log_level)

        if 'vector_index' in config_dict:
            vi = config_dict['vector_index']
            config.vector_index = VectorIndexConfig(
                backend=vi.get('backend', config.vector_index.backend),
                database_path=vi.get('database_path', config.vector_index.database_path),
                index_dir=vi.get('index_dir', config.vector_index.index_dir),
                dimension=vi.get('dimension', config.vector_index.dimension)
            )

        if 'similarity_search' in config_dict:
            ss = config_dict['similarity_search']
            config.similarity_search = SimilaritySearchConfig(
                default_results=ss.get('default_results', config.similarity_search.default_results),
                max_results=ss.get('max_results', config.similarity_search.max_results)
            )

        if 'duplicate_detection' in config_dict:
            dd = config_dict['duplicate_detection']
            config.duplicate_detection = DuplicateDetectionConfig(
                threshold=dd.get('threshold', config.duplicate_detection.threshold),
                neighbor_limit=dd.get('neighbor_limit', config.duplicate_detection.neighbor_limit)
            )

        if 'recommendation' in config_dict:
            rc = config_dict['recommendation']
            config.recommendation = RecommendationConfig(
                limit=rc.get('limit', config.recommendation.limit),
                history_days=rc.get('history_days', config.recommendation.history_days),
                history_limit=rc.get('history_limit', config.recommendation.history_limit),
                min_duration_ms=rc.get('min_duration_ms', config.recommendation.min_duration_ms)
            )

        if 'attribute_suggestion' in config_dict:
            sg = config_dict['attribute_suggestion']
            config.attribute_suggestion = AttributeSuggestionConfig(
                threshold=sg.get('threshold', config.attribute_suggestion.threshold),
                limit=sg.get('limit', config.attribute_suggestion.limit),
                similar_image_limit=sg.get('similar_image_limit',
                                           config.attribute_suggestion.similar_image_limit),
                keyword_limit=sg.get('keyword_limit', config.attribute_suggestion.keyword_limit)
            )

        if 'background' in config_dict:
            bg = config_dict['background']
            config.background = BackgroundConfig(
                n_workers=bg.get('n_workers', config.background.n_workers)
            )

        return config.validate()
