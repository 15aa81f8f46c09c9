# components/embedding_generator.py

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional, Tuple, Union

from tqdm import tqdm

from core import codec
from core.background import BackgroundTaskRunner
from core.exceptions import DimensionMismatch, EncodingFailure
from core.models import (BatchGenerationResult, GenerationError, GenerationResult,
                         SyncResult)
from core.ports import EncoderService, LabelStore
from core.vector_index import VectorIndex
from utils.logging_config import log_operation

logger = logging.getLogger(__name__)

GenerationOutcome = Union[GenerationResult, GenerationError]


def is_generation_error(value) -> bool:
    return isinstance(value, GenerationError)


class EmbeddingGenerator:
    """
    Writes encoder output into the vector indexes.

    Each call replaces the owner's vector wholesale. Encoder failures are
    logged and returned as GenerationError.EMBEDDING_FAILED; nothing is
    retried here.
    """

    def __init__(self,
                 encoder: EncoderService,
                 image_index: VectorIndex,
                 label_index: Optional[VectorIndex] = None,
                 label_store: Optional[LabelStore] = None,
                 runner: Optional[BackgroundTaskRunner] = None):
        self.encoder = encoder
        self.image_index = image_index
        self.label_index = label_index
        self.label_store = label_store
        self.runner = runner

    def _store(self, index: VectorIndex, owner_id: str, vector) -> GenerationResult:
        index.upsert(owner_id, vector)
        return GenerationResult(
            owner_id=owner_id,
            dimension=index.dimension,
            model=self.encoder.model_name,
            generated_at=index.generated_at(owner_id) or datetime.now(),
        )

    def generate_for_image(self, image_id: str, image_data: bytes) -> GenerationOutcome:
        """Encode image bytes and store the vector for `image_id`"""
        try:
            vector = self.encoder.encode_image(image_data)
            result = self._store(self.image_index, image_id, vector)
        except (EncodingFailure, ValueError) as e:
            logger.error(f"Failed to generate embedding for image {image_id}: {e}")
            return GenerationError.EMBEDDING_FAILED

        log_operation(logger, 'embed_image', owner_id=image_id, model=result.model)
        return result

    def schedule_image(self, image_id: str, load_image: Callable[[str], bytes]):
        """
        Generate an image embedding in the background.

        The caller does not wait; failures reach the runner's failure sink.

        Args:
            image_id: Image to embed
            load_image: Returns the image bytes for an id
        """
        if self.runner is None:
            raise RuntimeError("EmbeddingGenerator has no background runner")

        def task():
            return self.generate_for_image(image_id, load_image(image_id))

        return self.runner.submit(image_id, task)

    def remove_image(self, image_id: str):
        """Drop the image's vector; call alongside the image deletion"""
        self.image_index.remove(image_id)
        log_operation(logger, 'remove_image_embedding', owner_id=image_id)

    def _require_labels(self):
        if self.label_index is None or self.label_store is None:
            raise RuntimeError("EmbeddingGenerator has no label index or label store")

    def generate_for_label(self, label_id: str) -> GenerationOutcome:
        """Embed the label's name as text"""
        self._require_labels()

        label = self.label_store.get(label_id)
        if label is None:
            return GenerationError.NOT_FOUND

        try:
            vector = self.encoder.encode_text(label.name)
            result = self._store(self.label_index, label.id, vector)
        except (EncodingFailure, ValueError) as e:
            logger.error(f"Failed to generate embedding for label {label_id}: {e}")
            return GenerationError.EMBEDDING_FAILED

        log_operation(logger, 'embed_label', owner_id=label.id, label=label.name)
        return result

    def generate_missing_labels(self,
                                on_progress: Optional[Callable[[int, int, str], None]] = None,
                                show_progress: bool = False) -> BatchGenerationResult:
        """Embed every label that has no vector yet"""
        self._require_labels()

        missing = [label for label in self.label_store.list_labels()
                   if not self.label_index.contains(label.id)]
        return self._generate_labels(missing, on_progress, show_progress)

    def regenerate_all_labels(self,
                              on_progress: Optional[Callable[[int, int, str], None]] = None,
                              show_progress: bool = False) -> BatchGenerationResult:
        """Clear all label vectors, then embed every label again"""
        self._require_labels()

        for owner_id in self.label_index.list_owner_ids():
            self.label_index.remove(owner_id)
        return self.generate_missing_labels(on_progress, show_progress)

    def _generate_labels(self, labels, on_progress, show_progress) -> BatchGenerationResult:
        batch = BatchGenerationResult(total=len(labels))

        for i, label in enumerate(tqdm(labels, desc="Embedding labels",
                                       disable=not show_progress)):
            if on_progress:
                on_progress(i + 1, batch.total, label.name)

            result = self.generate_for_label(label.id)
            if isinstance(result, GenerationError):
                batch.failed += 1
                batch.errors.append({
                    'label_id': label.id,
                    'label_name': label.name,
                    'error': result.value,
                })
            else:
                batch.success += 1

        logger.info(f"Label embeddings: {batch.success}/{batch.total} generated, "
                    f"{batch.failed} failed")
        return batch


def sync_from_blobs(index: VectorIndex,
                    rows: Iterable[Tuple[str, Optional[bytes]]],
                    show_progress: bool = False) -> SyncResult:
    """
    Rebuild `index` from stored vector blobs.

    Rows without a blob or with the wrong byte length are skipped.

    Args:
        index: Destination index
        rows: (owner_id, blob) pairs, e.g. from a metadata database backup
    """
    result = SyncResult()
    for owner_id, blob in tqdm(rows, desc="Syncing embeddings", disable=not show_progress):
        if not blob:
            result.skipped += 1
            continue
        try:
            vector = codec.decode(blob, index.dimension)
        except DimensionMismatch as e:
            logger.warning(f"Skipping {owner_id}: {e}")
            result.skipped += 1
            continue
        index.upsert(owner_id, vector)
        result.synced += 1

    logger.info(f"Synced {result.synced} embeddings, skipped {result.skipped}")
    return result
