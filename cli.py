# cli.py

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from components.duplicate_detector import DuplicateDetector
from components.embedding_generator import sync_from_blobs
from config import SystemConfig
from core.exceptions import InvalidThreshold
from core.models import ImageMetadata
from core.ports import MetadataStore
from core.vector_index import VectorIndex
from main import build_engine
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class IndexMetadataStore(MetadataStore):
    """
    Metadata for command line use.

    Reads an optional JSON file of {id: {"title": ..., "created_at": ISO}}
    and falls back to the vector generation time for creation dates.
    """

    def __init__(self, index: VectorIndex, metadata_path: Optional[str] = None):
        self.index = index
        self.records: Dict[str, dict] = {}
        if metadata_path:
            with open(metadata_path, 'r') as f:
                self.records = json.load(f)

    def get(self, image_id: str) -> Optional[ImageMetadata]:
        record = self.records.get(image_id)
        if record is not None:
            return ImageMetadata(
                id=image_id,
                title=record.get('title', image_id),
                created_at=datetime.fromisoformat(record['created_at']),
                thumbnail_path=record.get('thumbnail_path'),
            )
        generated_at = self.index.generated_at(image_id)
        if generated_at is None:
            return None
        return ImageMetadata(id=image_id, title=image_id, created_at=generated_at)


def status_command(engine, args):
    """Show vector counts"""
    print(f"Backend: {engine.config.vector_index.backend}")
    print(f"Image embeddings: {engine.image_index.count()}")
    print(f"Label embeddings: {engine.label_index.count()}")
    return 0


def similar_command(engine, args):
    """Find images similar to a stored image"""
    try:
        results = engine.search.find_similar(args.owner_id, limit=args.top_k)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if results is None:
        print(f"Error: {args.owner_id} has no embedding", file=sys.stderr)
        return 1

    print(f"\nTop {len(results)} similar images:")
    for i, result in enumerate(results, 1):
        print(f"{i}. {result.owner_id} (similarity: {result.score:.4f}, "
              f"distance: {result.distance:.4f})")

    if args.output:
        output_data = [
            {"owner_id": r.owner_id, "distance": r.distance, "score": r.score}
            for r in results
        ]
        with open(args.output, 'w') as f:
            json.dump(output_data, f, indent=2)
        print(f"\nResults saved to: {args.output}")
    return 0


def duplicate_command(engine, args):
    """Detect duplicate images"""
    metadata_store = IndexMetadataStore(engine.image_index, args.metadata)
    detector = DuplicateDetector(
        engine.search, metadata_store,
        neighbor_limit=engine.config.duplicate_detection.neighbor_limit,
        show_progress=True
    )

    threshold = args.threshold
    if threshold is None:
        threshold = engine.config.duplicate_detection.threshold
    try:
        result = detector.find_duplicates(threshold)
    except InvalidThreshold as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(f"\nFound {result.total_groups} duplicate groups with "
          f"{result.total_duplicates} total duplicates")

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)
        print(f"Report saved to: {args.output}")
    else:
        for i, group in enumerate(result.groups, 1):
            print(f"\nGroup {i}:")
            print(f"  Original: {group.original_id}")
            print(f"  Duplicates ({len(group.members)}):")
            for member in group.members:
                print(f"    - {member.owner_id} (distance: {member.distance:.4f})")
    return 0


def sync_command(engine, args):
    """Load raw float32 vector files (<owner_id>.f32) into the image index"""
    source = Path(args.directory)
    if not source.is_dir():
        print(f"Error: {source} is not a directory", file=sys.stderr)
        return 1

    rows = ((path.stem, path.read_bytes()) for path in sorted(source.glob('*.f32')))
    result = sync_from_blobs(engine.image_index, rows, show_progress=True)
    print(f"\nSynced: {result.synced}")
    print(f"Skipped: {result.skipped}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Photo similarity engine - Command Line Interface"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Path to YAML configuration')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    status_parser = subparsers.add_parser('status', help='Show embedding counts')
    status_parser.set_defaults(func=status_command)

    search_parser = subparsers.add_parser('similar', help='Find similar images')
    search_parser.add_argument('owner_id', help='Image id to search from')
    search_parser.add_argument('-k', '--top-k', type=int, default=None,
                               help='Number of results to return')
    search_parser.add_argument('-o', '--output', help='Output JSON file for results')
    search_parser.set_defaults(func=similar_command)

    duplicate_parser = subparsers.add_parser('duplicates',
                                             help='Detect duplicate images')
    duplicate_parser.add_argument('-t', '--threshold', type=float, default=None,
                                  help='Maximum distance between duplicates (0, 1]')
    duplicate_parser.add_argument('-m', '--metadata',
                                  help='JSON file with image titles and creation dates')
    duplicate_parser.add_argument('-o', '--output', help='Output JSON report path')
    duplicate_parser.set_defaults(func=duplicate_command)

    sync_parser = subparsers.add_parser('sync',
                                        help='Import raw vector files into the index')
    sync_parser.add_argument('directory', help='Directory of <owner_id>.f32 files')
    sync_parser.set_defaults(func=sync_command)

    return parser


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = SystemConfig.load(args.config)
    setup_logging(config, console=False)

    with build_engine(config) as engine:
        return args.func(engine, args)


if __name__ == "__main__":
    sys.exit(main_cli())
