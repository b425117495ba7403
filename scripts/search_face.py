#!/usr/bin/env python3
"""CLI script for finding indexed photos of a person from a selfie.

Usage:
    python scripts/search_face.py --selfie me.jpg
    python scripts/search_face.py --selfie me.jpg --encodings data/encodings.pkl
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from facesearch.backends import make_loader
from facesearch.config import Config
from facesearch.exceptions import FaceSearchError
from facesearch.logging_config import setup_logging
from facesearch.matching import MatchFilter, MatchFilterSettings
from facesearch.progress import ProgressChannel
from facesearch.registry import ModelRegistry
from facesearch.services import FaceSearchService, QueryPipeline, SearchStatus
from facesearch.store import InMemoryEncodingStore
from facesearch.vector_search import FaissVectorSearch, ResilientVectorSearch

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Search indexed photos with a selfie",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--selfie",
        type=str,
        required=True,
        help="Path to the query image",
    )

    parser.add_argument(
        "--encodings",
        type=str,
        default=None,
        help="Encodings file (default: DATA_DIR/encodings.pkl)",
    )

    parser.add_argument(
        "--margin",
        type=float,
        default=None,
        help="Override MATCH_MARGIN",
    )

    parser.add_argument(
        "--hard-cap",
        type=float,
        default=None,
        help="Override MATCH_HARD_CAP",
    )

    return parser.parse_args()


def print_section(title: str) -> None:
    """Print a section divider."""
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()

    if args.margin is not None:
        config.match_margin = args.margin
    if args.hard_cap is not None:
        config.match_hard_cap = args.hard_cap

    encodings_path = Path(args.encodings) if args.encodings else config.data_dir / "encodings.pkl"

    print_section("Face Search - Find Photos from a Selfie")
    print(f"Selfie:          {args.selfie}")
    print(f"Encodings file:  {encodings_path}")
    print(f"Margin:          {config.match_margin}")
    print(f"Hard cap:        {config.match_hard_cap}")

    try:
        store = InMemoryEncodingStore.load(encodings_path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        print(f"❌ Error: {e}")
        print()
        print("Run 'python scripts/index_photos.py --photos-dir <dir>' first")
        return

    print(f"✓ Loaded {len(store)} encodings")

    progress = ProgressChannel()
    progress.subscribe(lambda event: print(f"... {event.message}"))

    vector_search = ResilientVectorSearch(
        FaissVectorSearch(store),
        timeout=config.search_timeout,
        retries=config.search_retries,
        backoff=config.search_backoff,
    )

    print_section("Searching")

    with ModelRegistry(
        make_loader(config), load_timeout=config.model_load_timeout, warmup=config.warmup
    ) as registry:
        service = FaceSearchService(
            QueryPipeline(registry, config, progress=progress),
            vector_search,
            MatchFilter(MatchFilterSettings.from_config(config)),
        )

        try:
            outcome = service.search(Path(args.selfie))
        except FaceSearchError as e:
            logger.error(f"Search failed: {e}")
            print(f"❌ {e.user_message}")
            return
        finally:
            vector_search.close()

    print_section("Results")
    print(outcome.message)

    if outcome.status == SearchStatus.MATCHED:
        print()
        for rank, match in enumerate(outcome.result, start=1):
            print(f"  {rank:3d}. {match.photo_id:40s} distance={match.distance:.4f}")


if __name__ == "__main__":
    main()
