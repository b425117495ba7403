#!/usr/bin/env python3
"""CLI script for indexing a folder of photos for face search.

Every image under the photos directory is indexed with the precise tier;
the photo id is the image path relative to that directory. Encodings are
kept in a pickle file so search_face.py can query them.

Usage:
    python scripts/index_photos.py --photos-dir data/photos
    python scripts/index_photos.py --photos-dir data/photos --reindex-stale
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from facesearch.backends import make_loader
from facesearch.config import Config
from facesearch.exceptions import FaceSearchError, NoFaceDetected
from facesearch.logging_config import setup_logging
from facesearch.registry import ModelRegistry
from facesearch.services import IndexingService
from facesearch.store import InMemoryEncodingStore, InMemoryPhotoCatalog

logger = setup_logging(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Index the faces of a folder of photos",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--photos-dir",
        type=str,
        required=True,
        help="Directory containing photos (searched recursively)",
    )

    parser.add_argument(
        "--encodings",
        type=str,
        default=None,
        help="Encodings file (default: DATA_DIR/encodings.pkl)",
    )

    parser.add_argument(
        "--reindex-stale",
        action="store_true",
        help="Only re-index photos whose encodings came from another model version",
    )

    return parser.parse_args()


def print_section(title: str) -> None:
    """Print a section divider."""
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


def find_photos(photos_dir: Path) -> list[Path]:
    """List image files under ``photos_dir``, sorted by path.

    Raises:
        FileNotFoundError: If photos_dir doesn't exist
    """
    if not photos_dir.exists():
        raise FileNotFoundError(f"Photos directory not found: {photos_dir}")

    return sorted(
        p for p in photos_dir.rglob("*") if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()

    encodings_path = Path(args.encodings) if args.encodings else config.data_dir / "encodings.pkl"
    photos_dir = Path(args.photos_dir)

    print_section("Face Indexer - Index Photos for Face Search")
    print(f"Photos dir:      {photos_dir}")
    print(f"Encodings file:  {encodings_path}")
    print(f"Backend:         {config.backend}")
    print(f"Ladder:          {config.confidence_ladder}")

    # Step 1: Load existing encodings
    print_section("Step 1: Loading Encodings")

    if encodings_path.exists():
        store = InMemoryEncodingStore.load(encodings_path)
        print(f"✓ Loaded {len(store)} encodings")
    else:
        store = InMemoryEncodingStore()
        print("✓ Starting with an empty store")

    catalog = InMemoryPhotoCatalog()
    for photo_id in store.photo_versions():
        catalog.set_indexed(photo_id, True)

    # Step 2: Find photos
    print_section("Step 2: Finding Photos")

    try:
        photos = find_photos(photos_dir)
    except FileNotFoundError as e:
        logger.error(str(e))
        print(f"❌ Error: {e}")
        return

    if not photos:
        print(f"❌ Error: No images found in {photos_dir}")
        return

    print(f"✓ Found {len(photos)} photos")

    # Step 3: Index
    print_section("Step 3: Indexing Faces")

    with ModelRegistry(
        make_loader(config), load_timeout=config.model_load_timeout, warmup=False
    ) as registry:
        service = IndexingService(registry, store, catalog, config)

        if args.reindex_stale:
            try:
                registry.ensure_loaded(service.tier)
            except FaceSearchError as e:
                print(f"❌ Error: {e}")
                return
            stale = set(service.stale_photos())
            photos = [p for p in photos if str(p.relative_to(photos_dir)) in stale]
            print(f"Re-indexing {len(photos)} stale photos")

        indexed = 0
        faces = 0
        no_face = []
        failed = []

        for path in photos:
            photo_id = str(path.relative_to(photos_dir))
            print(f"Processing '{photo_id}'... ", end="", flush=True)

            try:
                report = service.index_photo(photo_id, path)
            except NoFaceDetected:
                print("no face")
                no_face.append(photo_id)
                continue
            except FaceSearchError as e:
                print("failed")
                logger.error(f"Failed to index {photo_id}: {e}")
                failed.append(photo_id)
                continue

            indexed += 1
            faces += report.faces
            suffix = f" (recovered at {report.threshold:.2f})" if report.attempts > 1 else ""
            print(f"{report.faces} face(s){suffix}")

    # Step 4: Save
    print_section("Step 4: Saving Encodings")

    store.save(encodings_path)
    print(f"✓ Saved {len(store)} encodings to {encodings_path}")

    print_section("Summary")
    print(f"Indexed photos:   {indexed}")
    print(f"Faces stored:     {faces}")
    print(f"Photos w/o face:  {len(no_face)}")
    print(f"Failed photos:    {len(failed)}")

    if failed:
        print()
        print("Failed:")
        for photo_id in failed:
            print(f"  - {photo_id}")


if __name__ == "__main__":
    main()
