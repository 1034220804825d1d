#!/usr/bin/env python3
"""Create required Qdrant payload indexes for filtering and full-text matching."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR / "src"))

from lovassist.config import get_settings  # noqa: E402
from lovassist.store import LovdataStore  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def ensure(collection: str | None) -> None:
    store = LovdataStore.from_settings(get_settings())
    try:
        name = collection or store.collection_name
        logger.info("Ensuring payload indexes for collection: %s", name)
        await store.ensure_payload_indexes(collection_name=name)
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Ensure Qdrant payload indexes for filename/member/law_type/ministry/year/content."
    )
    parser.add_argument(
        "--collection",
        type=str,
        default=None,
        help="Override collection name (default: from settings)",
    )
    args = parser.parse_args()

    asyncio.run(ensure(args.collection))
    logger.info("Done.")


if __name__ == "__main__":
    main()
