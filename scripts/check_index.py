#!/usr/bin/env python3
"""
Vector Index Check

Verifies the configured vector index exists (creating it when the backend
supports it) and prints its statistics.

Usage:
    python scripts/check_index.py
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from config.settings import get_settings
from message_rag.vector_store import VectorIndexClient


async def check() -> dict:
    settings = get_settings()
    client = VectorIndexClient(dimension=settings.embedding.dimension)
    try:
        await client.initialize()
        return await client.describe()
    finally:
        await client.close()


def main() -> int:
    """Print index stats; exit 1 if the index is unreachable."""
    print("\n" + "=" * 60)
    print("  Vector Index Check")
    print("=" * 60 + "\n")

    try:
        stats = asyncio.run(check())
    except Exception as e:
        logger.error(f"Index check failed: {e}")
        return 1

    print(json.dumps(stats, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
